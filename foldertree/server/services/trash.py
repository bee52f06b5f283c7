"""Trash state machine.

A node is Live, Trashed (its own `delete_time` is set) or Gone. Trashing a
folder never stamps its descendants: they stay Live and are only hidden
behind their trashed ancestor, so each of them can still be trashed,
restored or purged on its own.
"""

import logging

from foldertree.models.node import DeletionCounts
from foldertree.server.constants import ROOT_ID
from foldertree.server.db.models.node import FileDO, FolderDO, NodeDO, now_ms

from .counts import CountTracker
from .exceptions import InvalidStateException, LocationUnavailableException
from .names import NameResolver
from .paths import PathMaterializer
from .store import HierarchyStore

logger = logging.getLogger(__name__)


class TrashEngine:
    def __init__(
        self,
        store: HierarchyStore,
        counts: CountTracker,
        names: NameResolver,
        paths: PathMaterializer,
    ) -> None:
        self.store = store
        self.counts = counts
        self.names = names
        self.paths = paths
        self.released_storage_keys: list[str] = []
        """Blob keys of purged files, released once the transaction commits."""

    async def has_deleted_ancestor(self, node: NodeDO) -> bool:
        """True if the node or any ancestor up to the root is trashed."""
        if node.is_deleted:
            return True
        return any(ancestor.is_deleted for ancestor in await self.store.ancestors(node))

    async def soft_delete(self, node: NodeDO) -> NodeDO:
        if node.is_deleted:
            raise InvalidStateException(f"'{node.name}' is already in the trash")
        node.delete_time = now_ms()
        await self.counts.decrement(node.parent_id)
        logger.info(f"Moved {node.kind.value} {node.id} ({node.path}) to trash")
        return node

    async def restore(self, node: NodeDO) -> NodeDO:
        """Bring a trashed node back to its original parent.

        The parent must exist and be Live. Descendants that were trashed on
        their own stay in the trash.
        """
        if not node.is_deleted:
            raise InvalidStateException(f"'{node.name}' is not in the trash")

        parent: FolderDO | None = None
        if node.parent_id != ROOT_ID:
            parent = await self.store.get_folder(node.parent_id)
            if parent is None:
                raise LocationUnavailableException(
                    f"The original location of '{node.name}' no longer exists",
                    node.parent_id,
                )
            if parent.is_deleted:
                raise LocationUnavailableException(
                    f"The original location of '{node.name}' is in the trash, "
                    f"restore '{parent.name}' first",
                    node.parent_id,
                )

        # A living sibling may have taken the name while the node was trashed.
        final_name = await self.names.resolve(
            node.name,
            node.kind,
            node.user_id,
            node.parent_id,
            extension=node.extension if isinstance(node, FileDO) else "",
            exclude_id=node.id,
        )
        if final_name != node.name:
            logger.info(f"Restoring node {node.id} as '{final_name}'")
            old_path = node.path
            node.name = final_name
            self.paths.apply(node, self.paths.compute_new_path(node, parent))
            await self.paths.cascade_rewrite(node, old_path)

        node.delete_time = None
        await self.counts.increment(node.parent_id)
        logger.info(f"Restored {node.kind.value} {node.id} ({node.path})")
        return node

    async def permanent_delete(self, node: NodeDO) -> DeletionCounts:
        """Remove a node and its whole subtree, children first.

        Works from either state. Blob keys are queued in
        `released_storage_keys` instead of being deleted here.
        """
        counts = DeletionCounts()
        descendants = await self.store.list_descendants(node)
        for child in [*reversed(descendants), node]:
            if isinstance(child, FileDO):
                if child.storage_key:
                    self.released_storage_keys.append(child.storage_key)
                counts.deleted_file_count += 1
            else:
                counts.deleted_folder_count += 1
            await self.store.delete(child)

        if not node.is_deleted:
            await self.counts.decrement(node.parent_id)
        await self.store.flush()
        logger.info(
            f"Permanently deleted {node.kind.value} {node.id} ({node.path}): "
            f"{counts.deleted_folder_count} folder(s), "
            f"{counts.deleted_file_count} file(s)"
        )
        return counts

    async def top_level_trashed(self, user_id: int) -> list[NodeDO]:
        """Trashed nodes that do not sit below another trashed folder."""
        folders, files = await self.store.list_trashed(user_id)
        trashed_folder_ids = {folder.id for folder in folders}
        result: list[NodeDO] = []
        for node in [*folders, *files]:
            ancestors = await self.store.ancestors(node)
            if not any(ancestor.id in trashed_folder_ids for ancestor in ancestors):
                result.append(node)
        return result

    async def list_trash(self, user_id: int) -> tuple[list[FolderDO], list[FileDO]]:
        """Every node with its own deletion marker, nested or not."""
        return await self.store.list_trashed(user_id)

    async def empty_trash(self, user_id: int) -> DeletionCounts:
        total = DeletionCounts()
        for node in await self.top_level_trashed(user_id):
            total.add(await self.permanent_delete(node))
        logger.info(
            f"Emptied trash for user {user_id}: {total.total_deleted} record(s) removed"
        )
        return total
