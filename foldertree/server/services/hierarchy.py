"""Orchestration of structural operations on a user's folder tree.

Every public operation runs in its own session and commits once, so a node
update, the parent counter changes and the cascaded path rewrite become
visible together. Writes that lose a race against a concurrent operation
(stale version or a unique index violation) re-run the whole operation.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from foldertree.models.node import (
    DeletionCounts,
    DuplicateAction,
    FileEntity,
    FolderEntity,
    FolderListing,
    NodeEntity,
    NodeKind,
    PathSegment,
    TrashListing,
)
from foldertree.server.constants import (
    DEFAULT_CONFLICT_RETRIES,
    ROOT_ID,
    ROOT_LABEL,
    TRASH_LABEL,
)
from foldertree.server.db.models.node import FileDO, FolderDO, NodeDO
from foldertree.server.db.session import DatabaseSessionManager
from foldertree.server.utils.snowflake import next_id

from .blob import BlobStorage
from .counts import CountTracker
from .exceptions import (
    ConcurrentModificationException,
    CyclicOperationException,
    InvalidStateException,
    NotFoundException,
    NotOwnerException,
    ParentDeletedException,
)
from .names import NameResolver, split_file_name, validate_name
from .paths import PathMaterializer, compute_path
from .permissions import OwnerOnlyPermissions, PermissionLevel, PermissionService
from .store import HierarchyStore
from .trash import TrashEngine

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class _Tree:
    """Collaborators bound to one session."""

    def __init__(self, session: AsyncSession) -> None:
        self.store = HierarchyStore(session)
        self.counts = CountTracker(self.store)
        self.names = NameResolver(self.store)
        self.paths = PathMaterializer(self.store)
        self.trash = TrashEngine(self.store, self.counts, self.names, self.paths)


def _segments(node: NodeDO) -> list[PathSegment]:
    return [PathSegment(id=s["id"], name=s["name"]) for s in node.path_segments]


def _to_folder_entity(folder: FolderDO, has_deleted_ancestor: bool) -> FolderEntity:
    return FolderEntity(
        id=folder.id,
        kind=NodeKind.FOLDER,
        owner=folder.user_id,
        name=folder.name,
        parent_id=None if folder.parent_id == ROOT_ID else folder.parent_id,
        path=folder.path,
        path_segments=_segments(folder),
        is_pinned=folder.is_pinned,
        delete_time=folder.delete_time,
        create_time=folder.create_time,
        update_time=folder.update_time,
        has_deleted_ancestor=has_deleted_ancestor,
        items=folder.items,
        color=folder.color,
    )


def _to_file_entity(file: FileDO, has_deleted_ancestor: bool) -> FileEntity:
    return FileEntity(
        id=file.id,
        kind=NodeKind.FILE,
        owner=file.user_id,
        name=file.name,
        parent_id=None if file.parent_id == ROOT_ID else file.parent_id,
        path=file.path,
        path_segments=_segments(file),
        is_pinned=file.is_pinned,
        delete_time=file.delete_time,
        create_time=file.create_time,
        update_time=file.update_time,
        has_deleted_ancestor=has_deleted_ancestor,
        extension=file.extension,
        size=file.size,
        storage_key=file.storage_key,
        mime_type=file.mime_type,
    )


def to_entity(node: NodeDO, has_deleted_ancestor: bool = False) -> NodeEntity:
    if isinstance(node, FolderDO):
        return _to_folder_entity(node, has_deleted_ancestor)
    return _to_file_entity(node, has_deleted_ancestor)


class HierarchyService:
    """Create, rename, move, list and trash folders and files."""

    def __init__(
        self,
        session_manager: DatabaseSessionManager,
        blob_storage: BlobStorage | None = None,
        permissions: PermissionService | None = None,
        conflict_retries: int = DEFAULT_CONFLICT_RETRIES,
    ) -> None:
        self.session_manager = session_manager
        self.blob_storage = blob_storage
        self.permissions = permissions or OwnerOnlyPermissions()
        self.conflict_retries = conflict_retries

    async def _run(
        self, description: str, operation: Callable[[_Tree], Awaitable[_T]]
    ) -> _T:
        """Run `operation` in a fresh transaction, retrying lost races."""
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self.session_manager.session() as session:
                    tree = _Tree(session)
                    result = await operation(tree)
                    await session.commit()
            except (IntegrityError, StaleDataError) as err:
                if attempt > self.conflict_retries:
                    raise ConcurrentModificationException(
                        f"Gave up on {description} after {attempt} attempts"
                    ) from err
                logger.warning(
                    f"Concurrent modification during {description}, "
                    f"retrying (attempt {attempt}): {err}"
                )
                continue
            await self._release_blobs(tree.trash.released_storage_keys)
            return result

    async def _release_blobs(self, storage_keys: list[str]) -> None:
        """Delete bytes no longer referenced by any file record."""
        if not storage_keys or self.blob_storage is None:
            return
        async with self.session_manager.session() as session:
            store = HierarchyStore(session)
            for storage_key in dict.fromkeys(storage_keys):
                if await store.is_storage_key_referenced(storage_key):
                    logger.debug(f"Blob {storage_key} still referenced, keeping it")
                    continue
                try:
                    await self.blob_storage.delete_blob(storage_key)
                except Exception as err:
                    logger.error(
                        f"Failed to delete blob {storage_key}: {err}", exc_info=True
                    )

    async def _get_owned(
        self, tree: _Tree, user_id: int, node_id: int, kind: NodeKind | None = None
    ) -> NodeDO:
        node = await tree.store.get_node(node_id, kind)
        if node is None:
            raise NotFoundException(f"Node {node_id} not found")
        if node.user_id != user_id:
            raise NotOwnerException(f"Node {node_id} is not owned by user {user_id}")
        return node

    async def _get_readable(self, tree: _Tree, user_id: int, node_id: int) -> NodeDO:
        node = await tree.store.get_node(node_id)
        if node is None:
            raise NotFoundException(f"Node {node_id} not found")
        if node.user_id != user_id and not await self.permissions.has_permission(
            node.id, user_id, node.user_id, PermissionLevel.VIEW
        ):
            raise NotOwnerException(f"User {user_id} cannot view node {node_id}")
        return node

    async def _get_destination(
        self, tree: _Tree, user_id: int, folder_id: int | None
    ) -> FolderDO | None:
        """Validate a folder that is about to receive a child."""
        if folder_id is None or folder_id == ROOT_ID:
            return None
        folder = await tree.store.get_folder(folder_id)
        if folder is None:
            raise NotFoundException(f"Folder {folder_id} not found")
        if folder.user_id != user_id:
            raise NotOwnerException(f"Folder {folder_id} is not owned by user {user_id}")
        if await tree.trash.has_deleted_ancestor(folder):
            raise ParentDeletedException(f"Folder '{folder.name}' is in the trash")
        return folder

    async def _entity(self, tree: _Tree, node: NodeDO) -> NodeEntity:
        return to_entity(node, await tree.trash.has_deleted_ancestor(node))

    async def create(
        self,
        kind: NodeKind,
        user_id: int,
        name: str,
        parent_id: int | None = None,
        duplicate_action: DuplicateAction | None = None,
        **attributes,
    ) -> NodeEntity:
        """Create a folder or file under `parent_id`, or at the root."""
        if kind == NodeKind.FOLDER:
            return await self.create_folder(
                user_id, name, parent_id, duplicate_action, **attributes
            )
        return await self.create_file(
            user_id, name, parent_id, duplicate_action=duplicate_action, **attributes
        )

    async def create_folder(
        self,
        user_id: int,
        name: str,
        parent_id: int | None = None,
        duplicate_action: DuplicateAction | None = None,
        color: str | None = None,
    ) -> FolderEntity:
        name = validate_name(name)

        async def op(tree: _Tree) -> FolderEntity:
            parent = await self._get_destination(tree, user_id, parent_id)
            parent_key = parent.id if parent else ROOT_ID
            resolution = await tree.names.resolve_with_action(
                name, NodeKind.FOLDER, user_id, parent_key, duplicate_action
            )
            if resolution.replaced is not None:
                await tree.trash.permanent_delete(resolution.replaced)

            data = compute_path(resolution.name, parent)
            folder = FolderDO(
                id=next_id(),
                user_id=user_id,
                name=resolution.name,
                parent_id=parent_key,
                path=data.path,
                path_segments=data.path_segments,
                color=color,
                is_pinned=False,
                delete_time=None,
                items=0,
            )
            tree.store.add(folder)
            await tree.counts.increment(parent_key)
            await tree.store.flush()
            logger.info(f"Created folder {folder.id} at {folder.path} for user {user_id}")
            return _to_folder_entity(folder, False)

        return await self._run("create folder", op)

    async def create_file(
        self,
        user_id: int,
        name: str,
        parent_id: int | None = None,
        size: int = 0,
        storage_key: str | None = None,
        mime_type: str | None = None,
        duplicate_action: DuplicateAction | None = None,
    ) -> FileEntity:
        """Create a file record. `name` includes the extension, e.g. "report.pdf"."""
        base_name, extension = split_file_name(validate_name(name))

        async def op(tree: _Tree) -> FileEntity:
            parent = await self._get_destination(tree, user_id, parent_id)
            parent_key = parent.id if parent else ROOT_ID
            resolution = await tree.names.resolve_with_action(
                base_name,
                NodeKind.FILE,
                user_id,
                parent_key,
                duplicate_action,
                extension=extension,
            )
            if resolution.replaced is not None:
                await tree.trash.permanent_delete(resolution.replaced)

            data = compute_path(resolution.name, parent)
            file = FileDO(
                id=next_id(),
                user_id=user_id,
                name=resolution.name,
                extension=extension,
                parent_id=parent_key,
                path=data.path,
                path_segments=data.path_segments,
                size=size,
                storage_key=storage_key,
                mime_type=mime_type,
                is_pinned=False,
                delete_time=None,
            )
            tree.store.add(file)
            await tree.counts.increment(parent_key)
            await tree.store.flush()
            logger.info(f"Created file {file.id} at {file.path} for user {user_id}")
            return _to_file_entity(file, False)

        return await self._run("create file", op)

    async def rename(
        self,
        user_id: int,
        node_id: int,
        new_name: str,
        duplicate_action: DuplicateAction | None = None,
    ) -> NodeEntity:
        """Rename a node in place. A file keeps its extension."""
        new_name = validate_name(new_name)

        async def op(tree: _Tree) -> NodeEntity:
            node = await self._get_owned(tree, user_id, node_id)
            if node.is_deleted:
                raise InvalidStateException(
                    f"'{node.name}' is in the trash, restore it before renaming"
                )
            desired = new_name
            extension = ""
            if isinstance(node, FileDO):
                extension = node.extension
                suffix = f".{extension}"
                if (
                    extension
                    and desired.lower().endswith(suffix)
                    and len(desired) > len(suffix)
                ):
                    desired = desired[: -len(suffix)]
            if desired == node.name:
                return await self._entity(tree, node)

            resolution = await tree.names.resolve_with_action(
                desired,
                node.kind,
                user_id,
                node.parent_id,
                duplicate_action,
                extension=extension,
                exclude_id=node.id,
            )
            if resolution.replaced is not None:
                await tree.trash.permanent_delete(resolution.replaced)

            parent = await tree.paths.parent_of(node)
            old_path = node.path
            node.name = resolution.name
            tree.paths.apply(node, tree.paths.compute_new_path(node, parent))
            await tree.paths.cascade_rewrite(node, old_path)
            logger.info(f"Renamed {node.kind.value} {node.id}: {old_path} -> {node.path}")
            return await self._entity(tree, node)

        return await self._run("rename", op)

    async def move(
        self,
        user_id: int,
        node_id: int,
        new_parent_id: int | None,
        duplicate_action: DuplicateAction | None = None,
    ) -> NodeEntity:
        """Move a node under `new_parent_id`, or to the root when None."""

        async def op(tree: _Tree) -> NodeEntity:
            node = await self._get_owned(tree, user_id, node_id)
            if node.is_deleted:
                raise InvalidStateException(
                    f"'{node.name}' is in the trash, restore it before moving"
                )
            if new_parent_id == node.id:
                raise CyclicOperationException("Cannot move a folder into itself")
            if (
                isinstance(node, FolderDO)
                and new_parent_id is not None
                and new_parent_id in await tree.store.descendant_folder_ids(node)
            ):
                raise CyclicOperationException(
                    f"Cannot move '{node.name}' into one of its own subfolders"
                )
            destination = await self._get_destination(tree, user_id, new_parent_id)
            destination_key = destination.id if destination else ROOT_ID
            if destination_key == node.parent_id:
                return await self._entity(tree, node)

            resolution = await tree.names.resolve_with_action(
                node.name,
                node.kind,
                user_id,
                destination_key,
                duplicate_action,
                extension=node.extension if isinstance(node, FileDO) else "",
                exclude_id=node.id,
            )
            if resolution.replaced is not None:
                ancestor_ids = {a.id for a in await tree.store.ancestors(node)}
                if resolution.replaced.id in ancestor_ids:
                    raise InvalidStateException(
                        f"Cannot replace '{resolution.replaced.name}', "
                        "it contains the node being moved"
                    )
                await tree.trash.permanent_delete(resolution.replaced)

            old_parent_id = node.parent_id
            old_path = node.path
            node.parent_id = destination_key
            node.name = resolution.name
            tree.paths.apply(node, tree.paths.compute_new_path(node, destination))
            await tree.counts.decrement(old_parent_id)
            await tree.counts.increment(destination_key)
            await tree.paths.cascade_rewrite(node, old_path)
            logger.info(f"Moved {node.kind.value} {node.id}: {old_path} -> {node.path}")
            return await self._entity(tree, node)

        return await self._run("move", op)

    async def list_children(
        self, user_id: int, parent_id: int | None = None, include_deleted: bool = False
    ) -> FolderListing:
        """Direct children of a folder with breadcrumbs.

        Listing a folder that sits in the trash still works by id: the
        children are flagged with `has_deleted_ancestor` and the breadcrumbs
        start at "Trash".
        """

        async def op(tree: _Tree) -> FolderListing:
            if parent_id is None or parent_id == ROOT_ID:
                folders, files = await tree.store.list_children(
                    user_id, ROOT_ID, include_deleted
                )
                return FolderListing(
                    folder=None,
                    folders=[_to_folder_entity(f, f.is_deleted) for f in folders],
                    files=[_to_file_entity(f, f.is_deleted) for f in files],
                    breadcrumbs=[PathSegment(id=ROOT_ID, name=ROOT_LABEL)],
                )

            node = await self._get_readable(tree, user_id, parent_id)
            if not isinstance(node, FolderDO):
                raise NotFoundException(f"Folder {parent_id} not found")
            chain = [*reversed(await tree.store.ancestors(node)), node]
            trashed_index = next(
                (i for i, folder in enumerate(chain) if folder.is_deleted), None
            )
            hidden = trashed_index is not None
            if trashed_index is None:
                breadcrumbs = [PathSegment(id=ROOT_ID, name=ROOT_LABEL)]
                visible = chain
            else:
                breadcrumbs = [PathSegment(id=ROOT_ID, name=TRASH_LABEL)]
                visible = chain[trashed_index:]
            breadcrumbs.extend(PathSegment(id=f.id, name=f.name) for f in visible)

            folders, files = await tree.store.list_children(
                node.user_id, node.id, include_deleted
            )
            return FolderListing(
                folder=_to_folder_entity(node, hidden),
                folders=[_to_folder_entity(f, hidden or f.is_deleted) for f in folders],
                files=[_to_file_entity(f, hidden or f.is_deleted) for f in files],
                breadcrumbs=breadcrumbs,
                in_trash=hidden,
            )

        return await self._run("list children", op)

    async def get_node(self, user_id: int, node_id: int) -> NodeEntity:
        async def op(tree: _Tree) -> NodeEntity:
            node = await self._get_readable(tree, user_id, node_id)
            return await self._entity(tree, node)

        return await self._run("get node", op)

    async def has_deleted_ancestor(self, user_id: int, node_id: int) -> bool:
        async def op(tree: _Tree) -> bool:
            node = await self._get_readable(tree, user_id, node_id)
            return await tree.trash.has_deleted_ancestor(node)

        return await self._run("check deleted ancestor", op)

    async def delete(self, user_id: int, node_id: int) -> NodeEntity:
        """Move a node to the trash."""

        async def op(tree: _Tree) -> NodeEntity:
            node = await self._get_owned(tree, user_id, node_id)
            await tree.trash.soft_delete(node)
            return to_entity(node, True)

        return await self._run("delete", op)

    async def restore(self, user_id: int, node_id: int) -> NodeEntity:
        async def op(tree: _Tree) -> NodeEntity:
            node = await self._get_owned(tree, user_id, node_id)
            await tree.trash.restore(node)
            return await self._entity(tree, node)

        return await self._run("restore", op)

    async def permanent_delete(self, user_id: int, node_id: int) -> DeletionCounts:
        """Purge a node and its subtree. A node that is already gone is ignored."""

        async def op(tree: _Tree) -> DeletionCounts:
            node = await tree.store.get_node(node_id)
            if node is None:
                logger.debug(f"Node {node_id} already gone")
                return DeletionCounts()
            if node.user_id != user_id:
                raise NotOwnerException(
                    f"Node {node_id} is not owned by user {user_id}"
                )
            return await tree.trash.permanent_delete(node)

        return await self._run("permanent delete", op)

    async def empty_trash(self, user_id: int) -> DeletionCounts:
        async def op(tree: _Tree) -> DeletionCounts:
            return await tree.trash.empty_trash(user_id)

        return await self._run("empty trash", op)

    async def list_trash(self, user_id: int) -> TrashListing:
        async def op(tree: _Tree) -> TrashListing:
            folders, files = await tree.trash.list_trash(user_id)
            return TrashListing(
                folders=[_to_folder_entity(f, True) for f in folders],
                files=[_to_file_entity(f, True) for f in files],
            )

        return await self._run("list trash", op)

    async def set_pinned(self, user_id: int, node_id: int, pinned: bool) -> NodeEntity:
        async def op(tree: _Tree) -> NodeEntity:
            node = await self._get_owned(tree, user_id, node_id)
            node.is_pinned = pinned
            return await self._entity(tree, node)

        return await self._run("pin", op)

    async def list_pinned(self, user_id: int) -> list[NodeEntity]:
        """Pinned nodes that are not hidden in the trash, folders first."""

        async def op(tree: _Tree) -> list[NodeEntity]:
            folders, files = await tree.store.list_pinned(user_id)
            result: list[NodeEntity] = []
            for node in [*folders, *files]:
                if not await tree.trash.has_deleted_ancestor(node):
                    result.append(to_entity(node))
            return result

        return await self._run("list pinned", op)

    async def set_color(
        self, user_id: int, folder_id: int, color: str | None
    ) -> FolderEntity:
        async def op(tree: _Tree) -> FolderEntity:
            node = await self._get_owned(tree, user_id, folder_id)
            if not isinstance(node, FolderDO):
                raise InvalidStateException("Only folders have a color")
            node.color = color
            return _to_folder_entity(
                node, await tree.trash.has_deleted_ancestor(node)
            )

        return await self._run("set color", op)
