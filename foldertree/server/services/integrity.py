import logging
from dataclasses import dataclass, field

from foldertree.server.constants import ROOT_ID
from foldertree.server.db.models.node import FileDO, FolderDO, NodeDO
from foldertree.server.db.session import DatabaseSessionManager

from .blob import BlobStorage
from .names import NameResolver
from .paths import PathMaterializer, compute_path
from .store import HierarchyStore

logger = logging.getLogger(__name__)


@dataclass
class IntegrityReport:
    scanned: int = 0
    bad_path: int = 0
    bad_count: int = 0
    orphaned: int = 0
    missing_blob: int = 0
    repaired: int = 0
    problems: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (
            self.bad_path or self.bad_count or self.orphaned or self.missing_blob
        )


class IntegrityService:
    """Verify and repair the derived fields of a user's tree.

    `path`, `path_segments` and `items` are caches of the parent graph. This
    re-derives them from `parent_id` and fixes any row that drifted.
    """

    def __init__(
        self,
        session_manager: DatabaseSessionManager,
        blob_storage: BlobStorage | None = None,
    ) -> None:
        """Create an integrity service instance."""
        self.session_manager = session_manager
        self.blob_storage = blob_storage

    async def verify_user_tree(self, user_id: int) -> IntegrityReport:
        """Report drift without changing anything."""
        async with self.session_manager.session() as session:
            return await self._check(HierarchyStore(session), user_id, repair=False)

    async def repair_user_tree(self, user_id: int) -> IntegrityReport:
        """Re-derive paths and counts, moving orphans to the root."""
        async with self.session_manager.session() as session:
            report = await self._check(HierarchyStore(session), user_id, repair=True)
            await session.commit()
        logger.info(f"Repaired {report.repaired} record(s) for user {user_id}")
        return report

    async def _check(
        self, store: HierarchyStore, user_id: int, repair: bool
    ) -> IntegrityReport:
        report = IntegrityReport()
        folders, files = await store.list_all(user_id)
        folders_by_id = {folder.id: folder for folder in folders}
        nodes: list[NodeDO] = [*folders, *files]
        report.scanned = len(nodes)

        for node in nodes:
            if node.parent_id == ROOT_ID or node.parent_id in folders_by_id:
                continue
            report.orphaned += 1
            report.problems.append(
                f"{node.kind.value} {node.id} points at missing folder {node.parent_id}"
            )
            logger.error(f"Integrity Fail: node {node.id} has missing parent {node.parent_id}")
            if repair:
                await self._reattach_to_root(store, node)
                report.repaired += 1

        paths = PathMaterializer(store)
        root_nodes = [
            node for node in [*folders, *files] if node.parent_id == ROOT_ID
        ]
        for root_node in root_nodes:
            report.bad_path += await self._check_path(
                paths, root_node, compute_path(root_node.name, None), report, repair
            )
            for update in await paths.plan_cascade(root_node):
                report.bad_path += await self._check_path(
                    paths, update.node, update.data, report, repair
                )

        for folder in folders:
            expected = await store.count_live_children(user_id, folder.id)
            if folder.items == expected:
                continue
            report.bad_count += 1
            report.problems.append(
                f"folder {folder.id} items is {folder.items}, expected {expected}"
            )
            logger.warning(
                f"Integrity Warning: folder {folder.id} items mismatch. "
                f"Stored: {folder.items}, Actual: {expected}"
            )
            if repair:
                folder.items = expected
                report.repaired += 1

        if self.blob_storage is not None:
            for file in files:
                if file.storage_key and not await self.blob_storage.exists(
                    file.storage_key
                ):
                    report.missing_blob += 1
                    report.problems.append(
                        f"file {file.id} missing blob {file.storage_key}"
                    )
                    logger.error(
                        f"Integrity Fail: File {file.id} ({file.display_name}) "
                        f"missing blob {file.storage_key}"
                    )
        return report

    async def _check_path(self, paths, node, data, report, repair) -> int:
        if node.path == data.path and node.path_segments == data.path_segments:
            return 0
        report.problems.append(
            f"{node.kind.value} {node.id} path is '{node.path}', expected '{data.path}'"
        )
        logger.warning(
            f"Integrity Warning: node {node.id} path mismatch. "
            f"Stored: {node.path}, Expected: {data.path}"
        )
        if repair:
            paths.apply(node, data)
            report.repaired += 1
        return 1

    async def _reattach_to_root(
        self, store: HierarchyStore, node: FolderDO | FileDO
    ) -> None:
        names = NameResolver(store)
        extension = node.extension if isinstance(node, FileDO) else ""
        name = node.name
        if not node.is_deleted:
            name = await names.resolve(
                node.name, node.kind, node.user_id, ROOT_ID, extension, node.id
            )
        node.parent_id = ROOT_ID
        node.name = name
        logger.info(f"Moved orphaned {node.kind.value} {node.id} to the root as '{name}'")
