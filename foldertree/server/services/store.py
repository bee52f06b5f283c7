import logging
from collections.abc import Iterable, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from foldertree.models.node import NodeKind
from foldertree.server.constants import QUERY_CHUNK_SIZE, ROOT_ID
from foldertree.server.db.models.node import FileDO, FolderDO, NodeDO

logger = logging.getLogger(__name__)


def _chunks(
    ids: Sequence[int], size: int = QUERY_CHUNK_SIZE
) -> Iterable[Sequence[int]]:
    for start in range(0, len(ids), size):
        yield ids[start : start + size]


class HierarchyStore:
    """Persistence boundary for folder and file records.

    Lookups by id are not owner scoped so the caller can tell a missing node
    apart from a node owned by someone else. Every lookup by name or parent
    filters by owner.
    """

    def __init__(self, db_session: AsyncSession) -> None:
        self.db = db_session

    async def get_folder(self, folder_id: int) -> FolderDO | None:
        if folder_id == ROOT_ID:
            return None
        return await self.db.get(FolderDO, folder_id)

    async def get_file(self, file_id: int) -> FileDO | None:
        return await self.db.get(FileDO, file_id)

    async def get_node(
        self, node_id: int, kind: NodeKind | None = None
    ) -> NodeDO | None:
        """Look up a folder or file. Ids are unique across both kinds."""
        if kind is None or kind == NodeKind.FOLDER:
            if folder := await self.get_folder(node_id):
                return folder
        if kind is None or kind == NodeKind.FILE:
            return await self.get_file(node_id)
        return None

    async def find_live_folder(
        self, user_id: int, parent_id: int, name: str
    ) -> FolderDO | None:
        stmt = select(FolderDO).where(
            FolderDO.user_id == user_id,
            FolderDO.parent_id == parent_id,
            FolderDO.name == name,
            FolderDO.delete_time.is_(None),
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def find_live_file(
        self, user_id: int, parent_id: int, name: str, extension: str
    ) -> FileDO | None:
        stmt = select(FileDO).where(
            FileDO.user_id == user_id,
            FileDO.parent_id == parent_id,
            FileDO.name == name,
            FileDO.extension == extension,
            FileDO.delete_time.is_(None),
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_children(
        self, user_id: int, parent_id: int, include_deleted: bool = False
    ) -> tuple[list[FolderDO], list[FileDO]]:
        """Direct children of a folder, sorted by name."""
        folder_stmt = select(FolderDO).where(
            FolderDO.user_id == user_id, FolderDO.parent_id == parent_id
        )
        file_stmt = select(FileDO).where(
            FileDO.user_id == user_id, FileDO.parent_id == parent_id
        )
        if not include_deleted:
            folder_stmt = folder_stmt.where(FolderDO.delete_time.is_(None))
            file_stmt = file_stmt.where(FileDO.delete_time.is_(None))
        folders = list((await self.db.execute(folder_stmt)).scalars().all())
        files = list((await self.db.execute(file_stmt)).scalars().all())
        return _sorted(folders), _sorted(files)

    async def count_live_children(self, user_id: int, folder_id: int) -> int:
        total = 0
        for model in (FolderDO, FileDO):
            stmt = select(func.count()).where(
                model.user_id == user_id,
                model.parent_id == folder_id,
                model.delete_time.is_(None),
            )
            total += (await self.db.execute(stmt)).scalar_one()
        return total

    async def list_descendants(self, node: NodeDO) -> list[NodeDO]:
        """All descendants of a node regardless of trash state.

        The result is ordered top-down: every node appears after its parent.
        """
        if not isinstance(node, FolderDO):
            return []

        descendants: list[NodeDO] = []
        seen = {node.id}
        frontier = [node.id]
        while frontier:
            next_frontier: list[int] = []
            for chunk in _chunks(frontier):
                folders = await self._select_by_parent(FolderDO, node.user_id, chunk)
                files = await self._select_by_parent(FileDO, node.user_id, chunk)
                for folder in folders:
                    if folder.id in seen:
                        logger.warning(f"Folder {folder.id} reached twice, skipping")
                        continue
                    seen.add(folder.id)
                    descendants.append(folder)
                    next_frontier.append(folder.id)
                descendants.extend(files)
            frontier = next_frontier
        return descendants

    async def descendant_folder_ids(self, folder: FolderDO) -> set[int]:
        return {
            node.id
            for node in await self.list_descendants(folder)
            if isinstance(node, FolderDO)
        }

    async def ancestors(self, node: NodeDO) -> list[FolderDO]:
        """Ancestor folders ordered nearest first, stopping at a missing parent."""
        result: list[FolderDO] = []
        seen = {node.id}
        parent_id = node.parent_id
        while parent_id != ROOT_ID:
            if parent_id in seen:
                logger.error(f"Cycle detected above node {node.id} at {parent_id}")
                break
            seen.add(parent_id)
            parent = await self.get_folder(parent_id)
            if parent is None:
                logger.warning(f"Node {node.id} has missing ancestor {parent_id}")
                break
            result.append(parent)
            parent_id = parent.parent_id
        return result

    async def list_trashed(self, user_id: int) -> tuple[list[FolderDO], list[FileDO]]:
        """Nodes carrying their own deletion marker."""
        folders = await self._select_user(
            FolderDO, user_id, FolderDO.delete_time.is_not(None)
        )
        files = await self._select_user(
            FileDO, user_id, FileDO.delete_time.is_not(None)
        )
        return folders, files

    async def list_pinned(self, user_id: int) -> tuple[list[FolderDO], list[FileDO]]:
        folders = await self._select_user(
            FolderDO,
            user_id,
            FolderDO.is_pinned.is_(True),
            FolderDO.delete_time.is_(None),
        )
        files = await self._select_user(
            FileDO, user_id, FileDO.is_pinned.is_(True), FileDO.delete_time.is_(None)
        )
        return folders, files

    async def list_all(self, user_id: int) -> tuple[list[FolderDO], list[FileDO]]:
        return (
            await self._select_user(FolderDO, user_id),
            await self._select_user(FileDO, user_id),
        )

    async def is_storage_key_referenced(self, storage_key: str) -> bool:
        stmt = select(func.count()).where(FileDO.storage_key == storage_key)
        return (await self.db.execute(stmt)).scalar_one() > 0

    def add(self, node: NodeDO) -> None:
        self.db.add(node)

    async def delete(self, node: NodeDO) -> None:
        await self.db.delete(node)

    async def flush(self) -> None:
        await self.db.flush()

    async def _select_by_parent(
        self,
        model: type[FolderDO] | type[FileDO],
        user_id: int,
        parent_ids: Sequence[int],
    ) -> list:
        stmt = (
            select(model)
            .where(model.user_id == user_id, model.parent_id.in_(parent_ids))
            .order_by(model.id)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def _select_user(
        self, model: type[FolderDO] | type[FileDO], user_id: int, *criteria
    ) -> list:
        stmt = select(model).where(model.user_id == user_id, *criteria)
        return _sorted(list((await self.db.execute(stmt)).scalars().all()))


def _sorted(nodes: list) -> list:
    return sorted(nodes, key=lambda node: (node.name.lower(), node.id))
