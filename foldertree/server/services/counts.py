import logging

from foldertree.server.constants import ROOT_ID

from .exceptions import NotFoundException
from .store import HierarchyStore

logger = logging.getLogger(__name__)


class CountTracker:
    """Single place where a folder's `items` counter changes.

    Every operation that adds or removes a living direct child calls exactly
    one of these methods once, for the immediate parent only. The root has no
    counter.
    """

    def __init__(self, store: HierarchyStore) -> None:
        self.store = store

    async def increment(self, folder_id: int) -> int | None:
        if folder_id == ROOT_ID:
            return None
        folder = await self.store.get_folder(folder_id)
        if folder is None:
            raise NotFoundException(f"Folder {folder_id} not found")
        folder.items += 1
        return folder.items

    async def decrement(self, folder_id: int) -> int | None:
        if folder_id == ROOT_ID:
            return None
        folder = await self.store.get_folder(folder_id)
        if folder is None:
            # The parent may already be gone when an orphan is purged.
            logger.warning(f"Cannot decrement items of missing folder {folder_id}")
            return None
        if folder.items <= 0:
            logger.warning(f"Items count of folder {folder_id} already at 0")
            folder.items = 0
            return 0
        folder.items -= 1
        return folder.items
