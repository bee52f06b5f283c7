import hashlib
import logging
from abc import ABC, abstractmethod
from pathlib import Path

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)


class BlobStorage(ABC):
    """Interface for the physical byte storage behind file records."""

    @abstractmethod
    async def write_blob(self, data: bytes) -> str:
        """Write bytes to storage and return the storage key."""
        pass

    @abstractmethod
    async def read_blob(self, storage_key: str) -> bytes:
        """Read full blob content."""
        pass

    @abstractmethod
    async def exists(self, storage_key: str) -> bool:
        """Check if blob exists."""
        pass

    @abstractmethod
    async def delete_blob(self, storage_key: str) -> None:
        """Delete a blob. Deleting a missing blob is a no-op."""
        pass


class LocalBlobStorage(BlobStorage):
    """Local filesystem implementation of content addressed blob storage.

    Path structure: <root>/blobs/<key[0:2]>/<key>
    Example: storage/blobs/ab/abc12345...
    """

    def __init__(self, storage_root: Path) -> None:
        """Create a local blob storage instance."""
        self.root = storage_root / "blobs"
        self.root.mkdir(parents=True, exist_ok=True)

    def get_blob_path(self, storage_key: str) -> Path:
        """Get physical path to the blob."""
        if not storage_key or "/" in storage_key or storage_key.startswith("."):
            raise ValueError(f"Invalid storage key: {storage_key!r}")
        return self.root / storage_key[:2] / storage_key

    async def write_blob(self, data: bytes) -> str:
        """Write bytes to storage and return its MD5 hash as the key."""
        storage_key = hashlib.md5(data).hexdigest()
        blob_path = self.get_blob_path(storage_key)

        if blob_path.exists():
            return storage_key

        blob_path.parent.mkdir(parents=True, exist_ok=True)
        # Write to temp file and move for atomicity
        temp_path = blob_path.with_suffix(".tmp")
        async with aiofiles.open(temp_path, "wb") as f:
            await f.write(data)

        temp_path.rename(blob_path)
        return storage_key

    async def read_blob(self, storage_key: str) -> bytes:
        """Read full blob content."""
        path = self.get_blob_path(storage_key)
        if not path.exists():
            raise FileNotFoundError(f"Blob {storage_key} not found")
        async with aiofiles.open(path, "rb") as f:
            return await f.read()

    async def exists(self, storage_key: str) -> bool:
        """Check if blob exists."""
        return self.get_blob_path(storage_key).exists()

    async def delete_blob(self, storage_key: str) -> None:
        """Delete a blob from disk."""
        path = self.get_blob_path(storage_key)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            logger.debug(f"Blob {storage_key} already removed")
