"""
Blob storage for e-sign originals and signed renditions.

LocalFileStorage keeps files under ESIGN_STORAGE_PATH and hands out file://
URLs. Any other backend only needs to implement upload, read and delete.
"""

import logging
import re
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse, unquote

from esign.core.config import settings

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class BlobStorageInterface(ABC):
    """Blob storage collaborator."""

    @abstractmethod
    def upload(self, content: bytes, content_type: str, filename: Optional[str] = None) -> str:
        """Store bytes and return a URL that read() accepts."""
        pass

    @abstractmethod
    def read(self, url: str) -> bytes:
        """Return the bytes stored at a URL produced by upload()."""
        pass

    @abstractmethod
    def delete(self, url: str) -> bool:
        """Remove the blob at a URL produced by upload(); False if it was already gone."""
        pass


class LocalFileStorage(BlobStorageInterface):
    """Filesystem-backed blob storage."""

    def __init__(self, base_storage_path: Optional[str] = None):
        """
        Initialize local file storage.

        Args:
            base_storage_path: Base directory (uses ESIGN_STORAGE_PATH if None)
        """
        self.base_storage_path = Path(base_storage_path or settings.ESIGN_STORAGE_PATH).resolve()
        self.base_storage_path.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _safe_filename(filename: Optional[str]) -> str:
        name = Path(filename).name if filename else "document"
        name = _UNSAFE_FILENAME_CHARS.sub("_", name).strip("._") or "document"
        return name[:200]

    def upload(self, content: bytes, content_type: str, filename: Optional[str] = None) -> str:
        """
        Store a blob under a unique name.

        Args:
            content: File content as bytes
            content_type: MIME type (informational for local storage)
            filename: Original file name, sanitized before use

        Returns:
            file:// URL of the stored blob
        """
        target = self.base_storage_path / f"{uuid.uuid4().hex}_{self._safe_filename(filename)}"
        with open(target, "wb") as f:
            f.write(content)
        logger.info(f"Stored {len(content)} bytes ({content_type}) at {target}")
        return target.as_uri()

    def _resolve(self, url: str) -> Path:
        parsed = urlparse(url)
        if parsed.scheme != "file":
            raise ValueError(f"Unsupported storage URL: {url}")
        path = Path(unquote(parsed.path)).resolve()
        if self.base_storage_path not in path.parents:
            raise ValueError(f"Storage URL points outside the storage directory: {url}")
        return path

    def read(self, url: str) -> bytes:
        """
        Read a stored blob.

        Raises:
            ValueError: If the URL is not a file:// URL inside the storage directory
            FileNotFoundError: If the blob does not exist
        """
        path = self._resolve(url)
        with open(path, "rb") as f:
            return f.read()

    def delete(self, url: str) -> bool:
        """
        Remove a stored blob.

        Raises:
            ValueError: If the URL is not a file:// URL inside the storage directory
        """
        path = self._resolve(url)
        if not path.exists():
            logger.warning(f"Blob already removed: {path}")
            return False
        path.unlink()
        logger.info(f"Removed blob {path}")
        return True
