"""Filesystem-backed object storage for avatars and uploaded images."""

from pathlib import Path

from goalbingo.config import settings
from goalbingo.logging import logger
from goalbingo.utils import new_id

CONTENT_TYPE_SUFFIXES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


class LocalObjectStorage:
    """Stores blobs as files under one directory.

    Handles are ``<hex id><suffix>`` file names; URLs are built from a
    configurable public prefix.

    Args:
        root: Blob directory (defaults to settings.storage_dir)
        base_url: Public URL prefix (defaults to settings.storage_base_url)
    """

    def __init__(self, root: Path | None = None, base_url: str | None = None):
        self.root = Path(root or settings.storage_dir)
        self.base_url = (base_url or settings.storage_base_url).rstrip("/")

    def _path(self, handle: str) -> Path:
        if not handle or "/" in handle or "\\" in handle or handle.startswith("."):
            raise ValueError(f"Invalid blob handle: {handle!r}")
        return self.root / handle

    def put(self, data: bytes, content_type: str | None = None) -> str:
        self.root.mkdir(parents=True, exist_ok=True)
        handle = new_id() + CONTENT_TYPE_SUFFIXES.get(content_type or "", "")
        self._path(handle).write_bytes(data)
        logger.debug(f"Stored blob {handle} ({len(data)} bytes)")
        return handle

    def get_url(self, handle: str) -> str | None:
        try:
            path = self._path(handle)
        except ValueError:
            return None
        if not path.exists():
            return None
        return f"{self.base_url}/{handle}"

    def delete(self, handle: str) -> None:
        try:
            path = self._path(handle)
        except ValueError:
            return
        path.unlink(missing_ok=True)


__all__ = ["LocalObjectStorage"]
