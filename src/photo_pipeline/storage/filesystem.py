"""Local filesystem storage backend."""

from __future__ import annotations

import asyncio
import os
import uuid
from typing import List

from ..core.exceptions import StorageError

# Keys under these prefixes must name a photo by UUID: "originals/{uuid}/..."
PHOTO_KEY_PREFIXES = ("originals/", "processed/")


def validate_photo_key(key: str) -> None:
    """Reject photo keys whose id segment is not a UUID (path traversal guard)."""
    for prefix in PHOTO_KEY_PREFIXES:
        if key.startswith(prefix):
            photo_id = key[len(prefix):].split("/")[0]
            try:
                uuid.UUID(photo_id)
            except ValueError:
                raise StorageError(f"Invalid photoId in storage key: {key!r}") from None
            return


class FilesystemStorageAdapter:
    """Stores each key as a file below ``root``."""

    __slots__ = ("root",)

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def _resolve(self, key: str) -> str:
        validate_photo_key(key)
        path = os.path.normpath(os.path.join(self.root, key))
        if os.path.commonpath([self.root, path]) != self.root:
            raise StorageError(f"Storage key escapes root: {key!r}")
        return path

    @staticmethod
    def _write(path: str, data: bytes) -> None:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tmp_path = f"{path}.{uuid.uuid4().hex}.tmp"
        with open(tmp_path, "wb") as f:
            f.write(data)
        # Atomic replace: concurrent writers of the same key never leave a torn file
        os.replace(tmp_path, path)

    @staticmethod
    def _read(path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    async def get_file(self, key: str) -> bytes:
        path = self._resolve(key)
        try:
            return await asyncio.to_thread(self._read, path)
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as e:
            raise StorageError(f"File not found: {key}") from e
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    async def save_file(self, key: str, data: bytes, content_type: str) -> None:
        path = self._resolve(key)
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e

    async def list_files(self, prefix: str) -> List[str]:
        dir_path = self._resolve(prefix.rstrip("/"))
        try:
            entries = await asyncio.to_thread(os.listdir, dir_path)
        except (FileNotFoundError, NotADirectoryError):
            return []
        base = prefix.rstrip("/")
        return sorted(f"{base}/{entry}" for entry in entries if not entry.endswith(".tmp"))
