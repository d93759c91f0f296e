"""Storage backends and the photo file layout on top of them."""

import os
from typing import Optional

from ..core.protocols import StorageAdapter
from .filesystem import FilesystemStorageAdapter, validate_photo_key
from .s3 import S3StorageAdapter


def original_key(photo_id: str, filename: str) -> str:
    """Key of the uploaded original: ``originals/{photoId}/original{ext}``."""
    ext = os.path.splitext(filename)[1].lower() or ".jpg"
    return f"originals/{photo_id}/original{ext}"


async def save_original(
    storage: StorageAdapter,
    photo_id: str,
    filename: str,
    data: bytes,
    content_type: str = "image/jpeg",
) -> str:
    key = original_key(photo_id, filename)
    await storage.save_file(key, data, content_type)
    return key


async def find_original(storage: StorageAdapter, photo_id: str) -> Optional[str]:
    """Key of the stored original for ``photo_id``, or None."""
    for key in await storage.list_files(f"originals/{photo_id}"):
        if os.path.basename(key).startswith("original."):
            return key
    return None


__all__ = [
    "FilesystemStorageAdapter",
    "S3StorageAdapter",
    "find_original",
    "original_key",
    "save_original",
    "validate_photo_key",
]
