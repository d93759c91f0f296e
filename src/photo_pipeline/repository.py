"""SQLite-backed photo store for local operation of the worker and CLI."""

import asyncio
import sqlite3
from contextlib import closing
from datetime import datetime
from typing import Any, List, Optional, Tuple

from .core.logging_config import get_logger
from .core.models import ExifData, Photo, PhotoStatus

logger = get_logger("repository")

_COLUMNS = (
    "id, status, original_filename, title, exif_data, blur_data_url, "
    "width, height, created_at, updated_at"
)


def _row_to_photo(row: Tuple[Any, ...]) -> Photo:
    (photo_id, status, original_filename, title, exif_json,
     blur_data_url, width, height, created_at, updated_at) = row
    return Photo(
        id=photo_id,
        status=PhotoStatus(status),
        original_filename=original_filename,
        title=title,
        # NULL: never checked. "{}": checked, nothing found.
        exif_data=ExifData.model_validate_json(exif_json) if exif_json is not None else None,
        blur_data_url=blur_data_url,
        width=width,
        height=height,
        created_at=datetime.fromisoformat(created_at),
        updated_at=datetime.fromisoformat(updated_at),
    )


class SqlitePhotoRepository:
    """Photo records in a single SQLite table; EXIF is stored as JSON text."""

    def __init__(self, db_path: str = "photos.db"):
        self.db_path = db_path
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_db(self) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS photos (
                    id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    original_filename TEXT NOT NULL DEFAULT '',
                    title TEXT,
                    exif_data TEXT,
                    blur_data_url TEXT,
                    width INTEGER,
                    height INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_photos_status ON photos(status)")
        logger.debug(f"Photo store ready at {self.db_path}")

    def _save(self, photo: Photo) -> None:
        exif_json = photo.exif_data.to_storage_json() if photo.exif_data is not None else None
        with closing(self._connect()) as conn, conn:
            conn.execute(
                f"INSERT OR REPLACE INTO photos ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    photo.id,
                    photo.status.value,
                    photo.original_filename,
                    photo.title,
                    exif_json,
                    photo.blur_data_url,
                    photo.width,
                    photo.height,
                    photo.created_at.isoformat(),
                    photo.updated_at.isoformat(),
                ),
            )

    def _query(self, where: str = "", params: Tuple[Any, ...] = ()) -> List[Photo]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM photos {where} ORDER BY created_at", params
            ).fetchall()
        return [_row_to_photo(row) for row in rows]

    async def find_by_id(self, photo_id: str) -> Optional[Photo]:
        photos = await asyncio.to_thread(self._query, "WHERE id = ?", (photo_id,))
        return photos[0] if photos else None

    async def save(self, photo: Photo) -> None:
        await asyncio.to_thread(self._save, photo)

    async def find_all(self) -> List[Photo]:
        return await asyncio.to_thread(self._query)

    async def find_by_status(self, status: PhotoStatus) -> List[Photo]:
        return await asyncio.to_thread(self._query, "WHERE status = ?", (status.value,))
