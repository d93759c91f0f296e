"""Operator actions: reprocessing, stale detection and metadata backfills."""

import asyncio
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from .error_handling import BatchOperationContextManager
from .exceptions import (
    PhotoNotFoundError,
    QueueError,
    ReprocessNotAllowedError,
    StorageError,
)
from .exif import extract_exif_data
from .image_utils import generate_blur_placeholder, get_oriented_dimensions
from .models import ExifData, Photo, PhotoStatus, utcnow
from .observability import LogContext
from .protocols import JobQueue, LoggerProtocol, PhotoRepository, StorageAdapter
from .services import remove_temp_dir
from ..queues import enqueue_with_timeout
from ..storage import find_original

REPAIR_FIELDS = ("exif", "blur", "dimensions")


async def reprocess_photo(
    photo_id: str,
    repository: PhotoRepository,
    storage: StorageAdapter,
    queue: JobQueue,
    logger: LoggerProtocol,
    enqueue_timeout: float = 10.0,
) -> Photo:
    """
    Put a failed or stuck photo back through the pipeline.

    The record is reset to ``processing`` before the job is enqueued. If the
    enqueue fails or times out the photo keeps that status and shows up as
    stale later; the error is logged, not raised.

    Raises:
        PhotoNotFoundError: No photo with ``photo_id``
        ReprocessNotAllowedError: The photo is already ``ready``
        StorageError: The original upload cannot be found
    """
    photo = await repository.find_by_id(photo_id)
    if photo is None:
        raise PhotoNotFoundError(f"Photo not found: {photo_id}")
    if photo.status is PhotoStatus.READY:
        raise ReprocessNotAllowedError(f"Photo is already processed: {photo_id}")

    key = await find_original(storage, photo_id)
    if key is None:
        raise StorageError(f"Original file not found for photo {photo_id}")

    photo.status = PhotoStatus.PROCESSING
    photo.updated_at = utcnow()
    await repository.save(photo)

    context = LogContext(operation="reprocess", component="operations").with_metadata(
        photo_id=photo_id, original_key=key
    )
    try:
        job_id = await enqueue_with_timeout(queue, photo_id, key, timeout=enqueue_timeout)
    except QueueError as e:
        logger.error("Failed to enqueue reprocess job", context.with_metadata(error=str(e)))
    else:
        logger.info("Reprocess job enqueued", context, job_id=job_id)
    return photo


async def find_stale_photos(
    repository: PhotoRepository, threshold: timedelta, now: Optional[datetime] = None
) -> List[Photo]:
    """Photos stuck in ``processing`` for longer than ``threshold``."""
    now = now or utcnow()
    photos = await repository.find_by_status(PhotoStatus.PROCESSING)
    return [photo for photo in photos if photo.is_stale(threshold, now)]


def needs_repair(photo: Photo, field_name: str) -> bool:
    if field_name == "exif":
        return photo.exif_data is None
    if field_name == "blur":
        return photo.blur_data_url is None
    if field_name == "dimensions":
        return photo.width is None or photo.height is None
    raise ValueError(f"Unknown repair field: {field_name}")


@dataclass
class BackfillReport:
    """Outcome of one backfill run."""

    field: str
    total: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    failed_photo_ids: List[str] = field(default_factory=list)


class PhotoRepairService:
    """Regenerates individual metadata fields of existing photos from their originals.

    Uses the same extraction and placeholder functions as the image job, so a
    repaired record is indistinguishable from a freshly processed one.
    """

    def __init__(
        self,
        storage: StorageAdapter,
        repository: PhotoRepository,
        logger: LoggerProtocol,
        temp_root: Optional[str] = None,
    ):
        self._storage = storage
        self._repository = repository
        self._logger = logger
        self._temp_root = temp_root

    async def repair_photo(self, photo: Photo, fields: Iterable[str]) -> Photo:
        """
        Fetch the original of ``photo`` once and rewrite the requested fields.

        Fields are any of ``exif``, ``blur`` and ``dimensions``. An image
        without EXIF gets the empty marker, so it is not picked up again.

        Raises:
            StorageError: The original cannot be found or read
            ImageProcessingError: The original cannot be decoded
        """
        fields = list(fields)
        for name in fields:
            if name not in REPAIR_FIELDS:
                raise ValueError(f"Unknown repair field: {name}")

        key = await find_original(self._storage, photo.id)
        if key is None:
            raise StorageError(f"Original file not found for photo {photo.id}")
        data = await self._storage.get_file(key)

        temp_dir = tempfile.mkdtemp(prefix=f"photo-repair-{photo.id}-", dir=self._temp_root)
        try:
            path = os.path.join(temp_dir, os.path.basename(key))
            await asyncio.to_thread(_write_bytes, path, data)

            if "exif" in fields:
                exif_data = await asyncio.to_thread(extract_exif_data, path)
                photo.exif_data = exif_data if exif_data is not None else ExifData.empty()
            if "blur" in fields:
                photo.blur_data_url = await asyncio.to_thread(generate_blur_placeholder, path)
            if "dimensions" in fields:
                photo.width, photo.height = await asyncio.to_thread(get_oriented_dimensions, path)
        finally:
            remove_temp_dir(temp_dir, self._logger)

        await self._repository.save(photo)
        return photo

    async def backfill(self, field_name: str) -> BackfillReport:
        """Repair ``field_name`` on every photo that lacks it. Safe to re-run."""
        if field_name not in REPAIR_FIELDS:
            raise ValueError(f"Unknown repair field: {field_name}")

        candidates = [p for p in await self._repository.find_all() if needs_repair(p, field_name)]
        report = BackfillReport(field=field_name, total=len(candidates))
        context = LogContext(operation=f"backfill_{field_name}", component="operations")
        self._logger.info(f"Found {len(candidates)} photos to backfill", context)

        with BatchOperationContextManager(f"{field_name} backfill") as batch:
            for index, photo in enumerate(candidates, start=1):
                try:
                    repaired = await self.repair_photo(photo, (field_name,))
                except Exception as e:  # noqa: BLE001
                    report.failed += 1
                    report.failed_photo_ids.append(photo.id)
                    batch.add_error(e, photo.id)
                    continue

                if field_name == "exif" and repaired.exif_data is not None and repaired.exif_data.is_empty:
                    report.skipped += 1
                    self._logger.info(f"No EXIF data in photo {photo.id}, marked as checked", context)
                else:
                    report.processed += 1
                self._logger.debug(f"[{index}/{report.total}] Photo {photo.id} repaired", context)

        self._logger.info(
            "Backfill complete",
            context,
            total=report.total,
            processed=report.processed,
            skipped=report.skipped,
            failed=report.failed,
        )
        return report


def _write_bytes(path: str, data: bytes) -> None:
    with open(path, "wb") as f:
        f.write(data)
