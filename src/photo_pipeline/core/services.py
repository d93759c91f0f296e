"""Image job orchestration and photo status reconciliation."""

import asyncio
import os
import shutil
import tempfile
import time
from typing import List, Optional, Set

from .error_handling import BatchOperationContextManager, retry_async
from .exceptions import ImageProcessingError
from .exif import extract_exif_data
from .image_utils import (
    content_type_for,
    derivative_key,
    generate_blur_placeholder,
    generate_derivatives,
    get_oriented_dimensions,
    parse_derivative_filename,
)
from .models import (
    ExifData,
    ImageJobData,
    ImageJobResult,
    PhotoStatus,
    QueueMessage,
    utcnow,
)
from .observability import LogContext, MetricsCollector
from .protocols import LoggerProtocol, PhotoRepository, StorageAdapter


def _write_bytes(path: str, data: bytes) -> None:
    with open(path, "wb") as f:
        f.write(data)


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def remove_temp_dir(temp_dir: str, logger: LoggerProtocol, context: Optional[LogContext] = None) -> None:
    """Delete a job's scratch directory; a failure is logged and never raised."""
    try:
        shutil.rmtree(temp_dir)
    except OSError as e:
        logger.warning(f"Failed to clean up temp dir: {temp_dir}", context, error=str(e))


class ImageProcessingJob:
    """Turns one uploaded original into derivatives, metadata and a placeholder.

    Each call works in its own temporary directory, which is removed on every
    exit path. Failures propagate to the caller; retrying is the queue's job.
    """

    def __init__(
        self,
        storage: StorageAdapter,
        logger: LoggerProtocol,
        temp_root: Optional[str] = None,
    ):
        self._storage = storage
        self._logger = logger
        self._temp_root = temp_root

    def _make_temp_dir(self, photo_id: str) -> str:
        # mkdtemp adds a random suffix, so retries of the same photo never collide
        prefix = f"photo-worker-{photo_id}-{int(time.time() * 1000)}-"
        if self._temp_root:
            os.makedirs(self._temp_root, exist_ok=True)
        return tempfile.mkdtemp(prefix=prefix, dir=self._temp_root)

    async def process(self, job: ImageJobData) -> ImageJobResult:
        photo_id = job.photo_id
        log_context = LogContext(
            correlation_id=f"job_{photo_id}_{int(time.time() * 1000)}",
            operation="process_image_job",
            component="image_processing_job",
        ).with_metadata(photo_id=photo_id, original_key=job.original_key)

        temp_dir = self._make_temp_dir(photo_id)
        try:
            source_dir = os.path.join(temp_dir, "source")
            output_dir = os.path.join(temp_dir, "derivatives")
            os.makedirs(source_dir)
            original_name = os.path.basename(job.original_key) or "original"
            original_path = os.path.join(source_dir, original_name)

            self._logger.debug("Downloading original", log_context.with_operation("download_original"))
            original_bytes = await self._storage.get_file(job.original_key)
            await asyncio.to_thread(_write_bytes, original_path, original_bytes)

            self._logger.debug("Generating derivatives", log_context.with_operation("generate_derivatives"))
            local_paths = await asyncio.to_thread(generate_derivatives, original_path, output_dir)

            width, height = await asyncio.to_thread(get_oriented_dimensions, original_path)

            self._logger.debug("Extracting metadata", log_context.with_operation("extract_metadata"))
            exif_data = await asyncio.to_thread(extract_exif_data, original_path)
            blur_data_url = await asyncio.to_thread(generate_blur_placeholder, original_path)

            self._logger.debug(
                "Uploading derivatives",
                log_context.with_operation("upload_derivatives"),
                count=len(local_paths),
            )
            keys = await self._upload_derivatives(photo_id, local_paths)

            self._logger.info(
                f"Generated {len(keys)} files + blur placeholder + EXIF + dimensions "
                f"({width}x{height}) for photo {photo_id}",
                log_context,
                derivative_count=len(keys),
                width=width,
                height=height,
            )
            return ImageJobResult(
                photo_id=photo_id,
                derivatives=keys,
                blur_data_url=blur_data_url,
                exif_data=exif_data,
                width=width,
                height=height,
            )
        except Exception as e:
            self._logger.error("Image job failed", log_context.with_metadata(error=str(e)))
            raise
        finally:
            remove_temp_dir(temp_dir, self._logger, log_context)

    async def _upload_derivatives(self, photo_id: str, local_paths: List[str]) -> List[str]:
        keys: List[str] = []
        for path in local_paths:
            filename = os.path.basename(path)
            content_type = content_type_for(filename)
            if parse_derivative_filename(filename) is None or content_type is None:
                raise ImageProcessingError(f"Unexpected derivative file: {filename}")
            data = await asyncio.to_thread(_read_bytes, path)
            key = derivative_key(photo_id, filename)
            await self._storage.save_file(key, data, content_type)
            keys.append(key)
        return keys


class PhotoStatusReconciler:
    """Queue-consumer wrapper keeping photo records in step with job outcomes.

    ``processing -> ready`` on success, ``processing -> error`` on failure or
    timeout. Both transitions are plain overwrites, so redelivered jobs land
    in the same final state.
    """

    def __init__(
        self,
        job: ImageProcessingJob,
        repository: PhotoRepository,
        logger: LoggerProtocol,
        job_timeout_seconds: float = 300.0,
        metrics_collector: Optional[MetricsCollector] = None,
        status_retry_attempts: int = 3,
        status_retry_delay: float = 1.0,
    ):
        self._job = job
        self._repository = repository
        self._logger = logger
        self._job_timeout = job_timeout_seconds
        self._metrics_collector = metrics_collector
        self._mark_error = retry_async(
            max_attempts=status_retry_attempts, initial_delay=status_retry_delay
        )(self._write_error_status)

    async def apply_success(self, result: ImageJobResult) -> bool:
        """Mark the photo ready with the job's metadata. False if it no longer exists."""
        photo = await self._repository.find_by_id(result.photo_id)
        if photo is None:
            self._logger.warning(f"Photo not found: {result.photo_id}")
            return False

        photo.status = PhotoStatus.READY
        photo.blur_data_url = result.blur_data_url
        # An empty record marks "checked, nothing found" so backfills skip it
        photo.exif_data = result.exif_data if result.exif_data is not None else ExifData.empty()
        photo.width = result.width
        photo.height = result.height
        photo.updated_at = utcnow()
        await self._repository.save(photo)
        return True

    async def _write_error_status(self, photo_id: str) -> bool:
        photo = await self._repository.find_by_id(photo_id)
        if photo is None:
            return False
        photo.status = PhotoStatus.ERROR
        photo.updated_at = utcnow()
        await self._repository.save(photo)
        return True

    async def apply_failure(self, photo_id: str, error: BaseException) -> None:
        """Mark the photo as failed; a failing status write is logged, not raised."""
        try:
            found = await self._mark_error(photo_id)
        except Exception as e:  # noqa: BLE001
            self._logger.warning(
                "Failed to mark photo as error",
                photo_id=photo_id,
                error=str(e),
                original_error=str(error),
            )
            return
        if not found:
            self._logger.warning(f"Photo not found: {photo_id}")

    async def process_message(self, message: QueueMessage) -> bool:
        """Run one delivered job and apply the matching transition."""
        photo_id = message.job.photo_id
        log_context = LogContext(
            correlation_id=message.message_id,
            operation="process_message",
            component="photo_status_reconciler",
        ).with_metadata(photo_id=photo_id, attempt=message.attempt)
        start_time = time.time()

        self._logger.info("Image job started", log_context)
        try:
            try:
                result = await asyncio.wait_for(
                    self._job.process(message.job), timeout=self._job_timeout
                )
            except asyncio.TimeoutError as e:
                raise ImageProcessingError(
                    f"Image job for {photo_id} exceeded {self._job_timeout}s"
                ) from e
            found = await self.apply_success(result)
        except Exception as e:
            self._logger.error("Image job failed", log_context.with_metadata(error=str(e)))
            await self.apply_failure(photo_id, e)
            self._record(start_time, photo_id, success=False, error=str(e))
            return False

        self._logger.info(
            "Image job completed",
            log_context,
            status_updated=found,
            width=result.width,
            height=result.height,
        )
        self._record(start_time, photo_id, success=True)
        return True

    def _record(self, start_time: float, photo_id: str, success: bool, error: Optional[str] = None) -> None:
        if self._metrics_collector is not None:
            self._metrics_collector.record(
                "image_job", start_time, success, error_message=error, photo_id=photo_id
            )

    async def process_batch(self, messages: List[QueueMessage], concurrency: int = 1) -> Set[str]:
        """Process a batch and return the ids of the messages that failed.

        A failed job only reports its own message; the rest of the batch is
        acknowledged normally.
        """
        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def run(message: QueueMessage) -> bool:
            async with semaphore:
                return await self.process_message(message)

        with BatchOperationContextManager(f"Image job batch ({len(messages)} messages)") as batch:
            outcomes = await asyncio.gather(*(run(m) for m in messages))
            for message, ok in zip(messages, outcomes):
                if not ok:
                    batch.add_error("image job failed", message.message_id)
        return set(batch.failed_items)
