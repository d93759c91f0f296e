"""Factories wiring configured backends into a processing pipeline."""

from dataclasses import dataclass
from typing import Optional

from .config import PipelineSettings
from .exceptions import ConfigurationError
from .observability import MetricsCollector, StructuredLogger
from .protocols import JobQueue, LoggerProtocol, PhotoRepository, StorageAdapter
from .services import ImageProcessingJob, PhotoStatusReconciler
from ..queues import LocalJobQueue, SqsJobQueue
from ..repository import SqlitePhotoRepository
from ..storage import FilesystemStorageAdapter, S3StorageAdapter
from ..worker import Worker


def create_logger(name: str = "photo-pipeline") -> LoggerProtocol:
    return StructuredLogger(name)


def create_storage_adapter(settings: PipelineSettings) -> StorageAdapter:
    """Storage backend selected by ``settings.storage_backend``."""
    if settings.storage_backend == "s3":
        return S3StorageAdapter(settings.s3_bucket, region=settings.aws_region)
    if settings.storage_backend == "filesystem":
        return FilesystemStorageAdapter(settings.storage_path)
    raise ConfigurationError(f"Unknown storage backend: {settings.storage_backend}")


def create_job_queue(settings: PipelineSettings) -> JobQueue:
    """Queue backend selected by ``settings.queue_backend``."""
    if settings.queue_backend == "sqs":
        return SqsJobQueue(settings.sqs_queue_url, region=settings.aws_region)
    if settings.queue_backend == "local":
        return LocalJobQueue(
            max_attempts=settings.max_attempts,
            backoff_seconds=settings.retry_backoff_seconds,
        )
    raise ConfigurationError(f"Unknown queue backend: {settings.queue_backend}")


def create_repository(settings: PipelineSettings) -> PhotoRepository:
    return SqlitePhotoRepository(settings.database_path)


@dataclass
class Pipeline:
    """Every configured component of one worker process."""

    settings: PipelineSettings
    storage: StorageAdapter
    queue: JobQueue
    repository: PhotoRepository
    logger: LoggerProtocol
    metrics: MetricsCollector
    job: ImageProcessingJob
    reconciler: PhotoStatusReconciler


class ProcessingPipelineFactory:
    """Factory for creating the complete processing pipeline."""

    @staticmethod
    def create_pipeline(
        settings: PipelineSettings,
        storage: Optional[StorageAdapter] = None,
        queue: Optional[JobQueue] = None,
        repository: Optional[PhotoRepository] = None,
        logger: Optional[LoggerProtocol] = None,
    ) -> Pipeline:
        """Create a fully configured pipeline; explicit components override settings."""
        if storage is None:
            storage = create_storage_adapter(settings)
        if queue is None:
            queue = create_job_queue(settings)
        if repository is None:
            repository = create_repository(settings)
        if logger is None:
            logger = create_logger()

        metrics = MetricsCollector()
        job = ImageProcessingJob(storage, logger, temp_root=settings.temp_root)
        reconciler = PhotoStatusReconciler(
            job,
            repository,
            logger,
            job_timeout_seconds=settings.job_timeout_seconds,
            metrics_collector=metrics,
        )
        return Pipeline(
            settings=settings,
            storage=storage,
            queue=queue,
            repository=repository,
            logger=logger,
            metrics=metrics,
            job=job,
            reconciler=reconciler,
        )

    @staticmethod
    def create_worker(pipeline: Pipeline) -> Worker:
        return Worker(
            pipeline.queue,
            pipeline.reconciler,
            pipeline.logger,
            metrics_collector=pipeline.metrics,
            concurrency=pipeline.settings.worker_concurrency,
        )
