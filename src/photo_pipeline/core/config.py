"""Process-wide settings, built once at startup and passed down explicitly."""

import os
import tempfile
from datetime import timedelta
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, ValidationError, model_validator

from .exceptions import ConfigurationError


class PipelineSettings(BaseModel):
    """Configuration for storage, queue and worker behaviour."""

    storage_backend: Literal["filesystem", "s3"] = "filesystem"
    storage_path: str = "./storage"
    s3_bucket: Optional[str] = None

    queue_backend: Literal["local", "sqs"] = "local"
    sqs_queue_url: Optional[str] = None
    aws_region: str = "us-east-1"

    database_path: str = "./photos.db"
    temp_root: str = tempfile.gettempdir()

    enqueue_timeout_seconds: float = 10.0
    job_timeout_seconds: float = 300.0
    max_attempts: int = 3
    retry_backoff_seconds: float = 2.0
    worker_concurrency: int = 2
    stale_after_minutes: int = 30

    @model_validator(mode="after")
    def _check_backend_requirements(self) -> "PipelineSettings":
        if self.storage_backend == "s3" and not self.s3_bucket:
            raise ValueError("AWS_S3_BUCKET is required when STORAGE_BACKEND=s3")
        if self.queue_backend == "sqs" and not self.sqs_queue_url:
            raise ValueError("SQS_QUEUE_URL is required when QUEUE_BACKEND=sqs")
        if self.max_attempts < 1:
            raise ValueError("JOB_MAX_ATTEMPTS must be at least 1")
        return self

    @property
    def stale_threshold(self) -> timedelta:
        return timedelta(minutes=self.stale_after_minutes)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PipelineSettings":
        """Build settings from environment variables; unset ones keep defaults."""
        environ = os.environ if environ is None else environ
        names = {
            "storage_backend": "STORAGE_BACKEND",
            "storage_path": "STORAGE_PATH",
            "s3_bucket": "AWS_S3_BUCKET",
            "queue_backend": "QUEUE_BACKEND",
            "sqs_queue_url": "SQS_QUEUE_URL",
            "aws_region": "AWS_REGION",
            "database_path": "DATABASE_PATH",
            "temp_root": "PHOTO_WORKER_TMP",
            "enqueue_timeout_seconds": "ENQUEUE_TIMEOUT_SECONDS",
            "job_timeout_seconds": "JOB_TIMEOUT_SECONDS",
            "max_attempts": "JOB_MAX_ATTEMPTS",
            "retry_backoff_seconds": "JOB_RETRY_BACKOFF_SECONDS",
            "worker_concurrency": "WORKER_CONCURRENCY",
            "stale_after_minutes": "STALE_AFTER_MINUTES",
        }
        values = {field: environ[env] for field, env in names.items() if environ.get(env)}
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid pipeline configuration: {e}") from e
