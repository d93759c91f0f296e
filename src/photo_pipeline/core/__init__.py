"""Core utilities and shared components for the photo pipeline."""

from .config import PipelineSettings
from .exceptions import (
    ConfigurationError,
    EnqueueTimeoutError,
    ImageProcessingError,
    PhotoNotFoundError,
    PhotoPipelineError,
    QueueError,
    ReprocessNotAllowedError,
    StorageError,
)
from .exif import extract_exif_data
from .image_utils import generate_blur_placeholder, generate_derivatives
from .logging_config import get_logger, setup_logger
from .models import ExifData, ImageJobData, ImageJobResult, Photo, PhotoStatus, QueueMessage

__all__ = [
    "ConfigurationError",
    "EnqueueTimeoutError",
    "ExifData",
    "ImageJobData",
    "ImageJobResult",
    "ImageProcessingError",
    "Photo",
    "PhotoNotFoundError",
    "PhotoPipelineError",
    "PhotoStatus",
    "PipelineSettings",
    "QueueError",
    "QueueMessage",
    "ReprocessNotAllowedError",
    "StorageError",
    "extract_exif_data",
    "generate_blur_placeholder",
    "generate_derivatives",
    "get_logger",
    "setup_logger",
]
