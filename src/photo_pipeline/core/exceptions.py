"""Custom exceptions for the photo pipeline."""

from __future__ import annotations


class PhotoPipelineError(Exception):
    """Base exception for all photo pipeline errors."""


class StorageError(PhotoPipelineError):
    """Error raised when a storage backend cannot read or write a key."""


class ConfigurationError(PhotoPipelineError):
    """Error raised for invalid configuration options."""


class ImageProcessingError(PhotoPipelineError):
    """Error raised when an original cannot be decoded or re-encoded."""


class QueueError(PhotoPipelineError):
    """Error raised for job queue failures."""


class EnqueueTimeoutError(QueueError):
    """Enqueue did not complete within its time budget."""


class PhotoNotFoundError(PhotoPipelineError):
    """No photo record exists for the given id."""


class ReprocessNotAllowedError(PhotoPipelineError):
    """Reprocessing was requested for a photo that is already ready."""
