"""Testing utilities and fakes for the photo pipeline."""

from .fakes import (
    ExifFixture,
    FakeLogger,
    FakeS3Client,
    FakeSqsClient,
    InMemoryPhotoRepository,
    InMemoryStorageAdapter,
    S3Object,
    create_test_image,
    new_photo_id,
)

__all__ = [
    "ExifFixture",
    "FakeLogger",
    "FakeS3Client",
    "FakeSqsClient",
    "InMemoryPhotoRepository",
    "InMemoryStorageAdapter",
    "S3Object",
    "create_test_image",
    "new_photo_id",
]
