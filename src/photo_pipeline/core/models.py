"""Shared data models for the photo pipeline."""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current time used for every status mutation."""
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model serialising to the camelCase wire names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class PhotoStatus(str, Enum):
    """Lifecycle of a photo record."""

    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class ExifData(CamelModel):
    """Sanitized EXIF record.

    Only these eleven fields exist; location, serial number and software
    tags have no place on the type. An instance with every field unset is
    the "checked, nothing found" marker and serialises to ``{}``.
    """

    camera_make: Optional[str] = None
    camera_model: Optional[str] = None
    lens: Optional[str] = None
    focal_length: Optional[float] = None
    aperture: Optional[float] = None
    shutter_speed: Optional[str] = None
    iso: Optional[int] = None
    date_taken: Optional[str] = None
    white_balance: Optional[str] = None
    metering_mode: Optional[str] = None
    flash: Optional[str] = None

    @classmethod
    def empty(cls) -> "ExifData":
        return cls()

    @property
    def is_empty(self) -> bool:
        return all(value is None for value in self.model_dump().values())

    def to_storage_json(self) -> str:
        """JSON for persistence; the empty marker becomes ``{}``."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


class Photo(BaseModel):
    """Photo record as seen by the pipeline."""

    id: str
    status: PhotoStatus = PhotoStatus.PROCESSING
    original_filename: str = ""
    title: Optional[str] = None
    exif_data: Optional[ExifData] = None
    blur_data_url: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def is_stale(self, threshold: timedelta, now: Optional[datetime] = None) -> bool:
        """True when stuck in processing longer than ``threshold``."""
        if self.status is not PhotoStatus.PROCESSING:
            return False
        now = now or utcnow()
        return now - self.updated_at > threshold


class ImageJobData(CamelModel):
    """Queue message body: ``{"photoId": ..., "originalKey": ...}``."""

    photo_id: str
    original_key: str


class ImageJobResult(CamelModel):
    """Everything needed to update a photo record after a successful job."""

    photo_id: str
    derivatives: List[str] = Field(default_factory=list)
    blur_data_url: str
    exif_data: Optional[ExifData] = None
    width: int
    height: int


class QueueMessage(BaseModel):
    """A job as delivered by a queue backend."""

    message_id: str
    job: ImageJobData
    attempt: int = 1
    receipt_handle: Optional[str] = None
