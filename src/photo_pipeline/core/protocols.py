"""Protocol definitions for dependency injection and testability."""

from typing import Any, List, Optional, Protocol, Set

from .models import Photo, PhotoStatus, QueueMessage


class StorageAdapter(Protocol):
    """Key/bytes storage shared by the filesystem and object-store backends."""

    async def get_file(self, key: str) -> bytes:
        """Read a file; raises StorageError when the key does not exist."""
        ...

    async def save_file(self, key: str, data: bytes, content_type: str) -> None:
        """Write (or overwrite) a file."""
        ...

    async def list_files(self, prefix: str) -> List[str]:
        """Keys under ``prefix``; empty when nothing matches."""
        ...


class JobQueue(Protocol):
    """At-least-once queue of image jobs."""

    async def enqueue(self, photo_id: str, original_key: str) -> str:
        """Submit a job and return its id."""
        ...

    async def receive(self, max_messages: int = 10) -> List[QueueMessage]:
        """Next batch of delivered jobs; may be empty."""
        ...

    async def settle(self, messages: List[QueueMessage], failed_ids: Set[str]) -> None:
        """Acknowledge succeeded messages and release failed ones for redelivery."""
        ...


class PhotoRepository(Protocol):
    """The subset of the photo store the pipeline needs."""

    async def find_by_id(self, photo_id: str) -> Optional[Photo]:
        ...

    async def save(self, photo: Photo) -> None:
        ...

    async def find_all(self) -> List[Photo]:
        ...

    async def find_by_status(self, status: PhotoStatus) -> List[Photo]:
        ...


class LoggerProtocol(Protocol):
    """Protocol for logging operations."""

    def debug(self, message: str, context: Any = None, **kwargs: Any) -> None:
        ...

    def info(self, message: str, context: Any = None, **kwargs: Any) -> None:
        ...

    def warning(self, message: str, context: Any = None, **kwargs: Any) -> None:
        ...

    def error(self, message: str, context: Any = None, **kwargs: Any) -> None:
        ...
