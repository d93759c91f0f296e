"""Job queue backends and the bounded enqueue used by upload and reprocess."""

import asyncio

from ..core.exceptions import EnqueueTimeoutError
from ..core.protocols import JobQueue
from .local import LocalJobQueue
from .sqs import SqsJobQueue, handle_sqs_event, parse_job_body


async def enqueue_with_timeout(
    queue: JobQueue, photo_id: str, original_key: str, timeout: float = 10.0
) -> str:
    """Enqueue with its own time budget, separate from the job's execution timeout."""
    try:
        return await asyncio.wait_for(queue.enqueue(photo_id, original_key), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise EnqueueTimeoutError(
            f"Enqueue for photo {photo_id} did not finish within {timeout}s"
        ) from e


__all__ = [
    "LocalJobQueue",
    "SqsJobQueue",
    "enqueue_with_timeout",
    "handle_sqs_event",
    "parse_job_body",
]
