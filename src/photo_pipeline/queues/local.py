"""In-process job queue for single-host deployments and tests."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Set

from ..core.logging_config import get_logger
from ..core.models import ImageJobData, QueueMessage

logger = get_logger("queues.local")


class LocalJobQueue:
    """asyncio-backed queue with at-least-once delivery.

    Job ids are ``photo-{photoId}``; enqueueing a photo that is already
    waiting or in flight returns the existing id instead of adding a second
    job. Failed messages come back after an exponential backoff until
    ``max_attempts`` deliveries have failed, then move to ``dead_letters``.
    """

    def __init__(self, max_attempts: int = 3, backoff_seconds: float = 2.0):
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.dead_letters: List[QueueMessage] = []
        self._queue: "asyncio.Queue[QueueMessage]" = asyncio.Queue()
        self._pending: Dict[str, QueueMessage] = {}

    def __len__(self) -> int:
        return len(self._pending)

    async def enqueue(self, photo_id: str, original_key: str) -> str:
        job_id = f"photo-{photo_id}"
        if job_id in self._pending:
            logger.debug(f"Job {job_id} already pending, not enqueued twice")
            return job_id

        message = QueueMessage(
            message_id=job_id,
            job=ImageJobData(photo_id=photo_id, original_key=original_key),
        )
        self._pending[job_id] = message
        await self._queue.put(message)
        return job_id

    async def receive(self, max_messages: int = 10, wait_seconds: float = 1.0) -> List[QueueMessage]:
        try:
            first = await asyncio.wait_for(self._queue.get(), timeout=wait_seconds)
        except asyncio.TimeoutError:
            return []

        batch = [first]
        while len(batch) < max_messages and not self._queue.empty():
            batch.append(self._queue.get_nowait())
        return batch

    async def settle(self, messages: List[QueueMessage], failed_ids: Set[str]) -> None:
        loop = asyncio.get_running_loop()
        for message in messages:
            if message.message_id not in failed_ids:
                self._pending.pop(message.message_id, None)
                continue

            if message.attempt >= self.max_attempts:
                self._pending.pop(message.message_id, None)
                self.dead_letters.append(message)
                logger.error(
                    f"Job {message.message_id} failed {message.attempt} times, moved to dead letters"
                )
                continue

            retry = message.model_copy(update={"attempt": message.attempt + 1})
            self._pending[message.message_id] = retry
            delay = self.backoff_seconds * 2 ** (message.attempt - 1)
            logger.info(
                f"Job {message.message_id} failed (attempt {message.attempt}/{self.max_attempts}), "
                f"redelivering in {delay:.2f}s"
            )
            loop.call_later(delay, self._queue.put_nowait, retry)
