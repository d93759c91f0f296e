"""Long-running queue consumer and the Lambda entry point."""

import asyncio
import signal
from typing import Any, Dict, Optional

from .core.exceptions import QueueError
from .core.observability import LogContext, MetricsCollector
from .core.protocols import JobQueue, LoggerProtocol
from .core.services import PhotoStatusReconciler


class Worker:
    """Pulls job batches from a queue and runs them through the reconciler.

    A failing job only fails its own message. ``stop()`` (or SIGINT/SIGTERM
    under ``run_forever``) lets in-flight jobs finish before returning.
    """

    def __init__(
        self,
        queue: JobQueue,
        reconciler: PhotoStatusReconciler,
        logger: LoggerProtocol,
        metrics_collector: Optional[MetricsCollector] = None,
        concurrency: int = 2,
        batch_size: int = 10,
        error_backoff_seconds: float = 5.0,
    ):
        self._queue = queue
        self._reconciler = reconciler
        self._logger = logger
        self._metrics_collector = metrics_collector
        self._concurrency = max(1, concurrency)
        self._batch_size = batch_size
        self._error_backoff = error_backoff_seconds
        self._stopping = asyncio.Event()
        self._context = LogContext(operation="consume", component="worker")

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def stop(self) -> None:
        if not self._stopping.is_set():
            self._logger.info("Shutting down worker...", self._context)
        self._stopping.set()

    async def run_once(self) -> int:
        """Receive, process and settle one batch. Returns the number of messages handled."""
        messages = await self._queue.receive(self._batch_size)
        if not messages:
            return 0
        failed_ids = await self._reconciler.process_batch(messages, concurrency=self._concurrency)
        await self._queue.settle(messages, failed_ids)
        return len(messages)

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                # Not available on this platform or outside the main thread
                pass

    async def run_forever(self) -> None:
        self._install_signal_handlers()
        self._logger.info(
            "Image processing worker started", self._context, concurrency=self._concurrency
        )
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except QueueError as e:
                self._logger.error("Queue receive failed", self._context.with_metadata(error=str(e)))
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self._error_backoff)
                except asyncio.TimeoutError:
                    pass

        if self._metrics_collector is not None:
            summary = self._metrics_collector.get_summary("image_job")
            if summary:
                self._logger.info("Worker job summary", self._context, **summary)
        self._logger.info("Image processing worker stopped", self._context)


def lambda_handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """AWS Lambda handler for SQS-triggered image processing."""
    from .core.config import PipelineSettings
    from .core.factories import ProcessingPipelineFactory
    from .queues import handle_sqs_event

    pipeline = ProcessingPipelineFactory.create_pipeline(PipelineSettings.from_env())
    return asyncio.run(handle_sqs_event(event, pipeline.reconciler))
