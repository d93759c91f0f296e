"""Amazon SQS job queue built on aioboto3."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Set

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from ..core.exceptions import QueueError
from ..core.logging_config import get_logger
from ..core.models import ImageJobData, QueueMessage
from ..core.services import PhotoStatusReconciler

logger = get_logger("queues.sqs")

SQS_MAX_BATCH = 10


def parse_job_body(body: str) -> ImageJobData:
    """Decode a ``{"photoId": ..., "originalKey": ...}`` message body."""
    return ImageJobData.model_validate_json(body)


class SqsJobQueue:
    """Managed queue backend.

    Failed messages are not deleted; SQS redelivers them once the
    visibility timeout lapses and the queue's redrive policy bounds the
    number of attempts.
    """

    def __init__(
        self,
        queue_url: str,
        region: Optional[str] = None,
        client_factory: Optional[Callable[[], Any]] = None,
        wait_time_seconds: int = 20,
    ):
        self.queue_url = queue_url
        self.wait_time_seconds = wait_time_seconds
        if client_factory is None:
            session = aioboto3.Session()
            client_factory = lambda: session.client("sqs", region_name=region)  # noqa: E731
        self._client_factory = client_factory

    async def enqueue(self, photo_id: str, original_key: str) -> str:
        body = ImageJobData(photo_id=photo_id, original_key=original_key).to_json()
        try:
            async with self._client_factory() as sqs_client:
                response = await sqs_client.send_message(QueueUrl=self.queue_url, MessageBody=body)
        except (ClientError, BotoCoreError) as e:
            raise QueueError(f"Failed to enqueue job for photo {photo_id}: {e}") from e
        return response["MessageId"]

    async def receive(self, max_messages: int = SQS_MAX_BATCH) -> List[QueueMessage]:
        try:
            async with self._client_factory() as sqs_client:
                response = await sqs_client.receive_message(
                    QueueUrl=self.queue_url,
                    MaxNumberOfMessages=min(max_messages, SQS_MAX_BATCH),
                    WaitTimeSeconds=self.wait_time_seconds,
                    AttributeNames=["ApproximateReceiveCount"],
                )
        except (ClientError, BotoCoreError) as e:
            raise QueueError(f"Failed to receive messages: {e}") from e

        messages: List[QueueMessage] = []
        for raw in response.get("Messages", []):
            try:
                job = parse_job_body(raw["Body"])
            except ValidationError as e:
                # Left undeleted so the redrive policy moves it to the DLQ
                logger.error(f"Malformed job message {raw['MessageId']}: {e}")
                continue
            messages.append(
                QueueMessage(
                    message_id=raw["MessageId"],
                    job=job,
                    attempt=int(raw.get("Attributes", {}).get("ApproximateReceiveCount", 1)),
                    receipt_handle=raw["ReceiptHandle"],
                )
            )
        return messages

    async def settle(self, messages: List[QueueMessage], failed_ids: Set[str]) -> None:
        succeeded = [m for m in messages if m.message_id not in failed_ids]
        if not succeeded:
            return
        try:
            async with self._client_factory() as sqs_client:
                for start in range(0, len(succeeded), SQS_MAX_BATCH):
                    chunk = succeeded[start:start + SQS_MAX_BATCH]
                    await sqs_client.delete_message_batch(
                        QueueUrl=self.queue_url,
                        Entries=[
                            {"Id": str(i), "ReceiptHandle": m.receipt_handle}
                            for i, m in enumerate(chunk)
                        ],
                    )
        except (ClientError, BotoCoreError) as e:
            raise QueueError(f"Failed to delete processed messages: {e}") from e


async def handle_sqs_event(event: Dict[str, Any], reconciler: PhotoStatusReconciler) -> Dict[str, Any]:
    """
    Process a Lambda SQS event with partial batch failure reporting.

    Returns ``{"batchItemFailures": [{"itemIdentifier": messageId}, ...]}``
    listing only the records that failed; SQS redelivers just those.
    """
    records = event.get("Records", [])
    failures: List[Dict[str, str]] = []
    messages: List[QueueMessage] = []

    for record in records:
        try:
            job = parse_job_body(record["body"])
        except (ValidationError, KeyError) as e:
            logger.error(f"Malformed job record {record.get('messageId')}: {e}")
            failures.append({"itemIdentifier": record.get("messageId", "")})
            continue
        messages.append(
            QueueMessage(
                message_id=record["messageId"],
                job=job,
                attempt=int(record.get("attributes", {}).get("ApproximateReceiveCount", 1)),
                receipt_handle=record.get("receiptHandle"),
            )
        )

    logger.info(f"Image processing batch started ({len(records)} records)")
    failed_ids = await reconciler.process_batch(messages)
    failures.extend({"itemIdentifier": m.message_id} for m in messages if m.message_id in failed_ids)
    logger.info(
        f"Image processing batch completed ({len(records)} records, {len(failures)} failed)"
    )
    return {"batchItemFailures": failures}
