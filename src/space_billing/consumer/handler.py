"""Lambda handler for space billing queue events."""

import asyncio
import json
import os
import time
from typing import Any

import boto3

from ..repository import Repository
from ..repository_protocol import BillingStores
from .processor import BatchResult, StructuredLogger, process_queue_records

# Configuration from environment
TABLE_NAME = os.environ.get("TABLE_NAME", "space-billing")
AWS_REGION = os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION")
DYNAMODB_ENDPOINT_URL = os.environ.get("DYNAMODB_ENDPOINT_URL") or None
MAX_CONCURRENCY = int(os.environ.get("MAX_CONCURRENCY", "10"))

# Non-retryable failures are forwarded here when set
DEAD_LETTER_QUEUE_URL = os.environ.get("DEAD_LETTER_QUEUE_URL", "")

logger = StructuredLogger(__name__)


def handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    Lambda handler for SQS billing instruction events.

    Handles each instruction and returns an SQS partial batch response so
    only retryable failures are redelivered.

    Environment variables:
        TABLE_NAME: DynamoDB table name (default: space-billing)
        DYNAMODB_ENDPOINT_URL: Custom DynamoDB endpoint (e.g. LocalStack)
        MAX_CONCURRENCY: Spaces billed concurrently per batch (default: 10)
        DEAD_LETTER_QUEUE_URL: SQS queue for non-retryable failures (optional)

    Args:
        event: SQS event
        context: Lambda context

    Returns:
        ``{"batchItemFailures": [{"itemIdentifier": message_id}, ...]}``
    """
    start_time = time.perf_counter()
    request_id = getattr(context, "aws_request_id", "unknown")
    records = event.get("Records", [])

    logger.info(
        "Lambda invocation started",
        request_id=request_id,
        function_name=getattr(context, "function_name", "unknown"),
        record_count=len(records),
        table_name=TABLE_NAME,
    )

    if not records:
        return {"batchItemFailures": []}

    result = asyncio.run(_process(records))

    dead_lettered = 0
    if DEAD_LETTER_QUEUE_URL and result.dead_letters:
        dead_lettered = forward_dead_letters(result, DEAD_LETTER_QUEUE_URL)

    processing_time_ms = (time.perf_counter() - start_time) * 1000
    logger.info(
        "Lambda invocation completed",
        request_id=request_id,
        processed=result.processed_count,
        billed=result.billed_count,
        retry_count=len(result.batch_item_failures),
        dead_lettered=dead_lettered,
        processing_time_ms=round(processing_time_ms, 2),
    )

    return result.as_response()


async def _process(records: list[dict[str, Any]]) -> BatchResult:
    async with Repository(
        table_name=TABLE_NAME,
        region=AWS_REGION,
        endpoint_url=DYNAMODB_ENDPOINT_URL,
    ) as repo:
        return await process_queue_records(
            records,
            BillingStores.from_repository(repo),
            max_concurrency=MAX_CONCURRENCY,
        )


def forward_dead_letters(result: BatchResult, queue_url: str) -> int:
    """
    Send non-retryable failures to the dead-letter queue.

    A send failure is logged and the message is added to the batch
    failures, so the instruction is redelivered rather than lost.

    Returns:
        Number of messages forwarded
    """
    sqs = boto3.client("sqs", region_name=AWS_REGION)
    forwarded = 0
    for letter in result.dead_letters:
        try:
            sqs.send_message(QueueUrl=queue_url, MessageBody=json.dumps(letter, default=str))
            forwarded += 1
        except Exception as e:
            logger.warning(
                "Failed to forward dead letter",
                exc_info=True,
                message_id=letter.get("messageId"),
                error=str(e),
            )
            result.batch_item_failures.append(letter["messageId"])
    return forwarded
