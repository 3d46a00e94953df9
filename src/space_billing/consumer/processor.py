"""SQS record processor for space billing instructions."""

import asyncio
import json
import time as time_module
import traceback
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from ..billing import BillingResult, handle_space_billing_instruction
from ..exceptions import InvalidIdentifierError, InvalidInstructionError
from ..models import BillingInstruction
from ..repository_protocol import BillingStores


class StructuredLogger:
    """JSON-formatted logger for CloudWatch Logs Insights."""

    def __init__(self, name: str):
        self._name = name

    def _log(self, level: str, message: str, **extra: Any) -> None:
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": level,
            "logger": self._name,
            "message": message,
            **extra,
        }
        print(json.dumps(log_entry, default=str))

    def debug(self, message: str, **extra: Any) -> None:
        self._log("DEBUG", message, **extra)

    def info(self, message: str, **extra: Any) -> None:
        self._log("INFO", message, **extra)

    def warning(self, message: str, exc_info: bool = False, **extra: Any) -> None:
        if exc_info:
            extra["exception"] = traceback.format_exc()
        self._log("WARNING", message, **extra)

    def error(self, message: str, exc_info: bool = False, **extra: Any) -> None:
        if exc_info:
            extra["exception"] = traceback.format_exc()
        self._log("ERROR", message, **extra)


logger = StructuredLogger(__name__)


@dataclass
class BatchResult:
    """Result of processing a batch of queue records."""

    processed_count: int
    billed_count: int
    batch_item_failures: list[str] = field(default_factory=list)
    dead_letters: list[dict[str, Any]] = field(default_factory=list)

    def as_response(self) -> dict[str, Any]:
        """SQS partial batch response for the Lambda event source mapping."""
        return {
            "batchItemFailures": [
                {"itemIdentifier": message_id} for message_id in self.batch_item_failures
            ]
        }


# ---------------------------------------------------------------------------
# Message codec
# ---------------------------------------------------------------------------


def encode_instruction(instruction: BillingInstruction) -> str:
    """Encode an instruction as a queue message body."""
    return json.dumps(instruction.to_dict(), sort_keys=True)


def decode_instruction(body: str) -> BillingInstruction:
    """
    Decode a queue message body into an instruction.

    Raises:
        InvalidInstructionError: If the body is not a well-formed, valid
            instruction
    """
    try:
        data = json.loads(body)
        if not isinstance(data, dict):
            raise ValueError("message body must be a JSON object")
        instruction = BillingInstruction.from_dict(data)
        instruction.validate()
    except (InvalidIdentifierError, ValueError, KeyError, TypeError, AttributeError) as e:
        raise InvalidInstructionError(f"Undecodable billing instruction: {e}") from e
    return instruction


# ---------------------------------------------------------------------------
# Batch processing
# ---------------------------------------------------------------------------


async def process_queue_records(
    records: list[dict[str, Any]],
    stores: BillingStores,
    max_concurrency: int = 10,
) -> BatchResult:
    """
    Handle the billing instructions in a batch of SQS records.

    1. Decode each record (undecodable records are dead-lettered)
    2. Group by space, keeping delivery order within a space
    3. Handle spaces concurrently, instructions of one space in order
    4. Report retryable failures for redelivery

    Once an instruction of a space fails with a retryable error, the later
    instructions of that space in the batch are not attempted and are
    reported for redelivery too: each needs the snapshot its predecessor
    writes.

    Non-retryable failures are logged at ERROR with their error code and
    remediation, and are not redelivered.

    Args:
        records: SQS event records
        stores: Store handles passed to the instruction handler
        max_concurrency: Maximum number of spaces handled at once

    Returns:
        BatchResult with counts and message ids to retry
    """
    start_time = time_module.perf_counter()
    logger.info("Batch processing started", record_count=len(records))

    result = BatchResult(processed_count=len(records), billed_count=0)
    groups: dict[tuple[str, str], list[tuple[str, BillingInstruction]]] = defaultdict(list)

    for idx, record in enumerate(records):
        message_id = record.get("messageId", str(idx))
        try:
            instruction = decode_instruction(record.get("body", ""))
        except InvalidInstructionError as e:
            logger.error(
                "Billing instruction rejected",
                message_id=message_id,
                record_index=idx,
                error_code=e.code,
                error=str(e),
            )
            result.dead_letters.append({"messageId": message_id, **e.as_dict()})
            continue
        groups[(instruction.provider, instruction.space)].append((message_id, instruction))

    semaphore = asyncio.Semaphore(max_concurrency)

    async def run_group(items: list[tuple[str, BillingInstruction]]) -> None:
        async with semaphore:
            for position, (message_id, instruction) in enumerate(items):
                outcome = await handle_space_billing_instruction(instruction, stores)
                _record_outcome(result, message_id, instruction, outcome)
                if outcome.retryable:
                    skipped = [mid for mid, _ in items[position + 1 :]]
                    if skipped:
                        logger.warning(
                            "Deferring later instructions for space",
                            space=instruction.space,
                            provider=instruction.provider,
                            message_ids=skipped,
                        )
                    result.batch_item_failures.extend(skipped)
                    return

    await asyncio.gather(*(run_group(items) for items in groups.values()))

    processing_time_ms = (time_module.perf_counter() - start_time) * 1000
    logger.info(
        "Batch processing completed",
        processed_count=result.processed_count,
        billed_count=result.billed_count,
        retry_count=len(result.batch_item_failures),
        dead_letter_count=len(result.dead_letters),
        processing_time_ms=round(processing_time_ms, 2),
    )
    return result


def _record_outcome(
    result: BatchResult,
    message_id: str,
    instruction: BillingInstruction,
    outcome: BillingResult,
) -> None:
    if outcome.ok is not None:
        result.billed_count += 1
        logger.info(
            "Space billed",
            message_id=message_id,
            customer=instruction.customer,
            provider=instruction.provider,
            space=instruction.space,
            usage=str(outcome.ok.usage),
            snapshot_size=str(outcome.ok.snapshot_size),
            diff_count=outcome.ok.diff_count,
        )
        return

    error = outcome.error
    if error is None:
        return
    if error.retryable:
        logger.warning(
            "Billing instruction failed, will retry",
            message_id=message_id,
            customer=instruction.customer,
            error_code=error.code,
            error=str(error),
        )
        result.batch_item_failures.append(message_id)
    else:
        logger.error(
            "Billing instruction failed, manual intervention required",
            message_id=message_id,
            customer=instruction.customer,
            error_code=error.code,
            remediation=error.remediation,
            details=error.as_dict(),
        )
        result.dead_letters.append({"messageId": message_id, **error.as_dict()})
