"""Space billing instruction handler.

Loads the snapshot at the start of the period, integrates the diffs in
the period, and upserts the usage record and the snapshot at the end of
the period. Both writes are keyed by the instruction's own identity, so
handling the same instruction again against an unchanged ledger
overwrites them with identical values.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from .exceptions import (
    BillingError,
    InvalidIdentifierError,
    InvalidInstructionError,
    MissingSnapshotError,
    NegativeSizeError,
    StorageFailure,
)
from .models import (
    BillingInstruction,
    BillingOutcome,
    SpaceSnapshot,
    UsageRecord,
    utc_now,
)
from .repository_protocol import BillingStores
from .usage import calculate_usage

logger = logging.getLogger(__name__)


@dataclass
class BillingResult:
    """
    Outcome of handling a billing instruction: exactly one of ``ok`` or
    ``error`` is set.
    """

    ok: BillingOutcome | None = None
    error: BillingError | None = None

    def __post_init__(self) -> None:
        if (self.ok is None) == (self.error is None):
            raise ValueError("BillingResult requires exactly one of ok or error")

    @property
    def retryable(self) -> bool:
        """True if the instruction failed and may succeed on retry."""
        return self.error is not None and self.error.retryable


async def handle_space_billing_instruction(
    instruction: BillingInstruction,
    stores: BillingStores,
    now: Callable[[], datetime] = utc_now,
) -> BillingResult:
    """
    Compute usage for a space over a billing period and advance its snapshot.

    Steps:
        1. Validate the instruction
        2. Read the snapshot at ``from``
        3. Read every diff in ``[from, to)``
        4. Integrate size over the period
        5. Upsert the usage record and the snapshot at ``to``

    Args:
        instruction: The billing instruction
        stores: Store handles to read from and write to
        now: Clock for ``inserted_at`` timestamps

    Returns:
        BillingResult with the written records, or the error. Errors are
        returned, never raised:

        - InvalidInstructionError: malformed instruction, nothing read
        - MissingSnapshotError: no snapshot at ``from`` (needs a backfill)
        - StorageFailure: a store read or write failed (retryable)
        - NegativeSizeError: ledger inconsistency, nothing written
    """
    try:
        instruction.validate()
    except (InvalidIdentifierError, ValueError) as e:
        return _failed(
            instruction,
            InvalidInstructionError(
                str(e),
                provider=_safe_str(instruction.provider),
                space=_safe_str(instruction.space),
            ),
        )

    provider, space = instruction.provider, instruction.space
    from_, to = instruction.from_, instruction.to

    try:
        snapshot = await stores.space_snapshot_store.get_space_snapshot(provider, space, from_)
        if snapshot is None:
            return _failed(instruction, MissingSnapshotError(provider, space, from_))

        diffs = await stores.space_diff_store.list_space_diffs(provider, space, from_, to)
    except StorageFailure as e:
        return _failed(instruction, _with_context(e, instruction))

    result = calculate_usage(snapshot.size, diffs, from_, to)
    if not result.consistent:
        return _failed(
            instruction,
            NegativeSizeError(
                provider,
                space,
                from_,
                to,
                start_size=snapshot.size,
                end_size=result.end_size,
                min_size=result.min_size,
            ),
        )

    inserted_at = now()
    usage_record = UsageRecord(
        customer=instruction.customer,
        account=instruction.account,
        product=instruction.product,
        provider=provider,
        space=space,
        usage=result.usage,
        from_=from_,
        to=to,
        inserted_at=inserted_at,
    )
    end_snapshot = SpaceSnapshot(
        provider=provider,
        space=space,
        size=result.end_size,
        recorded_at=to,
        inserted_at=inserted_at,
    )

    try:
        await stores.usage_store.put_usage(usage_record)
        await stores.space_snapshot_store.put_space_snapshot(end_snapshot)
    except StorageFailure as e:
        return _failed(instruction, _with_context(e, instruction))

    logger.info(
        "Billed space %s (provider=%s) for %s..%s: usage=%d size=%d->%d diffs=%d",
        space,
        provider,
        from_.isoformat(),
        to.isoformat(),
        result.usage,
        snapshot.size,
        result.end_size,
        len(diffs),
    )
    return BillingResult(
        ok=BillingOutcome(
            usage_record=usage_record,
            snapshot=end_snapshot,
            diff_count=len(diffs),
        )
    )


def _failed(instruction: BillingInstruction, error: BillingError) -> BillingResult:
    """Log and wrap an error result."""
    log = logger.warning if error.retryable else logger.error
    log(
        "Billing instruction failed [%s]: %s (customer=%s)",
        error.code,
        error,
        _safe_str(instruction.customer),
    )
    return BillingResult(error=error)


def _with_context(error: StorageFailure, instruction: BillingInstruction) -> StorageFailure:
    """Attach the instruction's space to a store failure raised without it."""
    if error.space is not None:
        return error
    wrapped = StorageFailure(
        str(error),
        error.cause,
        provider=instruction.provider,
        space=instruction.space,
    )
    wrapped.table_name = error.table_name
    wrapped.operation = error.operation
    return wrapped


def _safe_str(value: object) -> str | None:
    return value if isinstance(value, str) and value else None
