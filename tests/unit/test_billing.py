"""Tests for the space billing instruction handler."""

import logging
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from space_billing import BillingStores, handle_space_billing_instruction
from space_billing.billing import BillingResult
from space_billing.exceptions import (
    InvalidInstructionError,
    MissingSnapshotError,
    NegativeSizeError,
    StorageFailure,
)
from space_billing.models import GIB, TIB, BillingOutcome
from space_billing.periods import next_month
from tests.fixtures.ledger import (
    FROM,
    INSERTED_AT,
    PROVIDER,
    TO,
    make_diff,
    make_instruction,
    make_snapshot,
    period_ms,
    random_customer,
    random_space,
)
from tests.fixtures.stores import FailingStore, InMemoryStore


def fixed_clock() -> datetime:
    return INSERTED_AT


async def seed(store: InMemoryStore, space: str, size: int, *diffs) -> None:
    await store.put_space_snapshot(make_snapshot(space, size))
    for diff in diffs:
        await store.put_space_diff(diff)
    store.writes.clear()


class TestBillingScenarios:
    """End-to-end scenarios against the in-memory store."""

    async def test_new_space_single_add_at_period_start(self, memory_store, stores) -> None:
        space = random_space()
        customer = random_customer()
        await seed(memory_store, space, 0, make_diff(space, GIB, FROM, customer=customer))

        result = await handle_space_billing_instruction(
            make_instruction(space, customer=customer), stores
        )

        assert result.ok is not None
        assert result.error is None
        listing = await memory_store.list_usage(customer, FROM)
        assert len(listing) == 1
        assert listing[0].usage == GIB * period_ms()
        snap = await memory_store.get_space_snapshot(PROVIDER, space, TO)
        assert snap is not None
        assert snap.size == GIB

    async def test_removal_half_way(self, memory_store, stores) -> None:
        space = random_space()
        customer = random_customer()
        midpoint = FROM + (TO - FROM) / 2
        await seed(
            memory_store,
            space,
            0,
            make_diff(space, GIB, FROM),
            make_diff(space, -GIB, midpoint),
        )

        result = await handle_space_billing_instruction(
            make_instruction(space, customer=customer), stores
        )

        assert result.ok is not None
        listing = await memory_store.list_usage(customer, FROM)
        assert listing[0].usage == GIB * period_ms() // 2
        snap = await memory_store.get_space_snapshot(PROVIDER, space, TO)
        assert snap.size == 0

    async def test_existing_space_size(self, memory_store, stores) -> None:
        space = random_space()
        customer = random_customer()
        yesterday = TO - timedelta(days=1)
        await seed(memory_store, space, TIB, make_diff(space, GIB, yesterday))

        result = await handle_space_billing_instruction(
            make_instruction(space, customer=customer), stores
        )

        assert result.ok is not None
        assert result.ok.usage == TIB * period_ms() + GIB * 86_400_000
        assert result.ok.snapshot_size == TIB + GIB
        assert result.ok.diff_count == 1

    async def test_outcome_records(self, memory_store, stores) -> None:
        space = random_space()
        await seed(memory_store, space, 10)
        instruction = make_instruction(space)

        result = await handle_space_billing_instruction(instruction, stores, now=fixed_clock)

        assert isinstance(result.ok, BillingOutcome)
        record = result.ok.usage_record
        assert record.customer == instruction.customer
        assert record.account == instruction.account
        assert record.product == instruction.product
        assert (record.from_, record.to) == (FROM, TO)
        assert record.inserted_at == INSERTED_AT
        assert result.ok.snapshot.recorded_at == TO
        assert result.ok.snapshot.inserted_at == INSERTED_AT

    async def test_ignores_other_spaces(self, memory_store, stores) -> None:
        space = random_space()
        other = random_space()
        await seed(memory_store, space, 0, make_diff(other, TIB, FROM))

        result = await handle_space_billing_instruction(make_instruction(space), stores)

        assert result.ok.usage == 0
        assert result.ok.snapshot_size == 0

    async def test_consecutive_periods_chain_snapshots(self, memory_store, stores) -> None:
        """Each period starts from the snapshot the previous one wrote."""
        space = random_space()
        feb_end = next_month(TO)
        await seed(
            memory_store,
            space,
            0,
            make_diff(space, GIB, FROM),
            make_diff(space, GIB, TO),
        )

        january = await handle_space_billing_instruction(make_instruction(space), stores)
        february = await handle_space_billing_instruction(
            make_instruction(space, from_=TO, to=feb_end), stores
        )

        assert january.ok.snapshot_size == GIB
        assert february.ok.snapshot_size == 2 * GIB
        assert february.ok.usage == 2 * GIB * period_ms(TO, feb_end)

    async def test_sub_millisecond_diff_counted_in_exactly_one_period(
        self, memory_store, stores
    ) -> None:
        space = random_space()
        boundary = FROM + timedelta(days=1)
        await seed(
            memory_store, space, 0, make_diff(space, 100, boundary + timedelta(microseconds=300))
        )

        first = await handle_space_billing_instruction(
            make_instruction(space, to=boundary), stores
        )
        second = await handle_space_billing_instruction(
            make_instruction(space, from_=boundary), stores
        )

        assert first.ok.diff_count == 0
        assert first.ok.snapshot_size == 0
        assert second.ok.diff_count == 1
        assert second.ok.snapshot_size == 100
        assert second.ok.usage == 100 * period_ms(boundary, TO)


class TestIdempotence:
    """Re-handling an instruction produces identical records."""

    async def test_handle_twice_same_records(self, memory_store, stores) -> None:
        space = random_space()
        customer = random_customer()
        await seed(
            memory_store,
            space,
            GIB,
            make_diff(space, GIB, FROM + timedelta(days=3)),
            make_diff(space, -GIB // 2, FROM + timedelta(days=9)),
        )
        instruction = make_instruction(space, customer=customer)

        first = await handle_space_billing_instruction(instruction, stores, now=fixed_clock)
        usage_after_first = dict(memory_store.usage)
        snapshots_after_first = dict(memory_store.snapshots)
        second = await handle_space_billing_instruction(instruction, stores, now=fixed_clock)

        assert first.ok == second.ok
        assert memory_store.usage == usage_after_first
        assert memory_store.snapshots == snapshots_after_first
        assert len(await memory_store.list_usage(customer, FROM)) == 1

    async def test_redelivery_with_new_clock_keeps_values(self, memory_store, stores) -> None:
        space = random_space()
        await seed(memory_store, space, GIB)
        instruction = make_instruction(space)

        first = await handle_space_billing_instruction(instruction, stores)
        second = await handle_space_billing_instruction(
            instruction, stores, now=lambda: datetime(2030, 1, 1, tzinfo=UTC)
        )

        assert first.ok.usage == second.ok.usage
        assert first.ok.snapshot_size == second.ok.snapshot_size
        assert len(memory_store.usage) == 1

    async def test_duplicate_diff_write_counted_once(self, memory_store, stores) -> None:
        space = random_space()
        diff = make_diff(space, GIB, FROM)
        await seed(memory_store, space, 0, diff, diff)

        result = await handle_space_billing_instruction(make_instruction(space), stores)

        assert result.ok.snapshot_size == GIB
        assert result.ok.diff_count == 1


class TestBillingErrors:
    """Errors are returned as values."""

    async def test_missing_snapshot(self, memory_store, stores) -> None:
        space = random_space()
        await memory_store.put_space_diff(make_diff(space, GIB, FROM))

        result = await handle_space_billing_instruction(make_instruction(space), stores)

        assert result.ok is None
        assert isinstance(result.error, MissingSnapshotError)
        assert result.error.code == "missing_snapshot"
        assert result.error.remediation == "backfill"
        assert not result.retryable
        assert memory_store.writes == []

    async def test_snapshot_at_other_time_is_missing(self, memory_store, stores) -> None:
        space = random_space()
        await memory_store.put_space_snapshot(make_snapshot(space, 0, FROM - timedelta(days=1)))

        result = await handle_space_billing_instruction(make_instruction(space), stores)

        assert isinstance(result.error, MissingSnapshotError)

    async def test_negative_size_writes_nothing(self, memory_store, stores) -> None:
        space = random_space()
        await seed(memory_store, space, GIB, make_diff(space, -2 * GIB, FROM + timedelta(days=1)))

        result = await handle_space_billing_instruction(make_instruction(space), stores)

        assert isinstance(result.error, NegativeSizeError)
        assert result.error.end_size == -GIB
        assert result.error.start_size == GIB
        assert result.error.remediation == "ledger_audit"
        assert not result.retryable
        assert memory_store.writes == []
        assert memory_store.usage == {}

    @pytest.mark.parametrize(
        "changes",
        [
            {"to": FROM},
            {"to": FROM - timedelta(hours=1)},
            {"space": ""},
            {"space": "did:key:has space"},
            {"provider": "did:web:a#b"},
            {"from_": datetime(2024, 1, 1)},
            {"to": FROM + timedelta(microseconds=500)},
            {"to": TO + timedelta(microseconds=300)},
        ],
    )
    async def test_invalid_instruction_rejected_before_io(
        self, memory_store, stores, changes
    ) -> None:
        space = random_space()
        await seed(memory_store, space, 0)
        instruction = replace(make_instruction(space), **changes)

        result = await handle_space_billing_instruction(instruction, stores)

        assert isinstance(result.error, InvalidInstructionError)
        assert result.error.code == "invalid_instruction"
        assert not result.retryable
        assert memory_store.writes == []

    @pytest.mark.parametrize("operation", ["get_space_snapshot", "list_space_diffs"])
    async def test_read_failure_is_retryable(self, operation) -> None:
        store = FailingStore()
        space = random_space()
        await seed(store, space, GIB)
        store.fail_on.add(operation)

        result = await handle_space_billing_instruction(
            make_instruction(space), BillingStores.from_repository(store)
        )

        assert isinstance(result.error, StorageFailure)
        assert result.retryable
        assert result.error.operation == operation
        assert result.error.space == space
        assert store.writes == []

    @pytest.mark.parametrize("operation", ["put_usage", "put_space_snapshot"])
    async def test_partial_write_then_retry_converges(self, operation) -> None:
        """A failed write is safe to retry: the retry overwrites identically."""
        store = FailingStore()
        stores = BillingStores.from_repository(store)
        space = random_space()
        await seed(store, space, GIB, make_diff(space, GIB, FROM + timedelta(days=2)))
        store.fail_on.add(operation)
        instruction = make_instruction(space)

        failed = await handle_space_billing_instruction(instruction, stores, now=fixed_clock)
        retried = await handle_space_billing_instruction(instruction, stores, now=fixed_clock)

        assert isinstance(failed.error, StorageFailure)
        assert retried.ok is not None
        assert len(store.usage) == 1
        assert store.snapshots[(PROVIDER, space, TO)].size == 2 * GIB

    async def test_errors_are_logged_with_code(self, memory_store, stores, caplog) -> None:
        with caplog.at_level(logging.ERROR, logger="space_billing.billing"):
            await handle_space_billing_instruction(make_instruction(random_space()), stores)

        assert "missing_snapshot" in caplog.text


class TestBillingResult:
    """Tests for BillingResult."""

    def test_requires_exactly_one(self) -> None:
        with pytest.raises(ValueError, match="exactly one"):
            BillingResult()

    def test_error_result_retryable(self) -> None:
        result = BillingResult(error=StorageFailure("boom"))
        assert result.retryable
