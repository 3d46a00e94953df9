"""Store protocols for space billing backends.

The instruction handler depends only on these protocols. They use
Python's typing.Protocol with @runtime_checkable, enabling duck typing and
isinstance() checks at runtime, so any backend (DynamoDB, in-memory, ...)
can be injected without inheritance.

Every operation signals failure by raising StorageFailure.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from .models import SpaceDiff, SpaceSnapshot, UsageRecord


@runtime_checkable
class SpaceDiffStore(Protocol):
    """Append-only ledger of space size changes."""

    async def put_space_diff(self, diff: SpaceDiff) -> None:
        """
        Record a diff.

        Keyed by (provider, space, receipt_at, cause); writing the same
        diff twice leaves a single record.
        """
        ...

    async def list_space_diffs(
        self,
        provider: str,
        space: str,
        from_: datetime,
        to: datetime,
    ) -> list[SpaceDiff]:
        """
        List every diff with ``from_ <= receipt_at < to``.

        The result must be complete (all pages read) and ordered by
        ``receipt_at``.
        """
        ...


@runtime_checkable
class SpaceSnapshotStore(Protocol):
    """Point-in-time space sizes."""

    async def get_space_snapshot(
        self,
        provider: str,
        space: str,
        recorded_at: datetime,
    ) -> SpaceSnapshot | None:
        """Get the snapshot recorded at exactly ``recorded_at``, if any."""
        ...

    async def put_space_snapshot(self, snapshot: SpaceSnapshot) -> None:
        """Upsert a snapshot keyed by (provider, space, recorded_at)."""
        ...


@runtime_checkable
class UsageStore(Protocol):
    """Computed usage per customer, space and period."""

    async def put_usage(self, record: UsageRecord) -> None:
        """Upsert a usage record keyed by (customer, provider, space, from_)."""
        ...

    async def list_usage(self, customer: str, from_: datetime) -> list[UsageRecord]:
        """List a customer's usage records for the period starting at ``from_``."""
        ...


@dataclass(frozen=True)
class BillingStores:
    """
    Store handles injected into the instruction handler.

    Example:
        async with Repository(table_name="space-billing") as repo:
            stores = BillingStores.from_repository(repo)
            result = await handle_space_billing_instruction(instruction, stores)
    """

    space_diff_store: SpaceDiffStore
    space_snapshot_store: SpaceSnapshotStore
    usage_store: UsageStore

    @classmethod
    def from_repository(cls, repository: Any) -> "BillingStores":
        """Use a single backend implementing all three store protocols."""
        for protocol in (SpaceDiffStore, SpaceSnapshotStore, UsageStore):
            if not isinstance(repository, protocol):
                raise TypeError(
                    f"{type(repository).__name__} does not implement {protocol.__name__}"
                )
        return cls(
            space_diff_store=repository,
            space_snapshot_store=repository,
            usage_store=repository,
        )
