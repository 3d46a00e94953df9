"""Core models for space-billing."""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from .exceptions import InvalidIdentifierError

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
ONE_MS = timedelta(milliseconds=1)

GIB = 1024**3
TIB = 1024**4

# Identifier validation: no whitespace/control characters and no "#",
# which is the key delimiter in the DynamoDB schema.
IDENTIFIER_PATTERN = re.compile(r"^[^\s#\x00-\x1f\x7f]+$")
IDENTIFIER_MAX_LENGTH = 256


def validate_identifier(value: str, field_name: str) -> None:
    """
    Validate an identifier used as part of a storage key.

    Accepts DIDs (``did:key:z6Mk...``), URIs (``stripe:cus_123``) and CIDs.

    Raises:
        InvalidIdentifierError: If the identifier is empty, too long, or
            contains whitespace, control characters or ``#``
    """
    if not isinstance(value, str) or not value:
        raise InvalidIdentifierError(field_name, str(value), "Must be a non-empty string")
    if len(value) > IDENTIFIER_MAX_LENGTH:
        raise InvalidIdentifierError(
            field_name,
            value,
            f"Exceeds {IDENTIFIER_MAX_LENGTH} character limit",
        )
    if "#" in value:
        raise InvalidIdentifierError(field_name, value, "Contains reserved character '#'")
    if not IDENTIFIER_PATTERN.match(value):
        raise InvalidIdentifierError(
            field_name,
            value,
            "Contains whitespace or control characters",
        )


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def to_epoch_ms(dt: datetime) -> int:
    """Exact epoch milliseconds for a timezone-aware datetime."""
    if dt.tzinfo is None:
        raise ValueError(f"datetime must be timezone-aware: {dt!r}")
    return (dt - EPOCH) // ONE_MS


def from_epoch_ms(ms: int) -> datetime:
    """UTC datetime for epoch milliseconds."""
    return EPOCH + timedelta(milliseconds=ms)


def format_timestamp(dt: datetime) -> str:
    """
    Format as fixed-width ISO-8601 UTC with millisecond precision.

    Fixed width keeps lexicographic order equal to time order, which the
    sort keys rely on. Sub-millisecond precision is truncated.
    """
    if dt.tzinfo is None:
        raise ValueError(f"datetime must be timezone-aware: {dt!r}")
    utc = dt.astimezone(UTC)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp. Naive values are rejected."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        raise ValueError(f"timestamp must include a UTC offset: {value!r}")
    return dt.astimezone(UTC)


def utc_now() -> datetime:
    """Current time in UTC, truncated to milliseconds."""
    return from_epoch_ms(to_epoch_ms(datetime.now(UTC)))


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SpaceDiff:
    """
    A signed change in the size of a space.

    Diffs are immutable and append-only. ``receipt_at`` is the effective
    time of the change; ``cause`` identifies the event that produced it
    and is part of the storage key, so re-writing a diff is a no-op.

    Attributes:
        provider: Storage provider DID
        space: Space DID
        customer: Customer the space is provisioned to
        subscription: Subscription identifier
        cause: Content-addressed identifier of the producing event
        change: Signed byte delta (positive = growth)
        receipt_at: Effective time of the change
        inserted_at: Time the diff was written
    """

    provider: str
    space: str
    customer: str
    subscription: str
    cause: str
    change: int
    receipt_at: datetime
    inserted_at: datetime

    def __post_init__(self) -> None:
        if isinstance(self.change, bool) or not isinstance(self.change, int):
            raise ValueError("change must be an integer")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return {
            "provider": self.provider,
            "space": self.space,
            "customer": self.customer,
            "subscription": self.subscription,
            "cause": self.cause,
            "change": self.change,
            "receiptAt": format_timestamp(self.receipt_at),
            "insertedAt": format_timestamp(self.inserted_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SpaceDiff":
        """Deserialize from dictionary."""
        return cls(
            provider=data["provider"],
            space=data["space"],
            customer=data["customer"],
            subscription=data["subscription"],
            cause=data["cause"],
            change=int(data["change"]),
            receipt_at=parse_timestamp(data["receiptAt"]),
            inserted_at=parse_timestamp(data["insertedAt"]),
        )


@dataclass(frozen=True)
class SpaceSnapshot:
    """
    Total size of a space at exactly ``recorded_at``.

    One logical snapshot exists per (provider, space, recorded_at).
    """

    provider: str
    space: str
    size: int
    recorded_at: datetime
    inserted_at: datetime

    def __post_init__(self) -> None:
        if isinstance(self.size, bool) or not isinstance(self.size, int):
            raise ValueError("size must be an integer")
        if self.size < 0:
            raise ValueError("size must be non-negative")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return {
            "provider": self.provider,
            "space": self.space,
            "size": self.size,
            "recordedAt": format_timestamp(self.recorded_at),
            "insertedAt": format_timestamp(self.inserted_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SpaceSnapshot":
        """Deserialize from dictionary."""
        return cls(
            provider=data["provider"],
            space=data["space"],
            size=int(data["size"]),
            recorded_at=parse_timestamp(data["recordedAt"]),
            inserted_at=parse_timestamp(data["insertedAt"]),
        )


@dataclass(frozen=True)
class UsageRecord:
    """
    Byte-time usage of a space over ``[from_, to)``.

    ``usage`` is the integral of size over the period in byte-milliseconds.
    Upserted by (customer, provider, space, from_).
    """

    customer: str
    account: str
    product: str
    provider: str
    space: str
    usage: int
    from_: datetime
    to: datetime
    inserted_at: datetime

    def __post_init__(self) -> None:
        if isinstance(self.usage, bool) or not isinstance(self.usage, int):
            raise ValueError("usage must be an integer")
        if self.usage < 0:
            raise ValueError("usage must be non-negative")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return {
            "customer": self.customer,
            "account": self.account,
            "product": self.product,
            "provider": self.provider,
            "space": self.space,
            "usage": self.usage,
            "from": format_timestamp(self.from_),
            "to": format_timestamp(self.to),
            "insertedAt": format_timestamp(self.inserted_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UsageRecord":
        """Deserialize from dictionary."""
        return cls(
            customer=data["customer"],
            account=data["account"],
            product=data["product"],
            provider=data["provider"],
            space=data["space"],
            usage=int(data["usage"]),
            from_=parse_timestamp(data["from"]),
            to=parse_timestamp(data["to"]),
            inserted_at=parse_timestamp(data["insertedAt"]),
        )


@dataclass(frozen=True)
class BillingInstruction:
    """
    Compute usage for a space over the half-open interval ``[from_, to)``.

    Validation is deferred to :meth:`validate` so that malformed
    instructions can be reported as errors instead of crashing decoders.
    """

    customer: str
    account: str
    product: str
    provider: str
    space: str
    from_: datetime
    to: datetime

    def validate(self) -> None:
        """
        Validate identifiers and the period.

        Raises:
            InvalidIdentifierError: If an identifier is malformed
            ValueError: If timestamps are naive, finer than a millisecond, or
                ``from_ >= to``
        """
        for name in ("customer", "account", "product", "provider", "space"):
            validate_identifier(getattr(self, name), name)
        if not isinstance(self.from_, datetime) or not isinstance(self.to, datetime):
            raise ValueError("from and to must be datetimes")
        if self.from_.tzinfo is None or self.to.tzinfo is None:
            raise ValueError("from and to must be timezone-aware")
        # Periods are integrated in whole milliseconds
        for name, value in (("from", self.from_), ("to", self.to)):
            if (value - EPOCH) % ONE_MS:
                raise ValueError(f"{name} must be a whole millisecond: {value.isoformat()}")
        if self.from_ >= self.to:
            raise ValueError("from must be before to")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return {
            "customer": self.customer,
            "account": self.account,
            "product": self.product,
            "provider": self.provider,
            "space": self.space,
            "from": format_timestamp(self.from_),
            "to": format_timestamp(self.to),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BillingInstruction":
        """Deserialize from dictionary."""
        return cls(
            customer=data["customer"],
            account=data["account"],
            product=data["product"],
            provider=data["provider"],
            space=data["space"],
            from_=parse_timestamp(data["from"]),
            to=parse_timestamp(data["to"]),
        )


@dataclass(frozen=True)
class UsageResult:
    """
    Result of integrating a space's size over a period.

    Attributes:
        usage: Integral of size over the period (byte-milliseconds)
        end_size: Size at the end of the period
        min_size: Smallest size held over any part of the period
    """

    usage: int
    end_size: int
    min_size: int

    @property
    def consistent(self) -> bool:
        """False if the size went negative at any point."""
        return self.min_size >= 0


@dataclass
class BillingOutcome:
    """Records written for a successfully handled instruction."""

    usage_record: UsageRecord
    snapshot: SpaceSnapshot
    diff_count: int = 0

    @property
    def usage(self) -> int:
        return self.usage_record.usage

    @property
    def snapshot_size(self) -> int:
        return self.snapshot.size


@dataclass
class UsageSummary:
    """Usage records of a customer for one billing period, with totals."""

    customer: str
    from_: datetime
    records: list[UsageRecord] = field(default_factory=list)

    @property
    def total_usage(self) -> int:
        return sum(r.usage for r in self.records)

    @property
    def space_count(self) -> int:
        return len(self.records)
