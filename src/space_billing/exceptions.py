"""Exceptions for space-billing."""

from datetime import datetime
from typing import Any

# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------


class SpaceBillingError(Exception):
    """
    Base exception for all space-billing errors.

    All exceptions raised by this library inherit from this class,
    allowing callers to catch all library-specific errors with a single
    except clause.
    """

    pass


# ---------------------------------------------------------------------------
# Category Exceptions
# ---------------------------------------------------------------------------


class ValidationError(SpaceBillingError):
    """
    Raised when a user-provided value fails validation.

    Attributes:
        field: Name of the field that failed validation
        value: The rejected value
        reason: Human-readable explanation
    """

    def __init__(self, field: str, value: str, reason: str) -> None:
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


class BillingError(SpaceBillingError):
    """
    Base exception for errors produced while handling a billing instruction.

    Billing errors are returned as values from the instruction handler
    rather than raised, so the queue consumer can choose between retry and
    dead-letter per error kind.

    Attributes:
        code: Stable machine-readable error code (used in logs and alerts)
        retryable: True if re-running the instruction may succeed
        remediation: Operator action required for non-retryable errors
    """

    code = "billing_error"
    retryable = False
    remediation: str | None = None

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        space: str | None = None,
        from_: datetime | None = None,
        to: datetime | None = None,
    ) -> None:
        self.provider = provider
        self.space = space
        self.from_ = from_
        self.to = to
        super().__init__(self._format_message(message))

    def _format_message(self, message: str) -> str:
        context = []
        if self.provider:
            context.append(f"provider={self.provider}")
        if self.space:
            context.append(f"space={self.space}")
        if self.from_:
            context.append(f"from={self.from_.isoformat()}")
        if self.to:
            context.append(f"to={self.to.isoformat()}")
        if context:
            return f"{message} [{', '.join(context)}]"
        return message

    def as_dict(self) -> dict[str, Any]:
        """Serialize for structured logs and dead-letter payloads."""
        return {
            "error": self.code,
            "message": str(self),
            "retryable": self.retryable,
            "remediation": self.remediation,
            "provider": self.provider,
            "space": self.space,
            "from": self.from_.isoformat() if self.from_ else None,
            "to": self.to.isoformat() if self.to else None,
        }


# ---------------------------------------------------------------------------
# Validation Exceptions
# ---------------------------------------------------------------------------


class InvalidIdentifierError(ValidationError):
    """Raised when an identifier (space, provider, customer...) is malformed."""

    pass


class InvalidNameError(ValidationError):
    """Raised when a table name is not a valid DynamoDB table name."""

    pass


# ---------------------------------------------------------------------------
# Billing Exceptions
# ---------------------------------------------------------------------------


class InvalidInstructionError(BillingError):
    """
    Raised when a billing instruction is rejected before any I/O.

    Covers ``from >= to``, naive timestamps, malformed identifiers and
    undecodable queue messages.
    """

    code = "invalid_instruction"


class MissingSnapshotError(BillingError):
    """
    Raised when the snapshot at the start of the period does not exist.

    Signals a gap in the instruction sequence: the period ending at
    ``from`` was never billed. Retrying without a backfill reproduces it.
    """

    code = "missing_snapshot"
    remediation = "backfill"

    def __init__(
        self,
        provider: str,
        space: str,
        recorded_at: datetime,
    ) -> None:
        self.recorded_at = recorded_at
        super().__init__(
            "Space snapshot not found",
            provider=provider,
            space=space,
            from_=recorded_at,
        )


class StorageFailure(BillingError):  # noqa: N818
    """
    Raised when a collaborator store fails to read or write.

    Transient by assumption: every write is an idempotent upsert, so the
    whole instruction is safe to retry.

    Attributes:
        cause: The underlying exception
        table_name: The table that was being accessed
        operation: The store operation that failed
    """

    code = "storage_failure"
    retryable = True

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        *,
        table_name: str | None = None,
        operation: str | None = None,
        provider: str | None = None,
        space: str | None = None,
    ) -> None:
        self.cause = cause
        self.table_name = table_name
        self.operation = operation
        details = []
        if operation:
            details.append(f"operation={operation}")
        if table_name:
            details.append(f"table={table_name}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message, provider=provider, space=space)

    def as_dict(self) -> dict[str, Any]:
        data = super().as_dict()
        data["table_name"] = self.table_name
        data["operation"] = self.operation
        return data


class NegativeSizeError(BillingError):
    """
    Raised when integrating the ledger drives the space size below zero.

    The diffs overshoot the snapshot, which means the ledger is
    inconsistent. Retrying reproduces it; the ledger must be audited.

    Attributes:
        start_size: Snapshot size at the start of the period
        end_size: Computed size at the end of the period
        min_size: Smallest size held over the period
    """

    code = "negative_size"
    remediation = "ledger_audit"

    def __init__(
        self,
        provider: str,
        space: str,
        from_: datetime,
        to: datetime,
        *,
        start_size: int,
        end_size: int,
        min_size: int,
    ) -> None:
        self.start_size = start_size
        self.end_size = end_size
        self.min_size = min_size
        super().__init__(
            f"Space size went negative (start={start_size}, end={end_size}, min={min_size})",
            provider=provider,
            space=space,
            from_=from_,
            to=to,
        )

    def as_dict(self) -> dict[str, Any]:
        data = super().as_dict()
        data["start_size"] = self.start_size
        data["end_size"] = self.end_size
        data["min_size"] = self.min_size
        return data
