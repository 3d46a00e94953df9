"""Tests for exception classes."""

import pytest
from botocore.exceptions import ClientError

from space_billing.exceptions import (
    BillingError,
    InvalidIdentifierError,
    InvalidInstructionError,
    InvalidNameError,
    MissingSnapshotError,
    NegativeSizeError,
    SpaceBillingError,
    StorageFailure,
    ValidationError,
)
from tests.fixtures.ledger import FROM, PROVIDER, TO


class TestHierarchy:
    """All library errors share a base class."""

    @pytest.mark.parametrize(
        "cls",
        [InvalidInstructionError, MissingSnapshotError, StorageFailure, NegativeSizeError],
    )
    def test_billing_errors(self, cls: type) -> None:
        assert issubclass(cls, BillingError)
        assert issubclass(cls, SpaceBillingError)

    @pytest.mark.parametrize("cls", [InvalidIdentifierError, InvalidNameError])
    def test_validation_errors(self, cls: type) -> None:
        assert issubclass(cls, ValidationError)
        assert issubclass(cls, SpaceBillingError)


class TestErrorCodes:
    """Codes and retry policy distinguish remediation paths."""

    def test_codes_are_distinct(self) -> None:
        codes = {
            InvalidInstructionError.code,
            MissingSnapshotError.code,
            StorageFailure.code,
            NegativeSizeError.code,
        }
        assert len(codes) == 4

    def test_only_storage_failure_retryable(self) -> None:
        assert StorageFailure.retryable
        assert not MissingSnapshotError.retryable
        assert not NegativeSizeError.retryable
        assert not InvalidInstructionError.retryable

    def test_remediation(self) -> None:
        assert MissingSnapshotError.remediation == "backfill"
        assert NegativeSizeError.remediation == "ledger_audit"
        assert StorageFailure.remediation is None


class TestMissingSnapshotError:
    """Tests for MissingSnapshotError."""

    def test_message_and_context(self) -> None:
        error = MissingSnapshotError(PROVIDER, "did:key:z6Mk1", FROM)

        assert error.recorded_at == FROM
        assert "Space snapshot not found" in str(error)
        assert "space=did:key:z6Mk1" in str(error)
        assert f"provider={PROVIDER}" in str(error)

    def test_as_dict(self) -> None:
        data = MissingSnapshotError(PROVIDER, "did:key:z6Mk1", FROM).as_dict()

        assert data["error"] == "missing_snapshot"
        assert data["retryable"] is False
        assert data["remediation"] == "backfill"
        assert data["from"] == FROM.isoformat()
        assert data["to"] is None


class TestStorageFailure:
    """Tests for StorageFailure."""

    def test_wraps_cause(self) -> None:
        cause = ClientError(
            {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow"}},
            "Query",
        )
        error = StorageFailure("read failed", cause, table_name="billing", operation="query")

        assert error.cause is cause
        assert "operation=query" in str(error)
        assert "table=billing" in str(error)
        assert error.as_dict()["table_name"] == "billing"
        assert error.as_dict()["operation"] == "query"

    def test_plain_message(self) -> None:
        assert str(StorageFailure("boom")) == "boom"


class TestNegativeSizeError:
    """Tests for NegativeSizeError."""

    def test_attributes(self) -> None:
        error = NegativeSizeError(
            PROVIDER, "did:key:z6Mk1", FROM, TO, start_size=10, end_size=-5, min_size=-7
        )

        assert (error.start_size, error.end_size, error.min_size) == (10, -5, -7)
        assert "end=-5" in str(error)
        data = error.as_dict()
        assert data["error"] == "negative_size"
        assert data["min_size"] == -7
        assert data["to"] == TO.isoformat()


class TestValidationError:
    """Tests for ValidationError."""

    def test_message(self) -> None:
        error = InvalidIdentifierError("space", "a#b", "Contains reserved character '#'")

        assert error.field == "space"
        assert error.value == "a#b"
        assert str(error) == "Invalid space 'a#b': Contains reserved character '#'"
