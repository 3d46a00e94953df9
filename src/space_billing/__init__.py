"""
space-billing: Storage usage metering for billing, backed by DynamoDB.

Computes the exact time-weighted byte usage of a storage space over a
billing period from a ledger of size changes (diffs) and periodic size
checkpoints (snapshots), and advances the snapshot to the end of the
period. Handling is idempotent, so instructions delivered more than once
produce identical records.

Example:
    from space_billing import (
        BillingInstruction,
        BillingStores,
        Repository,
        handle_space_billing_instruction,
    )

    async with Repository(table_name="space-billing", region="us-west-2") as repo:
        result = await handle_space_billing_instruction(
            BillingInstruction(
                customer="did:mailto:example.com:alice",
                account="stripe:cus_123",
                product="did:web:lite.web3.storage",
                provider="did:web:web3.storage",
                space="did:key:z6MkSpace",
                from_=from_,
                to=to,
            ),
            BillingStores.from_repository(repo),
        )
        if result.error:
            ...
"""

from .billing import BillingResult, handle_space_billing_instruction
from .exceptions import (
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
from .models import (
    GIB,
    TIB,
    BillingInstruction,
    BillingOutcome,
    SpaceDiff,
    SpaceSnapshot,
    UsageRecord,
    UsageResult,
    UsageSummary,
)
from .repository import Repository
from .repository_protocol import BillingStores, SpaceDiffStore, SpaceSnapshotStore, UsageStore
from .usage import calculate_usage, sort_diffs

__all__ = [
    # Handler
    "handle_space_billing_instruction",
    "BillingResult",
    "BillingOutcome",
    # Integrator
    "calculate_usage",
    "sort_diffs",
    "UsageResult",
    # Models
    "BillingInstruction",
    "SpaceDiff",
    "SpaceSnapshot",
    "UsageRecord",
    "UsageSummary",
    "GIB",
    "TIB",
    # Stores
    "Repository",
    "BillingStores",
    "SpaceDiffStore",
    "SpaceSnapshotStore",
    "UsageStore",
    # Exceptions
    "SpaceBillingError",
    "ValidationError",
    "InvalidIdentifierError",
    "InvalidNameError",
    "BillingError",
    "InvalidInstructionError",
    "MissingSnapshotError",
    "StorageFailure",
    "NegativeSizeError",
]
