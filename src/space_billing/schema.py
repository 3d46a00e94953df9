"""DynamoDB schema definitions and key builders."""

from datetime import datetime
from typing import Any

from .models import format_timestamp

# Table name
DEFAULT_TABLE_NAME = "space-billing"

# Partition key prefixes
SPACE_PREFIX = "SPACE#"
CUSTOMER_PREFIX = "CUSTOMER#"

# Sort key prefixes
SK_DIFF = "#DIFF#"
SK_SNAPSHOT = "#SNAPSHOT#"
SK_USAGE = "#USAGE#"

# Record types (stored in the "type" attribute)
TYPE_DIFF = "diff"
TYPE_SNAPSHOT = "snapshot"
TYPE_USAGE = "usage"


def pk_space(provider: str, space: str) -> str:
    """Build partition key for a space's diffs and snapshots."""
    return f"{SPACE_PREFIX}{provider}#{space}"


def pk_customer(customer: str) -> str:
    """Build partition key for a customer's usage records."""
    return f"{CUSTOMER_PREFIX}{customer}"


def sk_diff(receipt_at: datetime, cause: str) -> str:
    """Build sort key for a diff."""
    return f"{SK_DIFF}{format_timestamp(receipt_at)}#{cause}"


def sk_diff_bound(at: datetime) -> str:
    """
    Build a sort key bound for diff range queries.

    Sorts before every diff at ``at`` and after every diff before ``at``,
    so ``BETWEEN bound(from) AND bound(to)`` selects ``[from, to)``.
    """
    return f"{SK_DIFF}{format_timestamp(at)}"


def sk_snapshot(recorded_at: datetime) -> str:
    """Build sort key for a snapshot."""
    return f"{SK_SNAPSHOT}{format_timestamp(recorded_at)}"


def sk_usage(from_: datetime, provider: str, space: str) -> str:
    """Build sort key for a usage record."""
    return f"{SK_USAGE}{format_timestamp(from_)}#{provider}#{space}"


def sk_usage_prefix(from_: datetime) -> str:
    """Build sort key prefix for querying usage records by period start."""
    return f"{SK_USAGE}{format_timestamp(from_)}#"



def get_table_definition(table_name: str) -> dict[str, Any]:
    """
    Get the DynamoDB table definition for CreateTable.

    Returns a dictionary suitable for boto3 create_table().
    """
    return {
        "TableName": table_name,
        "BillingMode": "PAY_PER_REQUEST",
        "AttributeDefinitions": [
            {"AttributeName": "PK", "AttributeType": "S"},
            {"AttributeName": "SK", "AttributeType": "S"},
        ],
        "KeySchema": [
            {"AttributeName": "PK", "KeyType": "HASH"},
            {"AttributeName": "SK", "KeyType": "RANGE"},
        ],
    }
