"""Table naming utilities.

Centralized validation and resolution for the DynamoDB table name.
DynamoDB table names:
- Letters, digits, underscores, hyphens and periods only
- Between 3 and 255 characters
"""

import os
import re

from .exceptions import InvalidNameError
from .schema import DEFAULT_TABLE_NAME

TABLE_ENV_VAR = "SPACE_BILLING_TABLE"
"""Environment variable for overriding the default table name."""

NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def validate_table_name(name: str) -> None:
    """
    Validate a DynamoDB table name.

    Args:
        name: The user-provided table name

    Raises:
        InvalidNameError: If the name is invalid
    """
    if not name:
        raise InvalidNameError("table_name", name, "Name cannot be empty")

    if " " in name:
        raise InvalidNameError(
            "table_name",
            name,
            "Contains spaces. Use hyphens instead (e.g., 'space-billing' not 'space billing')",
        )

    if not NAME_PATTERN.match(name):
        raise InvalidNameError(
            "table_name",
            name,
            "Only letters, digits, underscores, hyphens and periods are allowed.",
        )

    if not 3 <= len(name) <= 255:
        raise InvalidNameError(
            "table_name",
            name,
            "Must be between 3 and 255 characters long.",
        )


def resolve_table_name(table_name: str | None) -> str:
    """Resolve table name from explicit arg, env var, or default.

    Resolution order: ``table_name`` arg -> ``SPACE_BILLING_TABLE`` env var
    -> ``"space-billing"``.

    Returns:
        Validated table name.
    """
    name = table_name or os.environ.get(TABLE_ENV_VAR) or DEFAULT_TABLE_NAME
    validate_table_name(name)
    return name
