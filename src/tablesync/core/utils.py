"""
Core Utilities - Shared helper functions for tablesync.
"""

import re
from typing import List


_IDENTIFIER_PATTERN = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_]*$')


def is_valid_identifier(name: str) -> bool:
    """
    Validate that a name is a safe SQL identifier.

    Uses a strict whitelist approach to prevent SQL injection:
    - Must start with a letter or underscore
    - Can only contain letters, digits, and underscores
    - Maximum length of 128 characters (SQL Server limit)

    Args:
        name: The identifier to validate

    Returns:
        True if valid, False otherwise

    Example:
        >>> is_valid_identifier("Employee")
        True
        >>> is_valid_identifier("Employee; DROP TABLE x")
        False
    """
    if not name or len(name) > 128:
        return False
    return bool(_IDENTIFIER_PATTERN.match(name))


def split_qualified_name(name: str) -> List[str]:
    """
    Split a dotted object name ('dbo.Employee') into its parts.

    Raises:
        ValueError: If any part is not a valid identifier
    """
    parts = name.split(".")
    for part in parts:
        if not is_valid_identifier(part):
            raise ValueError(f"Invalid SQL identifier: {name!r}")
    return parts
