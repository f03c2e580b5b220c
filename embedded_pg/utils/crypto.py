"""Random identifiers for databases and scratch files."""

import secrets
import string


def random_id(length: int = 16) -> str:
    """Generate a cryptographically secure random ID."""
    if length <= 0:
        raise ValueError("Length must be positive")
    alphabet = string.ascii_letters + string.digits + "-_"
    return "".join((secrets.choice(alphabet) for _ in range(length)))


def random_database_name(length: int = 12) -> str:
    """Random lowercase alphabetic name, safe as an unquoted SQL identifier."""
    if length <= 0:
        raise ValueError("Length must be positive")
    return "".join((secrets.choice(string.ascii_lowercase) for _ in range(length)))
