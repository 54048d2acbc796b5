"""Shared utility functions for the quack engine layer."""

from __future__ import annotations

import re
import secrets
from typing import Any

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Tables with this prefix belong to the metadata store, never to users.
SYSTEM_PREFIX = "_"


def validate_identifier(value: str, label: str = "identifier") -> str:
    """Validate that a value is a safe SQL identifier.

    Only allows alphanumeric characters and underscores, starting with a letter
    or underscore. Raises ValueError if the identifier is unsafe.
    """
    if not _IDENTIFIER_RE.match(value):
        raise ValueError(f"Invalid {label}: {value!r} (must match [A-Za-z_][A-Za-z0-9_]*)")
    return value


def quote_identifier(name: str) -> str:
    """Double-quote an identifier for DuckDB, escaping embedded quotes."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Single-quote a string literal (ATTACH does not accept parameters)."""
    return "'" + value.replace("'", "''") + "'"


def is_system_table(name: str) -> bool:
    return name.startswith(SYSTEM_PREFIX)


def sanitize_table_name(name: str) -> str:
    """Turn an arbitrary string (e.g. a CSV filename) into a usable table name.

    Names that would not start with a letter get a ``t_`` prefix, so the
    result is never a reserved metadata name: ``2024 sales`` -> ``t_2024_sales``.
    """
    cleaned = re.sub(r"[^A-Za-z0-9_]", "_", name)
    if not cleaned[:1].isalpha():
        cleaned = "t" + cleaned if cleaned.startswith("_") else "t_" + cleaned
    return cleaned


def generate_id() -> str:
    """Generate a 16-character random hex identifier."""
    return secrets.token_hex(8)


def serialize_value(value: Any) -> Any:
    """Make values JSON-serializable."""
    if value is None:
        return None
    if isinstance(value, (int, float, str, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
