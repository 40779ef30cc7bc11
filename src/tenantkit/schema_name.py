"""Workspace id to schema name mapping."""

from __future__ import annotations

import re
import uuid
from typing import Any

SCHEMA_PREFIX = "workspace_"
_IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")
_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def workspace_schema_name(workspace_id: Any) -> str:
    """Return the schema owning a workspace's records.

    The name is ``workspace_`` followed by the workspace UUID read as a
    128-bit integer and written in base 36, so two distinct workspaces can
    never share a schema.
    """
    if not isinstance(workspace_id, (str, uuid.UUID)):
        raise ValueError(f"Invalid workspace id: {workspace_id!r}")
    try:
        parsed = workspace_id if isinstance(workspace_id, uuid.UUID) else uuid.UUID(workspace_id.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid workspace id: {workspace_id!r}") from exc
    return f"{SCHEMA_PREFIX}{_to_base36(parsed.int)}"


def is_safe_identifier(value: Any) -> bool:
    return isinstance(value, str) and bool(_IDENTIFIER_RE.match(value))


def quote_identifier(value: str) -> str:
    if not is_safe_identifier(value):
        raise ValueError(f"Unsafe SQL identifier: {value!r}")
    return f'"{value}"'
