"""Tenant kernel utilities."""

from .schema_name import is_safe_identifier, quote_identifier, workspace_schema_name
from .sync_cursor import EMPTY_CURSOR, cursor_is_newer, is_unset_cursor, max_cursor, normalize_cursor

__all__ = [
    "EMPTY_CURSOR",
    "cursor_is_newer",
    "is_safe_identifier",
    "is_unset_cursor",
    "max_cursor",
    "normalize_cursor",
    "quote_identifier",
    "workspace_schema_name",
]
