"""Ordering rules for provider sync cursors (history ids)."""

from __future__ import annotations

import re
from typing import Any, Iterable

EMPTY_CURSOR = ""
_DIGITS_RE = re.compile(r"^[0-9]+$")


def normalize_cursor(value: Any) -> str:
    """Return the canonical text form of a history id.

    History ids are unbounded decimal integers. Leading zeros are dropped so
    that comparing (length, text) is the same as comparing the numbers.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Invalid sync cursor: {value!r}")
    text = str(value).strip()
    if not _DIGITS_RE.match(text):
        raise ValueError(f"Invalid sync cursor: {value!r}")
    return text.lstrip("0") or "0"


def is_unset_cursor(value: Any) -> bool:
    return value is None or value == EMPTY_CURSOR


def cursor_is_newer(new_cursor: Any, stored_cursor: Any) -> bool:
    new_value = normalize_cursor(new_cursor)
    if is_unset_cursor(stored_cursor):
        return True
    stored_value = normalize_cursor(stored_cursor)
    return (len(new_value), new_value) > (len(stored_value), stored_value)


def max_cursor(cursors: Iterable[Any]) -> str:
    best = EMPTY_CURSOR
    for cursor in cursors:
        if is_unset_cursor(cursor):
            continue
        if cursor_is_newer(cursor, best):
            best = normalize_cursor(cursor)
    return best
