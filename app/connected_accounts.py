"""Connected email accounts stored in each workspace schema."""

from __future__ import annotations

from typing import Any

from tenantkit.sync_cursor import EMPTY_CURSOR, normalize_cursor

from app.secrets import TokenCipher
from app.tenancy import NotFoundError

CONNECTED_ACCOUNT_COLUMNS = (
    "id",
    "provider",
    "handle",
    "access_token",
    "refresh_token",
    "last_sync_history_id",
    "account_owner_id",
    "created_at",
    "updated_at",
)
SECRET_COLUMNS = ("access_token", "refresh_token")
DEFAULT_PROVIDER = "google"


class ConnectedAccountNotFound(NotFoundError):
    def __init__(self, account_id: str) -> None:
        super().__init__("No connected account found")
        self.account_id = account_id


def encode_secrets(values: dict, cipher: TokenCipher | None) -> dict:
    if cipher is None:
        return dict(values)
    encoded = dict(values)
    for key in SECRET_COLUMNS:
        if key in encoded:
            encoded[key] = cipher.encrypt(encoded[key])
    return encoded


def decode_row(row: dict, cipher: TokenCipher | None) -> dict:
    account = {key: row.get(key) for key in CONNECTED_ACCOUNT_COLUMNS if key in row}
    if account.get("last_sync_history_id") is None:
        account["last_sync_history_id"] = EMPTY_CURSOR
    if cipher is not None:
        for key in SECRET_COLUMNS:
            if key in account:
                account[key] = cipher.decrypt(account[key])
    return account


def public_view(account: dict) -> dict:
    """Account without its secrets, safe to return over HTTP."""
    return {key: value for key, value in account.items() if key not in SECRET_COLUMNS}


def prepare_new_account(values: dict) -> dict:
    provider = values.get("provider") or DEFAULT_PROVIDER
    handle = values.get("handle")
    if not isinstance(handle, str) or not handle.strip():
        raise ValueError("handle is required")
    cursor = values.get("last_sync_history_id")
    return {
        "id": values.get("id"),
        "provider": provider,
        "handle": handle.strip().lower(),
        "access_token": values.get("access_token") or "",
        "refresh_token": values.get("refresh_token") or "",
        "last_sync_history_id": EMPTY_CURSOR if cursor in (None, EMPTY_CURSOR) else normalize_cursor(cursor),
        "account_owner_id": values.get("account_owner_id"),
    }


def dedupe_ids(ids: Any) -> list[str]:
    if ids is None:
        return []
    seen: list[str] = []
    for value in ids:
        if value is None:
            continue
        text = str(value)
        if text not in seen:
            seen.append(text)
    return seen
