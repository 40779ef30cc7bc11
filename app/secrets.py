from __future__ import annotations

import base64
import os

from cryptography.fernet import Fernet, InvalidToken

_ENC_PREFIX = "enc:"


class SecretStoreError(RuntimeError):
    pass


def _fernet_from_key(key: str) -> Fernet:
    key = (key or "").strip()
    if not key:
        raise SecretStoreError("APP_SECRET_KEY is not set")
    try:
        # Accept a raw 32-char key as well as a urlsafe b64 Fernet key
        if len(key) == 32:
            key = base64.urlsafe_b64encode(key.encode("utf-8")).decode("utf-8")
        return Fernet(key.encode("utf-8"))
    except Exception as exc:
        raise SecretStoreError("Invalid APP_SECRET_KEY") from exc


class TokenCipher:
    """Encrypts provider tokens before they reach a workspace table."""

    def __init__(self, key: str) -> None:
        self._fernet = _fernet_from_key(key)

    def encrypt(self, value: str | None) -> str | None:
        if value is None or value == "":
            return value
        token = self._fernet.encrypt(value.encode("utf-8")).decode("utf-8")
        return f"{_ENC_PREFIX}{token}"

    def decrypt(self, value: str | None) -> str | None:
        if not isinstance(value, str) or not value.startswith(_ENC_PREFIX):
            return value
        try:
            return self._fernet.decrypt(value[len(_ENC_PREFIX):].encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise SecretStoreError("Invalid secret token") from exc


def cipher_from_env() -> TokenCipher | None:
    key = os.getenv("APP_SECRET_KEY", "").strip()
    if not key:
        return None
    return TokenCipher(key)
