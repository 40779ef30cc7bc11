"""JWT auth middleware for the CRM API."""

from __future__ import annotations

import logging
import os
import time
from typing import Optional

from jose import jwt
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from app.env import env_flag

logger = logging.getLogger("crm.auth")

_PUBLIC_PATHS = {"/health"}


def _get_bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.split(" ", 1)[1].strip() or None


def _auth_error(code: str, message: str, detail: dict | None = None) -> JSONResponse:
    return JSONResponse(
        {
            "ok": False,
            "errors": [{"code": code, "message": message, "path": "Authorization", "detail": detail}],
            "warnings": [],
        },
        status_code=401,
    )


def verify_access_token(token: str, secret: str, audience: Optional[str] = None) -> dict:
    options = {"verify_aud": audience is not None}
    return jwt.decode(token, secret, algorithms=["HS256"], audience=audience, options=options)


class JwtAuthMiddleware(BaseHTTPMiddleware):
    """Attaches ``request.state.user`` from an HS256 access token.

    Tokens carry the user id in ``sub`` and the active workspace in
    ``workspaceId``.
    """

    def __init__(self, app, secret: str, audience: Optional[str] = None) -> None:
        super().__init__(app)
        self._secret = secret
        self._audience = audience

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        if env_flag("CRM_DISABLE_AUTH"):
            return await call_next(request)
        if request.method == "OPTIONS" or request.url.path in _PUBLIC_PATHS:
            return await call_next(request)

        token = _get_bearer_token(request)
        if not token:
            logger.warning("auth_missing_token path=%s", request.url.path)
            return _auth_error("AUTH_MISSING_TOKEN", "Missing bearer token")
        if not self._secret:
            logger.error("auth_secret_missing path=%s", request.url.path)
            return _auth_error("AUTH_NOT_CONFIGURED", "Authentication is not configured")

        try:
            claims = verify_access_token(token, self._secret, self._audience)
        except Exception as exc:
            logger.warning("auth_invalid_token path=%s error=%s", request.url.path, exc)
            return _auth_error("AUTH_INVALID_TOKEN", "Invalid bearer token", {"error": str(exc)})

        request.state.user = {
            "id": claims.get("sub"),
            "email": claims.get("email"),
            "workspace_id": claims.get("workspaceId"),
            "role": claims.get("role"),
            "claims": claims,
        }
        request.state.auth_ms = (time.perf_counter() - start) * 1000
        return await call_next(request)


def auth_secret_from_env() -> str:
    return os.getenv("CRM_JWT_SECRET", "").strip()
