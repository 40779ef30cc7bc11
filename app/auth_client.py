"""GraphQL auth API client used by the sign-in / sign-up flow."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger("crm.auth")

CHECK_USER_EXISTS = """
query CheckUserExists($email: String!) {
  checkUserExists(email: $email) {
    exists
  }
}
"""

CHALLENGE = """
mutation Challenge($email: String!, $password: String!) {
  challenge(email: $email, password: $password) {
    loginToken { token expiresAt }
  }
}
"""

SIGN_UP = """
mutation SignUp($email: String!, $password: String!, $workspaceInviteHash: String) {
  signUp(email: $email, password: $password, workspaceInviteHash: $workspaceInviteHash) {
    loginToken { token expiresAt }
  }
}
"""

VERIFY = """
mutation Verify($loginToken: String!) {
  verify(loginToken: $loginToken) {
    user {
      id
      email
      defaultWorkspace { id displayName }
      workspaceMember { id name { firstName lastName } }
    }
    tokens {
      accessToken { token expiresAt }
      refreshToken { token expiresAt }
    }
  }
}
"""


class AuthClientError(RuntimeError):
    pass


@dataclass
class SignInUpResult:
    workspace: Dict[str, Any]
    workspace_member: Optional[Dict[str, Any]]
    tokens: Dict[str, Any] = field(default_factory=dict)


class HttpAuthClient:
    def __init__(self, base_url: str, timeout: float = 10.0, transport: httpx.BaseTransport | None = None) -> None:
        self._client = httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def _graphql(self, operation: str, query: str, variables: dict) -> dict:
        try:
            resp = self._client.post(
                "/graphql",
                json={"operationName": operation, "query": query, "variables": variables},
            )
        except httpx.HTTPError as exc:
            logger.warning("auth_request_failed operation=%s error=%s", operation, exc)
            raise AuthClientError("Authentication service unavailable") from exc
        try:
            payload = resp.json()
        except ValueError as exc:
            raise AuthClientError(f"Authentication service error (HTTP {resp.status_code})") from exc
        errors = payload.get("errors") if isinstance(payload, dict) else None
        if errors:
            message = (errors[0] or {}).get("message") or "Authentication failed"
            logger.info("auth_graphql_error operation=%s message=%s", operation, message)
            raise AuthClientError(message)
        if resp.status_code >= 400:
            raise AuthClientError(f"Authentication service error (HTTP {resp.status_code})")
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise AuthClientError("Malformed authentication response")
        return data

    def check_user_exists(self, email: str) -> bool:
        data = self._graphql("CheckUserExists", CHECK_USER_EXISTS, {"email": email})
        return bool((data.get("checkUserExists") or {}).get("exists"))

    def _verify(self, login_token: str) -> SignInUpResult:
        data = self._graphql("Verify", VERIFY, {"loginToken": login_token})
        verified = data.get("verify") or {}
        user = verified.get("user") or {}
        return SignInUpResult(
            workspace=user.get("defaultWorkspace") or {},
            workspace_member=user.get("workspaceMember"),
            tokens=verified.get("tokens") or {},
        )

    @staticmethod
    def _login_token(data: dict, key: str) -> str:
        token = ((data.get(key) or {}).get("loginToken") or {}).get("token")
        if not token:
            raise AuthClientError("No login token returned")
        return token

    def sign_in_with_credentials(self, email: str, password: str) -> SignInUpResult:
        data = self._graphql("Challenge", CHALLENGE, {"email": email, "password": password})
        return self._verify(self._login_token(data, "challenge"))

    def sign_up_with_credentials(self, email: str, password: str, workspace_invite_hash: str | None = None) -> SignInUpResult:
        data = self._graphql(
            "SignUp",
            SIGN_UP,
            {"email": email, "password": password, "workspaceInviteHash": workspace_invite_hash},
        )
        return self._verify(self._login_token(data, "signUp"))


def auth_client_from_env() -> HttpAuthClient:
    base_url = os.getenv("CRM_AUTH_API_URL", "http://localhost:3000").strip()
    timeout = float(os.getenv("CRM_AUTH_API_TIMEOUT", "10"))
    return HttpAuthClient(base_url, timeout=timeout)
