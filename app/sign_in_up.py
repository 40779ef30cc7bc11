"""Sign-in / sign-up / invite wizard.

The wizard moves through three steps (init, email, password). Its mode
decides which credential call the final submit makes. All step and mode
changes go through ``transition`` so the branching lives in one place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Optional, Union

from app.auth_client import AuthClientError, SignInUpResult

logger = logging.getLogger("crm.auth")


class SignInUpMode(str, Enum):
    SIGN_IN = "sign-in"
    SIGN_UP = "sign-up"
    INVITE = "invite"


class SignInUpStep(str, Enum):
    INIT = "init"
    EMAIL = "email"
    PASSWORD = "password"


class AppPath(str, Enum):
    INDEX = "/"
    SIGN_IN = "/sign-in"
    SIGN_UP = "/sign-up"
    INVITE = "/invite/"
    CREATE_WORKSPACE = "/create/workspace"
    CREATE_PROFILE = "/create/profile"


@dataclass(frozen=True)
class SignInUpState:
    step: SignInUpStep
    mode: SignInUpMode
    route: str
    invite_hash: Optional[str] = None


@dataclass(frozen=True)
class ContinueWithEmail:
    pass


@dataclass(frozen=True)
class UserExistenceChecked:
    exists: bool


@dataclass(frozen=True)
class SubmitFailed:
    message: str


SignInUpEvent = Union[ContinueWithEmail, UserExistenceChecked, SubmitFailed]


def invite_hash_from_route(route: str) -> str | None:
    if isinstance(route, str) and route.startswith(AppPath.INVITE.value):
        value = route[len(AppPath.INVITE.value):].strip("/")
        return value or None
    return None


def _resolve_mode(route: str, invite_hash: str | None, exists: bool | None = None) -> SignInUpMode:
    if invite_hash:
        return SignInUpMode.INVITE
    if exists is None:
        return SignInUpMode.SIGN_IN if route == AppPath.SIGN_IN.value else SignInUpMode.SIGN_UP
    return SignInUpMode.SIGN_IN if exists else SignInUpMode.SIGN_UP


def initial_state(route: str, invite_hash: str | None = None) -> SignInUpState:
    invite_hash = invite_hash or invite_hash_from_route(route)
    return SignInUpState(
        step=SignInUpStep.INIT,
        mode=_resolve_mode(route, invite_hash),
        route=route,
        invite_hash=invite_hash,
    )


def transition(state: SignInUpState, event: SignInUpEvent) -> SignInUpState:
    if isinstance(event, ContinueWithEmail):
        if state.step != SignInUpStep.INIT:
            return state
        return replace(state, step=SignInUpStep.EMAIL, mode=_resolve_mode(state.route, state.invite_hash))
    if isinstance(event, UserExistenceChecked):
        if state.step != SignInUpStep.EMAIL:
            return state
        return replace(
            state,
            step=SignInUpStep.PASSWORD,
            mode=_resolve_mode(state.route, state.invite_hash, exists=event.exists),
        )
    if isinstance(event, SubmitFailed):
        # A failed submit leaves the user on the password step to retry.
        return state
    raise TypeError(f"Unknown sign-in event: {event!r}")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def path_after_sign_in_up(workspace: dict | None, workspace_member: dict | None) -> str:
    if not (workspace or {}).get("displayName"):
        return AppPath.CREATE_WORKSPACE.value
    name = (workspace_member or {}).get("name") or {}
    if not name.get("firstName") or not name.get("lastName"):
        return AppPath.CREATE_PROFILE.value
    return AppPath.INDEX.value


class SignInUpController:
    """Drives the wizard against an auth client.

    ``notify(message, variant)`` surfaces transient errors and
    ``navigate(path)`` receives the destination after a successful sign-in.
    """

    def __init__(
        self,
        auth_client: Any,
        route: str,
        notify: Callable[[str, str], None] | None = None,
        navigate: Callable[[str], None] | None = None,
        invite_hash: str | None = None,
    ) -> None:
        self._auth = auth_client
        self._notify = notify or (lambda message, variant: None)
        self._navigate = navigate or (lambda path: None)
        self.state = initial_state(route, invite_hash)

    @property
    def step(self) -> SignInUpStep:
        return self.state.step

    @property
    def mode(self) -> SignInUpMode:
        return self.state.mode

    def dispatch(self, event: SignInUpEvent) -> SignInUpState:
        self.state = transition(self.state, event)
        return self.state

    def continue_with_email(self) -> None:
        self.dispatch(ContinueWithEmail())

    def continue_with_credentials(self, email: str | None) -> None:
        if not email or not email.strip():
            return
        try:
            exists = self._auth.check_user_exists(normalize_email(email))
        except AuthClientError as exc:
            self._notify(str(exc), "error")
            return
        self.dispatch(UserExistenceChecked(exists=bool(exists)))

    def submit_credentials(self, email: str | None, password: str | None) -> SignInUpResult | None:
        try:
            if not email or not password:
                raise ValueError("Email and password are required")
            if self.state.mode == SignInUpMode.SIGN_IN:
                result = self._auth.sign_in_with_credentials(normalize_email(email), password)
            else:
                result = self._auth.sign_up_with_credentials(normalize_email(email), password, self.state.invite_hash)
        except (ValueError, AuthClientError) as exc:
            logger.info("sign_in_up_failed mode=%s error=%s", self.state.mode.value, exc)
            self.dispatch(SubmitFailed(str(exc)))
            self._notify(str(exc), "error")
            return None
        self._navigate(path_after_sign_in_up(result.workspace, result.workspace_member))
        return result

    def on_enter(self, email: str | None = None, password: str | None = None) -> None:
        if self.state.step == SignInUpStep.INIT:
            self.continue_with_email()
        elif self.state.step == SignInUpStep.EMAIL:
            self.continue_with_credentials(email)
        elif self.state.step == SignInUpStep.PASSWORD:
            self.submit_credentials(email, password)
