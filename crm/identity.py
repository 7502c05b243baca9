"""
Identity provider abstraction for Supabase Auth and an in-memory test
implementation.
"""

from __future__ import annotations

import itertools
import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

import httpx
from supabase import AuthError

from crm.records import SessionUser

logger = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
USER_UPDATED = "USER_UPDATED"


@dataclass
class AuthSession:
    access_token: str
    user: SessionUser


@dataclass
class AuthResult:
    user: Optional[SessionUser]
    session: Optional[AuthSession]


AuthChangeCallback = Callable[[str, Optional[AuthSession]], None]


class Subscription(Protocol):
    def unsubscribe(self) -> None:
        ...


class IdentityProvider(Protocol):
    """Identity operations the session manager needs from the provider."""

    request_errors: tuple[type[BaseException], ...]

    def get_session(self) -> Optional[AuthSession]:
        ...

    def on_auth_state_change(self, callback: AuthChangeCallback) -> Subscription:
        ...

    def sign_in_with_password(self, email: str, password: str) -> AuthResult:
        ...

    def sign_up(
        self, email: str, password: str, *, redirect_to: Optional[str] = None
    ) -> AuthResult:
        ...

    def sign_out(self) -> None:
        ...

    def resend_confirmation(
        self, email: str, *, redirect_to: Optional[str] = None
    ) -> None:
        ...

    def reset_password_for_email(
        self, email: str, *, redirect_to: Optional[str] = None
    ) -> None:
        ...

    def update_password(self, password: str) -> SessionUser:
        ...


class IdentityRequestError(Exception):
    """Raised by the in-memory provider, mirroring Supabase Auth messages."""


def user_from_supabase(user) -> Optional[SessionUser]:
    if user is None:
        return None
    return SessionUser(
        id=str(user.id),
        email=user.email or "",
        email_confirmed=getattr(user, "email_confirmed_at", None) is not None,
    )


def session_from_supabase(session) -> Optional[AuthSession]:
    if session is None or session.user is None:
        return None
    return AuthSession(
        access_token=session.access_token,
        user=user_from_supabase(session.user),
    )


class SupabaseIdentityProvider:
    """Adapts ``client.auth`` from supabase-py to the provider interface."""

    request_errors = (AuthError, httpx.HTTPError)

    def __init__(self, client):
        self._auth = client.auth

    def get_session(self) -> Optional[AuthSession]:
        return session_from_supabase(self._auth.get_session())

    def on_auth_state_change(self, callback: AuthChangeCallback) -> Subscription:
        def _forward(event, session):
            # Supabase passes an AuthChangeEvent (str enum) or a plain string.
            callback(str(getattr(event, "value", event)), session_from_supabase(session))

        return self._auth.on_auth_state_change(_forward)

    def sign_in_with_password(self, email: str, password: str) -> AuthResult:
        response = self._auth.sign_in_with_password(
            {"email": email, "password": password}
        )
        return AuthResult(
            user=user_from_supabase(response.user),
            session=session_from_supabase(response.session),
        )

    def sign_up(
        self, email: str, password: str, *, redirect_to: Optional[str] = None
    ) -> AuthResult:
        credentials: dict = {"email": email, "password": password}
        if redirect_to:
            credentials["options"] = {"email_redirect_to": redirect_to}
        response = self._auth.sign_up(credentials)
        return AuthResult(
            user=user_from_supabase(response.user),
            session=session_from_supabase(response.session),
        )

    def sign_out(self) -> None:
        self._auth.sign_out()

    def resend_confirmation(
        self, email: str, *, redirect_to: Optional[str] = None
    ) -> None:
        params: dict = {"type": "signup", "email": email}
        if redirect_to:
            params["options"] = {"email_redirect_to": redirect_to}
        self._auth.resend(params)

    def reset_password_for_email(
        self, email: str, *, redirect_to: Optional[str] = None
    ) -> None:
        options = {"redirect_to": redirect_to} if redirect_to else {}
        self._auth.reset_password_for_email(email, options)

    def update_password(self, password: str) -> SessionUser:
        response = self._auth.update_user({"password": password})
        return user_from_supabase(response.user)


@dataclass
class _Account:
    user: SessionUser
    password: str


@dataclass
class _ListenerHandle:
    provider: "InMemoryIdentityProvider"
    key: int

    def unsubscribe(self) -> None:
        self.provider.listeners.pop(self.key, None)


@dataclass
class InMemoryIdentityProvider:
    """Simple in-memory identity provider for development and tests."""

    require_confirmation: bool = True
    accounts: dict[str, _Account] = field(default_factory=dict)
    session: Optional[AuthSession] = None
    listeners: dict[int, AuthChangeCallback] = field(default_factory=dict)
    # (kind, email, redirect_to) for every email the provider "sent".
    outbox: list[tuple[str, str, Optional[str]]] = field(default_factory=list)

    request_errors = (IdentityRequestError,)

    def __post_init__(self):
        self._keys = itertools.count(1)

    def _notify(self, event: str) -> None:
        for callback in list(self.listeners.values()):
            callback(event, self.session)

    def _start_session(self, user: SessionUser) -> AuthSession:
        self.session = AuthSession(access_token=uuid.uuid4().hex, user=user)
        self._notify(SIGNED_IN)
        return self.session

    def get_session(self) -> Optional[AuthSession]:
        return self.session

    def on_auth_state_change(self, callback: AuthChangeCallback) -> Subscription:
        key = next(self._keys)
        self.listeners[key] = callback
        return _ListenerHandle(self, key)

    def sign_up(
        self, email: str, password: str, *, redirect_to: Optional[str] = None
    ) -> AuthResult:
        key = email.strip().lower()
        if key in self.accounts:
            raise IdentityRequestError("User already registered")
        user = SessionUser(
            id=str(uuid.uuid4()),
            email=key,
            email_confirmed=not self.require_confirmation,
        )
        self.accounts[key] = _Account(user=user, password=password)
        if self.require_confirmation:
            self.outbox.append(("signup", key, redirect_to))
            return AuthResult(user=user, session=None)
        return AuthResult(user=user, session=self._start_session(user))

    def confirm_email(self, email: str) -> None:
        """Simulate the user following the confirmation link."""
        account = self.accounts[email.strip().lower()]
        account.user.email_confirmed = True

    def sign_in_with_password(self, email: str, password: str) -> AuthResult:
        account = self.accounts.get(email.strip().lower())
        if account is None or account.password != password:
            raise IdentityRequestError("Invalid login credentials")
        if not account.user.email_confirmed:
            raise IdentityRequestError("Email not confirmed")
        session = self._start_session(account.user)
        return AuthResult(user=account.user, session=session)

    def sign_out(self) -> None:
        self.session = None
        self._notify(SIGNED_OUT)

    def resend_confirmation(
        self, email: str, *, redirect_to: Optional[str] = None
    ) -> None:
        self.outbox.append(("signup", email.strip().lower(), redirect_to))

    def reset_password_for_email(
        self, email: str, *, redirect_to: Optional[str] = None
    ) -> None:
        # Unknown addresses are accepted silently, as Supabase does.
        self.outbox.append(("recovery", email.strip().lower(), redirect_to))

    def update_password(self, password: str) -> SessionUser:
        if self.session is None:
            raise IdentityRequestError("Auth session missing!")
        account = self.accounts[self.session.user.email]
        account.password = password
        logger.info("Password updated for %s", account.user.email)
        self._notify(USER_UPDATED)
        return account.user
