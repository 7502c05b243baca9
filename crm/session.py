"""
Session lifecycle: bootstrap the provider session, follow auth-state
notifications, and drive view navigation from them.

A ``SessionManager`` is owned by whoever starts it (the FastAPI lifespan in
the service, a ``with`` block in scripts and tests); nothing here is a module
global.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol

from crm.errors import AuthenticationError, NotAuthenticatedError
from crm.identity import AuthSession, IdentityProvider, Subscription
from crm.records import SessionUser

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"
REGISTER_PATH = "/register"
FORGOT_PASSWORD_PATH = "/forgot-password"
DASHBOARD_PATH = "/dashboard"

PUBLIC_PATHS = (LOGIN_PATH, REGISTER_PATH, FORGOT_PASSWORD_PATH)
AUTH_ENTRY_PATHS = (LOGIN_PATH, REGISTER_PATH)

EMAIL_NOT_CONFIRMED_MESSAGE = "Email not confirmed"


class AuthOutcome(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    EMAIL_UNCONFIRMED = "EMAIL_UNCONFIRMED"
    SIGNED_UP = "SIGNED_UP"
    CHECK_EMAIL = "CHECK_EMAIL"


OUTCOME_MESSAGES = {
    AuthOutcome.SIGNED_IN: "Logged in successfully",
    AuthOutcome.EMAIL_UNCONFIRMED: "Please confirm your email before signing in",
    AuthOutcome.SIGNED_UP: "Registration successful",
    AuthOutcome.CHECK_EMAIL: (
        "Registration successful! Please check your email to confirm your account."
    ),
}


class Navigator(Protocol):
    """Where the user currently is, and how to move them elsewhere."""

    current_path: str

    def navigate(self, path: str) -> None:
        ...


@dataclass
class ViewNavigator:
    """Records the current view and every forced navigation."""

    current_path: str = LOGIN_PATH
    history: list[str] = field(default_factory=list)

    def visit(self, path: str) -> None:
        self.current_path = path

    def navigate(self, path: str) -> None:
        self.history.append(path)
        self.current_path = path


def _error_message(exc: BaseException) -> str:
    return getattr(exc, "message", None) or str(exc) or exc.__class__.__name__


class SessionManager:
    """Current user state for one signed-in CRM user."""

    def __init__(
        self,
        provider: IdentityProvider,
        navigator: Optional[Navigator] = None,
        *,
        redirect_url: Optional[str] = None,
    ):
        self.provider = provider
        self.navigator = navigator if navigator is not None else ViewNavigator()
        self.redirect_url = redirect_url
        self.user: Optional[SessionUser] = None
        self.is_email_confirmed = True
        self.loading = True
        self._subscription: Optional[Subscription] = None

    # Lifecycle

    def start(self) -> "SessionManager":
        if self._subscription is not None:
            return self
        try:
            session = self.provider.get_session()
        except self.provider.request_errors as exc:
            logger.exception("Failed to load the current session")
            raise AuthenticationError(_error_message(exc), cause=exc) from exc
        self._apply_session(session)
        self.loading = False
        self._subscription = self.provider.on_auth_state_change(
            self._handle_auth_change
        )
        return self

    def close(self) -> None:
        if self._subscription is None:
            return
        self._subscription.unsubscribe()
        self._subscription = None

    def __enter__(self) -> "SessionManager":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_started(self) -> bool:
        return self._subscription is not None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def require_user(self) -> SessionUser:
        if self.user is None:
            raise NotAuthenticatedError()
        return self.user

    # State

    def _apply_session(self, session: Optional[AuthSession]) -> None:
        self.user = session.user if session else None
        self.is_email_confirmed = self.user is not None and self.user.email_confirmed

    def _handle_auth_change(self, event: str, session: Optional[AuthSession]) -> None:
        logger.debug("Auth state changed: %s", event)
        self._apply_session(session)
        current = self.navigator.current_path
        if session is None:
            if current not in PUBLIC_PATHS:
                self.navigator.navigate(LOGIN_PATH)
        elif current in AUTH_ENTRY_PATHS:
            self.navigator.navigate(DASHBOARD_PATH)

    # Operations

    def sign_in(self, email: str, password: str) -> AuthOutcome:
        try:
            result = self.provider.sign_in_with_password(email, password)
        except self.provider.request_errors as exc:
            message = _error_message(exc)
            if EMAIL_NOT_CONFIRMED_MESSAGE in message:
                logger.warning("Sign in blocked, email not confirmed: %s", email)
                self.is_email_confirmed = False
                return AuthOutcome.EMAIL_UNCONFIRMED
            logger.error("Sign in error: %s", message)
            raise AuthenticationError(message, cause=exc) from exc

        if result.session is not None:
            self.user = result.session.user
        if result.user is not None and not result.user.email_confirmed:
            self.is_email_confirmed = False
            return AuthOutcome.EMAIL_UNCONFIRMED
        self.is_email_confirmed = True
        return AuthOutcome.SIGNED_IN

    def sign_up(self, email: str, password: str) -> AuthOutcome:
        try:
            result = self.provider.sign_up(
                email, password, redirect_to=self.redirect_url
            )
        except self.provider.request_errors as exc:
            message = _error_message(exc)
            logger.error("Sign up error: %s", message)
            raise AuthenticationError(message, cause=exc) from exc

        if result.user is not None and not result.user.email_confirmed:
            self.is_email_confirmed = False
            return AuthOutcome.CHECK_EMAIL
        if result.session is not None:
            self._apply_session(result.session)
        return AuthOutcome.SIGNED_UP

    def sign_out(self) -> None:
        try:
            self.provider.sign_out()
        except self.provider.request_errors as exc:
            message = _error_message(exc)
            logger.error("Sign out error: %s", message)
            raise AuthenticationError(message, cause=exc) from exc

    def reset_password(self, email: str) -> None:
        try:
            self.provider.reset_password_for_email(email, redirect_to=self.redirect_url)
        except self.provider.request_errors as exc:
            message = _error_message(exc)
            logger.error("Password reset error: %s", message)
            raise AuthenticationError(message, cause=exc) from exc

    def resend_confirmation(self, email: str) -> None:
        try:
            self.provider.resend_confirmation(email, redirect_to=self.redirect_url)
        except self.provider.request_errors as exc:
            message = _error_message(exc)
            logger.error("Resend confirmation error: %s", message)
            raise AuthenticationError(message, cause=exc) from exc

    def change_password(self, new_password: str) -> SessionUser:
        self.require_user()
        try:
            return self.provider.update_password(new_password)
        except self.provider.request_errors as exc:
            message = _error_message(exc)
            logger.error("Change password error: %s", message)
            raise AuthenticationError(message, cause=exc) from exc
