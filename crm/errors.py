"""
Error types shared by the session, data-access and HTTP layers.
"""

from __future__ import annotations

from typing import Optional


class CrmError(Exception):
    """Base error carrying a human-readable message and the original cause."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ConfigurationError(CrmError):
    pass


class AuthenticationError(CrmError):
    """Identity provider rejected a request (bad credentials, sign-up failure...)."""


class NotAuthenticatedError(CrmError):
    """An operation required a signed-in user and there was none."""

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class DataAccessError(CrmError):
    """A table request failed at the backend."""


class DuplicateRecordError(DataAccessError):
    """The backend rejected a write because of a uniqueness constraint."""
