"""
Dependency wiring for the FastAPI app.

Backends are built once per app by ``create_app`` and stored on
``app.state``; request handlers reach them through the getters below, so
tests can hand ``create_app`` their own backend and identity provider.
"""

from __future__ import annotations

import logging

from fastapi import Request
from supabase import create_client

from crm.backend import SqlTableBackend, SupabaseTableBackend, TableBackend
from crm.config import Settings
from crm.data_access import CrmDataAccess
from crm.identity import (
    IdentityProvider,
    InMemoryIdentityProvider,
    SupabaseIdentityProvider,
)
from crm.session import SessionManager

logger = logging.getLogger(__name__)


def build_supabase_client(settings: Settings):
    url, key = settings.require_remote_backend()
    return create_client(url, key)


def build_backends(
    settings: Settings, client=None
) -> tuple[TableBackend, IdentityProvider]:
    """Return the table backend and identity provider the settings call for."""
    if settings.use_in_memory_backends:
        logger.info("Using local backends (%s)", settings.local_database_url)
        return (
            SqlTableBackend(settings.local_database_url),
            InMemoryIdentityProvider(
                require_confirmation=settings.require_email_confirmation
            ),
        )
    client = client or build_supabase_client(settings)
    return SupabaseTableBackend(client), SupabaseIdentityProvider(client)


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def get_data_access(request: Request) -> CrmDataAccess:
    return request.app.state.data_access
