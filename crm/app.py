"""
FastAPI application entry point for the CRM service.

Run with ``uvicorn crm.app:create_app --factory``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from crm.config import Settings, get_settings
from crm.data_access import CrmDataAccess
from crm.dependencies import build_backends
from crm.errors import (
    AuthenticationError,
    DataAccessError,
    DuplicateRecordError,
    NotAuthenticatedError,
)
from crm.routes import router
from crm.session import LOGIN_PATH, SessionManager, ViewNavigator

logger = logging.getLogger(__name__)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotAuthenticatedError)
    async def not_authenticated(request: Request, exc: NotAuthenticatedError):
        return JSONResponse(
            status_code=401,
            content={"detail": {"message": exc.message, "redirect": LOGIN_PATH}},
        )

    @app.exception_handler(AuthenticationError)
    async def authentication_failed(request: Request, exc: AuthenticationError):
        return JSONResponse(status_code=400, content={"detail": exc.message})

    @app.exception_handler(DuplicateRecordError)
    async def duplicate_record(request: Request, exc: DuplicateRecordError):
        return JSONResponse(status_code=409, content={"detail": exc.message})

    @app.exception_handler(DataAccessError)
    async def data_access_failed(request: Request, exc: DataAccessError):
        return JSONResponse(status_code=502, content={"detail": exc.message})


def create_app(
    settings: Optional[Settings] = None,
    *,
    table_backend=None,
    identity_provider=None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.getLogger("crm").setLevel(settings.log_level.upper())

    if table_backend is None or identity_provider is None:
        default_backend, default_identity = build_backends(settings)
        table_backend = table_backend or default_backend
        identity_provider = identity_provider or default_identity

    session_manager = SessionManager(
        identity_provider,
        ViewNavigator(),
        redirect_url=settings.auth_redirect_url,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        with session_manager:
            logger.info(
                "Session bootstrapped (authenticated=%s)",
                session_manager.is_authenticated,
            )
            yield

    app = FastAPI(title="Contact CRM", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.table_backend = table_backend
    app.state.session_manager = session_manager
    app.state.data_access = CrmDataAccess(table_backend, session_manager)
    app.include_router(router, prefix=settings.api_prefix)
    _register_error_handlers(app)
    return app
