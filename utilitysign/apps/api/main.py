from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from utilitysign.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from utilitysign.apps.api.routes.auth_log import router as auth_log_router
from utilitysign.apps.api.routes.cache import router as cache_router
from utilitysign.apps.api.routes.error_log import router as error_log_router
from utilitysign.apps.api.routes.health import router as health_router
from utilitysign.apps.api.routes.migrations import router as migrations_router
from utilitysign.apps.api.routes.sites import router as sites_router
from utilitysign.core.config import get_settings
from utilitysign.core.errors import UtilitySignError
from utilitysign.core.logging import configure_logging
from utilitysign.lifecycle import build_runner
from utilitysign.persistence.db import StorageContext, create_storage_context


def create_app(ctx: StorageContext | None = None) -> FastAPI:
    configure_logging()
    # Contexts passed in by the host stay owned by the host; only ours is disposed.
    owns_context = ctx is None
    resolved = ctx or create_storage_context()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        if owns_context:
            await resolved.dispose()

    app = FastAPI(title=f"{get_settings().app_name} admin", lifespan=lifespan)
    app.state.ctx = resolved
    app.state.runner = build_runner(resolved)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(UtilitySignError)
    async def _domain_exception_handler(request: Request, exc: UtilitySignError):
        return await domain_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(health_router)
    # Read-only administrative surface; every store read is scoped by site_id.
    app.include_router(migrations_router)
    app.include_router(auth_log_router)
    app.include_router(error_log_router)
    app.include_router(cache_router)
    app.include_router(sites_router)

    return app
