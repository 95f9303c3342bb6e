from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from utilitysign.apps.api.response import error_response
from utilitysign.core.errors import (
    DatabaseError,
    InvalidInputError,
    SchemaNotReadyError,
    StorageTimeoutError,
    StorageUnavailableError,
    UtilitySignError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

# Seconds a client should wait before retrying a transient storage failure.
STORAGE_RETRY_AFTER_S = 1


def _default_code(status_code: int) -> str:
    # Map status codes to fallback error codes when none are provided.
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Normalize HTTP exceptions into the shared error envelope.
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Surface validation errors with structured details for dashboard parsing.
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_errors(exc)},
    )
    return JSONResponse(content=payload, status_code=422)


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    # Drop non-serializable context objects pydantic attaches to errors.
    return [{key: value for key, value in error.items() if key != "ctx"} for error in exc.errors()]


def _classify(exc: UtilitySignError) -> tuple[int, str, dict[str, Any] | None, dict[str, str] | None]:
    if isinstance(exc, InvalidInputError):
        return 422, "INVALID_INPUT", {"field": exc.field}, None
    if isinstance(exc, SchemaNotReadyError):
        return 503, "SCHEMA_NOT_READY", {"table": exc.table_name}, None
    if isinstance(exc, StorageTimeoutError):
        return 503, "STORAGE_TIMEOUT", None, {"Retry-After": str(STORAGE_RETRY_AFTER_S)}
    if isinstance(exc, StorageUnavailableError):
        return 503, "STORAGE_UNAVAILABLE", None, {"Retry-After": str(STORAGE_RETRY_AFTER_S)}
    if isinstance(exc, DatabaseError):
        return 500, "DATABASE_ERROR", None, None
    return 500, "INTERNAL_ERROR", None, None


async def domain_exception_handler(request: Request, exc: UtilitySignError) -> JSONResponse:
    # Map the storage error taxonomy onto status codes without leaking driver text.
    status_code, code, details, headers = _classify(exc)
    if status_code >= 500:
        logger.warning("request_failed path=%s code=%s", request.url.path, code, exc_info=exc)
        message = "Storage is not ready" if code == "SCHEMA_NOT_READY" else "Storage request failed"
    else:
        message = str(exc)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.error("request_unhandled_error path=%s", request.url.path, exc_info=exc)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)
