from __future__ import annotations

from datetime import datetime
import logging
from typing import Any

from utilitysign.persistence.db import StorageContext
from utilitysign.services.error_reporting import RequestContext
from utilitysign.stores.auth_log import AuthEvent, AuthLogStore


logger = logging.getLogger(__name__)

AUTH_SUCCESS = "auth_success"
AUTH_FAILURE = "auth_failure"

_SENSITIVE_KEY_PATTERNS = ["api_key", "api_secret", "authorization", "token", "secret", "password", "signature"]
_REDACTED_VALUE = "[REDACTED]"


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_data(value: Any) -> Any:
    # Recursively scrub credentials from the auth data blob while preserving structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_data(raw_value)
        return sanitized
    if isinstance(value, (list, tuple)):
        return [sanitize_data(item) for item in value]
    return value


async def record_auth_event(
    ctx: StorageContext,
    *,
    event: str,
    event_type: str,
    method: str | None = None,
    reason: str | None = None,
    data: dict[str, Any] | None = None,
    site_id: int | None = None,
    context: RequestContext | None = None,
    timestamp: datetime | None = None,
    store: AuthLogStore | None = None,
) -> int | None:
    # Write auth rows in a best-effort manner so logging never blocks authentication.
    request = context or RequestContext()
    entry = AuthEvent(
        event=event,
        event_type=event_type,
        site_id=site_id if site_id is not None else ctx.default_site_id,
        method=method,
        reason=reason,
        data=sanitize_data(data) if data is not None else None,
        ip_address=request.ip_address,
        user_agent=request.user_agent,
        timestamp=timestamp,
    )
    try:
        return await (store or AuthLogStore(ctx)).append(entry)
    except Exception as exc:  # noqa: BLE001 - logging must never fail the caller
        logger.warning(
            "auth_log_write_failed event=%s event_type=%s site_id=%s",
            event,
            event_type,
            entry.site_id,
            exc_info=exc,
        )
        return None


async def record_auth_success(
    ctx: StorageContext,
    *,
    method: str,
    data: dict[str, Any] | None = None,
    site_id: int | None = None,
    context: RequestContext | None = None,
    store: AuthLogStore | None = None,
) -> int | None:
    return await record_auth_event(
        ctx,
        event=AUTH_SUCCESS,
        event_type="authentication",
        method=method,
        data=data,
        site_id=site_id,
        context=context,
        store=store,
    )


async def record_auth_failure(
    ctx: StorageContext,
    *,
    reason: str,
    method: str | None = None,
    data: dict[str, Any] | None = None,
    site_id: int | None = None,
    context: RequestContext | None = None,
    store: AuthLogStore | None = None,
) -> int | None:
    return await record_auth_event(
        ctx,
        event=AUTH_FAILURE,
        event_type="authentication",
        method=method,
        reason=reason,
        data=data,
        site_id=site_id,
        context=context,
        store=store,
    )
