from __future__ import annotations

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from utilitysign.apps.api.deps import get_context
from utilitysign.core.config import get_settings
from utilitysign.persistence.db import StorageContext
from utilitysign.stores.error_log import ErrorLogFilter, ErrorLogRecord, ErrorLogStore


router = APIRouter(prefix="/admin/error-log", tags=["error-log"])


class ErrorLogResponse(BaseModel):
    id: int
    type: str
    message: str
    file: str | None
    line: int | None
    severity: str
    correlation_id: str | None
    user_id: int | None
    ip_address: str | None
    user_agent: str | None
    request_uri: str | None
    request_method: str | None
    stack_trace: str | None
    site_id: int
    timestamp: str
    created_at: str | None


class ErrorLogPage(BaseModel):
    items: list[ErrorLogResponse]
    next_offset: int | None


class ErrorStatResponse(BaseModel):
    severity: str
    day: str
    count: int


class ErrorStatsResponse(BaseModel):
    site_id: int
    since: str
    items: list[ErrorStatResponse]


def _to_response(record: ErrorLogRecord) -> ErrorLogResponse:
    return ErrorLogResponse(
        id=record.id,
        type=record.type,
        message=record.message,
        file=record.file,
        line=record.line,
        severity=record.severity,
        correlation_id=record.correlation_id,
        user_id=record.user_id,
        ip_address=record.ip_address,
        user_agent=record.user_agent,
        request_uri=record.request_uri,
        request_method=record.request_method,
        stack_trace=record.stack_trace,
        site_id=record.site_id,
        timestamp=record.timestamp.isoformat(),
        created_at=record.created_at.isoformat() if record.created_at else None,
    )


@router.get("")
async def list_error_log(
    site_id: int = Query(ge=1),
    type: str | None = None,
    severity: str | None = None,
    correlation_id: str | None = None,
    since: datetime | None = Query(default=None, alias="from"),
    until: datetime | None = Query(default=None, alias="to"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    ctx: StorageContext = Depends(get_context),
) -> ErrorLogPage:
    records = await ErrorLogStore(ctx).query(
        ErrorLogFilter(
            site_id=site_id,
            type=type,
            severity=severity,
            correlation_id=correlation_id,
            since=since,
            until=until,
            offset=offset,
            limit=limit + 1,
        )
    )
    next_offset = None
    if len(records) > limit:
        records = records[:limit]
        next_offset = offset + limit
    return ErrorLogPage(items=[_to_response(record) for record in records], next_offset=next_offset)


@router.get("/stats")
async def error_log_stats(
    site_id: int = Query(ge=1),
    days: int | None = Query(default=None, ge=1, le=365),
    ctx: StorageContext = Depends(get_context),
) -> ErrorStatsResponse:
    # Severity counts per day over the dashboard window.
    window = days or get_settings().error_stats_window_days
    since = ctx.now() - timedelta(days=window)
    stats = await ErrorLogStore(ctx).stats(site_id, since=since)
    return ErrorStatsResponse(
        site_id=site_id,
        since=since.isoformat(),
        items=[ErrorStatResponse(severity=stat.severity, day=stat.day.isoformat(), count=stat.count) for stat in stats],
    )
