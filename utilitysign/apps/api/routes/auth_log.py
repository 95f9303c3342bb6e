from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from utilitysign.apps.api.deps import get_context
from utilitysign.persistence.db import StorageContext
from utilitysign.stores.auth_log import AuthLogFilter, AuthLogRecord, AuthLogStore


router = APIRouter(prefix="/admin/auth-log", tags=["auth-log"])


class AuthLogResponse(BaseModel):
    id: int
    timestamp: str
    event: str
    event_type: str
    method: str | None
    reason: str | None
    data: Any
    site_id: int
    ip_address: str | None
    user_agent: str | None
    created_at: str | None


class AuthLogPage(BaseModel):
    items: list[AuthLogResponse]
    next_offset: int | None


def _to_response(record: AuthLogRecord) -> AuthLogResponse:
    # Serialize datetimes to ISO 8601 for dashboard clients.
    return AuthLogResponse(
        id=record.id,
        timestamp=record.timestamp.isoformat(),
        event=record.event,
        event_type=record.event_type,
        method=record.method,
        reason=record.reason,
        data=record.data,
        site_id=record.site_id,
        ip_address=record.ip_address,
        user_agent=record.user_agent,
        created_at=record.created_at.isoformat() if record.created_at else None,
    )


@router.get("")
async def list_auth_log(
    site_id: int = Query(ge=1),
    event: str | None = None,
    event_type: str | None = None,
    method: str | None = None,
    since: datetime | None = Query(default=None, alias="from"),
    until: datetime | None = Query(default=None, alias="to"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    ctx: StorageContext = Depends(get_context),
) -> AuthLogPage:
    # Fetch one extra row to decide whether another page exists.
    records = await AuthLogStore(ctx).query(
        AuthLogFilter(
            site_id=site_id,
            event=event,
            event_type=event_type,
            method=method,
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
    return AuthLogPage(items=[_to_response(record) for record in records], next_offset=next_offset)
