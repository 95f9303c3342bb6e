from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import json
from typing import Any

import sqlalchemy as sa

from utilitysign.core.errors import InvalidInputError
from utilitysign.persistence.db import STORAGE_EXCEPTIONS
from utilitysign.persistence.guards import require_site_id, site_predicate
from utilitysign.schema.tables import AUTH_LOG
from utilitysign.stores.base import (
    DEFAULT_PAGE_SIZE,
    Store,
    from_db_datetime,
    optional_datetime,
    optional_filter,
    optional_text,
    require_page,
    require_text,
    require_time_range,
)


@dataclass(frozen=True)
class AuthEvent:
    event: str
    event_type: str
    site_id: int = 1
    method: str | None = None
    reason: str | None = None
    data: Any = None
    ip_address: str | None = None
    user_agent: str | None = None
    # Defaults to the storage clock at append time.
    timestamp: datetime | None = None


@dataclass(frozen=True)
class AuthLogRecord:
    id: int
    timestamp: datetime
    event: str
    event_type: str
    method: str | None
    reason: str | None
    data: Any
    site_id: int
    ip_address: str | None
    user_agent: str | None
    created_at: datetime | None


@dataclass(frozen=True)
class AuthLogFilter:
    site_id: int
    event: str | None = None
    event_type: str | None = None
    method: str | None = None
    since: datetime | None = None
    until: datetime | None = None
    offset: int = 0
    limit: int = DEFAULT_PAGE_SIZE


def _to_record(row: sa.RowMapping) -> AuthLogRecord:
    return AuthLogRecord(
        id=int(row["id"]),
        timestamp=from_db_datetime(row["timestamp"]),
        event=row["event"],
        event_type=row["event_type"],
        method=row["method"],
        reason=row["reason"],
        data=row["data"],
        site_id=int(row["site_id"]),
        ip_address=row["ip_address"],
        user_agent=row["user_agent"],
        created_at=from_db_datetime(row["created_at"]),
    )


class AuthLogStore(Store):
    """Append-only authentication log; retention is an administrative job, not part of this API."""

    descriptor = AUTH_LOG

    def _values(self, event: AuthEvent) -> dict[str, Any]:
        # Validate the whole row before touching storage.
        site_id = require_site_id(event.site_id)
        if event.data is not None:
            try:
                json.dumps(event.data)
            except (TypeError, ValueError) as exc:
                raise InvalidInputError("data", "must be JSON serializable") from exc
        timestamp = optional_datetime("timestamp", event.timestamp) or self._ctx.now()
        return {
            "timestamp": timestamp,
            "event": require_text("event", event.event, 50),
            "event_type": require_text("event_type", event.event_type, 50),
            "method": optional_text("method", event.method, 50),
            "reason": optional_text("reason", event.reason, 100),
            "data": event.data,
            "site_id": site_id,
            "ip_address": optional_text("ip_address", event.ip_address, 45),
            "user_agent": optional_text("user_agent", event.user_agent),
        }

    async def append(self, event: AuthEvent) -> int:
        values = self._values(event)
        try:
            async with self._ctx.engine.begin() as conn:
                result = await conn.execute(sa.insert(self.table).values(**values))
        except STORAGE_EXCEPTIONS as exc:
            raise self._storage_error(exc) from exc
        return int(result.inserted_primary_key[0])

    async def query(self, filters: AuthLogFilter) -> list[AuthLogRecord]:
        table = self.table
        # Scope all auth-log reads to one site to prevent cross-tenant leakage.
        stmt = sa.select(table).where(site_predicate(table, filters.site_id))
        since, until = require_time_range(filters.since, filters.until)
        require_page(filters.offset, filters.limit)
        event = optional_filter("event", filters.event, 50)
        event_type = optional_filter("event_type", filters.event_type, 50)
        method = optional_filter("method", filters.method, 50)
        if event is not None:
            stmt = stmt.where(table.c.event == event)
        if event_type is not None:
            stmt = stmt.where(table.c.event_type == event_type)
        if method is not None:
            stmt = stmt.where(table.c.method == method)
        if since is not None:
            stmt = stmt.where(table.c.timestamp >= since)
        if until is not None:
            stmt = stmt.where(table.c.timestamp <= until)
        stmt = stmt.order_by(table.c.timestamp.desc(), table.c.id.desc())
        stmt = stmt.offset(filters.offset).limit(filters.limit)
        try:
            async with self._ctx.engine.connect() as conn:
                result = await conn.execute(stmt)
                rows = result.mappings().all()
        except STORAGE_EXCEPTIONS as exc:
            raise self._storage_error(exc) from exc
        return [_to_record(row) for row in rows]

    async def count(self, site_id: int, *, since: datetime | None = None) -> int:
        table = self.table
        stmt = sa.select(sa.func.count()).select_from(table).where(site_predicate(table, site_id))
        start = optional_datetime("since", since)
        if start is not None:
            stmt = stmt.where(table.c.timestamp >= start)
        try:
            async with self._ctx.engine.connect() as conn:
                result = await conn.execute(stmt)
        except STORAGE_EXCEPTIONS as exc:
            raise self._storage_error(exc) from exc
        return int(result.scalar() or 0)
