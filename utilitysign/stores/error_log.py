from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

import sqlalchemy as sa

from utilitysign.core.errors import InvalidInputError
from utilitysign.persistence.db import STORAGE_EXCEPTIONS
from utilitysign.persistence.guards import require_site_id, site_predicate
from utilitysign.schema.tables import ERROR_LOG
from utilitysign.stores.base import (
    DEFAULT_PAGE_SIZE,
    Store,
    from_db_date,
    from_db_datetime,
    optional_datetime,
    optional_filter,
    optional_int,
    optional_text,
    require_page,
    require_text,
    require_time_range,
)


SEVERITIES = ("critical", "error", "warning", "notice", "info", "debug", "unknown")


@dataclass(frozen=True)
class ErrorEntry:
    type: str
    message: str
    severity: str
    site_id: int = 1
    file: str | None = None
    line: int | None = None
    # Shared by every entry produced by the same request or operation.
    correlation_id: str | None = None
    user_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    request_uri: str | None = None
    request_method: str | None = None
    stack_trace: str | None = None
    timestamp: datetime | None = None


@dataclass(frozen=True)
class ErrorLogRecord:
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
    timestamp: datetime
    created_at: datetime | None


@dataclass(frozen=True)
class ErrorLogFilter:
    site_id: int
    type: str | None = None
    severity: str | None = None
    correlation_id: str | None = None
    since: datetime | None = None
    until: datetime | None = None
    offset: int = 0
    limit: int = DEFAULT_PAGE_SIZE


@dataclass(frozen=True)
class ErrorStat:
    severity: str
    day: date
    count: int


def require_severity(value: object) -> str:
    severity = require_text("severity", value, 20)
    if severity not in SEVERITIES:
        raise InvalidInputError("severity", f"must be one of {', '.join(SEVERITIES)}")
    return severity


def _to_record(row: sa.RowMapping) -> ErrorLogRecord:
    return ErrorLogRecord(
        id=int(row["id"]),
        type=row["type"],
        message=row["message"],
        file=row["file"],
        line=row["line"],
        severity=row["severity"],
        correlation_id=row["correlation_id"],
        user_id=row["user_id"],
        ip_address=row["ip_address"],
        user_agent=row["user_agent"],
        request_uri=row["request_uri"],
        request_method=row["request_method"],
        stack_trace=row["stack_trace"],
        site_id=int(row["site_id"]),
        timestamp=from_db_datetime(row["timestamp"]),
        created_at=from_db_datetime(row["created_at"]),
    )


class ErrorLogStore(Store):
    descriptor = ERROR_LOG

    def _values(self, entry: ErrorEntry) -> dict[str, Any]:
        site_id = require_site_id(entry.site_id)
        timestamp = optional_datetime("timestamp", entry.timestamp) or self._ctx.now()
        return {
            "type": require_text("type", entry.type, 100),
            "message": require_text("message", entry.message),
            "file": optional_text("file", entry.file, 255),
            "line": optional_int("line", entry.line),
            "severity": require_severity(entry.severity),
            "correlation_id": optional_text("correlation_id", entry.correlation_id, 50),
            "user_id": optional_int("user_id", entry.user_id),
            "ip_address": optional_text("ip_address", entry.ip_address, 45),
            "user_agent": optional_text("user_agent", entry.user_agent),
            "request_uri": optional_text("request_uri", entry.request_uri, 500),
            "request_method": optional_text("request_method", entry.request_method, 10),
            "stack_trace": optional_text("stack_trace", entry.stack_trace),
            "site_id": site_id,
            "timestamp": timestamp,
        }

    async def append(self, entry: ErrorEntry) -> int:
        values = self._values(entry)
        try:
            async with self._ctx.engine.begin() as conn:
                result = await conn.execute(sa.insert(self.table).values(**values))
        except STORAGE_EXCEPTIONS as exc:
            raise self._storage_error(exc) from exc
        return int(result.inserted_primary_key[0])

    async def query(self, filters: ErrorLogFilter) -> list[ErrorLogRecord]:
        table = self.table
        stmt = sa.select(table).where(site_predicate(table, filters.site_id))
        since, until = require_time_range(filters.since, filters.until)
        require_page(filters.offset, filters.limit)
        type_ = optional_filter("type", filters.type, 100)
        severity = optional_filter("severity", filters.severity, 20)
        correlation_id = optional_filter("correlation_id", filters.correlation_id, 50)
        if type_ is not None:
            stmt = stmt.where(table.c.type == type_)
        if severity is not None:
            stmt = stmt.where(table.c.severity == severity)
        if correlation_id is not None:
            stmt = stmt.where(table.c.correlation_id == correlation_id)
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

    async def stats(self, site_id: int, *, since: datetime | None = None) -> list[ErrorStat]:
        # Counts per severity per calendar day, newest day first.
        table = self.table
        day = sa.func.date(table.c.timestamp).label("day")
        stmt = (
            sa.select(table.c.severity, day, sa.func.count().label("total"))
            .where(site_predicate(table, site_id))
            .group_by(table.c.severity, day)
            .order_by(day.desc(), table.c.severity)
        )
        start = optional_datetime("since", since)
        if start is not None:
            stmt = stmt.where(table.c.timestamp >= start)
        try:
            async with self._ctx.engine.connect() as conn:
                result = await conn.execute(stmt)
                rows = result.all()
        except STORAGE_EXCEPTIONS as exc:
            raise self._storage_error(exc) from exc
        return [ErrorStat(severity=row.severity, day=from_db_date(row.day), count=int(row.total)) for row in rows]
