from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import sqlalchemy as sa
from sqlalchemy.dialects import mysql, postgresql, sqlite

from utilitysign.core.errors import DatabaseError, InvalidInputError
from utilitysign.persistence.db import STORAGE_EXCEPTIONS
from utilitysign.persistence.guards import require_site_id, site_predicate
from utilitysign.schema.tables import CACHE
from utilitysign.stores.base import Store, require_text


MAX_KEY_LENGTH = 255


def _require_blob(data: object) -> bytes:
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    raise InvalidInputError("data", "must be bytes")


def _require_ttl(ttl: object) -> timedelta:
    if isinstance(ttl, timedelta):
        seconds = ttl.total_seconds()
    elif isinstance(ttl, (int, float)) and not isinstance(ttl, bool):
        seconds = float(ttl)
    else:
        raise InvalidInputError("ttl", "must be a number of seconds or a timedelta")
    if seconds < 0:
        raise InvalidInputError("ttl", "must be >= 0")
    return timedelta(seconds=seconds)


class CacheStore(Store):
    """Tenant-scoped blob cache with lazy expiry.

    A row is live while ``expires_at > now``; ``get`` never returns a row past
    that point even if ``purge_expired`` has not yet deleted it.
    """

    descriptor = CACHE

    def _live(self, site_id: int, now: datetime) -> sa.ColumnElement[bool]:
        return sa.and_(site_predicate(self.table, site_id), self.table.c.expires_at > now)

    async def get(self, site_id: int, key: str) -> bytes | None:
        require_site_id(site_id)
        require_text("cache_key", key, MAX_KEY_LENGTH)
        table = self.table
        stmt = sa.select(table.c.data).where(self._live(site_id, self._ctx.now()), table.c.cache_key == key)
        try:
            async with self._ctx.engine.connect() as conn:
                result = await conn.execute(stmt)
                row = result.first()
        except STORAGE_EXCEPTIONS as exc:
            raise self._storage_error(exc) from exc
        if row is None:
            return None
        return bytes(row.data) if row.data is not None else b""

    def _upsert(self, values: dict[str, Any]) -> sa.Executable:
        # Atomic insert-or-update on the (site_id, cache_key) unique key; last writer wins.
        table = self.table
        dialect = self._ctx.dialect_name
        if dialect in ("mysql", "mariadb"):
            stmt = mysql.insert(table).values(**values)
            return stmt.on_duplicate_key_update(data=stmt.inserted.data, expires_at=stmt.inserted.expires_at)
        if dialect == "postgresql":
            stmt = postgresql.insert(table).values(**values)
        elif dialect == "sqlite":
            stmt = sqlite.insert(table).values(**values)
        else:
            raise DatabaseError(f"atomic cache upsert is not supported on {dialect}")
        return stmt.on_conflict_do_update(
            index_elements=[table.c.site_id, table.c.cache_key],
            set_={"data": stmt.excluded.data, "expires_at": stmt.excluded.expires_at},
        )

    async def set(self, site_id: int, key: str, data: bytes, ttl: float | timedelta) -> None:
        values = {
            "site_id": require_site_id(site_id),
            "cache_key": require_text("cache_key", key, MAX_KEY_LENGTH),
            "data": _require_blob(data),
            "expires_at": self._ctx.now() + _require_ttl(ttl),
        }
        stmt = self._upsert(values)
        try:
            async with self._ctx.engine.begin() as conn:
                await conn.execute(stmt)
        except STORAGE_EXCEPTIONS as exc:
            raise self._storage_error(exc) from exc

    async def _delete(self, *conditions: sa.ColumnElement[bool]) -> int:
        try:
            async with self._ctx.engine.begin() as conn:
                result = await conn.execute(sa.delete(self.table).where(*conditions))
        except STORAGE_EXCEPTIONS as exc:
            raise self._storage_error(exc) from exc
        return result.rowcount or 0

    async def delete(self, site_id: int, key: str) -> bool:
        require_text("cache_key", key, MAX_KEY_LENGTH)
        deleted = await self._delete(site_predicate(self.table, site_id), self.table.c.cache_key == key)
        return deleted > 0

    async def delete_prefix(self, site_id: int, prefix: str) -> int:
        # Group invalidation: keys are namespaced, so a prefix selects one group.
        require_text("prefix", prefix, MAX_KEY_LENGTH)
        return await self._delete(
            site_predicate(self.table, site_id),
            self.table.c.cache_key.startswith(prefix, autoescape=True),
        )

    async def clear(self, site_id: int) -> int:
        return await self._delete(site_predicate(self.table, site_id))

    async def purge_expired(self, site_id: int | None = None) -> int:
        # Advisory sweep; reads stay correct whether or not it has run.
        conditions = [self.table.c.expires_at <= self._ctx.now()]
        if site_id is not None:
            conditions.append(site_predicate(self.table, site_id))
        return await self._delete(*conditions)

    async def count(self, site_id: int) -> int:
        table = self.table
        stmt = sa.select(sa.func.count()).select_from(table).where(self._live(site_id, self._ctx.now()))
        try:
            async with self._ctx.engine.connect() as conn:
                result = await conn.execute(stmt)
        except STORAGE_EXCEPTIONS as exc:
            raise self._storage_error(exc) from exc
        return int(result.scalar() or 0)
