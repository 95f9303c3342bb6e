from __future__ import annotations

from datetime import timedelta
import logging

import sqlalchemy as sa

from utilitysign.core.config import Settings, get_settings
from utilitysign.core.errors import InvalidInputError
from utilitysign.persistence.db import STORAGE_EXCEPTIONS, StorageContext, translate_storage_error
from utilitysign.persistence.guards import site_predicate
from utilitysign.schema.tables import AUTH_LOG, ERROR_LOG
from utilitysign.stores.cache import CacheStore


logger = logging.getLogger(__name__)


def _require_days(days: object) -> int:
    if isinstance(days, bool) or not isinstance(days, int) or days < 1:
        raise InvalidInputError("days", "must be a positive integer")
    return days


async def _prune(ctx: StorageContext, table: sa.Table, days: int, site_id: int | None) -> int:
    # Log retention is an administrative job; the stores themselves stay append-only.
    cutoff = ctx.now() - timedelta(days=_require_days(days))
    stmt = sa.delete(table).where(table.c.timestamp < cutoff)
    if site_id is not None:
        stmt = stmt.where(site_predicate(table, site_id))
    try:
        async with ctx.engine.begin() as conn:
            result = await conn.execute(stmt)
    except STORAGE_EXCEPTIONS as exc:
        raise translate_storage_error(exc, table_name=table.name) from exc
    return result.rowcount or 0


async def prune_auth_log(
    ctx: StorageContext,
    *,
    days: int | None = None,
    site_id: int | None = None,
    settings: Settings | None = None,
) -> int:
    # Remove auth log rows beyond the retention window.
    resolved = days if days is not None else (settings or get_settings()).auth_log_retention_days
    deleted = await _prune(ctx, ctx.table(AUTH_LOG), resolved, site_id)
    logger.info("auth_log_pruned days=%s site_id=%s deleted=%s", resolved, site_id, deleted)
    return deleted


async def prune_error_log(
    ctx: StorageContext,
    *,
    days: int | None = None,
    site_id: int | None = None,
    settings: Settings | None = None,
) -> int:
    # Remove error log rows beyond the retention window.
    resolved = days if days is not None else (settings or get_settings()).error_log_retention_days
    deleted = await _prune(ctx, ctx.table(ERROR_LOG), resolved, site_id)
    logger.info("error_log_pruned days=%s site_id=%s deleted=%s", resolved, site_id, deleted)
    return deleted


async def purge_expired_cache(ctx: StorageContext, *, site_id: int | None = None) -> int:
    deleted = await CacheStore(ctx).purge_expired(site_id)
    logger.info("cache_expired_purged site_id=%s deleted=%s", site_id, deleted)
    return deleted
