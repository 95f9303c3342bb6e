from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from utilitysign.core.config import Settings, get_settings
from utilitysign.persistence.db import StorageContext
from utilitysign.persistence.guards import require_site_id
from utilitysign.stores.auth_log import AuthLogStore
from utilitysign.stores.cache import CacheStore
from utilitysign.stores.error_log import ErrorLogStore, ErrorStat


@dataclass(frozen=True)
class SiteStats:
    site_id: int
    since: datetime
    auth_events: int
    errors: int
    cache_entries: int
    errors_by_severity: dict[str, int] = field(default_factory=dict)


async def collect_site_stats(
    ctx: StorageContext,
    site_id: int,
    *,
    days: int | None = None,
    settings: Settings | None = None,
) -> SiteStats:
    # Per-site dashboard numbers; every read is scoped to the one site.
    require_site_id(site_id)
    window = days if days is not None else (settings or get_settings()).error_stats_window_days
    since = ctx.now() - timedelta(days=window)
    auth_events = await AuthLogStore(ctx).count(site_id, since=since)
    error_store = ErrorLogStore(ctx)
    errors = await error_store.count(site_id, since=since)
    breakdown = await error_store.stats(site_id, since=since)
    cache_entries = await CacheStore(ctx).count(site_id)
    return SiteStats(
        site_id=site_id,
        since=since,
        auth_events=auth_events,
        errors=errors,
        cache_entries=cache_entries,
        errors_by_severity=summarize_by_severity(breakdown),
    )


def summarize_by_severity(stats: list[ErrorStat]) -> dict[str, int]:
    totals: dict[str, int] = {}
    for stat in stats:
        totals[stat.severity] = totals.get(stat.severity, 0) + stat.count
    return totals
