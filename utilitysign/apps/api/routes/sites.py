from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel

from utilitysign.apps.api.deps import get_context
from utilitysign.persistence.db import StorageContext
from utilitysign.services.site_stats import collect_site_stats


router = APIRouter(prefix="/admin/sites", tags=["sites"])


class SiteStatsResponse(BaseModel):
    site_id: int
    since: str
    auth_events: int
    errors: int
    cache_entries: int
    errors_by_severity: dict[str, int]


@router.get("/{site_id}/stats")
async def site_stats(
    site_id: int = Path(ge=1),
    days: int | None = Query(default=None, ge=1, le=365),
    ctx: StorageContext = Depends(get_context),
) -> SiteStatsResponse:
    stats = await collect_site_stats(ctx, site_id, days=days)
    return SiteStatsResponse(
        site_id=stats.site_id,
        since=stats.since.isoformat(),
        auth_events=stats.auth_events,
        errors=stats.errors,
        cache_entries=stats.cache_entries,
        errors_by_severity=stats.errors_by_severity,
    )
