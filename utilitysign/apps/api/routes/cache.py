from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from utilitysign.apps.api.deps import get_context
from utilitysign.persistence.db import StorageContext
from utilitysign.stores.cache import CacheStore


router = APIRouter(prefix="/admin/cache", tags=["cache"])


class CacheEntryResponse(BaseModel):
    cache_key: str
    hit: bool
    size: int | None


@router.get("/{cache_key}")
async def inspect_cache_entry(
    cache_key: str,
    site_id: int = Query(ge=1),
    ctx: StorageContext = Depends(get_context),
) -> CacheEntryResponse:
    # Expose presence and payload size only; cached bytes may hold tenant data.
    data = await CacheStore(ctx).get(site_id, cache_key)
    return CacheEntryResponse(
        cache_key=cache_key,
        hit=data is not None,
        size=len(data) if data is not None else None,
    )
