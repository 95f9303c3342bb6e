from __future__ import annotations

import gzip

import pytest

from utilitysign.core.config import Settings
from utilitysign.core.errors import StorageUnavailableError
from utilitysign.persistence.db import StorageContext
from utilitysign.services.cache import CacheService, decode_value, encode_value
from utilitysign.stores.cache import CacheStore
from utilitysign.tests.utils.clock import FrozenClock


def _settings(**overrides) -> Settings:
    return Settings(**overrides)


class _UnavailableStore:
    # Stands in for a store whose database has gone away.
    async def get(self, site_id: int, key: str) -> bytes | None:
        raise StorageUnavailableError("storage unavailable: connection refused")

    async def set(self, site_id: int, key: str, data: bytes, ttl: float) -> None:
        raise StorageUnavailableError("storage unavailable: connection refused")


def test_encode_compresses_only_large_payloads() -> None:
    small = encode_value({"a": 1}, compress=True, min_bytes=1024)
    assert small == b'{"a":1}'
    large = encode_value({"blob": "x" * 4096}, compress=True, min_bytes=1024)
    assert large[:2] == b"\x1f\x8b"
    assert decode_value(large) == {"blob": "x" * 4096}
    assert gzip.decompress(large).startswith(b'{"blob"')
    assert encode_value({"blob": "x" * 4096}, compress=False, min_bytes=1024)[:1] == b"{"


@pytest.mark.asyncio
async def test_group_keys_and_ttls(installed: StorageContext, clock: FrozenClock) -> None:
    service = CacheService(installed, _settings())
    assert service.build_key("p-1", "products") == "utilitysign_products_p-1"
    assert service.ttl_for("pricing") == 600
    assert service.ttl_for("unknown") == 3600

    await service.set(1, "eur", {"rate": 1.08}, group="pricing")
    assert await CacheStore(installed).get(1, "utilitysign_pricing_eur") == b'{"rate":1.08}'
    clock.advance(seconds=599)
    assert await service.get(1, "eur", group="pricing") == {"rate": 1.08}
    clock.advance(seconds=1)
    assert await service.get(1, "eur", group="pricing", default="gone") == "gone"


@pytest.mark.asyncio
async def test_stats_track_hits_and_misses(installed: StorageContext) -> None:
    service = CacheService(installed, _settings())
    await service.set(1, "a", [1, 2, 3])
    assert await service.get(1, "a") == [1, 2, 3]
    assert await service.get(1, "missing") is None
    assert await service.delete(1, "a") is True
    stats = service.stats.as_dict()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["sets"] == 1
    assert stats["deletes"] == 1
    assert stats["hit_rate"] == 50.0
    service.reset_stats()
    assert service.stats.total_requests == 0


@pytest.mark.asyncio
async def test_clear_group_only_touches_that_group(installed: StorageContext) -> None:
    service = CacheService(installed, _settings())
    await service.set(1, "a", 1, group="pricing")
    await service.set(1, "b", 2, group="pricing")
    await service.set(1, "a", 3, group="products")
    await service.set(2, "a", 4, group="pricing")
    assert await service.clear_group(1, "pricing") == 2
    assert await service.get(1, "a", group="products") == 3
    assert await service.get(2, "a", group="pricing") == 4
    assert await service.clear_all(1) == 1
    assert await service.size(1) == 0
    assert service.stats.invalidations == 2


@pytest.mark.asyncio
async def test_disabled_cache_never_stores(installed: StorageContext) -> None:
    service = CacheService(installed, _settings(cache_enabled=False))
    assert await service.set(1, "a", 1) is False
    assert await service.get(1, "a") is None
    assert await CacheStore(installed).count(1) == 0


@pytest.mark.asyncio
async def test_storage_failures_degrade_to_misses(installed: StorageContext) -> None:
    service = CacheService(installed, _settings(), store=_UnavailableStore())  # type: ignore[arg-type]
    assert await service.get(1, "a", default="fallback") == "fallback"
    assert await service.set(1, "a", 1) is False
    assert service.stats.misses == 1
    assert service.stats.sets == 0
