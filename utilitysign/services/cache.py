from __future__ import annotations

from dataclasses import dataclass
import gzip
import json
import logging
from typing import Any

from utilitysign.core.config import Settings, get_settings
from utilitysign.core.errors import InvalidInputError, UtilitySignError
from utilitysign.persistence.db import StorageContext
from utilitysign.stores.base import require_text
from utilitysign.stores.cache import CacheStore


logger = logging.getLogger(__name__)

DEFAULT_GROUP = "default"
_GZIP_MAGIC = b"\x1f\x8b"


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    invalidations: int = 0

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        # Percentage rounded to two places; zero before the first lookup.
        if self.total_requests == 0:
            return 0.0
        return round(self.hits / self.total_requests * 100, 2)

    def as_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "invalidations": self.invalidations,
            "total_requests": self.total_requests,
            "hit_rate": self.hit_rate,
        }


def encode_value(value: Any, *, compress: bool, min_bytes: int) -> bytes:
    # JSON first; large payloads are gzipped and recognized on read by the gzip magic.
    try:
        raw = json.dumps(value, separators=(",", ":"), sort_keys=True).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise InvalidInputError("value", "must be JSON serializable") from exc
    if compress and len(raw) > min_bytes:
        return gzip.compress(raw)
    return raw


def decode_value(data: bytes) -> Any:
    if data[:2] == _GZIP_MAGIC:
        data = gzip.decompress(data)
    return json.loads(data.decode("utf-8"))


class CacheService:
    """Grouped, namespaced cache over :class:`CacheStore`.

    Keys are stored as ``<namespace_prefix><group>_<key>`` so a whole group can
    be invalidated by prefix. Storage failures never reach callers: reads
    degrade to misses and writes report ``False``.
    """

    def __init__(
        self,
        ctx: StorageContext,
        settings: Settings | None = None,
        *,
        store: CacheStore | None = None,
    ) -> None:
        resolved = settings or get_settings()
        self._store = store or CacheStore(ctx)
        self.enabled = resolved.cache_enabled
        self.namespace_prefix = resolved.cache_namespace_prefix
        self.default_ttl = resolved.cache_default_ttl_s
        self.group_ttls = dict(resolved.cache_group_ttls)
        self.compression_enabled = resolved.cache_compression_enabled
        self.compression_min_bytes = resolved.cache_compression_min_bytes
        self.stats = CacheStats()

    def build_key(self, key: str, group: str = DEFAULT_GROUP) -> str:
        require_text("group", group, 64)
        require_text("key", key)
        return f"{self.namespace_prefix}{group}_{key}"

    def ttl_for(self, group: str) -> int:
        return int(self.group_ttls.get(group, self.default_ttl))

    def reset_stats(self) -> None:
        self.stats = CacheStats()

    async def get(self, site_id: int, key: str, group: str = DEFAULT_GROUP, default: Any = None) -> Any:
        if not self.enabled:
            self.stats.misses += 1
            return default
        cache_key = self.build_key(key, group)
        try:
            data = await self._store.get(site_id, cache_key)
        except InvalidInputError:
            raise
        except UtilitySignError as exc:
            logger.warning("cache_get_failed site_id=%s key=%s", site_id, cache_key, exc_info=exc)
            data = None
        if data is None:
            self.stats.misses += 1
            return default
        try:
            value = decode_value(data)
        except (OSError, EOFError, UnicodeDecodeError, ValueError) as exc:
            # Unreadable payloads behave like misses and are overwritten on the next set.
            logger.warning("cache_decode_failed site_id=%s key=%s", site_id, cache_key, exc_info=exc)
            self.stats.misses += 1
            return default
        self.stats.hits += 1
        return value

    async def set(
        self,
        site_id: int,
        key: str,
        value: Any,
        group: str = DEFAULT_GROUP,
        ttl: int | None = None,
    ) -> bool:
        if not self.enabled:
            return False
        cache_key = self.build_key(key, group)
        payload = encode_value(
            value,
            compress=self.compression_enabled,
            min_bytes=self.compression_min_bytes,
        )
        resolved_ttl = self.ttl_for(group) if ttl is None else ttl
        try:
            await self._store.set(site_id, cache_key, payload, resolved_ttl)
        except InvalidInputError:
            raise
        except UtilitySignError as exc:
            logger.warning("cache_set_failed site_id=%s key=%s", site_id, cache_key, exc_info=exc)
            return False
        self.stats.sets += 1
        return True

    async def delete(self, site_id: int, key: str, group: str = DEFAULT_GROUP) -> bool:
        if not self.enabled:
            return False
        cache_key = self.build_key(key, group)
        try:
            await self._store.delete(site_id, cache_key)
        except InvalidInputError:
            raise
        except UtilitySignError as exc:
            logger.warning("cache_delete_failed site_id=%s key=%s", site_id, cache_key, exc_info=exc)
            return False
        self.stats.deletes += 1
        return True

    async def clear_group(self, site_id: int, group: str) -> int:
        if not self.enabled:
            return 0
        require_text("group", group, 64)
        prefix = f"{self.namespace_prefix}{group}_"
        try:
            removed = await self._store.delete_prefix(site_id, prefix)
        except InvalidInputError:
            raise
        except UtilitySignError as exc:
            logger.warning("cache_clear_group_failed site_id=%s group=%s", site_id, group, exc_info=exc)
            return 0
        self.stats.invalidations += 1
        logger.info("cache_group_cleared site_id=%s group=%s removed=%s", site_id, group, removed)
        return removed

    async def clear_all(self, site_id: int) -> int:
        if not self.enabled:
            return 0
        try:
            removed = await self._store.clear(site_id)
        except InvalidInputError:
            raise
        except UtilitySignError as exc:
            logger.warning("cache_clear_failed site_id=%s", site_id, exc_info=exc)
            return 0
        self.stats.invalidations += 1
        logger.info("cache_cleared site_id=%s removed=%s", site_id, removed)
        return removed

    async def size(self, site_id: int) -> int:
        try:
            return await self._store.count(site_id)
        except InvalidInputError:
            raise
        except UtilitySignError as exc:
            logger.warning("cache_size_failed site_id=%s", site_id, exc_info=exc)
            return 0
