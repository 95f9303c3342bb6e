from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable

from sqlalchemy import MetaData, Table
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from utilitysign.core.config import Settings, get_settings
from utilitysign.core.errors import (
    DatabaseError,
    SchemaNotReadyError,
    StorageTimeoutError,
    StorageUnavailableError,
    UtilitySignError,
)

if TYPE_CHECKING:
    from utilitysign.schema.descriptor import SchemaDescriptor


# Failures raised by the engine/driver that the storage boundary translates.
STORAGE_EXCEPTIONS = (SQLAlchemyError, OSError)

_MISSING_TABLE_MARKERS = ("no such table", "undefinedtableerror", "doesn't exist")
_TIMEOUT_MARKERS = (
    "database is locked",
    "timeout",
    "timed out",
    "canceling statement",
    "querycancelederror",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StorageContext:
    # Explicit storage handle threaded through migrations, stores and services.
    engine: AsyncEngine
    table_prefix: str = "wp_utilitysign_"
    default_site_id: int = 1
    clock: Callable[[], datetime] = utc_now
    metadata: MetaData = field(default_factory=MetaData)

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def table_name(self, logical_name: str) -> str:
        return f"{self.table_prefix}{logical_name}"

    def table(self, descriptor: SchemaDescriptor) -> Table:
        # Build store tables once per context; the descriptor stays the single source of shape.
        name = self.table_name(descriptor.table_name)
        existing = self.metadata.tables.get(name)
        if existing is not None:
            return existing
        return descriptor.to_table(self.metadata, self.table_prefix)

    def now(self) -> datetime:
        return self.clock()

    async def dispose(self) -> None:
        await self.engine.dispose()


def _engine_kwargs(database_url: str, settings: Settings) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        # Let SQLite wait on a locked file instead of failing immediately.
        kwargs["connect_args"] = {"timeout": float(settings.sqlite_busy_timeout_s)}
        return kwargs
    # Configure bounded pools for predictable latency under load.
    kwargs["pool_size"] = max(1, int(settings.db_pool_size))
    kwargs["max_overflow"] = max(0, int(settings.db_max_overflow))
    kwargs["pool_timeout"] = 30
    kwargs["pool_recycle"] = 1800
    if settings.db_statement_timeout_ms > 0 and database_url.startswith("postgresql+asyncpg"):
        kwargs["connect_args"] = {
            "server_settings": {"statement_timeout": str(int(settings.db_statement_timeout_ms))}
        }
    return kwargs


def create_storage_context(
    settings: Settings | None = None,
    *,
    database_url: str | None = None,
    clock: Callable[[], datetime] | None = None,
) -> StorageContext:
    resolved = settings or get_settings()
    url = database_url or resolved.database_url
    engine = create_async_engine(url, **_engine_kwargs(url, resolved))
    return StorageContext(
        engine=engine,
        table_prefix=resolved.table_prefix,
        default_site_id=resolved.default_site_id,
        clock=clock or utc_now,
    )


def translate_storage_error(exc: BaseException, *, table_name: str | None = None) -> UtilitySignError:
    # Map driver/engine failures onto the storage error taxonomy.
    text = f"{exc} {getattr(exc, 'orig', '')!r}".lower()
    if isinstance(exc, TimeoutError):
        return StorageTimeoutError(f"storage timed out: {exc}")
    if any(marker in text for marker in _MISSING_TABLE_MARKERS):
        return SchemaNotReadyError(table_name or "unknown")
    if any(marker in text for marker in _TIMEOUT_MARKERS):
        return StorageTimeoutError(f"storage timed out: {exc}")
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return StorageUnavailableError(f"storage connection lost: {exc}")
    if isinstance(exc, (OSError, OperationalError, InterfaceError)):
        return StorageUnavailableError(f"storage unavailable: {exc}")
    return DatabaseError(f"storage failure: {exc}")
