from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Any, Callable

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.ext.automap import automap_base

from utilitysign.core.config import Settings, get_settings
from utilitysign.persistence.db import StorageContext
from utilitysign.schema.tables import ALL_DESCRIPTORS

if TYPE_CHECKING:
    from utilitysign.migrations.runner import MigrationRunner


logger = logging.getLogger(__name__)


@dataclass
class QueryLayer:
    # Read-side ORM over the store tables; the stores never depend on it.
    classes: dict[str, Any]
    sessionmaker: async_sessionmaker[AsyncSession]

    def model(self, logical_name: str) -> Any:
        return self.classes[logical_name]

    def session(self) -> AsyncSession:
        return self.sessionmaker()


@dataclass
class QueryLayerResult:
    layer: QueryLayer | None = None
    error: str | None = None
    skipped: bool = field(default=False)

    @property
    def ok(self) -> bool:
        return self.layer is not None


def _classname(prefix: str) -> Callable[[Any, str, sa.Table], str]:
    def classname_for_table(base: Any, tablename: str, table: sa.Table) -> str:
        logical = tablename[len(prefix):] if tablename.startswith(prefix) else tablename
        return "".join(part.capitalize() for part in logical.split("_"))

    return classname_for_table


async def bootstrap_query_layer(
    ctx: StorageContext,
    runner: MigrationRunner,
    settings: Settings | None = None,
) -> QueryLayerResult:
    """Build automapped ORM classes for the store tables.

    Runs only once the runner reports every migration applied cleanly. Any
    failure is logged once and returned as ``error``; it never raises, so a
    host can keep serving the stores without the query layer.
    """
    resolved = settings or get_settings()
    if not resolved.query_layer_enabled:
        return QueryLayerResult(skipped=True)
    if not runner.is_applied():
        logger.info("query_layer_skipped reason=migrations_not_applied")
        return QueryLayerResult(error="migrations not applied", skipped=True)

    names = {ctx.table_name(descriptor.table_name): descriptor.table_name for descriptor in ALL_DESCRIPTORS}
    metadata = sa.MetaData()
    try:
        async with ctx.engine.connect() as conn:
            await conn.run_sync(lambda sync_conn: metadata.reflect(sync_conn, only=list(names)))
        base = automap_base(metadata=metadata)
        base.prepare(classname_for_table=_classname(ctx.table_prefix))
        classes = {names[cls.__table__.name]: cls for cls in base.classes}
        missing = sorted(set(names.values()) - set(classes))
        if missing:
            raise LookupError(f"tables without mapped classes: {', '.join(missing)}")
    except (SQLAlchemyError, OSError, LookupError) as exc:
        logger.warning("query_layer_bootstrap_failed error=%s", exc, exc_info=exc)
        return QueryLayerResult(error=str(exc))

    layer = QueryLayer(
        classes=classes,
        sessionmaker=async_sessionmaker(ctx.engine, expire_on_commit=False),
    )
    logger.info("query_layer_ready models=%s", ",".join(sorted(classes)))
    return QueryLayerResult(layer=layer)
