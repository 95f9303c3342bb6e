from __future__ import annotations

from enum import Enum
import logging

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy.engine import Connection
from sqlalchemy.schema import CreateIndex, CreateTable, DropTable

from utilitysign.core.errors import MigrationError, SchemaDriftError
from utilitysign.persistence.db import STORAGE_EXCEPTIONS, StorageContext
from utilitysign.schema.descriptor import SchemaDescriptor
from utilitysign.schema.diff import LiveTable, SchemaDiff, diff_schema


logger = logging.getLogger(__name__)


class UpOutcome(str, Enum):
    CREATED = "created"
    ALTERED = "altered"
    UNCHANGED = "unchanged"


class Migration:
    """Forward/reverse schema lifecycle for one store table.

    ``up`` converges the live table onto the descriptor without touching
    existing rows: it creates the table when absent, applies additive
    differences (new columns, new keys) when present, and raises
    ``SchemaDriftError`` without applying anything when the live table has
    diverged in a way that would need a destructive change. ``down`` drops
    the table; dropping an absent table is a successful no-op. Both run in a
    single transaction and are the only places DDL is issued.
    """

    def __init__(self, migration_id: str, descriptor: SchemaDescriptor) -> None:
        self.id = migration_id
        self.descriptor = descriptor

    def __repr__(self) -> str:
        return f"Migration(id={self.id!r}, table={self.descriptor.table_name!r})"

    def table_name(self, ctx: StorageContext) -> str:
        return ctx.table_name(self.descriptor.table_name)

    def _bind(self, ctx: StorageContext) -> sa.Table:
        # Private MetaData so DDL never mutates the tables the stores query through.
        return self.descriptor.to_table(sa.MetaData(), ctx.table_prefix)

    async def up(self, ctx: StorageContext) -> UpOutcome:
        table = self._bind(ctx)
        try:
            async with ctx.engine.begin() as conn:
                outcome = await conn.run_sync(self._converge, table, ctx.table_prefix)
        except MigrationError:
            raise
        except STORAGE_EXCEPTIONS as exc:
            raise MigrationError(
                f"up failed for {table.name}: {exc}",
                migration_id=self.id,
                table_name=table.name,
            ) from exc
        logger.info("migration_up migration_id=%s table=%s outcome=%s", self.id, table.name, outcome.value)
        return outcome

    def _converge(self, connection: Connection, table: sa.Table, table_prefix: str) -> UpOutcome:
        live = LiveTable.reflect(connection, table.name)
        if live is None:
            connection.execute(CreateTable(table, if_not_exists=True))
            for index in sorted(table.indexes, key=lambda item: item.name or ""):
                connection.execute(CreateIndex(index, if_not_exists=True))
            return UpOutcome.CREATED

        diff = diff_schema(self.descriptor, live, connection.dialect, table_prefix)
        if diff.has_drift:
            raise SchemaDriftError(table.name, diff.drift, migration_id=self.id)
        if diff.is_clean:
            return UpOutcome.UNCHANGED

        operations = Operations(MigrationContext.configure(connection))
        for column in diff.missing_columns:
            operations.add_column(table.name, column.to_column())
        indexes = {index.name: index for index in table.indexes}
        for key in diff.missing_keys:
            connection.execute(CreateIndex(indexes[key.name], if_not_exists=True))
        return UpOutcome.ALTERED

    async def down(self, ctx: StorageContext) -> bool:
        # Returns whether a table was actually dropped.
        table = self._bind(ctx)
        try:
            async with ctx.engine.begin() as conn:
                existed = await conn.run_sync(lambda sync_conn: sa.inspect(sync_conn).has_table(table.name))
                await conn.execute(DropTable(table, if_exists=True))
        except STORAGE_EXCEPTIONS as exc:
            raise MigrationError(
                f"down failed for {table.name}: {exc}",
                migration_id=self.id,
                table_name=table.name,
            ) from exc
        logger.info("migration_down migration_id=%s table=%s dropped=%s", self.id, table.name, existed)
        return existed

    async def inspect(self, ctx: StorageContext) -> SchemaDiff | None:
        # Read-only comparison of the live table against the descriptor; None when absent.
        table_name = self.table_name(ctx)
        try:
            async with ctx.engine.connect() as conn:
                return await conn.run_sync(self._diff, table_name, ctx.table_prefix)
        except STORAGE_EXCEPTIONS as exc:
            raise MigrationError(
                f"inspect failed for {table_name}: {exc}",
                migration_id=self.id,
                table_name=table_name,
            ) from exc

    def _diff(self, connection: Connection, table_name: str, table_prefix: str) -> SchemaDiff | None:
        live = LiveTable.reflect(connection, table_name)
        if live is None:
            return None
        return diff_schema(self.descriptor, live, connection.dialect, table_prefix)
