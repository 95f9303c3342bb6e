from __future__ import annotations

from pathlib import Path

import pytest
import sqlalchemy as sa

from utilitysign.core.errors import MigrationError, SchemaDriftError
from utilitysign.migrations.base import Migration, UpOutcome
from utilitysign.persistence.db import StorageContext
from utilitysign.schema.descriptor import ColumnDef, ColumnType, SchemaDescriptor
from utilitysign.tests.utils.clock import FrozenClock
from utilitysign.tests.utils.storage import make_context


def _notes(*extra: ColumnDef, secondary_keys: tuple[tuple[str, ...], ...] = (("site_id",),)) -> SchemaDescriptor:
    return SchemaDescriptor(
        table_name="notes",
        columns=(
            ColumnDef("id", ColumnType.BIGINT, nullable=False, autoincrement=True),
            ColumnDef("body", ColumnType.TEXT, nullable=False),
            ColumnDef("site_id", ColumnType.BIGINT, nullable=False, default="1"),
            *extra,
        ),
        primary_key="id",
        secondary_keys=secondary_keys,
    )


async def _table_names(ctx: StorageContext) -> list[str]:
    async with ctx.engine.connect() as conn:
        return await conn.run_sync(lambda sync_conn: sa.inspect(sync_conn).get_table_names())


async def _column_names(ctx: StorageContext, table_name: str) -> list[str]:
    async with ctx.engine.connect() as conn:
        columns = await conn.run_sync(lambda sync_conn: sa.inspect(sync_conn).get_columns(table_name))
    return [column["name"] for column in columns]


async def _insert_note(ctx: StorageContext, body: str) -> None:
    async with ctx.engine.begin() as conn:
        await conn.execute(sa.text("INSERT INTO wp_utilitysign_notes (body, site_id) VALUES (:body, 1)"), {"body": body})


async def _bodies(ctx: StorageContext) -> list[str]:
    async with ctx.engine.connect() as conn:
        result = await conn.execute(sa.text("SELECT body FROM wp_utilitysign_notes ORDER BY id"))
        return [row[0] for row in result]


@pytest.mark.asyncio
async def test_up_creates_then_is_idempotent(ctx: StorageContext) -> None:
    migration = Migration("notes", _notes())
    assert await migration.up(ctx) is UpOutcome.CREATED
    assert "wp_utilitysign_notes" in await _table_names(ctx)
    await _insert_note(ctx, "kept")

    assert await migration.up(ctx) is UpOutcome.UNCHANGED
    assert await _bodies(ctx) == ["kept"]
    diff = await migration.inspect(ctx)
    assert diff is not None and diff.is_clean


@pytest.mark.asyncio
async def test_down_is_terminal_and_safe_to_repeat(ctx: StorageContext) -> None:
    migration = Migration("notes", _notes())
    await migration.up(ctx)
    assert await migration.down(ctx) is True
    assert "wp_utilitysign_notes" not in await _table_names(ctx)
    assert await migration.down(ctx) is False
    assert await migration.inspect(ctx) is None


@pytest.mark.asyncio
async def test_up_applies_additive_changes_without_touching_rows(ctx: StorageContext) -> None:
    await Migration("notes", _notes()).up(ctx)
    await _insert_note(ctx, "before upgrade")

    upgraded = _notes(
        ColumnDef("title", ColumnType.STRING, length=80),
        secondary_keys=(("site_id",), ("title",)),
    )
    migration = Migration("notes", upgraded)
    assert await migration.up(ctx) is UpOutcome.ALTERED
    assert "title" in await _column_names(ctx, "wp_utilitysign_notes")
    assert await _bodies(ctx) == ["before upgrade"]
    assert await migration.up(ctx) is UpOutcome.UNCHANGED


@pytest.mark.asyncio
async def test_drift_raises_and_applies_nothing(ctx: StorageContext) -> None:
    await Migration("notes", _notes(ColumnDef("title", ColumnType.STRING, length=80))).up(ctx)

    # Narrowing the column would lose data, and the new column must not be added either.
    narrowed = _notes(
        ColumnDef("title", ColumnType.STRING, length=10),
        ColumnDef("summary", ColumnType.TEXT),
    )
    migration = Migration("notes", narrowed)
    with pytest.raises(SchemaDriftError) as excinfo:
        await migration.up(ctx)
    assert isinstance(excinfo.value, MigrationError)
    assert excinfo.value.migration_id == "notes"
    assert excinfo.value.table_name == "wp_utilitysign_notes"
    assert any("title" in item for item in excinfo.value.drift)
    assert "summary" not in await _column_names(ctx, "wp_utilitysign_notes")

    diff = await migration.inspect(ctx)
    assert diff is not None and diff.has_drift
    assert "add column summary" in diff.pending


@pytest.mark.asyncio
async def test_up_on_broken_storage_raises_migration_error(tmp_path: Path, clock: FrozenClock) -> None:
    # A directory path cannot be opened as a database file.
    broken = make_context(tmp_path, clock)
    try:
        with pytest.raises(MigrationError) as excinfo:
            await Migration("notes", _notes()).up(broken)
        assert excinfo.value.__cause__ is not None
    finally:
        await broken.dispose()
