from __future__ import annotations

import pytest
import sqlalchemy as sa

from utilitysign.core.errors import InvalidSchemaError
from utilitysign.schema.descriptor import ColumnDef, ColumnType, SchemaDescriptor
from utilitysign.schema.tables import ALL_DESCRIPTORS, CACHE


def _descriptor(**overrides) -> SchemaDescriptor:
    # Minimal valid descriptor; each test breaks one rule.
    fields = {
        "table_name": "widgets",
        "columns": (
            ColumnDef("id", ColumnType.BIGINT, nullable=False, autoincrement=True),
            ColumnDef("name", ColumnType.STRING, nullable=False, length=40),
            ColumnDef("site_id", ColumnType.BIGINT, nullable=False, default="1"),
        ),
        "primary_key": "id",
    }
    fields.update(overrides)
    return SchemaDescriptor(**fields)


def test_store_descriptors_are_valid() -> None:
    for descriptor in ALL_DESCRIPTORS:
        descriptor.validate()


def test_primary_key_must_be_declared() -> None:
    with pytest.raises(InvalidSchemaError, match="primary key"):
        _descriptor(primary_key="missing").validate()


def test_key_columns_must_be_declared() -> None:
    with pytest.raises(InvalidSchemaError, match="unknown columns"):
        _descriptor(secondary_keys=(("name", "colour"),)).validate()
    with pytest.raises(InvalidSchemaError, match="unknown columns"):
        _descriptor(unique_keys=(("nope",),)).validate()


def test_rejects_duplicate_columns_and_empty_shapes() -> None:
    duplicated = (
        ColumnDef("id", ColumnType.BIGINT, nullable=False),
        ColumnDef("id", ColumnType.INTEGER, nullable=False),
    )
    with pytest.raises(InvalidSchemaError, match="duplicate"):
        _descriptor(columns=duplicated).validate()
    with pytest.raises(InvalidSchemaError):
        _descriptor(columns=()).validate()
    with pytest.raises(InvalidSchemaError):
        _descriptor(table_name=" ").validate()
    with pytest.raises(InvalidSchemaError, match="empty key"):
        _descriptor(secondary_keys=((),)).validate()


def test_rejects_nullable_primary_key_and_unsized_strings() -> None:
    nullable_pk = (ColumnDef("id", ColumnType.BIGINT), ColumnDef("name", ColumnType.STRING, length=10))
    with pytest.raises(InvalidSchemaError, match="NOT NULL"):
        _descriptor(columns=nullable_pk).validate()
    unsized = (ColumnDef("id", ColumnType.BIGINT, nullable=False), ColumnDef("name", ColumnType.STRING))
    with pytest.raises(InvalidSchemaError, match="length"):
        _descriptor(columns=unsized).validate()


def test_keys_are_named_after_prefixed_table() -> None:
    keys = CACHE.keys("wp_utilitysign_")
    names = {key.name for key in keys}
    assert "uq_wp_utilitysign_cache_site_id_cache_key" in names
    assert "ix_wp_utilitysign_cache_expires_at" in names
    unique = [key for key in keys if key.unique]
    assert [key.columns for key in unique] == [("site_id", "cache_key")]


def test_to_table_binds_prefix_and_indexes() -> None:
    table = CACHE.to_table(sa.MetaData(), "wp_test_")
    assert table.name == "wp_test_cache"
    assert list(table.primary_key.columns.keys()) == ["id"]
    assert table.c.expires_at.nullable is False
    unique_indexes = [index for index in table.indexes if index.unique]
    assert len(unique_indexes) == 1
    assert [column.name for column in unique_indexes[0].columns] == ["site_id", "cache_key"]
