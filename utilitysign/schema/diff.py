from __future__ import annotations

from dataclasses import dataclass, field

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Dialect
from sqlalchemy.exc import CompileError
from sqlalchemy.types import TypeEngine

from utilitysign.schema.descriptor import ColumnDef, KeyColumns, KeyDef, SchemaDescriptor


def compile_type(type_: TypeEngine, dialect: Dialect) -> str:
    # Compare types as the live dialect spells them so variants and aliases line up.
    try:
        rendered = type_.compile(dialect=dialect)
    except CompileError:
        rendered = repr(type_)
    return " ".join(rendered.upper().split())


@dataclass(frozen=True)
class LiveColumn:
    name: str
    type_sql: str
    nullable: bool


@dataclass(frozen=True)
class LiveTable:
    name: str
    columns: dict[str, LiveColumn]
    primary_key: tuple[str, ...]
    keys: frozenset[tuple[KeyColumns, bool]] = field(default_factory=frozenset)

    @classmethod
    def reflect(cls, connection: Connection, table_name: str) -> LiveTable | None:
        # Snapshot the live table through the Inspector; None when the table is absent.
        inspector = sa.inspect(connection)
        if not inspector.has_table(table_name):
            return None
        dialect = connection.dialect
        columns = {
            column["name"]: LiveColumn(
                name=column["name"],
                type_sql=compile_type(column["type"], dialect),
                nullable=bool(column.get("nullable", True)),
            )
            for column in inspector.get_columns(table_name)
        }
        pk = inspector.get_pk_constraint(table_name) or {}
        keys: set[tuple[KeyColumns, bool]] = set()
        for index in inspector.get_indexes(table_name):
            # Expression indexes report None for their computed columns.
            names = tuple(name for name in index.get("column_names") or () if name is not None)
            if names:
                keys.add((names, bool(index.get("unique"))))
        try:
            unique_constraints = inspector.get_unique_constraints(table_name)
        except NotImplementedError:
            unique_constraints = []
        for constraint in unique_constraints:
            names = tuple(constraint.get("column_names") or ())
            if names:
                keys.add((names, True))
        return cls(
            name=table_name,
            columns=columns,
            primary_key=tuple(pk.get("constrained_columns") or ()),
            keys=frozenset(keys),
        )


@dataclass(frozen=True)
class SchemaDiff:
    table_name: str
    missing_columns: tuple[ColumnDef, ...] = ()
    missing_keys: tuple[KeyDef, ...] = ()
    drift: tuple[str, ...] = ()

    @property
    def pending(self) -> tuple[str, ...]:
        # Human-readable additive operations that up() would apply.
        return tuple(
            [f"add column {column.name}" for column in self.missing_columns]
            + [f"add {'unique ' if key.unique else ''}key {key.name}" for key in self.missing_keys]
        )

    @property
    def has_drift(self) -> bool:
        return bool(self.drift)

    @property
    def is_clean(self) -> bool:
        return not (self.missing_columns or self.missing_keys or self.drift)


def diff_schema(
    descriptor: SchemaDescriptor,
    live: LiveTable,
    dialect: Dialect,
    table_prefix: str = "",
) -> SchemaDiff:
    # Additive differences become operations; everything destructive or lossy is drift.
    missing_columns: list[ColumnDef] = []
    drift: list[str] = []

    for column in descriptor.columns:
        live_column = live.columns.get(column.name)
        if live_column is None:
            if column.nullable or column.default is not None:
                missing_columns.append(column)
            else:
                drift.append(f"column {column.name} is missing and NOT NULL without a default")
            continue
        declared = compile_type(column.sa_type(), dialect)
        if declared != live_column.type_sql:
            drift.append(f"column {column.name} type is {live_column.type_sql}, expected {declared}")
        # Primary keys are NOT NULL by construction; only compare declared nullability elsewhere.
        if column.name != descriptor.primary_key and live_column.nullable != column.nullable:
            expected = "NULL" if column.nullable else "NOT NULL"
            drift.append(f"column {column.name} nullability differs, expected {expected}")

    declared_names = set(descriptor.column_names)
    for name in live.columns:
        if name not in declared_names:
            drift.append(f"column {name} exists but is not declared")

    if live.primary_key != (descriptor.primary_key,):
        drift.append(f"primary key is {list(live.primary_key)}, expected [{descriptor.primary_key!r}]")

    declared_keys = descriptor.keys(table_prefix)
    missing_keys = [key for key in declared_keys if (key.columns, key.unique) not in live.keys]
    declared_unique = {key.columns for key in declared_keys if key.unique}
    for columns, unique in sorted(live.keys):
        if unique and columns not in declared_unique:
            drift.append(f"unexpected unique key on {list(columns)}")

    return SchemaDiff(
        table_name=live.name,
        missing_columns=tuple(missing_columns),
        missing_keys=tuple(missing_keys),
        drift=tuple(drift),
    )
