from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import sqlalchemy as sa
from sqlalchemy.types import TypeEngine

from utilitysign.core.errors import InvalidSchemaError


KeyColumns = tuple[str, ...]


class ColumnType(str, Enum):
    BIGINT = "bigint"
    INTEGER = "integer"
    STRING = "string"
    TEXT = "text"
    DATETIME = "datetime"
    JSON = "json"
    BLOB = "blob"


@dataclass(frozen=True)
class ColumnDef:
    name: str
    type: ColumnType
    nullable: bool = True
    # Server-side default as raw SQL, e.g. "1" or "CURRENT_TIMESTAMP".
    default: str | None = None
    length: int | None = None
    autoincrement: bool = False

    def sa_type(self) -> TypeEngine:
        if self.type is ColumnType.BIGINT:
            # SQLite only autoincrements a column declared exactly INTEGER.
            return sa.BigInteger().with_variant(sa.Integer(), "sqlite")
        if self.type is ColumnType.INTEGER:
            return sa.Integer()
        if self.type is ColumnType.STRING:
            return sa.String(self.length)
        if self.type is ColumnType.TEXT:
            return sa.Text()
        if self.type is ColumnType.DATETIME:
            return sa.DateTime(timezone=True)
        if self.type is ColumnType.JSON:
            return sa.JSON()
        return sa.LargeBinary()

    def to_column(self, *, primary_key: bool = False) -> sa.Column:
        # Build a fresh Column each call; Column objects bind to exactly one Table.
        return sa.Column(
            self.name,
            self.sa_type(),
            primary_key=primary_key,
            nullable=self.nullable,
            server_default=sa.text(self.default) if self.default is not None else None,
            autoincrement=self.autoincrement if primary_key else False,
        )


@dataclass(frozen=True)
class KeyDef:
    name: str
    columns: KeyColumns
    unique: bool


@dataclass(frozen=True)
class SchemaDescriptor:
    """Declarative shape of one store table.

    ``table_name`` is the logical name; the host table prefix is applied when
    the descriptor is bound to a storage context. Keys are ordered column
    tuples so composite indexes keep their column order.
    """

    table_name: str
    columns: tuple[ColumnDef, ...]
    primary_key: str
    unique_keys: tuple[KeyColumns, ...] = ()
    secondary_keys: tuple[KeyColumns, ...] = ()

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    def column(self, name: str) -> ColumnDef | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def validate(self) -> None:
        if not self.table_name or not self.table_name.strip():
            raise InvalidSchemaError("table_name must not be empty")
        names = self.column_names
        if not names:
            raise InvalidSchemaError(f"{self.table_name}: at least one column is required")
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise InvalidSchemaError(f"{self.table_name}: duplicate columns {duplicates}")
        pk = self.column(self.primary_key)
        if pk is None:
            raise InvalidSchemaError(
                f"{self.table_name}: primary key {self.primary_key!r} is not a declared column"
            )
        if pk.nullable:
            raise InvalidSchemaError(f"{self.table_name}: primary key {pk.name!r} must be NOT NULL")
        for column in self.columns:
            if column.type is ColumnType.STRING and not (column.length and column.length > 0):
                raise InvalidSchemaError(f"{self.table_name}.{column.name}: STRING needs a positive length")
            if column.autoincrement and column.name != self.primary_key:
                raise InvalidSchemaError(
                    f"{self.table_name}.{column.name}: only the primary key may autoincrement"
                )
        for key in (*self.unique_keys, *self.secondary_keys):
            if not key:
                raise InvalidSchemaError(f"{self.table_name}: empty key")
            missing = [name for name in key if name not in names]
            if missing:
                raise InvalidSchemaError(f"{self.table_name}: key {key} references unknown columns {missing}")

    def keys(self, table_prefix: str = "") -> list[KeyDef]:
        full_name = f"{table_prefix}{self.table_name}"
        keys: list[KeyDef] = []
        seen: set[tuple[KeyColumns, bool]] = set()
        for unique, group in ((True, self.unique_keys), (False, self.secondary_keys)):
            for columns in group:
                if (tuple(columns), unique) in seen:
                    continue
                seen.add((tuple(columns), unique))
                prefix = "uq" if unique else "ix"
                keys.append(KeyDef(f"{prefix}_{full_name}_{'_'.join(columns)}", tuple(columns), unique))
        return keys

    def to_table(self, metadata: sa.MetaData, table_prefix: str = "") -> sa.Table:
        self.validate()
        columns = [column.to_column(primary_key=column.name == self.primary_key) for column in self.columns]
        indexes = [sa.Index(key.name, *key.columns, unique=key.unique) for key in self.keys(table_prefix)]
        return sa.Table(f"{table_prefix}{self.table_name}", metadata, *columns, *indexes)
