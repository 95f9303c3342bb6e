from __future__ import annotations

from typing import Sequence


class UtilitySignError(Exception):
    """Base error for the UtilitySign storage core."""


class InvalidSchemaError(UtilitySignError):
    """Schema descriptor is malformed; fatal at registration time."""


class MigrationError(UtilitySignError):
    """A specific up/down attempt failed; safe to retry by re-invoking."""

    def __init__(
        self,
        message: str,
        *,
        migration_id: str | None = None,
        table_name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.migration_id = migration_id
        self.table_name = table_name
        # Filled in by the runner with the ids that completed before the failure.
        self.report = None


class SchemaDriftError(MigrationError):
    """Live table diverges from its descriptor in a way up() will not fix."""

    def __init__(
        self,
        table_name: str,
        drift: Sequence[str],
        *,
        migration_id: str | None = None,
    ) -> None:
        summary = "; ".join(drift)
        super().__init__(
            f"schema drift on {table_name}: {summary}",
            migration_id=migration_id,
            table_name=table_name,
        )
        self.drift = tuple(drift)


class SchemaNotReadyError(UtilitySignError):
    """A store was used before its table exists; run the migrations first."""

    def __init__(self, table_name: str) -> None:
        super().__init__(f"table {table_name} does not exist; run apply_all() first")
        self.table_name = table_name


class InvalidInputError(UtilitySignError, ValueError):
    """Caller-supplied data violates a store contract; rejected before any I/O."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field


class DatabaseError(UtilitySignError):
    """Database layer failure."""


class StorageTimeoutError(DatabaseError):
    """Storage engine timed out; transient, retry with backoff."""


class StorageUnavailableError(DatabaseError):
    """Storage engine unreachable; transient, retry with backoff."""
