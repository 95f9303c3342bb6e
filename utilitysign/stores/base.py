from __future__ import annotations

from datetime import date, datetime, timezone
from typing import ClassVar

import sqlalchemy as sa

from utilitysign.core.errors import InvalidInputError, UtilitySignError
from utilitysign.persistence.db import StorageContext, translate_storage_error
from utilitysign.schema.descriptor import SchemaDescriptor


DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


def _require_encodable(field: str, value: str) -> str:
    # Lone surrogates (e.g. surrogateescape-decoded paths) never reach the driver.
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise InvalidInputError(field, "must be valid UTF-8 text") from exc
    return value


def require_text(field: str, value: object, max_length: int | None = None) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(field, "is required")
    if max_length is not None and len(value) > max_length:
        raise InvalidInputError(field, f"must be at most {max_length} characters")
    return _require_encodable(field, value)


def optional_text(field: str, value: object, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidInputError(field, "must be a string")
    if max_length is not None and len(value) > max_length:
        raise InvalidInputError(field, f"must be at most {max_length} characters")
    return _require_encodable(field, value)


def optional_filter(field: str, value: object, max_length: int | None = None) -> str | None:
    # An empty filter is a caller mistake, not "match everything".
    if value is None:
        return None
    return require_text(field, value, max_length)


def optional_int(field: str, value: object, *, minimum: int = 0) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError(field, "must be an integer")
    if value < minimum:
        raise InvalidInputError(field, f"must be >= {minimum}")
    return value


def require_page(offset: int, limit: int) -> None:
    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
        raise InvalidInputError("offset", "must be a non-negative integer")
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_PAGE_SIZE:
        raise InvalidInputError("limit", f"must be between 1 and {MAX_PAGE_SIZE}")


def as_utc(value: datetime) -> datetime:
    # Naive datetimes are taken to be UTC already.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def optional_datetime(field: str, value: object) -> datetime | None:
    if value is None:
        return None
    if not isinstance(value, datetime):
        raise InvalidInputError(field, "must be a datetime")
    return as_utc(value)


def require_time_range(since: object, until: object) -> tuple[datetime | None, datetime | None]:
    start = optional_datetime("since", since)
    end = optional_datetime("until", until)
    if start is not None and end is not None and start > end:
        raise InvalidInputError("since", "must not be after until")
    return start, end


def from_db_datetime(value: datetime | None) -> datetime | None:
    # SQLite hands back naive values; everything this package writes is UTC.
    if value is None:
        return None
    return as_utc(value)


def from_db_date(value: date | str) -> date:
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    if isinstance(value, datetime):
        return value.date()
    return value


class Store:
    # Each store owns row lifecycle for exactly one table and never issues DDL.
    descriptor: ClassVar[SchemaDescriptor]

    def __init__(self, ctx: StorageContext) -> None:
        self._ctx = ctx
        self.table: sa.Table = ctx.table(self.descriptor)

    def _storage_error(self, exc: BaseException) -> UtilitySignError:
        return translate_storage_error(exc, table_name=self.table.name)
