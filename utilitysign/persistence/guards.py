from __future__ import annotations

from sqlalchemy import Table
from sqlalchemy.sql.elements import ColumnElement

from utilitysign.core.errors import InvalidInputError


def require_site_id(site_id: object) -> int:
    # Every store read/write is tenant scoped; reject anything that is not a real site id.
    if isinstance(site_id, bool) or not isinstance(site_id, int):
        raise InvalidInputError("site_id", "must be an integer")
    if site_id < 1:
        raise InvalidInputError("site_id", "must be >= 1")
    return site_id


def site_predicate(table: Table, site_id: object) -> ColumnElement[bool]:
    # Build tenant predicates through a single helper to guarantee guard coverage.
    return table.c.site_id == require_site_id(site_id)
