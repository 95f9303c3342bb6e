from __future__ import annotations

from datetime import timedelta

import pytest

from utilitysign.core.errors import InvalidInputError
from utilitysign.persistence.db import StorageContext
from utilitysign.stores.error_log import ErrorEntry, ErrorLogFilter, ErrorLogStore
from utilitysign.tests.utils.clock import BASE_TIME, FrozenClock


def _entry(**overrides) -> ErrorEntry:
    fields = {"type": "RuntimeError", "message": "boom", "severity": "error"}
    fields.update(overrides)
    return ErrorEntry(**fields)


@pytest.mark.asyncio
async def test_append_and_filter(installed: StorageContext) -> None:
    store = ErrorLogStore(installed)
    await store.append(_entry(correlation_id="err_1_aaaaaaaa", file="app.py", line=12))
    await store.append(_entry(severity="critical", type="Exception"))
    await store.append(_entry(severity="warning", site_id=2))

    records = await store.query(ErrorLogFilter(site_id=1))
    assert len(records) == 2
    critical = await store.query(ErrorLogFilter(site_id=1, severity="critical"))
    assert [record.type for record in critical] == ["Exception"]
    correlated = await store.query(ErrorLogFilter(site_id=1, correlation_id="err_1_aaaaaaaa"))
    assert correlated[0].file == "app.py"
    assert correlated[0].line == 12
    assert correlated[0].timestamp == BASE_TIME


@pytest.mark.asyncio
async def test_stats_group_by_severity_and_day(installed: StorageContext, clock: FrozenClock) -> None:
    store = ErrorLogStore(installed)
    await store.append(_entry())
    await store.append(_entry())
    await store.append(_entry(severity="critical"))
    clock.advance(days=1)
    await store.append(_entry())
    await store.append(_entry(site_id=2))

    stats = await store.stats(1)
    assert [(stat.day, stat.severity, stat.count) for stat in stats] == [
        ((BASE_TIME + timedelta(days=1)).date(), "error", 1),
        (BASE_TIME.date(), "critical", 1),
        (BASE_TIME.date(), "error", 2),
    ]
    recent = await store.stats(1, since=BASE_TIME + timedelta(hours=12))
    assert [(stat.severity, stat.count) for stat in recent] == [("error", 1)]
    assert await store.count(1) == 4


@pytest.mark.asyncio
async def test_rejects_unknown_severity_and_oversized_fields(installed: StorageContext) -> None:
    store = ErrorLogStore(installed)
    with pytest.raises(InvalidInputError) as excinfo:
        await store.append(_entry(severity="fatal"))
    assert excinfo.value.field == "severity"
    with pytest.raises(InvalidInputError):
        await store.append(_entry(message=""))
    with pytest.raises(InvalidInputError):
        await store.append(_entry(request_method="PROPFINDXXX"))
    with pytest.raises(InvalidInputError):
        await store.append(_entry(line=-1))
    assert await store.count(1) == 0


@pytest.mark.asyncio
async def test_query_orders_newest_first_with_id_tiebreak(installed: StorageContext, clock: FrozenClock) -> None:
    store = ErrorLogStore(installed)
    first = await store.append(_entry())
    second = await store.append(_entry())
    clock.advance(seconds=30)
    third = await store.append(_entry(severity="critical"))
    records = await store.query(ErrorLogFilter(site_id=1))
    assert [record.id for record in records] == [third, second, first]


@pytest.mark.asyncio
async def test_unencodable_text_and_empty_filters_are_rejected(installed: StorageContext) -> None:
    store = ErrorLogStore(installed)
    with pytest.raises(InvalidInputError) as excinfo:
        await store.append(_entry(file="/var/www/uploads/\udcff.pdf"))
    assert excinfo.value.field == "file"
    with pytest.raises(InvalidInputError) as excinfo:
        await store.query(ErrorLogFilter(site_id=1, severity=""))
    assert excinfo.value.field == "severity"
    with pytest.raises(InvalidInputError):
        await store.query(ErrorLogFilter(site_id=1, correlation_id=""))
    assert await store.count(1) == 0
