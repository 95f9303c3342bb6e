from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator, Iterator

import pytest

from utilitysign.core.config import get_settings
from utilitysign.lifecycle import build_runner
from utilitysign.migrations.runner import MigrationRunner
from utilitysign.persistence.db import StorageContext
from utilitysign.tests.utils.clock import FrozenClock
from utilitysign.tests.utils.storage import make_context


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Iterator[None]:
    # Settings are cached per process; tests that patch the environment need a fresh read.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
async def ctx(tmp_path: Path, clock: FrozenClock) -> AsyncIterator[StorageContext]:
    # One SQLite file per test keeps schema state isolated.
    context = make_context(tmp_path / "store.db", clock)
    yield context
    await context.dispose()


@pytest.fixture
def runner(ctx: StorageContext) -> MigrationRunner:
    return build_runner(ctx)


@pytest.fixture
async def installed(ctx: StorageContext, runner: MigrationRunner) -> StorageContext:
    # Context whose store tables already exist.
    await runner.apply_all()
    return ctx
