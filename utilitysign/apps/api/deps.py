from __future__ import annotations

from fastapi import Request

from utilitysign.migrations.runner import MigrationRunner
from utilitysign.persistence.db import StorageContext


def get_context(request: Request) -> StorageContext:
    # The storage context is created once per app and shared by every request.
    return request.app.state.ctx


def get_runner(request: Request) -> MigrationRunner:
    return request.app.state.runner
