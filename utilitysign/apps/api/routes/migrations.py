from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from utilitysign.apps.api.deps import get_runner
from utilitysign.migrations.runner import MigrationRunner, MigrationStatus


router = APIRouter(prefix="/admin/migrations", tags=["migrations"])


class MigrationStatusResponse(BaseModel):
    migration_id: str
    table_name: str
    exists: bool
    state: str
    matches: bool
    pending: list[str]
    drift: list[str]


class MigrationStatusList(BaseModel):
    items: list[MigrationStatusResponse]
    ready: bool


def _to_response(status: MigrationStatus) -> MigrationStatusResponse:
    return MigrationStatusResponse(
        migration_id=status.migration_id,
        table_name=status.table_name,
        exists=status.exists,
        state=status.state.value,
        matches=status.matches,
        pending=list(status.pending),
        drift=list(status.drift),
    )


@router.get("/status")
async def migration_status(runner: MigrationRunner = Depends(get_runner)) -> MigrationStatusList:
    # Read-only: reports live schema against each descriptor without issuing DDL.
    statuses = await runner.status()
    return MigrationStatusList(
        items=[_to_response(status) for status in statuses],
        ready=bool(statuses) and all(status.matches for status in statuses),
    )
