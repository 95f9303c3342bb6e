from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging

from utilitysign.core.errors import InvalidSchemaError, MigrationError
from utilitysign.migrations.base import Migration, UpOutcome
from utilitysign.persistence.db import StorageContext


logger = logging.getLogger(__name__)


class MigrationState(str, Enum):
    REGISTERED = "registered"
    APPLIED_CLEAN = "applied_clean"
    APPLIED_WITH_DRIFT = "applied_with_drift"
    REVERTED = "reverted"
    ERROR = "error"


@dataclass(frozen=True)
class MigrationStatus:
    migration_id: str
    table_name: str
    exists: bool
    state: MigrationState
    pending: tuple[str, ...] = ()
    drift: tuple[str, ...] = ()

    @property
    def matches(self) -> bool:
        return self.exists and not self.pending and not self.drift


@dataclass
class ApplyReport:
    # Ids that completed, in the order they ran.
    applied: list[str] = field(default_factory=list)
    outcomes: dict[str, UpOutcome] = field(default_factory=dict)
    failed: str | None = None


@dataclass
class RevertReport:
    reverted: list[str] = field(default_factory=list)
    dropped: dict[str, bool] = field(default_factory=dict)
    failed: str | None = None


class MigrationRunner:
    """Applies registered migrations in registration order and reverts them in reverse.

    Registration order is dependency order. ``apply_all`` stops at the first
    failing migration and raises its ``MigrationError`` with ``report`` set to
    the ids that completed; re-running ``apply_all`` is the retry, since every
    ``up`` is idempotent.
    """

    def __init__(self, ctx: StorageContext) -> None:
        self._ctx = ctx
        self._migrations: list[Migration] = []
        self._states: dict[str, MigrationState] = {}

    @property
    def migrations(self) -> tuple[Migration, ...]:
        return tuple(self._migrations)

    def register(self, migration: Migration) -> Migration:
        # Validate eagerly so a bad descriptor fails at startup, not mid-deploy.
        migration.descriptor.validate()
        if migration.id in self._states:
            raise InvalidSchemaError(f"migration {migration.id!r} is already registered")
        table_name = migration.table_name(self._ctx)
        if any(existing.table_name(self._ctx) == table_name for existing in self._migrations):
            raise InvalidSchemaError(f"table {table_name!r} is already owned by another migration")
        self._migrations.append(migration)
        self._states[migration.id] = MigrationState.REGISTERED
        return migration

    def state(self, migration_id: str) -> MigrationState:
        return self._states[migration_id]

    def is_applied(self) -> bool:
        # True once every registered migration converged cleanly in this process.
        return bool(self._migrations) and all(
            self._states[migration.id] is MigrationState.APPLIED_CLEAN for migration in self._migrations
        )

    async def apply_all(self) -> ApplyReport:
        report = ApplyReport()
        for migration in self._migrations:
            try:
                outcome = await migration.up(self._ctx)
            except MigrationError as exc:
                self._states[migration.id] = MigrationState.ERROR
                report.failed = migration.id
                exc.report = report
                logger.error(
                    "migration_apply_failed migration_id=%s table=%s completed=%s",
                    migration.id,
                    exc.table_name,
                    ",".join(report.applied),
                    exc_info=exc,
                )
                raise
            self._states[migration.id] = MigrationState.APPLIED_CLEAN
            report.applied.append(migration.id)
            report.outcomes[migration.id] = outcome
        logger.info("migrations_applied count=%s", len(report.applied))
        return report

    async def revert_all(self) -> RevertReport:
        # Down always runs in the opposite order of up.
        report = RevertReport()
        for migration in reversed(self._migrations):
            try:
                dropped = await migration.down(self._ctx)
            except MigrationError as exc:
                self._states[migration.id] = MigrationState.ERROR
                report.failed = migration.id
                exc.report = report
                logger.error(
                    "migration_revert_failed migration_id=%s table=%s reverted=%s",
                    migration.id,
                    exc.table_name,
                    ",".join(report.reverted),
                    exc_info=exc,
                )
                raise
            self._states[migration.id] = MigrationState.REVERTED
            report.reverted.append(migration.id)
            report.dropped[migration.id] = dropped
        logger.info("migrations_reverted count=%s", len(report.reverted))
        return report

    async def status(self) -> list[MigrationStatus]:
        # Inspect live tables without issuing DDL or touching recorded state.
        statuses: list[MigrationStatus] = []
        for migration in self._migrations:
            table_name = migration.table_name(self._ctx)
            diff = await migration.inspect(self._ctx)
            if diff is None:
                recorded = self._states[migration.id]
                if recorded not in (MigrationState.REVERTED, MigrationState.ERROR):
                    recorded = MigrationState.REGISTERED
                statuses.append(
                    MigrationStatus(
                        migration_id=migration.id,
                        table_name=table_name,
                        exists=False,
                        state=recorded,
                    )
                )
                continue
            state = MigrationState.APPLIED_CLEAN if diff.is_clean else MigrationState.APPLIED_WITH_DRIFT
            statuses.append(
                MigrationStatus(
                    migration_id=migration.id,
                    table_name=table_name,
                    exists=True,
                    state=state,
                    pending=diff.pending,
                    drift=diff.drift,
                )
            )
        return statuses
