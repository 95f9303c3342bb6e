from __future__ import annotations

from dataclasses import dataclass
import logging

from utilitysign.core.config import Settings
from utilitysign.migrations.base import Migration
from utilitysign.migrations.runner import ApplyReport, MigrationRunner, RevertReport
from utilitysign.persistence.db import StorageContext
from utilitysign.persistence.query_layer import QueryLayerResult, bootstrap_query_layer
from utilitysign.schema.tables import AUTH_LOG, CACHE, ERROR_LOG


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstallResult:
    report: ApplyReport
    query_layer: QueryLayerResult


def build_runner(ctx: StorageContext) -> MigrationRunner:
    # Registration order is dependency order: auth log, cache, error log.
    runner = MigrationRunner(ctx)
    runner.register(Migration("auth_log", AUTH_LOG))
    runner.register(Migration("cache", CACHE))
    runner.register(Migration("error_log", ERROR_LOG))
    return runner


async def on_install(
    ctx: StorageContext,
    *,
    runner: MigrationRunner | None = None,
    settings: Settings | None = None,
) -> InstallResult:
    # Activation hook: converge the schema, then try the optional query layer.
    resolved = runner or build_runner(ctx)
    report = await resolved.apply_all()
    query_layer = await bootstrap_query_layer(ctx, resolved, settings)
    logger.info(
        "install_complete applied=%s query_layer=%s",
        ",".join(report.applied),
        "ready" if query_layer.ok else "unavailable",
    )
    return InstallResult(report=report, query_layer=query_layer)


async def on_uninstall(ctx: StorageContext, *, runner: MigrationRunner | None = None) -> RevertReport:
    # Uninstall hook: drop every store table, newest first.
    report = await (runner or build_runner(ctx)).revert_all()
    logger.info("uninstall_complete reverted=%s", ",".join(report.reverted))
    return report
