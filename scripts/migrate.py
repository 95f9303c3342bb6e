from __future__ import annotations

import argparse
import asyncio
import sys

from utilitysign.core.errors import MigrationError
from utilitysign.core.logging import configure_logging
from utilitysign.lifecycle import build_runner, on_install, on_uninstall
from utilitysign.persistence.db import StorageContext, create_storage_context


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Apply, revert or inspect the store table migrations")
    parser.add_argument("command", choices=["apply", "revert", "status"])
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm revert; dropping the tables deletes every stored row",
    )
    return parser


async def run(command: str, *, ctx: StorageContext | None = None, confirmed: bool = False) -> int:
    # Returns a process exit code; output is key=value lines for operators.
    resolved = ctx or create_storage_context()
    try:
        if command == "apply":
            result = await on_install(resolved)
            for migration_id in result.report.applied:
                print(f"applied={migration_id} outcome={result.report.outcomes[migration_id].value}")
            print(f"query_layer={'ready' if result.query_layer.ok else 'unavailable'}")
            return 0
        if command == "revert":
            if not confirmed:
                print("revert_refused=missing_--yes")
                return 2
            report = await on_uninstall(resolved)
            for migration_id in report.reverted:
                print(f"reverted={migration_id} dropped={str(report.dropped[migration_id]).lower()}")
            return 0
        for status in await build_runner(resolved).status():
            print(
                f"migration={status.migration_id} table={status.table_name} state={status.state.value} "
                f"pending={len(status.pending)} drift={len(status.drift)}"
            )
            for item in status.drift:
                print(f"  drift: {item}")
        return 0
    except MigrationError as exc:
        print(f"error={type(exc).__name__} migration_id={exc.migration_id} message={exc}")
        return 1
    finally:
        if ctx is None:
            await resolved.dispose()


def main() -> None:
    args = _build_parser().parse_args()
    configure_logging()
    ctx = create_storage_context(database_url=args.database_url) if args.database_url else None
    sys.exit(asyncio.run(run(args.command, ctx=ctx, confirmed=args.yes)))


if __name__ == "__main__":
    main()
