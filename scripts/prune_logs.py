from __future__ import annotations

import argparse
import asyncio
import sys

from utilitysign.core.errors import UtilitySignError
from utilitysign.core.logging import configure_logging
from utilitysign.persistence.db import StorageContext, create_storage_context
from utilitysign.services.maintenance import prune_auth_log, prune_error_log


async def run(
    *,
    auth_days: int | None = None,
    error_days: int | None = None,
    site_id: int | None = None,
    ctx: StorageContext | None = None,
) -> int:
    # Drop auth and error log rows beyond their retention windows; None uses the configured window.
    resolved = ctx or create_storage_context()
    try:
        pruned_auth = await prune_auth_log(resolved, days=auth_days, site_id=site_id)
        pruned_errors = await prune_error_log(resolved, days=error_days, site_id=site_id)
    except UtilitySignError as exc:
        print(f"error={type(exc).__name__} message={exc}")
        return 1
    finally:
        if ctx is None:
            await resolved.dispose()
    print(f"pruned_auth_log={pruned_auth}")
    print(f"pruned_error_log={pruned_errors}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Prune auth and error logs beyond retention")
    parser.add_argument("--auth-days", type=int, default=None)
    parser.add_argument("--error-days", type=int, default=None)
    parser.add_argument("--site-id", type=int, default=None, help="Limit pruning to one site")
    args = parser.parse_args()

    configure_logging()
    sys.exit(asyncio.run(run(auth_days=args.auth_days, error_days=args.error_days, site_id=args.site_id)))


if __name__ == "__main__":
    main()
