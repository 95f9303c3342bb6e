from __future__ import annotations

import argparse
import asyncio
import sys

from utilitysign.core.errors import UtilitySignError
from utilitysign.core.logging import configure_logging
from utilitysign.persistence.db import StorageContext, create_storage_context
from utilitysign.services.maintenance import purge_expired_cache


async def run(*, site_id: int | None = None, ctx: StorageContext | None = None) -> int:
    # Physically remove cache rows that readers already treat as absent.
    resolved = ctx or create_storage_context()
    try:
        purged = await purge_expired_cache(resolved, site_id=site_id)
    except UtilitySignError as exc:
        print(f"error={type(exc).__name__} message={exc}")
        return 1
    finally:
        if ctx is None:
            await resolved.dispose()
    print(f"purged_cache_entries={purged}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Purge expired cache entries")
    parser.add_argument("--site-id", type=int, default=None, help="Limit the sweep to one site")
    args = parser.parse_args()
    configure_logging()
    sys.exit(asyncio.run(run(site_id=args.site_id)))


if __name__ == "__main__":
    main()
