#!/usr/bin/env python3
"""
Studio Access recycle-bin purge

Permanently removes galleries and uploads whose recycle-bin retention has
lapsed, deleting their stored bytes first. Designed to run daily from cron.

Usage:
    # Purge everything past its deadline
    python3 scripts/purge_recycle_bin.py

    # List what would be purged
    python3 scripts/purge_recycle_bin.py --dry-run
"""

import argparse
import asyncio
import sys

from studio_access.db.models import utc_now
from studio_access.db.session import close_engines, get_write_session_factory
from studio_access.observability import get_logger, setup_logging
from studio_access.services.content import ContentService
from studio_access.services.entitlements import EntitlementStore
from studio_access.services.storage import get_storage

logger = get_logger(__name__)


async def purge(dry_run: bool) -> int:
    session_factory = get_write_session_factory()
    try:
        async with session_factory() as session:
            store = EntitlementStore(session)
            if dry_run:
                expired = await store.get_expired_recycle_bin_entries(utc_now())
                for kind, content_id in expired:
                    print(f"would purge {kind.value} {content_id}")
                return len(expired)

            service = ContentService(store, get_storage())
            return await service.purge_expired()
    finally:
        await close_engines()


def main() -> int:
    parser = argparse.ArgumentParser(description="Purge expired recycle-bin content")
    parser.add_argument("--dry-run", action="store_true", help="List without deleting")
    args = parser.parse_args()

    setup_logging()
    count = asyncio.run(purge(args.dry_run))
    logger.info("recycle_bin_purge_finished", count=count, dry_run=args.dry_run)
    return 0


if __name__ == "__main__":
    sys.exit(main())
