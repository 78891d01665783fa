"""Repair dangling or one-sided back-references across users, posts and comments."""
import argparse
import asyncio
import logging
import time

from social_api.config import settings
from social_api.database import async_session
from social_api.services.reconcile_service import repair_back_references


async def reconcile(dry_run: bool = False) -> dict[str, int]:
    start = time.perf_counter()
    async with async_session() as session:
        report = await repair_back_references(session, dry_run=dry_run)
        if dry_run:
            await session.rollback()
        else:
            await session.commit()

    elapsed = time.perf_counter() - start
    verb = "would rewrite" if dry_run else "rewrote"
    print(f"Reconciliation finished in {elapsed:.1f}s")
    if not report:
        print("  All back-reference sets are consistent")
    for key, count in sorted(report.items()):
        print(f"  {key}: {verb} {count} row(s)")
    return report


def main():
    parser = argparse.ArgumentParser(description="Repair back-reference sets in the social database")
    parser.add_argument("--dry-run", action="store_true", help="Report what would change without writing")
    args = parser.parse_args()
    logging.basicConfig(level=settings.LOG_LEVEL)
    asyncio.run(reconcile(dry_run=args.dry_run))


if __name__ == "__main__":
    main()
