"""Fail running indexing jobs whose lock outlived the stale threshold."""

from __future__ import annotations

import argparse
import asyncio
from datetime import UTC, datetime, timedelta

from url_indexing_pipeline.config import get_settings
from url_indexing_pipeline.database import close_database, session_scope
from url_indexing_pipeline.services.job_recovery_service import JobRecoveryService


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--stale-minutes",
        type=int,
        default=None,
        help="Lock age in minutes after which a running job is failed "
        "(defaults to STALE_LOCK_MINUTES).",
    )
    return parser.parse_args()


async def main() -> None:
    args = _parse_args()
    settings = get_settings()
    stale_minutes = args.stale_minutes or settings.STALE_LOCK_MINUTES
    started_at = datetime.now(UTC)

    recovery_service = JobRecoveryService(session_factory=session_scope)
    reclaimed = await recovery_service.reclaim_stale_locks(
        stale_after=timedelta(minutes=stale_minutes)
    )
    for record in reclaimed:
        print(
            f"failed job {record.job_id} ({record.name}) locked by "
            f"{record.locked_by} since {record.locked_at}, "
            f"{record.processed_urls}/{record.total_urls} URLs processed"
        )

    duration_ms = round((datetime.now(UTC) - started_at).total_seconds() * 1000, 2)
    print(
        (
            "Stale lock reclaim completed "
            f"(database={settings.DATABASE_URL!s}, reclaimed={len(reclaimed)}, "
            f"stale_minutes={stale_minutes}, duration_ms={duration_ms})"
        )
    )
    await close_database()


if __name__ == "__main__":
    asyncio.run(main())
