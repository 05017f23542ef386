# coding: utf-8
"""
Month Close Cron Job - snapshots balances of the previous month into
pending payouts and resets them.

Run: python -m pimaze.tasks.month_close [YYYY-MM]

Crontab (1st of every month, 00:05 UTC):
    5 0 1 * * cd /path && .venv/bin/python -m pimaze.tasks.month_close

Inside the API process the same job is registered on the APScheduler
instance by schedule_month_close() when MONTH_CLOSE_ENABLED=true.
"""

import asyncio
import re
import sys
from datetime import datetime
from typing import Callable, Optional

from loguru import logger

from config.economy_config import RateBands, DEFAULT_RATE_BANDS, previous_month_tag
from pimaze.database.engine import Database, create_database
from pimaze.database.models import utcnow
from pimaze.services.monthly_service import MonthCloseReport, MonthlyService


async def close_previous_month(
    db: Database,
    month: Optional[str] = None,
    bands: RateBands = DEFAULT_RATE_BANDS,
    clock: Callable[[], datetime] = utcnow,
) -> MonthCloseReport:
    """
    Close `month`, by default the calendar month before now (UTC)

    Re-running for the same month only processes accounts that have not
    been snapshotted yet.
    """
    month = month or previous_month_tag(clock())
    logger.info(f"Month close job started for {month}")

    report = await MonthlyService(db, bands=bands, clock=clock).close_month_and_reset_coins(month)

    if report.failed:
        logger.error(f"Month close {month}: {len(report.failed)} accounts failed: {report.failed}")
    return report


def schedule_month_close(
    scheduler,
    db: Database,
    bands: RateBands = DEFAULT_RATE_BANDS,
    clock: Callable[[], datetime] = utcnow,
):
    """
    Schedule the month close job

    Args:
        scheduler: APScheduler instance
        db: Initialized database
        bands: Rate bands the API serves, so snapshots match the shown rate
        clock: UTC clock picking the month to close
    """
    scheduler.add_job(
        close_previous_month,
        trigger='cron',
        day=1,
        hour=0,
        minute=5,
        timezone='UTC',
        args=[db],
        kwargs={"bands": bands, "clock": clock},
        id='month_close',
        name='Close previous month and reset coins',
        replace_existing=True,
        max_instances=1,  # Prevent overlapping runs
    )

    logger.info("Month close scheduler configured: day 1, 00:05 UTC")


async def main(month: Optional[str] = None) -> int:
    """
    Main cron job entry point
    """
    logger.info("=" * 80)
    logger.info("Month Close Cron Job - Starting")
    logger.info("=" * 80)

    if month and not re.fullmatch(r"\d{4}-(0[1-9]|1[0-2])", month):
        logger.error(f"Invalid month {month!r}, expected YYYY-MM")
        return 2

    db = create_database()
    await db.init()

    try:
        report = await close_previous_month(db, month)

        logger.info("=" * 80)
        logger.info("Month Close Cron Job - Results:")
        logger.info(f"  - Month: {report.month}")
        logger.info(f"  - Snapshotted: {report.processed}")
        logger.info(f"  - Skipped: {report.skipped}")
        logger.info(f"  - Coins collected: {report.total_coins}")
        logger.info(f"  - Failed: {len(report.failed)}")
        logger.info("=" * 80)

        return 0 if not report.failed else 1

    finally:
        await db.close()


if __name__ == "__main__":
    from config.logging import setup_logging

    setup_logging()
    sys.exit(asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None)))
