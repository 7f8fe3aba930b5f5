"""Scheduler entry point: python -m spa_coupons.scheduler"""
import signal
import sys

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from spa_coupons.core.config import settings
from spa_coupons.core.logging import get_logger, setup_logging
from spa_coupons.scheduler.housekeeping import housekeeping

setup_logging(settings.DEBUG)
logger = get_logger("scheduler")

scheduler = BlockingScheduler(timezone="UTC")


def signal_handler(sig, frame):
    logger.info("Scheduler stop signal received")
    scheduler.shutdown(wait=False)
    sys.exit(0)


def main():
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    logger.info("Scheduler started")

    # hourly, on the quarter past
    scheduler.add_job(
        housekeeping,
        CronTrigger(minute=15, timezone="UTC"),
        id="coupon_housekeeping",
        max_instances=1,
        coalesce=True,
    )

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")


if __name__ == "__main__":
    main()
