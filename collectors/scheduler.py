"""Scheduler for the periodic alert check and watchlist price refresh via APScheduler."""

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from analysis.alert_checker import run_alert_check
from config.settings import get_settings

logger = logging.getLogger("portfolio_tracker.collectors.scheduler")


def run_price_refresh(user_id: str | None = None):
    """Refresh watchlist quotes for the configured local user."""
    from portfolio.watchlist import WatchlistManager

    user_id = user_id or get_settings().user_id
    try:
        updated = WatchlistManager(user_id).refresh_prices()
        logger.info("Refreshed %d watchlist price(s) for %s", updated, user_id)
    except Exception as e:
        logger.error("Watchlist price refresh failed for %s: %s", user_id, e, exc_info=True)


def add_scheduler_jobs(scheduler, alert_minutes: int | None = None):
    """Add the standard jobs to a scheduler instance."""
    minutes = alert_minutes or get_settings().alert_check_minutes

    scheduler.add_job(
        run_alert_check, IntervalTrigger(minutes=minutes),
        id="price_alerts",
        name="Price alert check",
        max_instances=1,
        coalesce=True,
    )

    scheduler.add_job(
        run_price_refresh, IntervalTrigger(minutes=minutes),
        id="watchlist_prices",
        name="Watchlist price refresh",
        max_instances=1,
        coalesce=True,
    )


def start_scheduler(alert_minutes: int | None = None):
    """Start the blocking scheduler for the CLI. Ctrl+C stops it."""
    scheduler = BlockingScheduler()
    add_scheduler_jobs(scheduler, alert_minutes)

    logger.info("Scheduler started with %d jobs", len(scheduler.get_jobs()))
    print("Alert scheduler started. Press Ctrl+C to stop.")

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        scheduler.shutdown()
        print("Scheduler stopped.")
