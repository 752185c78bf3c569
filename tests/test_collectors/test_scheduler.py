"""Tests for scheduler job registration."""

from unittest.mock import MagicMock, patch

from analysis.alert_checker import run_alert_check
from collectors.scheduler import add_scheduler_jobs, run_price_refresh


def test_registers_alert_and_price_jobs():
    scheduler = MagicMock()
    add_scheduler_jobs(scheduler, alert_minutes=5)

    jobs = {c.kwargs["id"]: c for c in scheduler.add_job.call_args_list}
    assert set(jobs) == {"price_alerts", "watchlist_prices"}
    assert jobs["price_alerts"].args[0] is run_alert_check
    assert jobs["price_alerts"].args[1].interval.total_seconds() == 300
    assert all(c.kwargs["max_instances"] == 1 for c in jobs.values())


def test_price_refresh_failure_is_logged_not_raised():
    with patch("portfolio.watchlist.WatchlistManager") as manager_cls:
        manager_cls.return_value.refresh_prices.side_effect = RuntimeError("down")
        run_price_refresh("user-1")
        manager_cls.assert_called_once_with("user-1")
