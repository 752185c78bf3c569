"""Periodic price-alert evaluation job.

One run loads every active alert, groups them by user, prices each
user's symbols through FMP and deactivates the alerts that trigger.
Notifications are best-effort: a failed email never reverts a trigger.
Work for one user is isolated from the others, and there is no rollback
of alerts already deactivated earlier in the run.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from collectors.email_notifier import ResendNotifier, compose_alert_email
from collectors.fmp import FMPClient
from database.models import PriceAlertDAO, WatchlistDAO
from portfolio.allocation import PortfolioSettings, SettingsStore
from analysis.alerts import evaluate_alert
from utils.helpers import utc_now

logger = logging.getLogger("portfolio_tracker.analysis.alert_checker")


@dataclass
class AlertCheckSummary:
    checked: int = 0
    triggered: int = 0
    notified: int = 0
    skipped_users: list[str] = field(default_factory=list)
    failed_users: list[str] = field(default_factory=list)
    triggered_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "triggered": self.triggered,
            "notified": self.notified,
            "skipped_users": list(self.skipped_users),
            "failed_users": list(self.failed_users),
        }

    @property
    def message(self) -> str:
        return f"Checked {self.checked} alerts, triggered {self.triggered}"


class AlertChecker:
    """Runs the alert evaluation job. Collaborators are injectable for tests."""

    def __init__(self, alert_dao: PriceAlertDAO | None = None,
                 watchlist_dao: WatchlistDAO | None = None,
                 settings_store: SettingsStore | None = None,
                 client_factory: Callable[[str], FMPClient] = FMPClient,
                 notifier_factory: Callable[[str], ResendNotifier] = ResendNotifier,
                 clock: Callable[[], datetime] = utc_now):
        self.alert_dao = alert_dao or PriceAlertDAO()
        self.watchlist_dao = watchlist_dao or WatchlistDAO()
        self.settings_store = settings_store or SettingsStore()
        self.client_factory = client_factory
        self.notifier_factory = notifier_factory
        self.clock = clock

    def run(self) -> AlertCheckSummary:
        summary = AlertCheckSummary()
        alerts = self.alert_dao.get_active_all_users()
        if not alerts:
            logger.info("No active alerts")
            return summary
        summary.checked = len(alerts)

        by_user: dict[str, list[dict]] = defaultdict(list)
        for alert in alerts:
            by_user[alert["user_id"]].append(alert)

        settings_by_user, unreadable = self.settings_store.load_many(list(by_user))

        for user_id, user_alerts in by_user.items():
            if user_id in unreadable:
                summary.failed_users.append(user_id)
                continue
            settings = settings_by_user.get(user_id)
            if settings is None or not settings.fmp_api_key:
                logger.debug("Skipping %d alert(s) for %s: no FMP key", len(user_alerts), user_id)
                summary.skipped_users.append(user_id)
                continue
            try:
                self._check_user(user_id, user_alerts, settings, summary)
            except Exception as e:
                logger.error("Alert check failed for %s: %s", user_id, e, exc_info=True)
                summary.failed_users.append(user_id)

        logger.info(summary.message)
        return summary

    def _check_user(self, user_id: str, alerts: list[dict],
                    settings: PortfolioSettings, summary: AlertCheckSummary):
        client = self.client_factory(settings.fmp_api_key)
        symbols = sorted({a["symbol"] for a in alerts})
        quotes = client.fetch_quotes(symbols)

        for alert in alerts:
            quote = quotes.get(alert["symbol"])
            price = quote.price if quote else None
            if not evaluate_alert(alert, price):
                continue

            triggered_at = self.clock()
            if not self.alert_dao.mark_triggered(alert["id"], triggered_at.isoformat(timespec="seconds")):
                logger.debug("Alert %s was already triggered", alert["id"])
                continue
            summary.triggered += 1
            summary.triggered_ids.append(alert["id"])
            logger.info("Alert %s triggered: %s %s %s at %.2f", alert["id"], alert["symbol"],
                        alert["alert_type"], alert["target_value"], price)

            if self._notify(alert, price, settings, triggered_at):
                summary.notified += 1

    def _notify(self, alert: dict, price: float, settings: PortfolioSettings,
                triggered_at: datetime) -> bool:
        if not (settings.resend_api_key and settings.notification_email):
            return False
        try:
            entry = self.watchlist_dao.get_by_id_unscoped(alert["watchlist_entry_id"])
            subject, html = compose_alert_email(alert, price, entry, triggered_at)
            notifier = self.notifier_factory(settings.resend_api_key)
            if not notifier.send(settings.notification_email, subject, html):
                return False
            self.alert_dao.mark_notified(alert["id"], self.clock().isoformat(timespec="seconds"))
            return True
        except Exception as e:
            logger.warning("Notification for alert %s failed: %s", alert["id"], e, exc_info=True)
            return False


def run_alert_check() -> dict:
    """Scheduler entry point: one evaluation pass with default collaborators."""
    return AlertChecker().run().to_dict()
