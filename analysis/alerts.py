"""Price alerts on watchlist entries: trigger predicates and alert management.

Alerts hang off a watchlist entry, one per (entry, alert type). A
triggered alert is deactivated once and never reactivated; the user can
only acknowledge it or delete it.
"""

import logging
from enum import Enum

from database.models import PriceAlertDAO, WatchlistDAO
from portfolio.allocation import SettingsStore
from utils.helpers import utc_now
from utils.validators import validate_notify_time, validate_price, validate_ticker

logger = logging.getLogger("portfolio_tracker.analysis.alerts")


class AlertType(str, Enum):
    PRICE_ABOVE = "PRICE_ABOVE"
    PRICE_BELOW = "PRICE_BELOW"
    PCT_CHANGE_UP = "PCT_CHANGE_UP"
    PCT_CHANGE_DOWN = "PCT_CHANGE_DOWN"

    @property
    def is_pct(self) -> bool:
        return self.value.startswith("PCT")


def evaluate_alert(alert: dict, price: float | None) -> bool:
    """True when ``price`` meets the alert's trigger condition.

    A missing or zero price never triggers. Percent alerts without a
    positive reference price never trigger either.
    """
    if not price:
        return False
    try:
        alert_type = AlertType(alert["alert_type"])
    except ValueError:
        logger.warning("Unknown alert type %r on alert %s", alert.get("alert_type"), alert.get("id"))
        return False
    target = alert["target_value"]

    if alert_type is AlertType.PRICE_ABOVE:
        return price >= target
    if alert_type is AlertType.PRICE_BELOW:
        return price <= target

    reference = alert.get("reference_price")
    if not reference or reference <= 0:
        return False
    if alert_type is AlertType.PCT_CHANGE_UP:
        return price >= reference * (1 + target / 100)
    return price <= reference * (1 - target / 100)


def _now_iso() -> str:
    return utc_now().isoformat(timespec="seconds")


class AlertService:
    """Create, edit and acknowledge one user's alerts."""

    def __init__(self, user_id: str, alert_dao: PriceAlertDAO | None = None,
                 watchlist_dao: WatchlistDAO | None = None,
                 settings_store: SettingsStore | None = None):
        self.user_id = user_id
        self.alert_dao = alert_dao or PriceAlertDAO()
        self.watchlist_dao = watchlist_dao or WatchlistDAO()
        self.settings_store = settings_store or SettingsStore()

    def create(self, symbol: str, alert_type: str, target_value: float,
               reference_price: float | None = None,
               notify_time: str | None = None) -> int:
        """Create an alert for a watchlist symbol. Raises DuplicateAlertError on conflict.

        Percent alerts default their reference to the entry's current price.
        """
        symbol = validate_ticker(symbol)
        kind = AlertType(alert_type)
        target = validate_price(target_value)
        if target is None:
            raise ValueError(f"Invalid target value: {target_value!r}")

        entry = self.watchlist_dao.get_by_symbol(self.user_id, symbol)
        if entry is None:
            raise ValueError(f"{symbol} is not on your watchlist.")

        if kind.is_pct:
            if reference_price is None:
                reference_price = entry.get("current_price") or entry.get("price_when_added")
            reference_price = validate_price(reference_price)
            if not reference_price:
                raise ValueError(f"{kind.value} alerts need a reference price above zero.")
        else:
            reference_price = None

        notify_time = validate_notify_time(notify_time)
        if notify_time is None:
            notify_time = self.settings_store.load(self.user_id).default_notify_time

        alert_id = self.alert_dao.insert(
            self.user_id, entry["id"], symbol, kind.value, target,
            reference_price=reference_price, notify_time=notify_time,
        )
        logger.info("Created %s alert for %s at %s", kind.value, symbol, target)
        return alert_id

    def update(self, alert_id: int, **fields) -> bool:
        alert = self.alert_dao.get(self.user_id, alert_id)
        if alert is None:
            return False
        if fields.get("is_active") and alert.get("triggered_at"):
            raise ValueError("Triggered alerts cannot be reactivated.")
        if "alert_type" in fields:
            fields["alert_type"] = AlertType(fields["alert_type"]).value
        if "notify_time" in fields:
            fields["notify_time"] = validate_notify_time(fields["notify_time"])
        return self.alert_dao.update(self.user_id, alert_id, **fields)

    def delete(self, alert_id: int) -> bool:
        return self.alert_dao.delete(self.user_id, alert_id)

    def acknowledge(self, alert_id: int) -> bool:
        return self.alert_dao.acknowledge(self.user_id, [alert_id], _now_iso()) > 0

    def acknowledge_all(self) -> int:
        ids = [a["id"] for a in self.unacknowledged()]
        return self.alert_dao.acknowledge(self.user_id, ids, _now_iso())

    def all(self) -> list[dict]:
        return self.alert_dao.get_all(self.user_id)

    def active(self) -> list[dict]:
        return [a for a in self.all() if a["is_active"]]

    def triggered(self) -> list[dict]:
        """Triggered alerts, most recent trigger first."""
        alerts = [a for a in self.all() if a.get("triggered_at")]
        return sorted(alerts, key=lambda a: a["triggered_at"], reverse=True)

    def unacknowledged(self) -> list[dict]:
        return [a for a in self.triggered() if not a.get("acknowledged_at")]

    def for_entry(self, watchlist_entry_id: int) -> list[dict]:
        return [a for a in self.all() if a["watchlist_entry_id"] == watchlist_entry_id]
