"""Tests for price alert predicates and alert management."""

import pytest

from analysis.alerts import AlertService, AlertType, evaluate_alert
from database.errors import DuplicateAlertError

USER = "user-1"


def _alert(alert_type, target, reference=None):
    return {"id": 1, "alert_type": alert_type, "target_value": target, "reference_price": reference}


class TestEvaluateAlert:
    def test_price_above_is_inclusive(self):
        assert evaluate_alert(_alert("PRICE_ABOVE", 150.0), 150.0)
        assert not evaluate_alert(_alert("PRICE_ABOVE", 150.0), 149.99)

    def test_price_below_is_inclusive(self):
        assert evaluate_alert(_alert("PRICE_BELOW", 90.0), 90.0)
        assert not evaluate_alert(_alert("PRICE_BELOW", 90.0), 90.01)

    def test_pct_down_boundary(self):
        alert = _alert("PCT_CHANGE_DOWN", 10.0, reference=100.0)
        assert evaluate_alert(alert, 90.00)
        assert not evaluate_alert(alert, 90.01)

    def test_pct_up(self):
        alert = _alert("PCT_CHANGE_UP", 20.0, reference=50.0)
        assert evaluate_alert(alert, 60.5)
        assert not evaluate_alert(alert, 59.9)

    def test_pct_without_reference_never_triggers(self):
        assert not evaluate_alert(_alert("PCT_CHANGE_UP", 1.0, reference=None), 1000.0)
        assert not evaluate_alert(_alert("PCT_CHANGE_DOWN", 1.0, reference=0), 0.01)

    def test_missing_or_zero_price_never_triggers(self):
        assert not evaluate_alert(_alert("PRICE_BELOW", 90.0), None)
        assert not evaluate_alert(_alert("PRICE_BELOW", 90.0), 0)

    def test_unknown_type(self):
        assert not evaluate_alert(_alert("SOMETHING", 1.0), 5.0)

    def test_is_pct(self):
        assert AlertType.PCT_CHANGE_UP.is_pct
        assert not AlertType.PRICE_ABOVE.is_pct


@pytest.fixture
def service(alert_dao, watchlist_dao, settings_store):
    watchlist_dao.insert(USER, "AAPL", company_name="Apple", price_when_added=100.0)
    return AlertService(USER, alert_dao, watchlist_dao, settings_store)


class TestAlertService:
    def test_create_price_alert(self, service):
        alert_id = service.create("aapl", "PRICE_ABOVE", 150)
        (alert,) = service.all()
        assert alert["id"] == alert_id
        assert alert["symbol"] == "AAPL"
        assert alert["reference_price"] is None
        assert alert["is_active"] is True

    def test_pct_alert_defaults_reference_to_current_price(self, service, watchlist_dao):
        watchlist_dao.update_prices(USER, "AAPL", 120.0, 118.0)
        service.create("AAPL", "PCT_CHANGE_UP", 10)
        assert service.all()[0]["reference_price"] == 120.0

    def test_explicit_reference(self, service):
        service.create("AAPL", "PCT_CHANGE_DOWN", 10, reference_price=80.0)
        assert service.all()[0]["reference_price"] == 80.0

    def test_requires_watchlist_entry(self, service):
        with pytest.raises(ValueError, match="not on your watchlist"):
            service.create("MSFT", "PRICE_ABOVE", 400)

    def test_rejects_unknown_type(self, service):
        with pytest.raises(ValueError):
            service.create("AAPL", "PRICE_SIDEWAYS", 1)

    def test_duplicate_type_conflicts(self, service):
        service.create("AAPL", "PRICE_ABOVE", 150)
        with pytest.raises(DuplicateAlertError):
            service.create("AAPL", "PRICE_ABOVE", 175)

    def test_notify_time_defaults_from_settings(self, service, settings_store):
        settings_store.set_integration(USER, default_notify_time="16:00")
        service.create("AAPL", "PRICE_ABOVE", 150)
        service.create("AAPL", "PRICE_BELOW", 80, notify_time="08:15")
        times = {a["alert_type"]: a["notify_time"] for a in service.all()}
        assert times == {"PRICE_ABOVE": "16:00", "PRICE_BELOW": "08:15"}

    def test_invalid_notify_time(self, service):
        with pytest.raises(ValueError, match="notify time"):
            service.create("AAPL", "PRICE_ABOVE", 150, notify_time="noon")

    def test_triggered_alert_cannot_be_reactivated(self, service, alert_dao):
        alert_id = service.create("AAPL", "PRICE_ABOVE", 150)
        alert_dao.mark_triggered(alert_id, "2025-01-01T10:00:00+00:00")
        with pytest.raises(ValueError, match="reactivated"):
            service.update(alert_id, is_active=True)

    def test_update_target(self, service):
        alert_id = service.create("AAPL", "PRICE_ABOVE", 150)
        assert service.update(alert_id, target_value=160.0)
        assert service.all()[0]["target_value"] == 160.0
        assert service.update(9999, target_value=1.0) is False

    def test_triggered_and_acknowledge(self, service, alert_dao):
        first = service.create("AAPL", "PRICE_ABOVE", 150)
        second = service.create("AAPL", "PRICE_BELOW", 50)
        service.create("AAPL", "PCT_CHANGE_UP", 5)
        alert_dao.mark_triggered(first, "2025-01-01T10:00:00+00:00")
        alert_dao.mark_triggered(second, "2025-01-02T10:00:00+00:00")

        assert [a["id"] for a in service.triggered()] == [second, first]
        assert len(service.active()) == 1
        assert service.acknowledge(first)
        assert [a["id"] for a in service.unacknowledged()] == [second]
        assert service.acknowledge_all() == 1
        assert service.unacknowledged() == []

    def test_delete(self, service):
        alert_id = service.create("AAPL", "PRICE_ABOVE", 150)
        assert service.delete(alert_id)
        assert service.all() == []

    def test_for_entry(self, service, watchlist_dao):
        service.create("AAPL", "PRICE_ABOVE", 150)
        entry = watchlist_dao.get_by_symbol(USER, "AAPL")
        assert len(service.for_entry(entry["id"])) == 1
        assert service.for_entry(entry["id"] + 1) == []
