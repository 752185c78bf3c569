"""Tests for database DAO operations."""

import pytest

from database.errors import (
    DuplicateAlertError,
    DuplicateRecordError,
    DuplicateScreenError,
    DuplicateWatchlistEntryError,
)

USER = "user-1"
OTHER = "user-2"


class TestSettingsDAO:
    def test_save_and_get(self, settings_dao):
        settings_dao.save(USER, {"categories": []})
        assert settings_dao.get_raw(USER) == {"categories": []}

    def test_save_overwrites(self, settings_dao):
        settings_dao.save(USER, {"a": 1})
        settings_dao.save(USER, {"a": 2})
        assert settings_dao.get_raw(USER) == {"a": 2}

    def test_get_raw_many(self, settings_dao):
        settings_dao.save(USER, {"a": 1})
        settings_dao.save(OTHER, {"a": 2})
        assert settings_dao.get_raw_many([USER, "nobody"]) == {USER: {"a": 1}}
        assert settings_dao.get_raw_many([]) == {}

    def test_missing(self, settings_dao):
        assert settings_dao.get_raw(USER) is None


class TestWatchlistDAO:
    def test_timestamps_are_utc(self, watchlist_dao, alert_dao):
        entry_id = watchlist_dao.insert(USER, "AAPL")
        alert_id = alert_dao.insert(USER, entry_id, "AAPL", "PRICE_ABOVE", 10.0)
        assert watchlist_dao.get(USER, entry_id)["date_added"].endswith("+00:00")
        assert alert_dao.get(USER, alert_id)["created_at"].endswith("+00:00")

    def test_insert_and_get(self, watchlist_dao):
        entry_id = watchlist_dao.insert(USER, "AAPL", company_name="Apple", price_when_added=150.0)
        entry = watchlist_dao.get(USER, entry_id)
        assert entry["symbol"] == "AAPL"
        assert entry["current_price"] == 150.0

    def test_duplicate_symbol(self, watchlist_dao):
        watchlist_dao.insert(USER, "AAPL")
        with pytest.raises(DuplicateWatchlistEntryError) as exc:
            watchlist_dao.insert(USER, "AAPL")
        assert exc.value.symbol == "AAPL"

    def test_same_symbol_for_other_user(self, watchlist_dao):
        watchlist_dao.insert(USER, "AAPL")
        watchlist_dao.insert(OTHER, "AAPL")
        assert len(watchlist_dao.get_all(USER)) == 1

    def test_user_scoping(self, watchlist_dao):
        entry_id = watchlist_dao.insert(USER, "AAPL")
        assert watchlist_dao.get(OTHER, entry_id) is None
        assert watchlist_dao.delete(OTHER, entry_id) is False
        assert watchlist_dao.get_by_id_unscoped(entry_id)["user_id"] == USER

    def test_update_prices_stamps_time(self, watchlist_dao):
        watchlist_dao.insert(USER, "AAPL", price_when_added=100.0)
        watchlist_dao.update_prices(USER, "AAPL", 110.0, 105.0)
        entry = watchlist_dao.get_by_symbol(USER, "AAPL")
        assert entry["current_price"] == 110.0
        assert entry["previous_close"] == 105.0
        assert entry["last_price_update"]

    def test_update_profile_keeps_company_name(self, watchlist_dao):
        watchlist_dao.insert(USER, "AAPL", company_name="Mine")
        watchlist_dao.update_profile(USER, "AAPL", 3e12, "MEGA", "Tech", "Hardware", "Apple Inc.")
        entry = watchlist_dao.get_by_symbol(USER, "AAPL")
        assert entry["company_name"] == "Mine"
        assert entry["market_cap_category"] == "MEGA"


class TestPriceAlertDAO:
    @pytest.fixture
    def entry_id(self, watchlist_dao):
        return watchlist_dao.insert(USER, "AAPL", price_when_added=100.0)

    def test_one_alert_per_type(self, alert_dao, entry_id):
        alert_dao.insert(USER, entry_id, "AAPL", "PRICE_ABOVE", 150.0)
        alert_dao.insert(USER, entry_id, "AAPL", "PRICE_BELOW", 90.0)
        with pytest.raises(DuplicateAlertError):
            alert_dao.insert(USER, entry_id, "AAPL", "PRICE_ABOVE", 160.0)

    def test_mark_triggered_once(self, alert_dao, entry_id):
        alert_id = alert_dao.insert(USER, entry_id, "AAPL", "PRICE_ABOVE", 150.0)
        assert alert_dao.mark_triggered(alert_id, "2025-01-01T10:00:00") is True
        assert alert_dao.mark_triggered(alert_id, "2025-01-01T10:15:00") is False
        alert = alert_dao.get(USER, alert_id)
        assert alert["is_active"] is False
        assert alert["triggered_at"] == "2025-01-01T10:00:00"

    def test_active_all_users(self, alert_dao, watchlist_dao, entry_id):
        other_entry = watchlist_dao.insert(OTHER, "MSFT")
        a = alert_dao.insert(USER, entry_id, "AAPL", "PRICE_ABOVE", 150.0)
        alert_dao.insert(OTHER, other_entry, "MSFT", "PRICE_BELOW", 300.0)
        alert_dao.mark_triggered(a, "2025-01-01T10:00:00")
        active = alert_dao.get_active_all_users()
        assert [x["user_id"] for x in active] == [OTHER]

    def test_update_rejects_unknown_fields(self, alert_dao, entry_id):
        alert_id = alert_dao.insert(USER, entry_id, "AAPL", "PRICE_ABOVE", 150.0)
        with pytest.raises(ValueError):
            alert_dao.update(USER, alert_id, user_id=OTHER)
        assert alert_dao.update(USER, alert_id, target_value=175.0)
        assert alert_dao.get(USER, alert_id)["target_value"] == 175.0

    def test_deleting_entry_cascades(self, alert_dao, watchlist_dao, entry_id):
        alert_dao.insert(USER, entry_id, "AAPL", "PRICE_ABOVE", 150.0)
        watchlist_dao.delete(USER, entry_id)
        assert alert_dao.get_all(USER) == []

    def test_notified_and_acknowledged(self, alert_dao, entry_id):
        alert_id = alert_dao.insert(USER, entry_id, "AAPL", "PRICE_ABOVE", 150.0)
        alert_dao.mark_notified(alert_id, "2025-01-01T10:00:01")
        assert alert_dao.acknowledge(OTHER, [alert_id], "2025-01-02") == 0
        assert alert_dao.acknowledge(USER, [alert_id], "2025-01-02") == 1
        alert = alert_dao.get(USER, alert_id)
        assert alert["notification_sent"] is True
        assert alert["acknowledged_at"] == "2025-01-02"


class TestTagDAO:
    def test_duplicate_code(self, tag_dao):
        tag_dao.insert(USER, "MF")
        with pytest.raises(DuplicateRecordError):
            tag_dao.insert(USER, "MF")

    def test_assign_ignores_repeats(self, tag_dao, watchlist_dao):
        entry_id = watchlist_dao.insert(USER, "AAPL")
        tag_id = tag_dao.insert(USER, "MF")
        tag_dao.assign([(entry_id, tag_id)])
        tag_dao.assign([(entry_id, tag_id)])
        assert tag_dao.get_assignments(USER) == [{"watchlist_entry_id": entry_id, "tag_id": tag_id}]

    def test_insert_many_skips_existing(self, tag_dao):
        tag_dao.insert(USER, "MF", full_name="Mine")
        tag_dao.insert_many(USER, [{"short_code": "MF", "full_name": "Motley"}, {"short_code": "CQ"}])
        tags = {t["short_code"]: t for t in tag_dao.get_all(USER)}
        assert set(tags) == {"CQ", "MF"}
        assert tags["MF"]["full_name"] == "Mine"


class TestScreenDAO:
    def test_duplicate_short_code(self, screen_dao):
        screen_dao.insert(USER, "Growth", "GRW")
        with pytest.raises(DuplicateScreenError):
            screen_dao.insert(USER, "Growth again", "GRW")

    def test_run_numbers_increment(self, screen_dao):
        screen_id = screen_dao.insert(USER, "Growth", "GRW")
        assert screen_dao.next_run_number(USER, screen_id) == 1
        screen_dao.insert_run(USER, {
            "screen_id": screen_id, "run_date": "2025-03-14", "run_number": 1,
            "total_symbols": 2, "match_count": 0, "matched_symbols": [],
            "all_symbols": ["AAPL", "MSFT"],
        })
        assert screen_dao.next_run_number(USER, screen_id) == 2
        runs = screen_dao.get_runs(USER, screen_id)
        assert runs[0]["all_symbols"] == ["AAPL", "MSFT"]

    def test_delete_screen_removes_auto_tags(self, screen_dao, tag_dao, watchlist_dao):
        screen_id = screen_dao.insert(USER, "Growth", "GRW")
        entry_id = watchlist_dao.insert(USER, "AAPL")
        tag_id = tag_dao.insert(USER, "GRW-03/14/25", is_system_tag=True)
        tag_dao.assign([(entry_id, tag_id)])
        screen_dao.insert_run(USER, {
            "screen_id": screen_id, "run_date": "2025-03-14", "run_number": 1,
            "total_symbols": 1, "match_count": 1, "matched_symbols": ["AAPL"],
            "all_symbols": ["AAPL"], "auto_tag_id": tag_id, "auto_tag_code": "GRW-03/14/25",
        })
        assert screen_dao.delete_screen(USER, screen_id)
        assert screen_dao.get_runs(USER) == []
        assert tag_dao.get_all(USER) == []
        assert tag_dao.get_assignments(USER) == []
