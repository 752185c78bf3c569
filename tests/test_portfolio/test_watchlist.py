"""Tests for watchlist management, default tags and post-add enrichment."""

import pytest
from unittest.mock import MagicMock

from collectors.fmp import Profile, Quote
from database.errors import DuplicateRecordError, DuplicateWatchlistEntryError
from portfolio.watchlist import DEFAULT_TAGS, WatchlistManager
from utils.tasks import run_post_commit_tasks

USER = "user-1"


@pytest.fixture
def fmp_client():
    client = MagicMock()
    client.lookup_symbol.return_value = Profile(
        symbol="AAPL", company_name="Apple Inc.", price=190.0,
        industry="Consumer Electronics", sector="Technology", market_cap=3.0e12,
    )
    client.fetch_quotes.return_value = {"AAPL": Quote("AAPL", 200.0, 195.0, 2.5)}
    return client


@pytest.fixture
def manager(watchlist_dao, tag_dao, settings_store, group_dao, fmp_client):
    return WatchlistManager(
        USER, watchlist_dao, tag_dao, settings_store,
        client_factory=lambda key: fmp_client, group_dao=group_dao,
    )


class TestTags:
    def test_seeds_defaults_once(self, manager, tag_dao):
        assert manager.seed_default_tags() is True
        assert manager.seed_default_tags() is False
        assert len(tag_dao.get_all(USER)) == len(DEFAULT_TAGS)

    def test_tags_with_counts(self, manager, tag_dao):
        manager.seed_default_tags()
        mf = tag_dao.get_by_code(USER, "MF")
        manager.add_entry("AAPL", tag_ids=[mf["id"]])
        counts = {t["short_code"]: t["entry_count"] for t in manager.tags_with_counts()}
        assert counts["MF"] == 1
        assert counts["CQ"] == 0


class TestAddEntry:
    def test_add_without_fmp_key(self, manager, watchlist_dao):
        entry_id, tasks = manager.add_entry("aapl", price_when_added=150.0)
        assert watchlist_dao.get(USER, entry_id)["symbol"] == "AAPL"
        assert [t.name for t in tasks] == ["screen-tags"]

    def test_add_with_fmp_key_enriches(self, manager, settings_store, watchlist_dao, fmp_client):
        settings_store.set_integration(USER, fmp_api_key="key")
        _, tasks = manager.add_entry("AAPL")
        assert [t.name for t in tasks] == ["screen-tags", "fmp-enrichment"]

        report = run_post_commit_tasks(tasks)
        assert report.ok
        entry = watchlist_dao.get_by_symbol(USER, "AAPL")
        assert entry["market_cap_category"] == "MEGA"
        assert entry["sector"] == "Technology"
        assert entry["company_name"] == "Apple Inc."
        fmp_client.lookup_symbol.assert_called_once_with("AAPL")

    def test_failed_enrichment_does_not_undo_add(self, manager, settings_store, watchlist_dao, fmp_client):
        settings_store.set_integration(USER, fmp_api_key="key")
        fmp_client.lookup_symbol.side_effect = RuntimeError("boom")
        _, tasks = manager.add_entry("AAPL")
        report = run_post_commit_tasks(tasks)
        assert "fmp-enrichment" in report.failed
        assert report.succeeded == ["screen-tags"]
        assert watchlist_dao.get_by_symbol(USER, "AAPL") is not None

    def test_duplicate(self, manager):
        manager.add_entry("AAPL")
        with pytest.raises(DuplicateWatchlistEntryError):
            manager.add_entry("aapl")

    def test_invalid_ticker(self, manager):
        with pytest.raises(ValueError):
            manager.add_entry("not a ticker")

    def test_add_entries_skips_bad_symbols(self, manager, watchlist_dao):
        manager.add_entry("MSFT")
        added, skipped, tasks = manager.add_entries(["aapl", "1BAD", "msft", "nvda"], 100.0)
        assert added == ["AAPL", "NVDA"]
        assert set(skipped) == {"1BAD", "msft"}
        assert [t.name for t in tasks] == ["screen-tags"]
        assert watchlist_dao.get_by_symbol(USER, "NVDA")["price_when_added"] == 100.0

    def test_add_entries_nothing_added(self, manager):
        added, skipped, tasks = manager.add_entries(["not a ticker"])
        assert added == [] and tasks == []
        assert list(skipped) == ["not a ticker"]

    def test_multi_symbol_enrichment_is_batched(self, manager, settings_store, watchlist_dao, fmp_client):
        settings_store.set_integration(USER, fmp_api_key="key")
        fmp_client.fetch_profiles_batched.return_value = {
            "AAPL": fmp_client.lookup_symbol.return_value,
            "NVDA": Profile(symbol="NVDA", company_name="NVIDIA", market_cap=5.0e9),
        }
        added, _, tasks = manager.add_entries(["AAPL", "NVDA", "MSFT"])
        assert run_post_commit_tasks(tasks).ok
        fmp_client.fetch_profiles_batched.assert_called_once_with(added)
        fmp_client.lookup_symbol.assert_not_called()
        assert watchlist_dao.get_by_symbol(USER, "NVDA")["market_cap_category"] == "MID"
        assert watchlist_dao.get_by_symbol(USER, "MSFT")["market_cap_category"] is None

    def test_known_market_cap_is_bucketed(self, manager, watchlist_dao):
        manager.add_entry("TINY", market_cap=100_000_000)
        assert watchlist_dao.get_by_symbol(USER, "TINY")["market_cap_category"] == "MICRO"


class TestEntries:
    def test_change_since_added_and_tags(self, manager, watchlist_dao, tag_dao):
        manager.seed_default_tags()
        core = tag_dao.get_by_code(USER, "CORE")
        manager.add_entry("AAPL", price_when_added=100.0, tag_ids=[core["id"]])
        watchlist_dao.update_prices(USER, "AAPL", 125.0, 120.0)

        (entry,) = manager.entries()
        assert entry["change_since_added"] == pytest.approx(25.0)
        assert [t["short_code"] for t in entry["tags"]] == ["CORE"]

    def test_missing_added_price_has_no_change(self, manager):
        manager.add_entry("AAPL")
        assert manager.entries()[0]["change_since_added"] is None

    def test_remove_entry(self, manager):
        manager.add_entry("AAPL")
        assert manager.remove_entry("aapl") is True
        assert manager.remove_entry("AAPL") is False
        assert manager.entries() == []


class TestRefreshPrices:
    def test_without_key_is_noop(self, manager, fmp_client):
        manager.add_entry("AAPL")
        assert manager.refresh_prices() == 0
        fmp_client.fetch_quotes.assert_not_called()

    def test_updates_quotes(self, manager, settings_store, watchlist_dao, fmp_client):
        settings_store.set_integration(USER, fmp_api_key="key")
        manager.add_entry("AAPL", price_when_added=150.0)
        assert manager.refresh_prices() == 1
        entry = watchlist_dao.get_by_symbol(USER, "AAPL")
        assert entry["current_price"] == 200.0
        assert entry["previous_close"] == 195.0
        fmp_client.fetch_quotes.assert_called_once_with(["AAPL"])


class TestGroups:
    def test_create_appends_in_order(self, manager):
        manager.create_group("Growth")
        manager.create_group(" Value ", color="#E74C3C")
        groups = manager.groups()
        assert [g["name"] for g in groups] == ["Growth", "Value"]
        assert [g["sort_order"] for g in groups] == [0, 1]
        assert groups[0]["color"] == "#3498DB"
        assert groups[1]["color"] == "#E74C3C"

    def test_duplicate_and_blank_names(self, manager):
        manager.create_group("Growth")
        with pytest.raises(DuplicateRecordError):
            manager.create_group("Growth")
        with pytest.raises(ValueError):
            manager.create_group("   ")

    def test_set_group_and_filter(self, manager):
        manager.create_group("Growth")
        for symbol in ("AAPL", "NVDA", "KO"):
            manager.add_entry(symbol)
        assert manager.set_group(["aapl", "NVDA", "ZZZZ"], "Growth") == 2

        assert {e["symbol"] for e in manager.entries(group="Growth")} == {"AAPL", "NVDA"}
        assert [e["symbol"] for e in manager.entries(ungrouped=True)] == ["KO"]
        assert manager.groups()[0]["entry_count"] == 2
        by_symbol = {e["symbol"]: e["group_name"] for e in manager.entries()}
        assert by_symbol == {"AAPL": "Growth", "NVDA": "Growth", "KO": None}

        manager.set_group(["AAPL"], None)
        assert [e["symbol"] for e in manager.entries(group="Growth")] == ["NVDA"]

    def test_unknown_group(self, manager):
        with pytest.raises(ValueError, match="No watchlist group"):
            manager.set_group(["AAPL"], "Missing")

    def test_delete_keeps_entries_ungrouped(self, manager, watchlist_dao):
        manager.create_group("Growth")
        manager.add_entry("AAPL")
        manager.set_group(["AAPL"], "Growth")
        assert manager.delete_group("Growth") is True
        assert manager.groups() == []
        assert watchlist_dao.get_by_symbol(USER, "AAPL")["group_id"] is None

    def test_rename_and_move(self, manager):
        for name in ("A", "B", "C"):
            manager.create_group(name)
        assert manager.update_group("C", new_name="Core") is True
        assert manager.move_group("Core", -2) is True
        assert [g["name"] for g in manager.groups()] == ["Core", "A", "B"]
        assert manager.move_group("Core", -1) is False
        assert manager.move_group("B", 1) is False
