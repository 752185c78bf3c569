"""Tests for allocation settings, legacy migration and derived targets."""

import pytest
from unittest.mock import MagicMock

from portfolio.allocation import (
    CATEGORY_PALETTE,
    CategoryConfig,
    LegacySettingsV1,
    PortfolioSettings,
    SettingsStore,
    TierConfig,
    category_for_tier,
    category_per_position_target,
    category_target,
    decode,
    default_settings,
    is_legacy,
    migrate,
    needs_upgrade,
    normalize,
    per_position_target,
    tier_order,
    validate_settings,
)

USER = "user-1"


@pytest.fixture
def legacy_doc():
    return {
        "tier_goals": {"C1": 10.0, "TT": 3.0},
        "category_targets": {"CORE": 60},
        "position_count_target": {"min": 20, "max": 30},
        "fmp_api_key": "fmp-key",
        "notification_email": "me@example.com",
    }


@pytest.fixture
def early_v2_doc():
    return {
        "categories": [
            {
                "key": "GROWTH",
                "display_name": "Growth",
                "tiers": [{"key": "G1", "name": "G1", "target_pct": 12.0}],
            },
            {"key": "SPEC", "display_name": "Speculative", "target_pct": 5.0, "target_positions": 2},
        ],
    }


class TestDefaults:
    def test_default_layout(self):
        s = default_settings()
        assert [c.key for c in s.categories] == ["CORE", "TITAN", "CONSENSUS"]
        assert [t.key for t in s.categories[0].tiers] == ["C1", "C2", "C3"]
        assert s.find_tier("C1").allocation_pct == 8.5
        assert s.find_tier("CON").allocation_pct == 2.0
        assert s.position_count_target == {"min": 25, "max": 35}

    def test_defaults_equal_migrated_empty_legacy(self):
        assert default_settings() == migrate(LegacySettingsV1())

    def test_default_colours_come_from_palette(self):
        colours = [c.color for c in default_settings().categories]
        assert colours == CATEGORY_PALETTE[:3]


class TestMigration:
    def test_is_legacy(self, legacy_doc):
        assert is_legacy(legacy_doc)
        assert not is_legacy(default_settings().to_dict())

    def test_migrate_keeps_goals_and_integrations(self, legacy_doc):
        settings, changed = normalize(legacy_doc)
        assert changed
        assert settings.find_tier("C1").allocation_pct == 10.0
        assert settings.find_tier("C2").allocation_pct == 6.0
        assert settings.find_tier("TT").allocation_pct == 3.0
        assert all(t.max_positions == 1 for c in settings.categories for t in c.tiers)
        assert settings.position_count_target == {"min": 20, "max": 30}
        assert settings.fmp_api_key == "fmp-key"
        assert settings.notification_email == "me@example.com"

    def test_migration_is_idempotent(self, legacy_doc):
        first, changed = normalize(legacy_doc)
        assert changed
        second, changed_again = normalize(first.to_dict())
        assert not changed_again
        assert second == first

    def test_current_document_round_trips(self):
        s = default_settings()
        s.default_notify_time = "09:30"
        assert PortfolioSettings.from_dict(s.to_dict()) == s
        assert normalize(s.to_dict()) == (s, False)

    def test_early_v2_needs_upgrade(self, early_v2_doc):
        assert needs_upgrade(early_v2_doc)
        settings, changed = normalize(early_v2_doc)
        assert changed
        growth = settings.find_category("GROWTH")
        assert growth.color == CATEGORY_PALETTE[0]
        assert growth.tiers[0].allocation_pct == 12.0
        assert growth.tiers[0].max_positions == 1
        assert growth.target_positions == 1
        assert settings.find_category("SPEC").color == CATEGORY_PALETTE[1]

    def test_upgrade_does_not_mutate_input(self, early_v2_doc):
        decode(early_v2_doc)
        assert "allocation_pct" not in early_v2_doc["categories"][0]["tiers"][0]

    def test_colour_cycles_past_palette(self):
        cat = CategoryConfig.from_dict({"key": "X", "tiers": []}, index=11)
        assert cat.color == CATEGORY_PALETTE[1]


class TestTargets:
    def test_per_position_target(self):
        assert per_position_target(TierConfig("T", "T", 20.0, 4)) == 5.0
        assert per_position_target(TierConfig("T", "T", 20.0, 0)) == 0.0

    def test_category_target_sums_tiers(self):
        cat = default_settings().find_category("CORE")
        assert category_target(cat) == pytest.approx(19.5)

    def test_tierless_category(self):
        cat = CategoryConfig("SPEC", "Spec", "#fff", target_positions=4, target_pct=10.0)
        assert category_target(cat) == 10.0
        assert category_per_position_target(cat) == 2.5

    def test_tier_order_and_lookup(self):
        s = default_settings()
        order = tier_order(s)
        assert order["C1"] < order["C3"] < order["TT"] < order["CON"]
        assert category_for_tier(s, "TT").key == "TITAN"
        assert category_for_tier(s, "NOPE") is None


class TestValidateSettings:
    def test_duplicate_keys_rejected(self):
        s = default_settings()
        s.categories[1].tiers[0].key = "C1"
        with pytest.raises(ValueError, match="Duplicate"):
            validate_settings(s)

    def test_bad_notify_time_rejected(self):
        s = default_settings()
        s.default_notify_time = "25:00"
        with pytest.raises(ValueError):
            validate_settings(s)

    def test_zero_positions_rejected(self):
        s = default_settings()
        s.categories[0].tiers[0].max_positions = 0
        with pytest.raises(ValueError, match="max_positions"):
            validate_settings(s)


class TestSettingsStore:
    def test_load_creates_defaults(self, settings_store, settings_dao):
        settings = settings_store.load(USER)
        assert settings == default_settings()
        assert settings_dao.get_raw(USER) == default_settings().to_dict()

    def test_legacy_document_written_back_once(self, legacy_doc):
        dao = MagicMock()
        dao.get_raw.return_value = legacy_doc
        store = SettingsStore(dao)
        migrated = store.load(USER)
        assert dao.save.call_count == 1

        dao.get_raw.return_value = dao.save.call_args[0][1]
        assert store.load(USER) == migrated
        assert dao.save.call_count == 1

    def test_load_many_is_read_only(self, legacy_doc):
        dao = MagicMock()
        dao.get_raw_many.return_value = {USER: legacy_doc}
        result, unreadable = SettingsStore(dao).load_many([USER, "missing"])
        assert list(result) == [USER]
        assert unreadable == []
        dao.save.assert_not_called()

    def test_load_many_reports_unreadable_documents(self, legacy_doc):
        dao = MagicMock()
        dao.get_raw_many.return_value = {
            USER: legacy_doc,
            "broken": {"categories": [{"display_name": "X", "tiers": []}]},
        }
        result, unreadable = SettingsStore(dao).load_many([USER, "broken"])
        assert list(result) == [USER]
        assert unreadable == ["broken"]

    def test_set_integration(self, settings_store):
        settings_store.set_integration(USER, fmp_api_key="abc", default_notify_time="08:05")
        loaded = settings_store.load(USER)
        assert loaded.fmp_api_key == "abc"
        assert loaded.default_notify_time == "08:05"

    def test_set_integration_clears_with_empty_string(self, settings_store):
        settings_store.set_integration(USER, fmp_api_key="abc")
        settings_store.set_integration(USER, fmp_api_key="")
        assert settings_store.load(USER).fmp_api_key is None

    def test_set_integration_rejects_unknown_key(self, settings_store):
        with pytest.raises(ValueError, match="Unknown"):
            settings_store.set_integration(USER, password="x")
