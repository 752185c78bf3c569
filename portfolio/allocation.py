"""Allocation settings: categories, tiers and their target weights.

The persisted document has gone through two shapes:

* v1 (legacy): flat ``tier_goals`` / ``category_targets`` maps, no
  ``categories`` array.
* v2: a ``categories`` array of category configs, each with ``color``,
  ``target_positions`` and tiers carrying ``allocation_pct`` and
  ``max_positions``. Early v2 documents still used tier ``target_pct``
  and had no category colours.

``decode`` probes the shape once; everything past it works with
``PortfolioSettings`` only. ``SettingsStore.load`` writes an upgraded
document back so the migration runs at most once per user.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Union

from database.models import SettingsDAO
from utils.validators import validate_notify_time

logger = logging.getLogger("portfolio_tracker.portfolio.allocation")

# Cycled by category index when a category has no colour yet
CATEGORY_PALETTE = [
    "#3498DB", "#2ECC71", "#E74C3C", "#9B59B6", "#F39C12",
    "#1ABC9C", "#E91E63", "#607D8B", "#5865F2", "#FEE75C",
]

# Legacy per-position tier goals, used when a v1 document lacks a key
LEGACY_TIER_DEFAULTS = {"C1": 8.5, "C2": 6.0, "C3": 5.0, "TT": 2.5, "CON_MIN": 2.0}

DEFAULT_POSITION_COUNT_TARGET = {"min": 25, "max": 35}

INTEGRATION_KEYS = ("fmp_api_key", "notification_email", "resend_api_key", "default_notify_time")


@dataclass
class TierConfig:
    key: str
    name: str
    allocation_pct: float      # share of the portfolio for the whole tier, percent
    max_positions: int = 1

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "name": self.name,
            "allocation_pct": self.allocation_pct,
            "max_positions": self.max_positions,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "TierConfig":
        return cls(
            key=d["key"],
            name=d.get("name") or d["key"],
            allocation_pct=float(d.get("allocation_pct", d.get("target_pct", 0)) or 0),
            max_positions=int(d.get("max_positions", 1) or 0),
        )


@dataclass
class CategoryConfig:
    key: str
    display_name: str
    color: str
    target_positions: int = 0
    target_pct: float | None = None   # only meaningful without tiers
    tiers: list[TierConfig] = field(default_factory=list)

    def to_dict(self) -> dict:
        d = {
            "key": self.key,
            "display_name": self.display_name,
            "color": self.color,
            "target_positions": self.target_positions,
            "tiers": [t.to_dict() for t in self.tiers],
        }
        if self.target_pct is not None:
            d["target_pct"] = self.target_pct
        return d

    @classmethod
    def from_dict(cls, d: dict, index: int = 0) -> "CategoryConfig":
        tiers = [TierConfig.from_dict(t) for t in d.get("tiers") or []]
        target_positions = d.get("target_positions")
        if target_positions is None:
            target_positions = sum(t.max_positions for t in tiers)
        target_pct = d.get("target_pct")
        return cls(
            key=d["key"],
            display_name=d.get("display_name") or d["key"],
            color=d.get("color") or CATEGORY_PALETTE[index % len(CATEGORY_PALETTE)],
            target_positions=int(target_positions),
            target_pct=float(target_pct) if target_pct is not None else None,
            tiers=tiers,
        )


@dataclass
class PortfolioSettings:
    """Current (v2) settings shape."""
    categories: list[CategoryConfig] = field(default_factory=list)
    position_count_target: dict = field(
        default_factory=lambda: dict(DEFAULT_POSITION_COUNT_TARGET)
    )
    fmp_api_key: str | None = None
    notification_email: str | None = None
    resend_api_key: str | None = None
    default_notify_time: str | None = None

    def to_dict(self) -> dict:
        d = {
            "categories": [c.to_dict() for c in self.categories],
            "position_count_target": dict(self.position_count_target),
        }
        for key in INTEGRATION_KEYS:
            value = getattr(self, key)
            if value is not None:
                d[key] = value
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "PortfolioSettings":
        return cls(
            categories=[CategoryConfig.from_dict(c, i) for i, c in enumerate(d["categories"])],
            position_count_target=dict(
                d.get("position_count_target") or DEFAULT_POSITION_COUNT_TARGET
            ),
            **{key: d.get(key) for key in INTEGRATION_KEYS},
        )

    # -- lookups -------------------------------------------------------

    def find_category(self, key: str | None) -> CategoryConfig | None:
        for cat in self.categories:
            if cat.key == key:
                return cat
        return None

    def find_tier(self, key: str | None) -> TierConfig | None:
        if not key:
            return None
        for cat in self.categories:
            for t in cat.tiers:
                if t.key == key:
                    return t
        return None


@dataclass
class LegacySettingsV1:
    """Flat pre-categories document."""
    tier_goals: dict = field(default_factory=dict)
    category_targets: dict = field(default_factory=dict)
    position_count_target: dict | None = None
    integrations: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict) -> "LegacySettingsV1":
        return cls(
            tier_goals=dict(d.get("tier_goals") or {}),
            category_targets=dict(d.get("category_targets") or {}),
            position_count_target=d.get("position_count_target"),
            integrations={k: d.get(k) for k in INTEGRATION_KEYS},
        )


SettingsDocument = Union[LegacySettingsV1, PortfolioSettings]


def is_legacy(raw: dict) -> bool:
    return not isinstance(raw.get("categories"), list)


def needs_upgrade(raw: dict) -> bool:
    """True for an early v2 document: a tier without allocation_pct or a category without color."""
    if is_legacy(raw):
        return False
    for cat in raw["categories"]:
        if not cat.get("color"):
            return True
        if any("allocation_pct" not in t for t in cat.get("tiers") or []):
            return True
    return False


def migrate(legacy: LegacySettingsV1) -> PortfolioSettings:
    """Build the fixed three-category structure from a v1 document.

    A v1 tier goal was a per-position weight, so each synthesized tier
    holds one position at that weight.
    """
    goals = {**LEGACY_TIER_DEFAULTS, **{k: v for k, v in legacy.tier_goals.items() if v is not None}}

    def tier(key, goal_key=None):
        return TierConfig(key=key, name=key, allocation_pct=float(goals[goal_key or key]), max_positions=1)

    layout = [
        ("CORE", "Core", [tier("C1"), tier("C2"), tier("C3")]),
        ("TITAN", "Titan", [tier("TT")]),
        ("CONSENSUS", "Consensus", [tier("CON", "CON_MIN")]),
    ]
    categories = [
        CategoryConfig(
            key=key,
            display_name=name,
            color=CATEGORY_PALETTE[i % len(CATEGORY_PALETTE)],
            target_positions=sum(t.max_positions for t in tiers),
            tiers=tiers,
        )
        for i, (key, name, tiers) in enumerate(layout)
    ]
    return PortfolioSettings(
        categories=categories,
        position_count_target=dict(legacy.position_count_target or DEFAULT_POSITION_COUNT_TARGET),
        **legacy.integrations,
    )


def upgrade(raw: dict) -> dict:
    """Fill in the per-field gaps of an early v2 document. Returns a new dict."""
    doc = copy.deepcopy(raw)
    for i, cat in enumerate(doc["categories"]):
        tiers = cat.get("tiers") or []
        for t in tiers:
            if "allocation_pct" not in t:
                t["allocation_pct"] = t.pop("target_pct", 0)
            t.setdefault("max_positions", 1)
        if not cat.get("color"):
            cat["color"] = CATEGORY_PALETTE[i % len(CATEGORY_PALETTE)]
        if cat.get("target_positions") is None:
            cat["target_positions"] = sum(t["max_positions"] for t in tiers)
        cat["tiers"] = tiers
    return doc


def decode(raw: dict) -> SettingsDocument:
    """Probe the persisted shape and decode into the matching type."""
    if is_legacy(raw):
        return LegacySettingsV1.from_dict(raw)
    if needs_upgrade(raw):
        raw = upgrade(raw)
    return PortfolioSettings.from_dict(raw)


def normalize(raw: dict) -> tuple[PortfolioSettings, bool]:
    """Decode any persisted shape into current settings.

    The flag is True when the stored document must be rewritten.
    """
    doc = decode(raw)
    if isinstance(doc, LegacySettingsV1):
        return migrate(doc), True
    return doc, needs_upgrade(raw)


def default_settings() -> PortfolioSettings:
    return migrate(LegacySettingsV1())


# -- derived targets ---------------------------------------------------

def per_position_target(tier: TierConfig) -> float:
    if tier.max_positions <= 0:
        return 0.0
    return tier.allocation_pct / tier.max_positions


def category_target(category: CategoryConfig) -> float:
    if category.tiers:
        return sum(t.allocation_pct for t in category.tiers)
    return category.target_pct or 0.0


def category_per_position_target(category: CategoryConfig) -> float:
    if category.tiers or category.target_positions <= 0:
        return 0.0
    return (category.target_pct or 0.0) / category.target_positions


def tier_order(settings: PortfolioSettings) -> dict[str, int]:
    """Ordering index per tier key (or category key for tier-less categories)."""
    order = {}
    idx = 0
    for cat in settings.categories:
        if cat.tiers:
            for t in cat.tiers:
                order[t.key] = idx
                idx += 1
        else:
            order[cat.key] = idx
            idx += 1
    return order


def category_for_tier(settings: PortfolioSettings, tier_key: str | None) -> CategoryConfig | None:
    if not tier_key:
        return None
    for cat in settings.categories:
        if any(t.key == tier_key for t in cat.tiers):
            return cat
    return None


def validate_settings(settings: PortfolioSettings):
    """Raise ValueError on duplicate keys or out-of-range tier values."""
    seen = set()
    for cat in settings.categories:
        if cat.key in seen:
            raise ValueError(f"Duplicate category/tier key: {cat.key}")
        seen.add(cat.key)
        for t in cat.tiers:
            if t.key in seen:
                raise ValueError(f"Duplicate category/tier key: {t.key}")
            seen.add(t.key)
            if t.max_positions < 1:
                raise ValueError(f"Tier {t.key}: max_positions must be at least 1")
            if t.allocation_pct < 0:
                raise ValueError(f"Tier {t.key}: allocation_pct must not be negative")
    validate_notify_time(settings.default_notify_time)


class SettingsStore:
    """Loads, migrates and saves per-user allocation settings."""

    def __init__(self, dao: SettingsDAO | None = None):
        self.dao = dao or SettingsDAO()

    def load(self, user_id: str) -> PortfolioSettings:
        raw = self.dao.get_raw(user_id)
        if raw is None:
            settings = default_settings()
            self.dao.save(user_id, settings.to_dict())
            logger.info("Created default settings for %s", user_id)
            return settings

        settings, changed = normalize(raw)
        if changed:
            self.dao.save(user_id, settings.to_dict())
            logger.info("Migrated stored settings for %s", user_id)
        return settings

    def load_many(self, user_ids: list[str]) -> tuple[dict[str, PortfolioSettings], list[str]]:
        """Read-only bulk load for the alert job.

        Returns the decoded settings keyed by user (users with no stored
        document are omitted) and the ids whose document could not be decoded.
        """
        out, unreadable = {}, []
        for user_id, raw in self.dao.get_raw_many(user_ids).items():
            try:
                out[user_id] = normalize(raw)[0]
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.error("Unreadable settings for %s: %r", user_id, e)
                unreadable.append(user_id)
        return out, unreadable

    def update(self, user_id: str, settings: PortfolioSettings) -> PortfolioSettings:
        validate_settings(settings)
        self.dao.save(user_id, settings.to_dict())
        return settings

    def set_integration(self, user_id: str, **values) -> PortfolioSettings:
        unknown = set(values) - set(INTEGRATION_KEYS)
        if unknown:
            raise ValueError(f"Unknown integration settings: {sorted(unknown)}")
        settings = self.load(user_id)
        for key, value in values.items():
            if key == "default_notify_time":
                value = validate_notify_time(value)
            setattr(settings, key, value or None)
        return self.update(user_id, settings)
