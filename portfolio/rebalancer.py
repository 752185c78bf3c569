"""Portfolio rebalancer: per-position goals and buy/trim guidance against allocation targets."""

import logging
import math
from dataclasses import dataclass, field

from tabulate import tabulate

from database.models import PortfolioDAO
from portfolio.allocation import (
    PortfolioSettings,
    SettingsStore,
    category_for_tier,
    category_per_position_target,
    category_target,
    per_position_target,
    tier_order,
)
from utils.console import header, ok, warn
from utils.helpers import format_currency, format_pct

logger = logging.getLogger("portfolio_tracker.portfolio.rebalancer")

GOAL_TOLERANCE = 0.02

AT_GOAL = "at goal"
UNDERWEIGHT = "underweight"
OVERWEIGHT = "overweight"

UNASSIGNED = "UNASSIGNED"


@dataclass
class PositionGoal:
    symbol: str
    category: str | None
    tier: str | None
    current_value: float
    weight: float            # percent of grand total
    goal: float              # target weight, percent
    goal_value: float
    diff: float              # goal_value - current_value
    status: str

    @property
    def to_buy(self) -> float:
        return self.diff if self.status == UNDERWEIGHT else 0.0

    @property
    def to_trim(self) -> float:
        return -self.diff if self.status == OVERWEIGHT else 0.0

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "category": self.category,
            "tier": self.tier,
            "current_value": self.current_value,
            "weight": self.weight,
            "goal": self.goal,
            "goal_value": self.goal_value,
            "diff": self.diff,
            "status": self.status,
        }


@dataclass
class CategoryBreakdown:
    key: str
    display_name: str
    current_value: float
    current_pct: float
    target_pct: float
    position_count: int
    status: str = AT_GOAL
    diff: float = 0.0


@dataclass
class RebalancePlan:
    underweight: list[PositionGoal] = field(default_factory=list)
    overweight: list[PositionGoal] = field(default_factory=list)
    at_goal: list[PositionGoal] = field(default_factory=list)
    cash_balance: float = 0.0
    grand_total: float = 0.0
    categories: list[CategoryBreakdown] = field(default_factory=list)

    @property
    def total_to_buy(self) -> float:
        return math.fsum(g.to_buy for g in self.underweight)

    @property
    def total_to_trim(self) -> float:
        return math.fsum(g.to_trim for g in self.overweight)

    @property
    def cash_shortfall(self) -> float:
        return max(0.0, self.total_to_buy - self.cash_balance)


def classify(goal_value: float, current_value: float) -> tuple[str, float]:
    """Return (status, diff) using a 2% tolerance band around goal_value."""
    diff = goal_value - current_value
    tolerance = goal_value * GOAL_TOLERANCE
    if abs(diff) <= tolerance:
        return AT_GOAL, diff
    if diff > tolerance:
        return UNDERWEIGHT, diff
    return OVERWEIGHT, diff


def position_goal_pct(position: dict, settings: PortfolioSettings) -> float | None:
    """Target weight for a position, or None when it is unassigned."""
    tier = settings.find_tier(position.get("tier"))
    if tier is not None:
        return per_position_target(tier)
    category = settings.find_category(position.get("category"))
    if category is not None and not category.tiers:
        return category_per_position_target(category)
    return None


def position_goal(position: dict, settings: PortfolioSettings,
                  grand_total: float) -> PositionGoal | None:
    goal = position_goal_pct(position, settings)
    if goal is None:
        return None
    current_value = position.get("current_value") or 0.0
    goal_value = goal / 100 * grand_total
    status, diff = classify(goal_value, current_value)
    category = position.get("category")
    if not category:
        cat = category_for_tier(settings, position.get("tier"))
        category = cat.key if cat else None
    return PositionGoal(
        symbol=position["symbol"],
        category=category,
        tier=position.get("tier"),
        current_value=current_value,
        weight=current_value / grand_total * 100 if grand_total else 0.0,
        goal=goal,
        goal_value=goal_value,
        diff=diff,
        status=status,
    )


def category_breakdown(positions: list[dict], settings: PortfolioSettings,
                       grand_total: float) -> list[CategoryBreakdown]:
    """Current vs target percent per category; unassigned positions are bucketed last."""
    values: dict[str, list[float]] = {c.key: [] for c in settings.categories}
    values[UNASSIGNED] = []
    for p in positions:
        key = p.get("category")
        if not key:
            cat = category_for_tier(settings, p.get("tier"))
            key = cat.key if cat else None
        values[key if key in values else UNASSIGNED].append(p.get("current_value") or 0.0)

    rows = []
    for cat in settings.categories:
        total = math.fsum(values[cat.key])
        target_pct = category_target(cat)
        status, diff = classify(target_pct / 100 * grand_total, total)
        rows.append(CategoryBreakdown(
            key=cat.key,
            display_name=cat.display_name,
            current_value=total,
            current_pct=total / grand_total * 100 if grand_total else 0.0,
            target_pct=target_pct,
            position_count=len(values[cat.key]),
            status=status,
            diff=diff,
        ))
    if values[UNASSIGNED]:
        total = math.fsum(values[UNASSIGNED])
        rows.append(CategoryBreakdown(
            key=UNASSIGNED,
            display_name="Unassigned",
            current_value=total,
            current_pct=total / grand_total * 100 if grand_total else 0.0,
            target_pct=0.0,
            position_count=len(values[UNASSIGNED]),
            status=UNASSIGNED,
        ))
    return rows


def build_plan(positions: list[dict], settings: PortfolioSettings,
               cash_balance: float = 0.0) -> RebalancePlan:
    """Advisory buy/trim plan. Grand total is position value plus cash."""
    grand_total = math.fsum(p.get("current_value") or 0.0 for p in positions) + cash_balance
    plan = RebalancePlan(cash_balance=cash_balance, grand_total=grand_total)
    if grand_total <= 0:
        return plan

    order = tier_order(settings)
    for p in positions:
        g = position_goal(p, settings, grand_total)
        if g is None:
            continue
        if g.status == UNDERWEIGHT:
            plan.underweight.append(g)
        elif g.status == OVERWEIGHT:
            plan.overweight.append(g)
        else:
            plan.at_goal.append(g)

    plan.underweight.sort(key=lambda g: (-g.to_buy, g.symbol))
    plan.overweight.sort(key=lambda g: (-g.to_trim, g.symbol))
    plan.at_goal.sort(key=lambda g: (order.get(g.tier or g.category, len(order)), g.symbol))
    plan.categories = category_breakdown(positions, settings, grand_total)
    return plan


class Rebalancer:
    """Builds and prints rebalance plans for one user."""

    def __init__(self, user_id: str, portfolio_dao: PortfolioDAO | None = None,
                 settings_store: SettingsStore | None = None):
        self.user_id = user_id
        self.portfolio_dao = portfolio_dao or PortfolioDAO()
        self.settings_store = settings_store or SettingsStore()

    def generate_plan(self) -> RebalancePlan:
        positions = self.portfolio_dao.get_positions(self.user_id)
        summary = self.portfolio_dao.get_summary(self.user_id) or {}
        settings = self.settings_store.load(self.user_id)
        return build_plan(positions, settings, summary.get("cash_balance") or 0.0)

    def print_plan(self):
        print(header("REBALANCE CAPITAL"))
        plan = self.generate_plan()
        if not plan.underweight and not plan.overweight:
            print(f"\n  {ok('All assigned positions are within 2% of their goal.')}")
            return

        print(f"\n  Cash available: {format_currency(plan.cash_balance)}")
        if plan.underweight:
            print("\n  Underweight (buy):\n")
            rows = [
                [g.symbol, g.tier or g.category, format_currency(g.current_value),
                 format_pct(g.weight), format_currency(g.goal_value), format_pct(g.goal),
                 format_currency(g.to_buy)]
                for g in plan.underweight
            ]
            print(tabulate(rows, headers=["Symbol", "Tier", "Current", "Weight",
                                          "Target", "Goal", "To Buy"], tablefmt="simple"))
        if plan.overweight:
            print("\n  Overweight (trim):\n")
            rows = [
                [g.symbol, g.tier or g.category, format_currency(g.current_value),
                 format_pct(g.weight), format_currency(g.goal_value), format_pct(g.goal),
                 format_currency(g.to_trim)]
                for g in plan.overweight
            ]
            print(tabulate(rows, headers=["Symbol", "Tier", "Current", "Weight",
                                          "Target", "Goal", "To Trim"], tablefmt="simple"))

        print(f"\n  Total to buy:  {format_currency(plan.total_to_buy)}")
        print(f"  Total to trim: {format_currency(plan.total_to_trim)}")
        if plan.cash_shortfall > 0:
            print(f"  {warn(f'Cash shortfall: {format_currency(plan.cash_shortfall)}')}")
        print("\n  Note: These are recommendations only. Review before executing trades.")
        print()
