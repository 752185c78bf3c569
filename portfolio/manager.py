"""Portfolio manager: ledger views, account removal, category assignment."""

import logging
import math
from dataclasses import dataclass

from tabulate import tabulate

from database.models import PortfolioDAO
from portfolio.allocation import SettingsStore, category_for_tier, tier_order
from portfolio.rebalancer import UNASSIGNED, category_breakdown
from utils.console import header, separator, ok, fail
from utils.helpers import format_currency, format_pct, format_shares

logger = logging.getLogger("portfolio_tracker.portfolio.manager")


@dataclass
class AccountSummary:
    name: str
    position_count: int
    total_value: float


@dataclass
class AccountRemovalResult:
    account: str
    deleted: list[str]
    updated: list[str]


def plan_account_removal(positions: list[dict], account: str) -> tuple[list[dict], list[dict]]:
    """Work out deletes and rewrites for removing ``account`` from every position.

    Returns (deleted positions, update dicts). Cost basis is not tracked per
    account, so the remaining basis is estimated from the removed value's share
    of the position.
    """
    deletes = []
    updates = []
    for pos in positions:
        breakdowns = pos.get("account") or []
        if not any(b.get("account") == account for b in breakdowns):
            continue
        remaining = [b for b in breakdowns if b.get("account") != account]
        if not remaining:
            deletes.append(pos)
            continue

        new_shares = math.fsum(b.get("shares") or 0 for b in remaining)
        new_value = math.fsum(b.get("value") or 0 for b in remaining)
        price = new_value / new_shares if new_shares > 0 else (pos.get("current_price") or 0)
        old_total = math.fsum(b.get("value") or 0 for b in breakdowns)
        removed_value = math.fsum(
            b.get("value") or 0 for b in breakdowns if b.get("account") == account
        )
        ratio = (old_total - removed_value) / old_total if old_total > 0 else 1
        updates.append({
            "id": pos["id"],
            "symbol": pos["symbol"],
            "account": remaining,
            "shares": new_shares,
            "current_value": new_value,
            "current_price": price,
            "cost_basis": (pos.get("cost_basis") or 0) * ratio,
        })
    return deletes, updates


def summarize_accounts(positions: list[dict]) -> list[AccountSummary]:
    """Distinct account names with position count and value, largest first."""
    groups: dict[str, list[float]] = {}
    for pos in positions:
        for b in pos.get("account") or []:
            name = b.get("account")
            if not name:
                continue
            groups.setdefault(name, []).append(b.get("value") or 0)
    summaries = [AccountSummary(name, len(vals), math.fsum(vals)) for name, vals in groups.items()]
    summaries.sort(key=lambda s: (-s.total_value, s.name))
    return summaries


class PortfolioManager:
    """Manages the position ledger for one user and renders status views."""

    def __init__(self, user_id: str, portfolio_dao: PortfolioDAO | None = None,
                 settings_store: SettingsStore | None = None):
        self.user_id = user_id
        self.portfolio_dao = portfolio_dao or PortfolioDAO()
        self.settings_store = settings_store or SettingsStore()

    def get_positions(self) -> list[dict]:
        return self.portfolio_dao.get_positions(self.user_id)

    def get_cash_balance(self) -> float:
        summary = self.portfolio_dao.get_summary(self.user_id)
        return (summary or {}).get("cash_balance") or 0.0

    def account_summary(self) -> list[AccountSummary]:
        return summarize_accounts(self.get_positions())

    def remove_account(self, account: str) -> AccountRemovalResult:
        """Strip one brokerage account out of every position, atomically."""
        deletes, updates = plan_account_removal(self.get_positions(), account)
        self.portfolio_dao.apply_account_removal(
            self.user_id, [p["id"] for p in deletes], updates,
        )
        logger.info(
            "Removed account %s for %s: %d deleted, %d updated",
            account, self.user_id, len(deletes), len(updates),
        )
        return AccountRemovalResult(
            account=account,
            deleted=[p["symbol"] for p in deletes],
            updated=[u["symbol"] for u in updates],
        )

    def clear_all(self) -> int:
        """Irreversibly delete every position and the summary row."""
        deleted = self.portfolio_dao.clear_all(self.user_id)
        logger.warning("Cleared %d positions for %s", deleted, self.user_id)
        return deleted

    def assign(self, symbol: str, category: str | None = None, tier: str | None = None) -> bool:
        """Assign a category/tier to a position. A tier implies its category."""
        settings = self.settings_store.load(self.user_id)
        if tier:
            cat = category_for_tier(settings, tier)
            if cat is None:
                raise ValueError(f"Unknown tier: {tier}")
            if category and category != cat.key:
                raise ValueError(f"Tier {tier} belongs to {cat.key}, not {category}")
            category = cat.key
        elif category and settings.find_category(category) is None:
            raise ValueError(f"Unknown category: {category}")
        return self.portfolio_dao.set_assignment(self.user_id, symbol.strip().upper(), category, tier)

    def print_status(self):
        positions = self.get_positions()
        if not positions:
            print(header("Portfolio Status"))
            print("\n  No positions found. Run 'python main.py import-csv FILE' first.")
            return

        settings = self.settings_store.load(self.user_id)
        cash = self.get_cash_balance()
        invested = math.fsum(p.get("current_value") or 0 for p in positions)
        cost = math.fsum(p.get("cost_basis") or 0 for p in positions)
        grand_total = invested + cash
        gain = invested - cost

        print(header("PORTFOLIO STATUS"))
        print(f"\n  Total Value:   {format_currency(grand_total)}")
        print(f"  Invested:      {format_currency(invested)}")
        print(f"  Cash:          {format_currency(cash)}")
        gain_fn = ok if gain >= 0 else fail
        gain_pct = gain / cost * 100 if cost else 0
        print(f"  Gain/Loss:     {gain_fn(f'{format_currency(gain)} ({format_pct(gain_pct, signed=True)})')}")
        print(f"  Positions:     {len(positions)}")

        order = tier_order(settings)
        positions = sorted(
            positions,
            key=lambda p: (order.get(p.get("tier") or p.get("category"), len(order)),
                           -(p.get("current_value") or 0)),
        )

        print(f"\n{separator()}")
        print("  POSITIONS:")
        rows = []
        for p in positions:
            weight = (p.get("current_value") or 0) / grand_total * 100 if grand_total else 0
            rows.append([
                p["symbol"],
                format_shares(p.get("shares")),
                format_currency(p.get("current_price")),
                format_currency(p.get("current_value")),
                format_currency(p.get("cost_basis")),
                f"{weight:.1f}%",
                p.get("tier") or p.get("category") or "-",
            ])
        print(tabulate(rows, headers=["Symbol", "Shares", "Price", "Value", "Cost Basis",
                                      "Weight", "Tier"], tablefmt="simple", stralign="right"))

        print(f"\n{separator()}")
        print("  CATEGORY ALLOCATION:")
        for row in category_breakdown(positions, settings, grand_total):
            bar = "#" * int(row.current_pct / 2)
            target = "-" if row.key == UNASSIGNED else f"{row.target_pct:.1f}%"
            status = "" if row.key == UNASSIGNED else f"  ({row.status})"
            print(f"    {row.display_name:<20} {row.current_pct:5.1f}% / {target:>6}  {bar}{status}")
        print()
