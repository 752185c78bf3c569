"""Data access objects (DAOs) for the user-scoped collections."""

import json
import logging
import sqlite3

from database.connection import get_connection
from database.errors import (
    DuplicateAlertError,
    DuplicateRecordError,
    DuplicateScreenError,
    DuplicateWatchlistEntryError,
)
from utils.helpers import utc_now

logger = logging.getLogger("portfolio_tracker.models")


def _loads(text, default):
    if text is None or text == "":
        return default
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        logger.warning("Discarding unreadable JSON column value: %r", text)
        return default


def _now_iso() -> str:
    return utc_now().isoformat(timespec="seconds")


def _is_unique_violation(exc: sqlite3.IntegrityError) -> bool:
    msg = str(exc).upper()
    return "UNIQUE" in msg or "PRIMARY KEY" in msg


def _position_row(row) -> dict:
    d = dict(row)
    d["account"] = _loads(d.get("account"), [])
    return d


class PortfolioDAO:
    """Data access for positions, the portfolio summary and import history."""

    def __init__(self, db=None):
        self.db = db or get_connection()

    def get_positions(self, user_id: str) -> list[dict]:
        rows = self.db.execute(
            """SELECT * FROM positions WHERE user_id = ?
               ORDER BY current_value DESC, symbol""",
            (user_id,),
        )
        return [_position_row(r) for r in rows]

    def get_position(self, user_id: str, symbol: str) -> dict | None:
        row = self.db.execute_one(
            "SELECT * FROM positions WHERE user_id = ? AND symbol = ?",
            (user_id, symbol),
        )
        return _position_row(row) if row else None

    def save_import(self, user_id: str, positions: list[dict], cash_balance: float,
                    cash_accounts: list[dict], file_names: list[str],
                    imported_at: str | None = None) -> int:
        """Upsert imported positions, the cash summary and a history row atomically.

        Category, tier and notes of existing positions are preserved.
        Returns the import_history row id.
        """
        imported_at = imported_at or _now_iso()
        total_value = sum(p.get("current_value", 0) or 0 for p in positions)
        with self.db.connect() as conn:
            for p in positions:
                conn.execute(
                    """INSERT INTO positions
                       (user_id, symbol, company_name, shares, current_price,
                        current_value, cost_basis, account, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT(user_id, symbol) DO UPDATE SET
                         company_name=COALESCE(NULLIF(excluded.company_name, ''), company_name),
                         shares=excluded.shares,
                         current_price=excluded.current_price,
                         current_value=excluded.current_value,
                         cost_basis=excluded.cost_basis,
                         account=excluded.account,
                         updated_at=excluded.updated_at""",
                    (
                        user_id, p["symbol"], p.get("company_name", ""),
                        p["shares"], p.get("current_price", 0),
                        p.get("current_value", 0), p.get("cost_basis", 0),
                        json.dumps(p.get("accounts", [])), imported_at,
                    ),
                )
            conn.execute(
                """INSERT INTO portfolio_summary
                   (user_id, cash_balance, cash_accounts, last_import_date)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(user_id) DO UPDATE SET
                     cash_balance=excluded.cash_balance,
                     cash_accounts=excluded.cash_accounts,
                     last_import_date=excluded.last_import_date""",
                (user_id, cash_balance, json.dumps(cash_accounts), imported_at),
            )
            cursor = conn.execute(
                """INSERT INTO import_history
                   (user_id, file_names, total_positions, total_value, imported_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (user_id, json.dumps(file_names), len(positions), total_value, imported_at),
            )
            return cursor.lastrowid

    def set_assignment(self, user_id: str, symbol: str,
                       category: str | None, tier: str | None) -> bool:
        count = self.db.execute_write(
            """UPDATE positions SET category = ?, tier = ?, updated_at = ?
               WHERE user_id = ? AND symbol = ?""",
            (category, tier, _now_iso(), user_id, symbol),
        )
        return count > 0

    def apply_account_removal(self, user_id: str, delete_ids: list[int],
                              updates: list[dict]):
        """Delete and rewrite positions for an account removal in one transaction."""
        now = _now_iso()
        with self.db.connect() as conn:
            for pid in delete_ids:
                conn.execute(
                    "DELETE FROM positions WHERE id = ? AND user_id = ?",
                    (pid, user_id),
                )
            for u in updates:
                conn.execute(
                    """UPDATE positions SET account = ?, shares = ?,
                         current_value = ?, current_price = ?, cost_basis = ?,
                         updated_at = ?
                       WHERE id = ? AND user_id = ?""",
                    (
                        json.dumps(u["account"]), u["shares"], u["current_value"],
                        u["current_price"], u["cost_basis"], now, u["id"], user_id,
                    ),
                )

    def clear_all(self, user_id: str) -> int:
        """Delete every position and the summary row for the user."""
        with self.db.connect() as conn:
            deleted = conn.execute(
                "DELETE FROM positions WHERE user_id = ?", (user_id,)
            ).rowcount
            conn.execute("DELETE FROM portfolio_summary WHERE user_id = ?", (user_id,))
        return deleted

    def get_summary(self, user_id: str) -> dict | None:
        row = self.db.execute_one(
            "SELECT * FROM portfolio_summary WHERE user_id = ?", (user_id,)
        )
        if not row:
            return None
        d = dict(row)
        d["cash_accounts"] = _loads(d.get("cash_accounts"), [])
        return d

    def get_import_history(self, user_id: str) -> list[dict]:
        rows = self.db.execute(
            """SELECT * FROM import_history WHERE user_id = ?
               ORDER BY imported_at DESC, id DESC""",
            (user_id,),
        )
        out = []
        for r in rows:
            d = dict(r)
            d["file_names"] = _loads(d.get("file_names"), [])
            out.append(d)
        return out


class SettingsDAO:
    """Data access for the per-user portfolio settings JSON document."""

    def __init__(self, db=None):
        self.db = db or get_connection()

    def get_raw(self, user_id: str) -> dict | None:
        row = self.db.execute_one(
            "SELECT settings FROM portfolio_settings WHERE user_id = ?", (user_id,)
        )
        if not row:
            return None
        return _loads(row["settings"], {})

    def get_raw_many(self, user_ids: list[str]) -> dict[str, dict]:
        if not user_ids:
            return {}
        placeholders = ",".join("?" for _ in user_ids)
        rows = self.db.execute(
            f"SELECT user_id, settings FROM portfolio_settings WHERE user_id IN ({placeholders})",
            tuple(user_ids),
        )
        return {r["user_id"]: _loads(r["settings"], {}) for r in rows}

    def save(self, user_id: str, document: dict):
        self.db.execute_insert(
            """INSERT INTO portfolio_settings (user_id, settings, updated_at)
               VALUES (?, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET
                 settings=excluded.settings, updated_at=excluded.updated_at""",
            (user_id, json.dumps(document), _now_iso()),
        )


_ALERT_UPDATABLE = {"target_value", "alert_type", "reference_price", "is_active", "notify_time"}


def _alert_row(row) -> dict:
    d = dict(row)
    d["is_active"] = bool(d["is_active"])
    d["notification_sent"] = bool(d["notification_sent"])
    return d


class PriceAlertDAO:
    """Data access for price alerts."""

    def __init__(self, db=None):
        self.db = db or get_connection()

    def insert(self, user_id: str, watchlist_entry_id: int, symbol: str,
               alert_type: str, target_value: float,
               reference_price: float | None = None,
               notify_time: str | None = None) -> int:
        try:
            return self.db.execute_insert(
                """INSERT INTO price_alerts
                   (user_id, watchlist_entry_id, symbol, alert_type, target_value,
                    reference_price, notify_time, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (user_id, watchlist_entry_id, symbol, alert_type, target_value,
                 reference_price, notify_time, _now_iso()),
            )
        except sqlite3.IntegrityError as e:
            if _is_unique_violation(e):
                raise DuplicateAlertError(symbol, alert_type) from e
            raise

    def get(self, user_id: str, alert_id: int) -> dict | None:
        row = self.db.execute_one(
            "SELECT * FROM price_alerts WHERE id = ? AND user_id = ?",
            (alert_id, user_id),
        )
        return _alert_row(row) if row else None

    def get_all(self, user_id: str) -> list[dict]:
        rows = self.db.execute(
            """SELECT * FROM price_alerts WHERE user_id = ?
               ORDER BY created_at DESC, id DESC""",
            (user_id,),
        )
        return [_alert_row(r) for r in rows]

    def get_active_all_users(self) -> list[dict]:
        """Every active alert across users (the evaluation job runs unscoped)."""
        rows = self.db.execute(
            "SELECT * FROM price_alerts WHERE is_active = 1 ORDER BY user_id, id"
        )
        return [_alert_row(r) for r in rows]

    def update(self, user_id: str, alert_id: int, **fields) -> bool:
        unknown = set(fields) - _ALERT_UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update alert fields: {sorted(unknown)}")
        if not fields:
            return False
        cols = ", ".join(f"{k} = ?" for k in fields)
        params = tuple(int(v) if isinstance(v, bool) else v for v in fields.values())
        return self.db.execute_write(
            f"UPDATE price_alerts SET {cols} WHERE id = ? AND user_id = ?",
            params + (alert_id, user_id),
        ) > 0

    def delete(self, user_id: str, alert_id: int) -> bool:
        return self.db.execute_write(
            "DELETE FROM price_alerts WHERE id = ? AND user_id = ?",
            (alert_id, user_id),
        ) > 0

    def mark_triggered(self, alert_id: int, triggered_at: str) -> bool:
        """Flip an active alert to inactive. False if it was already inactive."""
        return self.db.execute_write(
            """UPDATE price_alerts SET is_active = 0, triggered_at = ?
               WHERE id = ? AND is_active = 1""",
            (triggered_at, alert_id),
        ) == 1

    def mark_notified(self, alert_id: int, notified_at: str):
        self.db.execute_write(
            """UPDATE price_alerts SET notification_sent = 1, last_notified_at = ?
               WHERE id = ?""",
            (notified_at, alert_id),
        )

    def acknowledge(self, user_id: str, alert_ids: list[int], acknowledged_at: str) -> int:
        if not alert_ids:
            return 0
        placeholders = ",".join("?" for _ in alert_ids)
        return self.db.execute_write(
            f"""UPDATE price_alerts SET acknowledged_at = ?
                WHERE user_id = ? AND id IN ({placeholders})""",
            (acknowledged_at, user_id, *alert_ids),
        )


class WatchlistDAO:
    """Data access for watchlist entries."""

    def __init__(self, db=None):
        self.db = db or get_connection()

    def insert(self, user_id: str, symbol: str, company_name: str | None = None,
               price_when_added: float | None = None, notes: str | None = None,
               industry: str | None = None, sector: str | None = None,
               market_cap: float | None = None,
               market_cap_category: str | None = None) -> int:
        try:
            return self.db.execute_insert(
                """INSERT INTO watchlist_entries
                   (user_id, symbol, company_name, date_added, price_when_added,
                    current_price, notes, industry, sector, market_cap,
                    market_cap_category)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (user_id, symbol, company_name, _now_iso(), price_when_added,
                 price_when_added, notes, industry, sector, market_cap,
                 market_cap_category),
            )
        except sqlite3.IntegrityError as e:
            if _is_unique_violation(e):
                raise DuplicateWatchlistEntryError(symbol) from e
            raise

    def get(self, user_id: str, entry_id: int) -> dict | None:
        row = self.db.execute_one(
            "SELECT * FROM watchlist_entries WHERE id = ? AND user_id = ?",
            (entry_id, user_id),
        )
        return dict(row) if row else None

    def get_by_symbol(self, user_id: str, symbol: str) -> dict | None:
        row = self.db.execute_one(
            "SELECT * FROM watchlist_entries WHERE user_id = ? AND symbol = ?",
            (user_id, symbol),
        )
        return dict(row) if row else None

    def get_by_id_unscoped(self, entry_id: int) -> dict | None:
        """Entry lookup for the alert job, which runs on behalf of every user."""
        row = self.db.execute_one(
            "SELECT * FROM watchlist_entries WHERE id = ?", (entry_id,)
        )
        return dict(row) if row else None

    def get_all(self, user_id: str) -> list[dict]:
        rows = self.db.execute(
            """SELECT * FROM watchlist_entries WHERE user_id = ?
               ORDER BY date_added DESC, id DESC""",
            (user_id,),
        )
        return [dict(r) for r in rows]

    def get_by_symbols(self, user_id: str, symbols: list[str]) -> list[dict]:
        if not symbols:
            return []
        placeholders = ",".join("?" for _ in symbols)
        rows = self.db.execute(
            f"""SELECT * FROM watchlist_entries
                WHERE user_id = ? AND symbol IN ({placeholders})""",
            (user_id, *symbols),
        )
        return [dict(r) for r in rows]

    def update_profile(self, user_id: str, symbol: str, market_cap: float,
                       market_cap_category: str | None, sector: str | None,
                       industry: str | None, company_name: str | None = None):
        self.db.execute_write(
            """UPDATE watchlist_entries SET market_cap = ?, market_cap_category = ?,
                 sector = ?, industry = ?,
                 company_name = COALESCE(company_name, ?)
               WHERE user_id = ? AND symbol = ?""",
            (market_cap, market_cap_category, sector, industry, company_name,
             user_id, symbol),
        )

    def update_prices(self, user_id: str, symbol: str, current_price: float,
                      previous_close: float | None):
        self.db.execute_write(
            """UPDATE watchlist_entries SET current_price = ?, previous_close = ?,
                 last_price_update = ?
               WHERE user_id = ? AND symbol = ?""",
            (current_price, previous_close, _now_iso(), user_id, symbol),
        )

    def set_group(self, user_id: str, entry_ids: list[int], group_id: int | None) -> int:
        """Move entries into a group (None clears it). Returns rows changed."""
        if not entry_ids:
            return 0
        placeholders = ",".join("?" for _ in entry_ids)
        return self.db.execute_write(
            f"""UPDATE watchlist_entries SET group_id = ?
                WHERE user_id = ? AND id IN ({placeholders})""",
            (group_id, user_id, *entry_ids),
        )

    def delete(self, user_id: str, entry_id: int) -> bool:
        return self.db.execute_write(
            "DELETE FROM watchlist_entries WHERE id = ? AND user_id = ?",
            (entry_id, user_id),
        ) > 0


class TagDAO:
    """Data access for tags and watchlist entry tag assignments."""

    def __init__(self, db=None):
        self.db = db or get_connection()

    def get_all(self, user_id: str) -> list[dict]:
        rows = self.db.execute(
            "SELECT * FROM tags WHERE user_id = ? ORDER BY short_code", (user_id,)
        )
        return [dict(r) for r in rows]

    def get_by_code(self, user_id: str, short_code: str) -> dict | None:
        row = self.db.execute_one(
            "SELECT * FROM tags WHERE user_id = ? AND short_code = ?",
            (user_id, short_code),
        )
        return dict(row) if row else None

    def insert(self, user_id: str, short_code: str, full_name: str | None = None,
               color: str | None = None, is_system_tag: bool = False) -> int:
        try:
            return self.db.execute_insert(
                """INSERT INTO tags (user_id, short_code, full_name, color, is_system_tag)
                   VALUES (?, ?, ?, ?, ?)""",
                (user_id, short_code, full_name, color, int(is_system_tag)),
            )
        except sqlite3.IntegrityError as e:
            if _is_unique_violation(e):
                raise DuplicateRecordError(f"Tag {short_code} already exists.") from e
            raise

    def insert_many(self, user_id: str, tags: list[dict]):
        self.db.execute_many(
            """INSERT OR IGNORE INTO tags (user_id, short_code, full_name, color, is_system_tag)
               VALUES (?, ?, ?, ?, ?)""",
            [(user_id, t["short_code"], t.get("full_name"), t.get("color"),
              int(t.get("is_system_tag", False))) for t in tags],
        )

    def assign(self, assignments: list[tuple[int, int]]) -> None:
        """Insert (watchlist_entry_id, tag_id) pairs, ignoring existing ones."""
        if not assignments:
            return
        self.db.execute_many(
            """INSERT OR IGNORE INTO watchlist_entry_tags (watchlist_entry_id, tag_id)
               VALUES (?, ?)""",
            assignments,
        )

    def get_assignments(self, user_id: str) -> list[dict]:
        rows = self.db.execute(
            """SELECT et.watchlist_entry_id, et.tag_id FROM watchlist_entry_tags et
               JOIN watchlist_entries w ON w.id = et.watchlist_entry_id
               WHERE w.user_id = ?""",
            (user_id,),
        )
        return [dict(r) for r in rows]


class WatchlistGroupDAO:
    """Data access for named watchlist groups."""

    def __init__(self, db=None):
        self.db = db or get_connection()

    def get_all(self, user_id: str) -> list[dict]:
        rows = self.db.execute(
            "SELECT * FROM watchlist_groups WHERE user_id = ? ORDER BY sort_order, id",
            (user_id,),
        )
        return [dict(r) for r in rows]

    def get_by_name(self, user_id: str, name: str) -> dict | None:
        row = self.db.execute_one(
            "SELECT * FROM watchlist_groups WHERE user_id = ? AND name = ?",
            (user_id, name),
        )
        return dict(row) if row else None

    def insert(self, user_id: str, name: str, color: str | None = None,
               sort_order: int = 0) -> int:
        try:
            return self.db.execute_insert(
                """INSERT INTO watchlist_groups (user_id, name, color, sort_order, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (user_id, name, color, sort_order, _now_iso()),
            )
        except sqlite3.IntegrityError as e:
            if _is_unique_violation(e):
                raise DuplicateRecordError(f"Group {name} already exists.") from e
            raise

    def update(self, user_id: str, group_id: int, **fields) -> bool:
        unknown = set(fields) - {"name", "color", "sort_order"}
        if unknown:
            raise ValueError(f"Cannot update group fields: {sorted(unknown)}")
        if not fields:
            return False
        assignments = ", ".join(f"{k} = ?" for k in fields)
        try:
            return self.db.execute_write(
                f"UPDATE watchlist_groups SET {assignments} WHERE id = ? AND user_id = ?",
                (*fields.values(), group_id, user_id),
            ) > 0
        except sqlite3.IntegrityError as e:
            if _is_unique_violation(e):
                raise DuplicateRecordError(f"Group {fields.get('name')} already exists.") from e
            raise

    def delete(self, user_id: str, group_id: int) -> bool:
        """Delete a group; its entries become ungrouped."""
        return self.db.execute_write(
            "DELETE FROM watchlist_groups WHERE id = ? AND user_id = ?",
            (group_id, user_id),
        ) > 0

class ScreenDAO:
    """Data access for screens and their runs."""

    def __init__(self, db=None):
        self.db = db or get_connection()

    def insert(self, user_id: str, name: str, short_code: str,
               color: str | None = None) -> int:
        try:
            return self.db.execute_insert(
                """INSERT INTO screens (user_id, name, short_code, color, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (user_id, name, short_code, color, _now_iso()),
            )
        except sqlite3.IntegrityError as e:
            if _is_unique_violation(e):
                raise DuplicateScreenError(short_code) from e
            raise

    def get(self, user_id: str, screen_id: int) -> dict | None:
        row = self.db.execute_one(
            "SELECT * FROM screens WHERE id = ? AND user_id = ?", (screen_id, user_id)
        )
        return dict(row) if row else None

    def get_all(self, user_id: str) -> list[dict]:
        rows = self.db.execute(
            "SELECT * FROM screens WHERE user_id = ? ORDER BY created_at DESC, id DESC",
            (user_id,),
        )
        return [dict(r) for r in rows]

    def next_run_number(self, user_id: str, screen_id: int) -> int:
        row = self.db.execute_one(
            """SELECT COALESCE(MAX(run_number), 0) AS n FROM screen_runs
               WHERE user_id = ? AND screen_id = ?""",
            (user_id, screen_id),
        )
        return (row["n"] if row else 0) + 1

    def insert_run(self, user_id: str, run: dict) -> int:
        return self.db.execute_insert(
            """INSERT INTO screen_runs
               (user_id, screen_id, run_date, run_number, total_symbols, match_count,
                matched_symbols, all_symbols, auto_tag_id, auto_tag_code, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                user_id, run["screen_id"], run["run_date"], run["run_number"],
                run["total_symbols"], run["match_count"],
                json.dumps(run["matched_symbols"]), json.dumps(run["all_symbols"]),
                run.get("auto_tag_id"), run.get("auto_tag_code"), _now_iso(),
            ),
        )

    def get_runs(self, user_id: str, screen_id: int | None = None) -> list[dict]:
        if screen_id is None:
            rows = self.db.execute(
                "SELECT * FROM screen_runs WHERE user_id = ? ORDER BY id DESC",
                (user_id,),
            )
        else:
            rows = self.db.execute(
                """SELECT * FROM screen_runs WHERE user_id = ? AND screen_id = ?
                   ORDER BY id DESC""",
                (user_id, screen_id),
            )
        out = []
        for r in rows:
            d = dict(r)
            d["matched_symbols"] = _loads(d.get("matched_symbols"), [])
            d["all_symbols"] = _loads(d.get("all_symbols"), [])
            out.append(d)
        return out

    def delete_screen(self, user_id: str, screen_id: int) -> bool:
        """Delete a screen, its runs, and the auto-tags those runs created."""
        with self.db.connect() as conn:
            tag_ids = [
                r["auto_tag_id"] for r in conn.execute(
                    """SELECT auto_tag_id FROM screen_runs
                       WHERE user_id = ? AND screen_id = ? AND auto_tag_id IS NOT NULL""",
                    (user_id, screen_id),
                ).fetchall()
            ]
            conn.execute(
                "DELETE FROM screen_runs WHERE user_id = ? AND screen_id = ?",
                (user_id, screen_id),
            )
            deleted = conn.execute(
                "DELETE FROM screens WHERE id = ? AND user_id = ?", (screen_id, user_id)
            ).rowcount
            for tag_id in tag_ids:
                conn.execute(
                    "DELETE FROM watchlist_entry_tags WHERE tag_id = ?", (tag_id,)
                )
                conn.execute(
                    "DELETE FROM tags WHERE id = ? AND user_id = ?", (tag_id, user_id)
                )
        return deleted > 0
