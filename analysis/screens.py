"""Screen cross-reference: match uploaded stock-screen lists against the watchlist and portfolio.

A screen is a named, externally sourced list of tickers uploaded as CSV,
possibly many times ("runs"). Each run that matches watchlist entries
creates a system auto-tag ``CODE-MM/DD/YY`` and applies it to those
entries.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date

from database.errors import DuplicateRecordError
from database.models import PortfolioDAO, ScreenDAO, TagDAO, WatchlistDAO
from portfolio.importer import parse_csv_line
from utils.helpers import unique

logger = logging.getLogger("portfolio_tracker.analysis.screens")

AUTO_TAG_COLOR = "#6366F1"
SYMBOL_KEYWORDS = ("symbol", "ticker", "stock", "sym")
HEADER_SCAN_LINES = 10
SYMBOL_SHARE_THRESHOLD = 0.3

_TICKER_SHAPE = re.compile(r"^[A-Z]{1,5}$")
_SCREEN_SYMBOL = re.compile(r"^[A-Z.]+$")


@dataclass
class GenericCSV:
    headers: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)


@dataclass
class ScreenRunResult:
    run_id: int
    run_number: int
    total_symbols: int
    matched: list[str]
    unmatched: list[str]
    tag_code: str
    tag_id: int | None

    @property
    def match_count(self) -> int:
        return len(self.matched)


@dataclass
class ScreenHit:
    symbol: str
    screens: list[str]          # short codes, sorted
    weight: float | None = None  # percent of portfolio value, portfolio overlap only

    @property
    def heat_score(self) -> int:
        return len(self.screens)


def parse_generic_csv(text: str) -> GenericCSV:
    """Header is the first of the first ten non-empty lines with two or more fields."""
    lines = [l for l in text.splitlines() if l.strip()]
    if not lines:
        return GenericCSV()

    header_idx = 0
    for i, line in enumerate(lines[:HEADER_SCAN_LINES]):
        if len(parse_csv_line(line)) >= 2:
            header_idx = i
            break

    headers = [c.strip() for c in parse_csv_line(lines[header_idx])]
    rows = []
    for line in lines[header_idx + 1:]:
        row = [c.strip() for c in parse_csv_line(line)]
        if any(row):
            rows.append(row)
    return GenericCSV(headers, rows)


def detect_symbol_column(headers: list[str], rows: list[list[str]]) -> int:
    """Guess which column holds tickers: header keyword, else ticker-shaped values, else 0."""
    for i, h in enumerate(headers):
        lower = h.lower()
        if any(k in lower for k in SYMBOL_KEYWORDS):
            return i

    best_idx, best_score = 0, 0.0
    for col in range(len(headers)):
        hits = sum(1 for r in rows if col < len(r) and _TICKER_SHAPE.match(r[col].strip()))
        score = hits / max(len(rows), 1)
        if score > best_score:
            best_idx, best_score = col, score
    return best_idx if best_score > SYMBOL_SHARE_THRESHOLD else 0


def extract_symbols(csv: GenericCSV, column: int) -> list[str]:
    """Uppercased, ticker-shaped, de-duplicated symbols from one column."""
    symbols = []
    for row in csv.rows:
        s = (row[column] if column < len(row) else "").strip().upper()
        if 0 < len(s) <= 10 and _SCREEN_SYMBOL.match(s):
            symbols.append(s)
    return unique(symbols)


def auto_tag_code(short_code: str, run_date: date) -> tuple[str, str]:
    """(tag code, MM/DD/YY date string) for a screen run."""
    date_str = run_date.strftime("%m/%d/%y")
    return f"{short_code}-{date_str}", date_str


def _run_symbols(run: dict) -> list[str]:
    return run.get("all_symbols") or run.get("matched_symbols") or []


class ScreenService:
    """Screens, screen runs and cross-referencing for one user."""

    def __init__(self, user_id: str, screen_dao: ScreenDAO | None = None,
                 watchlist_dao: WatchlistDAO | None = None, tag_dao: TagDAO | None = None,
                 portfolio_dao: PortfolioDAO | None = None):
        self.user_id = user_id
        self.screen_dao = screen_dao or ScreenDAO()
        self.watchlist_dao = watchlist_dao or WatchlistDAO()
        self.tag_dao = tag_dao or TagDAO()
        self.portfolio_dao = portfolio_dao or PortfolioDAO()

    def create_screen(self, name: str, short_code: str, color: str | None = None) -> int:
        """Raises DuplicateScreenError if the short code is taken."""
        name = name.strip()
        code = short_code.strip().upper()
        if not name or not code:
            raise ValueError("Screen name and short code are required.")
        return self.screen_dao.insert(self.user_id, name, code, color)

    def list_screens(self) -> list[dict]:
        return self.screen_dao.get_all(self.user_id)

    def find_screen(self, ref: str) -> dict | None:
        """Look up a screen by id or short code."""
        ref = str(ref).strip()
        for s in self.list_screens():
            if str(s["id"]) == ref or s["short_code"] == ref.upper():
                return s
        return None

    def _auto_tag(self, screen: dict, run_date: date) -> tuple[str, int]:
        code, date_str = auto_tag_code(screen["short_code"], run_date)
        try:
            tag_id = self.tag_dao.insert(
                self.user_id, code, full_name=f"{screen['name']} – {date_str}",
                color=AUTO_TAG_COLOR, is_system_tag=True,
            )
        except DuplicateRecordError:
            # Same screen uploaded twice on one day shares the tag
            tag_id = self.tag_dao.get_by_code(self.user_id, code)["id"]
        return code, tag_id

    def process_run(self, screen_id: int, csv_text: str, column: int | None = None,
                    run_date: date | None = None) -> ScreenRunResult:
        """Record a run of ``screen_id`` from uploaded CSV text and tag watchlist matches."""
        screen = self.screen_dao.get(self.user_id, screen_id)
        if screen is None:
            raise ValueError(f"Unknown screen: {screen_id}")
        run_date = run_date or date.today()

        csv = parse_generic_csv(csv_text)
        if column is None:
            column = detect_symbol_column(csv.headers, csv.rows)
        symbols = extract_symbols(csv, column)

        entries = {e["symbol"]: e for e in self.watchlist_dao.get_by_symbols(self.user_id, symbols)}
        matched = [s for s in symbols if s in entries]
        unmatched = [s for s in symbols if s not in entries]

        tag_code, _ = auto_tag_code(screen["short_code"], run_date)
        tag_id = None
        if matched:
            tag_code, tag_id = self._auto_tag(screen, run_date)
            self.tag_dao.assign([(entries[s]["id"], tag_id) for s in matched])

        run_number = self.screen_dao.next_run_number(self.user_id, screen_id)
        run_id = self.screen_dao.insert_run(self.user_id, {
            "screen_id": screen_id,
            "run_date": run_date.isoformat(),
            "run_number": run_number,
            "total_symbols": len(symbols),
            "match_count": len(matched),
            "matched_symbols": matched,
            "all_symbols": symbols,
            "auto_tag_id": tag_id,
            "auto_tag_code": tag_code,
        })
        logger.info("Screen %s run %d: %d symbols, %d on watchlist",
                    screen["short_code"], run_number, len(symbols), len(matched))
        return ScreenRunResult(run_id, run_number, len(symbols), matched, unmatched, tag_code, tag_id)

    def delete_screen(self, screen_id: int) -> bool:
        return self.screen_dao.delete_screen(self.user_id, screen_id)

    def latest_runs(self) -> list[tuple[dict, dict]]:
        """(screen, latest run) per screen, ordered by screen name."""
        screens = {s["id"]: s for s in self.list_screens()}
        latest: dict[int, dict] = {}
        for run in self.screen_dao.get_runs(self.user_id):
            current = latest.get(run["screen_id"])
            if current is None or run["id"] > current["id"]:
                latest[run["screen_id"]] = run
        pairs = [(screens[sid], run) for sid, run in latest.items() if sid in screens]
        pairs.sort(key=lambda p: p[0]["name"].lower())
        return pairs

    def _symbol_screens(self) -> dict[str, set[str]]:
        out: dict[str, set[str]] = {}
        for screen, run in self.latest_runs():
            for sym in _run_symbols(run):
                out.setdefault(sym.upper(), set()).add(screen["short_code"])
        return out

    def screen_hits(self) -> list[ScreenHit]:
        """Watchlist symbols found in screens, hottest first."""
        watchlist = {e["symbol"] for e in self.watchlist_dao.get_all(self.user_id)}
        hits = [
            ScreenHit(sym, sorted(codes))
            for sym, codes in self._symbol_screens().items() if sym in watchlist
        ]
        hits.sort(key=lambda h: (-h.heat_score, h.symbol))
        return hits

    def cross_screen_symbols(self, min_screens: int = 2) -> list[ScreenHit]:
        hits = [
            ScreenHit(sym, sorted(codes))
            for sym, codes in self._symbol_screens().items() if len(codes) >= min_screens
        ]
        hits.sort(key=lambda h: (-h.heat_score, h.symbol))
        return hits

    def portfolio_overlap(self) -> list[ScreenHit]:
        """Screen symbols also held as positions, with their portfolio weight."""
        positions = {p["symbol"]: p for p in self.portfolio_dao.get_positions(self.user_id)}
        total = sum(p.get("current_value") or 0 for p in positions.values())
        hits = []
        for sym, codes in self._symbol_screens().items():
            pos = positions.get(sym)
            if pos is None:
                continue
            value = pos.get("current_value") or 0
            hits.append(ScreenHit(sym, sorted(codes), value / total * 100 if total > 0 else 0.0))
        hits.sort(key=lambda h: (-h.heat_score, h.symbol))
        return hits

    def pairwise_overlap(self) -> dict[tuple[str, str], list[str]]:
        """Shared symbols between the latest runs of each pair of screens."""
        runs = self.latest_runs()
        out = {}
        for i, (a, run_a) in enumerate(runs):
            syms_a = set(_run_symbols(run_a))
            for b, run_b in runs[i + 1:]:
                out[(a["short_code"], b["short_code"])] = sorted(syms_a & set(_run_symbols(run_b)))
        return out

    def cross_tag_entries(self, symbols: list[str]) -> int:
        """Apply existing screen auto-tags to newly added watchlist symbols.

        Returns the number of (entry, tag) pairs offered for assignment.
        """
        entries = {e["symbol"]: e["id"] for e in self.watchlist_dao.get_by_symbols(self.user_id, symbols)}
        if not entries:
            return 0
        assignments = []
        for run in self.screen_dao.get_runs(self.user_id):
            if not run.get("auto_tag_id"):
                continue
            run_symbols = set(run.get("all_symbols") or [])
            for sym, entry_id in entries.items():
                if sym in run_symbols:
                    assignments.append((entry_id, run["auto_tag_id"]))
        self.tag_dao.assign(assignments)
        return len(assignments)
