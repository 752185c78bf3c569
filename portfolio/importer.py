"""Broker CSV import: parse exports, aggregate by symbol, persist the ledger.

Brokerage position exports (Fidelity-style) arrive with arbitrary preamble
lines, a heuristically detected header row and one row per
(account, symbol). Each file is parsed on its own; a malformed file only
adds a message to ``errors`` and never blocks the other files.
"""

import logging
import math
from dataclasses import dataclass, field

from database.errors import CSVParseError
from database.models import PortfolioDAO
from utils.validators import clean_number, normalize_symbol

logger = logging.getLogger("portfolio_tracker.portfolio.importer")

CASH_SYMBOLS = ("SPAXX", "FDRXX", "FCASH")
HEADER_SCAN_LINES = 10

# Candidate header names per field, matched by substring, first hit wins
COLUMN_CANDIDATES = {
    "symbol": ["symbol"],
    "company": ["description", "security description", "company name", "name"],
    "shares": ["quantity", "shares"],
    "price": ["last price", "current price", "price"],
    "value": ["current value", "value", "market value"],
    "cost_basis": ["cost basis total", "cost basis", "total cost basis"],
    "account": ["account name/number", "account name", "account number", "account"],
}


@dataclass
class AccountBreakdown:
    """Shares and value of one symbol held in one brokerage account."""
    account: str
    shares: float = 0.0
    value: float = 0.0

    def to_dict(self) -> dict:
        return {"account": self.account, "shares": self.shares, "value": self.value}


@dataclass
class ParsedPosition:
    symbol: str
    company_name: str
    shares: float
    current_price: float
    current_value: float
    cost_basis: float
    accounts: list[AccountBreakdown] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "company_name": self.company_name,
            "shares": self.shares,
            "current_price": self.current_price,
            "current_value": self.current_value,
            "cost_basis": self.cost_basis,
            "accounts": [a.to_dict() for a in self.accounts],
        }


@dataclass
class FileParseResult:
    """Rows of one export before cross-file aggregation."""
    positions: list[ParsedPosition] = field(default_factory=list)
    cash_rows: list[AccountBreakdown] = field(default_factory=list)


@dataclass
class ImportResult:
    positions: list[ParsedPosition] = field(default_factory=list)
    cash_balance: float = 0.0
    cash_accounts: list[AccountBreakdown] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    file_count: int = 0

    @property
    def total_value(self) -> float:
        return math.fsum(p.current_value for p in self.positions)


def parse_csv_line(line: str) -> list[str]:
    """Split one CSV line on commas outside double quotes.

    A double quote toggles quoted mode and is dropped; there is no
    escaped-quote support, so ``""`` simply toggles twice.
    """
    fields = []
    current = []
    in_quotes = False
    for ch in line:
        if ch == '"':
            in_quotes = not in_quotes
        elif ch == "," and not in_quotes:
            fields.append("".join(current))
            current = []
        else:
            current.append(ch)
    fields.append("".join(current))
    return fields


def _is_header_line(line: str) -> bool:
    lower = line.lower()
    if "symbol" in lower and ("quantity" in lower or "shares" in lower):
        return True
    return "account" in lower and ("symbol" in lower or "description" in lower)


def find_header_row(lines: list[str]) -> int:
    """Index of the header row within the first ten lines, or -1."""
    for i, line in enumerate(lines[:HEADER_SCAN_LINES]):
        if _is_header_line(line):
            return i
    return -1


def find_column(headers: list[str], candidates: list[str]) -> int:
    """First header containing a candidate (candidates tried in order), or -1."""
    for candidate in candidates:
        for i, h in enumerate(headers):
            if candidate in h:
                return i
    return -1


def _cell(cols: list[str], idx: int) -> str:
    if idx < 0 or idx >= len(cols):
        return ""
    return cols[idx]


def parse_broker_csv(csv_text: str) -> FileParseResult:
    """Parse one broker export. Raises CSVParseError if its shape is unrecognised."""
    lines = csv_text.splitlines()
    header_idx = find_header_row(lines)
    if header_idx == -1:
        raise CSVParseError(
            "Could not find a valid header row. Expected columns like Symbol, Quantity/Shares, etc."
        )

    headers = [h.strip().lower() for h in parse_csv_line(lines[header_idx])]
    cols = {name: find_column(headers, cands) for name, cands in COLUMN_CANDIDATES.items()}
    if cols["symbol"] == -1:
        raise CSVParseError("Could not find 'Symbol' column.")

    result = FileParseResult()
    for line in lines[header_idx + 1:]:
        if not line.strip():
            continue
        row = parse_csv_line(line.strip())
        symbol = normalize_symbol(_cell(row, cols["symbol"]))
        if not symbol or symbol.startswith("TOTAL"):
            continue

        shares = clean_number(_cell(row, cols["shares"]))
        value = clean_number(_cell(row, cols["value"]))
        account = _cell(row, cols["account"]).strip()

        if symbol in CASH_SYMBOLS or "**" in symbol:
            # Money-market rows report the balance as value or as quantity
            amount = value or shares
            result.cash_rows.append(AccountBreakdown(account, shares=amount, value=amount))
            continue

        if "PENDING" in symbol or shares == 0:
            continue

        result.positions.append(ParsedPosition(
            symbol=symbol,
            company_name=_cell(row, cols["company"]).strip(),
            shares=shares,
            current_price=clean_number(_cell(row, cols["price"])),
            current_value=value,
            cost_basis=clean_number(_cell(row, cols["cost_basis"])),
            accounts=[AccountBreakdown(account, shares=shares, value=value)],
        ))
    return result


def _merge_breakdowns(groups: dict[str, dict[str, list]], items: list[AccountBreakdown]):
    for b in items:
        g = groups.setdefault(b.account, {"shares": [], "value": []})
        g["shares"].append(b.shares)
        g["value"].append(b.value)


def _finish_breakdowns(groups: dict[str, dict[str, list]]) -> list[AccountBreakdown]:
    return [
        AccountBreakdown(name, math.fsum(g["shares"]), math.fsum(g["value"]))
        for name, g in sorted(groups.items())
    ]


def aggregate(file_results: list[FileParseResult]) -> tuple[list[ParsedPosition], float, list[AccountBreakdown]]:
    """Merge parsed rows by symbol and cash rows by account.

    Sums use ``math.fsum`` and breakdowns are ordered by account name, so
    the result does not depend on the order files were supplied in.
    """
    merged: dict[str, dict] = {}
    cash_groups: dict[str, dict[str, list]] = {}

    for fr in file_results:
        for p in fr.positions:
            m = merged.setdefault(p.symbol, {
                "company_name": "", "shares": [], "value": [], "cost": [],
                "price": 0.0, "accounts": {},
            })
            m["shares"].append(p.shares)
            m["value"].append(p.current_value)
            m["cost"].append(p.cost_basis)
            # Accounts should agree on price; take the max on disagreement
            m["price"] = max(m["price"], p.current_price)
            if p.company_name and (not m["company_name"] or p.company_name < m["company_name"]):
                m["company_name"] = p.company_name
            _merge_breakdowns(m["accounts"], p.accounts)
        _merge_breakdowns(cash_groups, fr.cash_rows)

    positions = [
        ParsedPosition(
            symbol=symbol,
            company_name=m["company_name"],
            shares=math.fsum(m["shares"]),
            current_price=m["price"],
            current_value=math.fsum(m["value"]),
            cost_basis=math.fsum(m["cost"]),
            accounts=_finish_breakdowns(m["accounts"]),
        )
        for symbol, m in merged.items()
    ]
    positions.sort(key=lambda p: (-p.current_value, p.symbol))

    cash_accounts = _finish_breakdowns(cash_groups)
    cash_balance = math.fsum(v for g in cash_groups.values() for v in g["value"])
    return positions, cash_balance, cash_accounts


def parse_broker_csvs(csv_texts: list[str], file_names: list[str] | None = None) -> ImportResult:
    """Parse N exports and aggregate them into one position list."""
    file_results = []
    errors = []
    for i, text in enumerate(csv_texts):
        label = file_names[i] if file_names and i < len(file_names) else f"File {i + 1}"
        try:
            file_results.append(parse_broker_csv(text))
        except CSVParseError as e:
            logger.warning("Skipping %s: %s", label, e)
            errors.append(f"{label}: {e}")

    positions, cash_balance, cash_accounts = aggregate(file_results)
    return ImportResult(
        positions=positions,
        cash_balance=cash_balance,
        cash_accounts=cash_accounts,
        errors=errors,
        file_count=len(csv_texts),
    )


def import_positions(user_id: str, result: ImportResult, file_names: list[str],
                     portfolio_dao: PortfolioDAO | None = None) -> int:
    """Persist a confirmed import. Returns the import_history id.

    Storage failures propagate as StorageError with nothing committed.
    """
    dao = portfolio_dao or PortfolioDAO()
    history_id = dao.save_import(
        user_id,
        [p.to_dict() for p in result.positions],
        result.cash_balance,
        [c.to_dict() for c in result.cash_accounts],
        file_names,
    )
    logger.info(
        "Imported %d positions (%.2f cash) from %d file(s) for %s",
        len(result.positions), result.cash_balance, result.file_count, user_id,
    )
    return history_id
