"""Watchlist: tracked symbols, tags, price refresh and post-add enrichment."""

import logging
from typing import Callable

from analysis.screens import ScreenService
from collectors.fmp import FMPClient
from database.errors import DuplicateRecordError
from database.models import TagDAO, WatchlistDAO, WatchlistGroupDAO
from portfolio.allocation import SettingsStore
from utils.helpers import market_cap_category, pct_change
from utils.tasks import PostCommitTask
from utils.validators import validate_ticker

logger = logging.getLogger("portfolio_tracker.portfolio.watchlist")

DEFAULT_GROUP_COLOR = "#3498DB"

DEFAULT_TAGS = [
    {"short_code": "MF", "full_name": "Motley Fool", "color": "#5865F2"},
    {"short_code": "CQ", "full_name": "Compounding Quality", "color": "#57F287"},
    {"short_code": "TT", "full_name": "Tiny Titans", "color": "#FEE75C"},
    {"short_code": "Z1", "full_name": "Zacks Rank #1", "color": "#ED4245"},
    {"short_code": "Z2", "full_name": "Zacks Rank #2", "color": "#EB459E"},
    {"short_code": "AP", "full_name": "Alpha Picks", "color": "#9B59B6"},
    {"short_code": "CORE", "full_name": "Core Position", "color": "#3498DB"},
    {"short_code": "GC", "full_name": "Good Companies", "color": "#2ECC71"},
]


class WatchlistManager:
    """One user's watchlist.

    ``add_entry`` commits the entry, then returns the follow-up work
    (screen cross-tagging, FMP enrichment) as post-commit tasks for the
    caller to run with ``run_post_commit_tasks``.
    """

    def __init__(self, user_id: str, watchlist_dao: WatchlistDAO | None = None,
                 tag_dao: TagDAO | None = None, settings_store: SettingsStore | None = None,
                 screens: ScreenService | None = None,
                 client_factory: Callable[[str], FMPClient] = FMPClient,
                 group_dao: WatchlistGroupDAO | None = None):
        self.user_id = user_id
        self.watchlist_dao = watchlist_dao or WatchlistDAO()
        self.tag_dao = tag_dao or TagDAO()
        self.settings_store = settings_store or SettingsStore()
        self.screens = screens or ScreenService(
            user_id, watchlist_dao=self.watchlist_dao, tag_dao=self.tag_dao,
        )
        self.client_factory = client_factory
        self.group_dao = group_dao or WatchlistGroupDAO()
        self._client: FMPClient | None = None

    def _fmp(self) -> FMPClient | None:
        if self._client is None:
            key = self.settings_store.load(self.user_id).fmp_api_key
            if not key:
                return None
            self._client = self.client_factory(key)
        return self._client

    # -- tags ----------------------------------------------------------

    def seed_default_tags(self) -> bool:
        """Insert the default tag set if the user has no tags yet."""
        if self.tag_dao.get_all(self.user_id):
            return False
        self.tag_dao.insert_many(
            self.user_id, [{**t, "is_system_tag": True} for t in DEFAULT_TAGS],
        )
        logger.info("Seeded %d default tags for %s", len(DEFAULT_TAGS), self.user_id)
        return True

    def tags_with_counts(self) -> list[dict]:
        counts: dict[int, int] = {}
        for a in self.tag_dao.get_assignments(self.user_id):
            counts[a["tag_id"]] = counts.get(a["tag_id"], 0) + 1
        return [{**t, "entry_count": counts.get(t["id"], 0)} for t in self.tag_dao.get_all(self.user_id)]

    # -- groups --------------------------------------------------------

    def _group(self, name: str) -> dict:
        group = self.group_dao.get_by_name(self.user_id, name.strip())
        if group is None:
            raise ValueError(f"No watchlist group named {name!r}")
        return group

    def groups(self) -> list[dict]:
        """Groups in display order, each with its entry count."""
        counts: dict[int, int] = {}
        for e in self.watchlist_dao.get_all(self.user_id):
            if e.get("group_id"):
                counts[e["group_id"]] = counts.get(e["group_id"], 0) + 1
        return [{**g, "entry_count": counts.get(g["id"], 0)}
                for g in self.group_dao.get_all(self.user_id)]

    def create_group(self, name: str, color: str | None = None) -> int:
        name = (name or "").strip()
        if not name:
            raise ValueError("Group name is required")
        if len(name) > 100:
            raise ValueError("Group name must be at most 100 characters")
        existing = self.group_dao.get_all(self.user_id)
        sort_order = max((g["sort_order"] for g in existing), default=-1) + 1
        return self.group_dao.insert(self.user_id, name, color or DEFAULT_GROUP_COLOR, sort_order)

    def update_group(self, name: str, new_name: str | None = None,
                     color: str | None = None) -> bool:
        group = self._group(name)
        fields = {}
        if new_name is not None:
            if not new_name.strip():
                raise ValueError("Group name is required")
            fields["name"] = new_name.strip()
        if color:
            fields["color"] = color
        return self.group_dao.update(self.user_id, group["id"], **fields)

    def move_group(self, name: str, offset: int) -> bool:
        """Shift a group up (negative) or down (positive) in display order."""
        group_id = self._group(name)["id"]
        ordered = self.group_dao.get_all(self.user_id)
        index = next(i for i, g in enumerate(ordered) if g["id"] == group_id)
        target = index + offset
        if offset == 0 or not 0 <= target < len(ordered):
            return False
        ordered.insert(target, ordered.pop(index))
        for position, g in enumerate(ordered):
            if g["sort_order"] != position:
                self.group_dao.update(self.user_id, g["id"], sort_order=position)
        return True

    def delete_group(self, name: str) -> bool:
        """Delete a group. Its entries stay on the watchlist, ungrouped."""
        group = self._group(name)
        return self.group_dao.delete(self.user_id, group["id"])

    def set_group(self, symbols: list[str], name: str | None) -> int:
        """Move symbols into the named group, or out of any group when name is None."""
        group_id = self._group(name)["id"] if name else None
        wanted = [s.strip().upper() for s in symbols]
        entries = self.watchlist_dao.get_by_symbols(self.user_id, wanted)
        return self.watchlist_dao.set_group(self.user_id, [e["id"] for e in entries], group_id)

    # -- entries -------------------------------------------------------

    def add_entry(self, symbol: str, company_name: str | None = None,
                  price_when_added: float | None = None, notes: str | None = None,
                  tag_ids: list[int] | None = None, industry: str | None = None,
                  sector: str | None = None, market_cap: float | None = None
                  ) -> tuple[int, list[PostCommitTask]]:
        """Add a symbol. Raises DuplicateWatchlistEntryError if already present."""
        symbol = validate_ticker(symbol)
        entry_id = self.watchlist_dao.insert(
            self.user_id, symbol,
            company_name=company_name or None,
            price_when_added=price_when_added,
            notes=notes or None,
            industry=industry or None,
            sector=sector or None,
            market_cap=market_cap,
            market_cap_category=market_cap_category(market_cap) if market_cap else None,
        )
        if tag_ids:
            self.tag_dao.assign([(entry_id, tag_id) for tag_id in tag_ids])
        logger.info("Added %s to watchlist for %s", symbol, self.user_id)
        return entry_id, self.post_add_tasks([symbol])

    def add_entries(self, symbols: list[str], price_when_added: float | None = None
                    ) -> tuple[list[str], dict[str, str], list[PostCommitTask]]:
        """Bulk add. Invalid and duplicate symbols are skipped, not fatal.

        Returns (added symbols, skipped symbol -> reason, post-commit tasks
        covering every added symbol).
        """
        added, skipped = [], {}
        for raw in symbols:
            try:
                symbol = validate_ticker(raw)
                self.watchlist_dao.insert(self.user_id, symbol, price_when_added=price_when_added)
            except (ValueError, DuplicateRecordError) as e:
                skipped[str(raw)] = str(e)
                continue
            added.append(symbol)
        if added:
            logger.info("Added %d symbol(s) to watchlist for %s", len(added), self.user_id)
        return added, skipped, self.post_add_tasks(added) if added else []

    def post_add_tasks(self, symbols: list[str]) -> list[PostCommitTask]:
        tasks = [PostCommitTask("screen-tags", lambda: self.screens.cross_tag_entries(symbols))]
        if self.settings_store.load(self.user_id).fmp_api_key:
            tasks.append(PostCommitTask("fmp-enrichment", lambda: self.enrich(symbols)))
        return tasks

    def enrich(self, symbols: list[str]) -> int:
        """Fill market cap, sector and industry from FMP profiles. Returns entries updated."""
        client = self._fmp()
        if client is None:
            return 0
        if len(symbols) > 1:
            profiles = client.fetch_profiles_batched(symbols)
        else:
            profiles = {sym: client.lookup_symbol(sym) for sym in symbols}
        updated = 0
        for sym in symbols:
            profile = profiles.get(sym)
            if profile is None or not profile.market_cap:
                continue
            self.watchlist_dao.update_profile(
                self.user_id, sym,
                market_cap=profile.market_cap,
                market_cap_category=market_cap_category(profile.market_cap),
                sector=profile.sector or None,
                industry=profile.industry or None,
                company_name=profile.company_name or None,
            )
            updated += 1
        return updated

    def remove_entry(self, symbol: str) -> bool:
        """Remove a symbol; its tag assignments and alerts go with it."""
        entry = self.watchlist_dao.get_by_symbol(self.user_id, symbol.strip().upper())
        if entry is None:
            return False
        return self.watchlist_dao.delete(self.user_id, entry["id"])

    def entries(self, group: str | None = None, ungrouped: bool = False) -> list[dict]:
        """Entries with tags, group name, a derived market-cap bucket and change since added.

        ``group`` limits the list to one named group; ``ungrouped`` to entries
        in no group.
        """
        self.seed_default_tags()
        tags = {t["id"]: t for t in self.tag_dao.get_all(self.user_id)}
        by_entry: dict[int, list[dict]] = {}
        for a in self.tag_dao.get_assignments(self.user_id):
            tag = tags.get(a["tag_id"])
            if tag:
                by_entry.setdefault(a["watchlist_entry_id"], []).append(tag)

        group_names = {g["id"]: g["name"] for g in self.group_dao.get_all(self.user_id)}
        group_id = self._group(group)["id"] if group else None

        out = []
        for e in self.watchlist_dao.get_all(self.user_id):
            if group_id is not None and e.get("group_id") != group_id:
                continue
            if ungrouped and e.get("group_id"):
                continue
            out.append({
                **e,
                "group_name": group_names.get(e.get("group_id")),
                "market_cap_category": market_cap_category(e.get("market_cap")) or e.get("market_cap_category"),
                "change_since_added": pct_change(e.get("current_price"), e.get("price_when_added")),
                "tags": sorted(by_entry.get(e["id"], []), key=lambda t: t["short_code"]),
            })
        return out

    def refresh_prices(self) -> int:
        """Re-quote every entry through FMP. Returns the number of entries updated."""
        client = self._fmp()
        entries = self.watchlist_dao.get_all(self.user_id)
        if client is None or not entries:
            return 0
        quotes = client.fetch_quotes([e["symbol"] for e in entries])
        for quote in quotes.values():
            self.watchlist_dao.update_prices(
                self.user_id, quote.symbol, quote.price, quote.previous_close,
            )
        return len(quotes)
