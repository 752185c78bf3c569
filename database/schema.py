"""Database schema - all CREATE TABLE statements (idempotent)."""

import sqlite3
import logging

logger = logging.getLogger("portfolio_tracker.schema")

CURRENT_VERSION = 3

TABLES = [
    """CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at TEXT DEFAULT CURRENT_TIMESTAMP
    )""",

    # --- Portfolio ---
    """CREATE TABLE IF NOT EXISTS positions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        symbol TEXT NOT NULL,
        company_name TEXT,
        shares REAL DEFAULT 0,
        current_price REAL DEFAULT 0,
        current_value REAL DEFAULT 0,
        cost_basis REAL DEFAULT 0,
        category TEXT,
        tier TEXT,
        account TEXT NOT NULL DEFAULT '[]',
        notes TEXT,
        date_added TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(user_id, symbol)
    )""",

    """CREATE TABLE IF NOT EXISTS portfolio_summary (
        user_id TEXT PRIMARY KEY,
        cash_balance REAL DEFAULT 0,
        cash_accounts TEXT NOT NULL DEFAULT '[]',
        last_import_date TEXT
    )""",

    """CREATE TABLE IF NOT EXISTS portfolio_settings (
        user_id TEXT PRIMARY KEY,
        settings TEXT NOT NULL,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    )""",

    """CREATE TABLE IF NOT EXISTS import_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        file_names TEXT NOT NULL DEFAULT '[]',
        total_positions INTEGER NOT NULL DEFAULT 0,
        total_value REAL NOT NULL DEFAULT 0,
        imported_at TEXT NOT NULL
    )""",

    # --- Watchlist ---
    """CREATE TABLE IF NOT EXISTS watchlist_entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        symbol TEXT NOT NULL,
        company_name TEXT,
        date_added TEXT DEFAULT CURRENT_TIMESTAMP,
        price_when_added REAL,
        current_price REAL,
        previous_close REAL,
        industry TEXT,
        sector TEXT,
        market_cap REAL,
        market_cap_category TEXT,
        notes TEXT,
        last_price_update TEXT,
        UNIQUE(user_id, symbol)
    )""",

    """CREATE TABLE IF NOT EXISTS watchlist_groups (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        color TEXT,
        sort_order INTEGER NOT NULL DEFAULT 0,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(user_id, name)
    )""",

    """CREATE TABLE IF NOT EXISTS tags (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        short_code TEXT NOT NULL,
        full_name TEXT,
        color TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        is_system_tag INTEGER NOT NULL DEFAULT 0,
        UNIQUE(user_id, short_code)
    )""",

    """CREATE TABLE IF NOT EXISTS watchlist_entry_tags (
        watchlist_entry_id INTEGER NOT NULL
            REFERENCES watchlist_entries(id) ON DELETE CASCADE,
        tag_id INTEGER NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
        assigned_at TEXT DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (watchlist_entry_id, tag_id)
    )""",

    # --- Alerts ---
    """CREATE TABLE IF NOT EXISTS price_alerts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        watchlist_entry_id INTEGER NOT NULL
            REFERENCES watchlist_entries(id) ON DELETE CASCADE,
        symbol TEXT NOT NULL,
        alert_type TEXT NOT NULL CHECK (alert_type IN
            ('PRICE_ABOVE', 'PRICE_BELOW', 'PCT_CHANGE_UP', 'PCT_CHANGE_DOWN')),
        target_value REAL NOT NULL,
        reference_price REAL,
        is_active INTEGER NOT NULL DEFAULT 1,
        triggered_at TEXT,
        acknowledged_at TEXT,
        notification_sent INTEGER NOT NULL DEFAULT 0,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(user_id, watchlist_entry_id, alert_type)
    )""",

    # --- Screens ---
    """CREATE TABLE IF NOT EXISTS screens (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        short_code TEXT NOT NULL,
        color TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(user_id, short_code)
    )""",

    """CREATE TABLE IF NOT EXISTS screen_runs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        screen_id INTEGER NOT NULL REFERENCES screens(id) ON DELETE CASCADE,
        run_date TEXT NOT NULL,
        run_number INTEGER NOT NULL DEFAULT 1,
        total_symbols INTEGER NOT NULL DEFAULT 0,
        match_count INTEGER NOT NULL DEFAULT 0,
        matched_symbols TEXT NOT NULL DEFAULT '[]',
        all_symbols TEXT NOT NULL DEFAULT '[]',
        auto_tag_id INTEGER REFERENCES tags(id) ON DELETE SET NULL,
        auto_tag_code TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )""",
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_positions_user ON positions(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_alerts_active ON price_alerts(is_active)",
    "CREATE INDEX IF NOT EXISTS idx_alerts_user ON price_alerts(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_watchlist_user ON watchlist_entries(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_screen_runs_screen ON screen_runs(screen_id)",
    "CREATE INDEX IF NOT EXISTS idx_import_history_user ON import_history(user_id)",
]


def _add_column(conn, table: str, column_sql: str):
    try:
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column_sql}")
    except sqlite3.OperationalError:
        pass  # already present


def initialize_database(db_connection):
    """Create all tables and indexes if they don't exist, then apply upgrades."""
    with db_connection.connect() as conn:
        for table_sql in TABLES:
            conn.execute(table_sql)

        for index_sql in INDEXES:
            conn.execute(index_sql)

        existing = conn.execute(
            "SELECT MAX(version) as v FROM schema_version"
        ).fetchone()
        current_v = existing["v"] if existing and existing["v"] else 0

        if current_v < 2:
            # v2: per-alert local notify time and last notification stamp
            _add_column(conn, "price_alerts", "notify_time TEXT DEFAULT '09:30'")
            _add_column(conn, "price_alerts", "last_notified_at TEXT")

        if current_v < 3:
            # v3: optional watchlist group per entry
            _add_column(conn, "watchlist_entries",
                        "group_id INTEGER REFERENCES watchlist_groups(id) ON DELETE SET NULL")

        if current_v < CURRENT_VERSION:
            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (CURRENT_VERSION,),
            )

    logger.info("Database schema initialized (version %d)", CURRENT_VERSION)
