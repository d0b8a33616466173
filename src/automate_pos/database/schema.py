"""Database schema definition, initialization, and migrations."""

import logging

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 3

# Business collections, in the order they are created and pulled
COLLECTIONS = ("products", "transactions", "users", "suppliers")

QUEUE_TABLE = "offline_queue"

# Each statement is a separate string to avoid executescript issues
_SCHEMA_STATEMENTS = [
    # Schema version tracking
    """CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",

    # Products
    """CREATE TABLE IF NOT EXISTS products (
        id TEXT PRIMARY KEY,
        business_id TEXT,
        data TEXT NOT NULL,
        updated_at TEXT
    )""",

    # Transactions (sales); date mirrors created_at for range queries
    """CREATE TABLE IF NOT EXISTS transactions (
        id TEXT PRIMARY KEY,
        business_id TEXT,
        date TEXT,
        data TEXT NOT NULL,
        updated_at TEXT
    )""",

    # System users (staff accounts of a business)
    """CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        business_id TEXT,
        data TEXT NOT NULL,
        updated_at TEXT
    )""",

    # Suppliers
    """CREATE TABLE IF NOT EXISTS suppliers (
        id TEXT PRIMARY KEY,
        business_id TEXT,
        data TEXT NOT NULL,
        updated_at TEXT
    )""",

    # Outbound mutation queue; seq gives FIFO order
    """CREATE TABLE IF NOT EXISTS offline_queue (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        collection TEXT NOT NULL,
        record_id TEXT NOT NULL,
        operation TEXT NOT NULL
            CHECK (operation IN ('create', 'update', 'delete')),
        payload TEXT NOT NULL,
        created_at TEXT NOT NULL,
        attempts INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        failed INTEGER NOT NULL DEFAULT 0
    )""",

    # Per-collection pull cursor (newest remote updated_at applied locally)
    """CREATE TABLE IF NOT EXISTS sync_state (
        collection TEXT PRIMARY KEY,
        pull_cursor TEXT
    )""",

    # Indexes
    "CREATE INDEX IF NOT EXISTS idx_products_business ON products(business_id)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_business ON transactions(business_id)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(date)",
    "CREATE INDEX IF NOT EXISTS idx_users_business ON users(business_id)",
    "CREATE INDEX IF NOT EXISTS idx_suppliers_business ON suppliers(business_id)",
    "CREATE INDEX IF NOT EXISTS idx_offline_queue_record "
    "ON offline_queue(collection, record_id)",

    f"INSERT OR IGNORE INTO schema_version (version) VALUES ({SCHEMA_VERSION})",
]


def _get_schema_version(conn) -> int:
    """Get the current schema version, or 0 if no schema exists."""
    try:
        row = conn.execute(
            "SELECT MAX(version) as v FROM schema_version"
        ).fetchone()
        return row["v"] if row and row["v"] else 0
    except Exception:
        return 0


def _table_columns(conn, table: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()  # noqa: S608
    return {r["name"] for r in rows}


def _add_column_if_missing(conn, table: str, column: str, decl: str) -> bool:
    """Add a column unless it already exists. Returns True if added."""
    if column in _table_columns(conn, table):
        return False
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {decl}")  # noqa: S608
    return True


def _create_missing_tables(conn):
    """Create any table the current schema has but this file lacks."""
    for stmt in _SCHEMA_STATEMENTS:
        if stmt.startswith("CREATE TABLE"):
            conn.execute(stmt)


# ── Migration from v1 → v2 ──────────────────────────────────────
# v1 stored records as (id, data, updated_at) only.

def _migrate_v1_to_v2(conn):
    """Add business_id columns/indexes and the outbound queue."""
    _create_missing_tables(conn)
    for table in COLLECTIONS:
        if _add_column_if_missing(conn, table, "business_id", "TEXT"):
            conn.execute(
                f"UPDATE {table} SET business_id = "  # noqa: S608
                "json_extract(data, '$.business_id')"
            )
        conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{table}_business "
            f"ON {table}(business_id)"
        )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_offline_queue_record "
        "ON offline_queue(collection, record_id)"
    )
    conn.execute("INSERT OR REPLACE INTO schema_version (version) VALUES (2)")


# ── Migration from v2 → v3 ──────────────────────────────────────

def _migrate_v2_to_v3(conn):
    """Add the date column and index on transactions."""
    _create_missing_tables(conn)
    if _add_column_if_missing(conn, "transactions", "date", "TEXT"):
        conn.execute(
            "UPDATE transactions SET date = "
            "json_extract(data, '$.created_at')"
        )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_transactions_date "
        "ON transactions(date)"
    )
    conn.execute("INSERT OR REPLACE INTO schema_version (version) VALUES (3)")


def initialize_database(db_connection) -> int:
    """Create all tables and indexes, or upgrade an existing store.

    On a fresh database, creates the full v3 schema directly.
    On an existing database, applies migrations incrementally.
    Returns the schema version the store is at afterwards.
    """
    with db_connection.get_connection() as conn:
        version = _get_schema_version(conn)

        if version == 0:
            for stmt in _SCHEMA_STATEMENTS:
                conn.execute(stmt)
            return SCHEMA_VERSION

        if version < SCHEMA_VERSION:
            logger.info(
                "Upgrading local store schema v%d -> v%d",
                version, SCHEMA_VERSION,
            )
            if version < 2:
                _migrate_v1_to_v2(conn)
            if version < 3:
                _migrate_v2_to_v3(conn)
            return SCHEMA_VERSION

        if version > SCHEMA_VERSION:
            logger.warning(
                "Local store schema v%d is newer than this build (v%d)",
                version, SCHEMA_VERSION,
            )
        return version
