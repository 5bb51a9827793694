"""
SQLite connection and schema for the context table.
"""

import sqlite3

from .config import DB_PATH, ensure_db_directory

TIMESTAMP_DEFAULT = "(strftime('%Y-%m-%d %H:%M:%f', 'now'))"


def open_db(db_path: str = None) -> sqlite3.Connection:
    """Open a SQLite connection shared across threads.

    The connection runs in autocommit mode; transactions are opened
    explicitly with BEGIN by the store.
    """
    path = db_path or DB_PATH
    ensure_db_directory(path)
    conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(conn: sqlite3.Connection):
    """Initialize the database with required tables."""
    cursor = conn.cursor()

    # value and metadata must always read back as valid JSON
    cursor.execute(f'''
        CREATE TABLE IF NOT EXISTS context (
            key TEXT PRIMARY KEY CHECK (length(key) > 0),
            value TEXT NOT NULL CHECK (json_valid(value)),
            metadata TEXT CHECK (metadata IS NULL OR json_valid(metadata)),
            created_at TIMESTAMP NOT NULL DEFAULT {TIMESTAMP_DEFAULT},
            updated_at TIMESTAMP NOT NULL DEFAULT {TIMESTAMP_DEFAULT}
        )
    ''')

    cursor.execute('CREATE INDEX IF NOT EXISTS idx_context_updated_at ON context(updated_at DESC)')


def health_check(conn: sqlite3.Connection) -> bool:
    """Check database health."""
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
        table_names = [table[0] for table in cursor.fetchall()]
        return 'context' in table_names
    except sqlite3.Error:
        return False
