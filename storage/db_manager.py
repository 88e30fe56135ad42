"""
db_manager.py
--------------
SQLite connection holder and schema for the transaction and override tables.

One connection per manager, opened lazily. Pass ":memory:" for a
throwaway database in tests.
"""

import sqlite3

from config.config_loader import get_storage_config


class DatabaseManager:
    """Owns the SQLite connection and the schema for both stores."""

    def __init__(self, db_path: str | None = None):
        self.db_path = db_path or get_storage_config()["database_path"]
        self._conn: sqlite3.Connection | None = None

    def get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def initialize(self, with_overrides: bool = True):
        """
        Create schema. with_overrides=False leaves out recurring_overrides,
        the state of a database provisioned before overrides existed.
        """
        conn = self.get_connection()
        self._create_transactions(conn)
        if with_overrides:
            self._create_overrides(conn)
        conn.commit()

    def _create_transactions(self, conn: sqlite3.Connection):
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS transactions (
                id          TEXT PRIMARY KEY,
                date        TEXT NOT NULL,
                description TEXT NOT NULL,
                category    TEXT NOT NULL DEFAULT '',
                subcategory TEXT NOT NULL DEFAULT '',
                amount      REAL NOT NULL CHECK(amount >= 0),
                type        TEXT NOT NULL CHECK(type IN ('income','expense','transfer'))
            );

            CREATE INDEX IF NOT EXISTS transactions_date_idx ON transactions(date DESC);
        """)

    def _create_overrides(self, conn: sqlite3.Connection):
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS recurring_overrides (
                id           INTEGER PRIMARY KEY AUTOINCREMENT,
                merchant_key TEXT    NOT NULL UNIQUE,
                is_recurring INTEGER NOT NULL,
                created_at   TEXT    NOT NULL DEFAULT (datetime('now'))
            );
        """)

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None
