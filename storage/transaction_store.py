"""
transaction_store.py
---------------------
Reads and writes synced transactions in SQLite.
"""

from datetime import date
from typing import Iterable

from core.models import Transaction
from storage.db_manager import DatabaseManager


class TransactionStore:
    """Read side of the synced transactions, plus bulk insert for imports."""

    def __init__(self, db: DatabaseManager):
        self._db = db

    def _row_to_model(self, row) -> Transaction:
        return Transaction(
            id=row["id"],
            date=date.fromisoformat(row["date"]),
            description=row["description"],
            amount=row["amount"],
            type=row["type"],
            category=row["category"],
            subcategory=row["subcategory"],
        )

    def add_many(self, transactions: Iterable[Transaction]) -> int:
        """Insert or replace by id. Returns the number of rows written."""
        rows = [
            (t.id, t.date.isoformat(), t.description, t.category or "",
             t.subcategory or "", t.amount, t.type)
            for t in transactions
        ]
        conn = self._db.get_connection()
        conn.executemany(
            """INSERT OR REPLACE INTO transactions
               (id, date, description, category, subcategory, amount, type)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            rows,
        )
        conn.commit()
        return len(rows)

    def get_all(self) -> list[Transaction]:
        conn = self._db.get_connection()
        rows = conn.execute(
            "SELECT * FROM transactions ORDER BY date ASC, id ASC"
        ).fetchall()
        return [self._row_to_model(r) for r in rows]

    def get_by_date_range(
        self,
        start: date,
        end: date,
        type_filter: str | None = None,
    ) -> list[Transaction]:
        """Inclusive on both ends. type_filter of None or "all" returns every type."""
        conn = self._db.get_connection()
        sql = "SELECT * FROM transactions WHERE date >= ? AND date <= ?"
        params: list = [start.isoformat(), end.isoformat()]

        if type_filter and type_filter != "all":
            sql += " AND type = ?"
            params.append(type_filter)

        sql += " ORDER BY date ASC, id ASC"
        rows = conn.execute(sql, params).fetchall()
        return [self._row_to_model(r) for r in rows]
