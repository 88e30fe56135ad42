"""
override_store.py
------------------
Persists the user's recurring decisions, one row per merchant key.

Writing a key that already exists replaces its decision (last write wins).
"""

from datetime import datetime

from core.models import RecurringOverride
from storage.db_manager import DatabaseManager


class OverrideStore:
    """Persists per-merchant recurring overrides, one row per merchant key."""

    def __init__(self, db: DatabaseManager):
        self._db = db

    def _row_to_model(self, row) -> RecurringOverride:
        created = row["created_at"]
        return RecurringOverride(
            merchant_key=row["merchant_key"],
            is_recurring=bool(row["is_recurring"]),
            created_at=datetime.fromisoformat(created) if created else None,
        )

    def upsert(self, merchant_key: str, is_recurring: bool) -> None:
        """Insert or update by merchant_key. Last write wins."""
        conn = self._db.get_connection()
        conn.execute(
            """INSERT INTO recurring_overrides(merchant_key, is_recurring)
               VALUES (?, ?)
               ON CONFLICT(merchant_key) DO UPDATE SET
                   is_recurring = excluded.is_recurring,
                   created_at = datetime('now')""",
            (merchant_key, int(is_recurring)),
        )
        conn.commit()

    def delete(self, merchant_key: str) -> None:
        """Remove the override; the merchant goes back to automatic detection."""
        conn = self._db.get_connection()
        conn.execute(
            "DELETE FROM recurring_overrides WHERE merchant_key = ?", (merchant_key,)
        )
        conn.commit()

    def get_all(self) -> list[RecurringOverride]:
        """Newest first."""
        conn = self._db.get_connection()
        rows = conn.execute(
            "SELECT * FROM recurring_overrides ORDER BY created_at DESC, id DESC"
        ).fetchall()
        return [self._row_to_model(r) for r in rows]
