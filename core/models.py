"""
models.py
----------
Core domain models. These are the typed contracts between engine layers.

- Transaction: one row from the transaction store. Read-only input.
- RecurringOverride: a user's force-include / force-exclude decision for a
  merchant key.
- RecurringTransaction: output of detection and override composition.
  Recomputed on every request, never persisted.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional


TRANSACTION_TYPES = ("income", "expense", "transfer")
FREQUENCIES = ("weekly", "biweekly", "monthly")


@dataclass(frozen=True)
class Transaction:
    """
    A single transaction as deposited by the sync pipeline.

    amount is always a non-negative magnitude; direction lives in type.
    """

    id: str
    date: date
    description: str
    amount: float
    type: str                        # "income" | "expense" | "transfer"
    category: str = ""
    subcategory: str = ""


@dataclass(frozen=True)
class RecurringOverride:
    """User decision keyed by normalized merchant key."""

    merchant_key: str
    is_recurring: bool               # False = force-exclude, True = force-include
    created_at: Optional[datetime] = None


@dataclass
class RecurringTransaction:
    """
    A merchant detected (or manually flagged) as a recurring charge.

    merchant_key is the only identity this record has across calls.
    """

    # Identity
    merchant: str                    # Description of the most recent transaction
    merchant_key: str

    # Amounts
    average_amount: float
    monthly_amount: float            # average_amount scaled to a monthly cadence

    # Cadence
    frequency: str                   # "weekly" | "biweekly" | "monthly"
    interval_days: int
    last_date: date
    next_predicted_date: date

    occurrences: int
    category: Optional[str] = None
    subcategory: Optional[str] = None

    # Provenance
    source: str = "exact"            # "exact" | "utility" | "manual"
    transaction_ids: list[str] = field(default_factory=list)
    member_keys: list[str] = field(default_factory=list)   # Normalized keys of the contributing transactions

    def covered_keys(self) -> set[str]:
        """Every merchant key this record speaks for."""
        return {self.merchant_key, *self.member_keys}

    def to_dict(self) -> dict:
        """camelCase wire shape consumed by the presentation layer."""
        return {
            "merchant": self.merchant,
            "merchantKey": self.merchant_key,
            "averageAmount": self.average_amount,
            "frequency": self.frequency,
            "intervalDays": self.interval_days,
            "lastDate": self.last_date.isoformat(),
            "nextPredictedDate": self.next_predicted_date.isoformat(),
            "monthlyAmount": self.monthly_amount,
            "occurrences": self.occurrences,
            "category": self.category,
            "subcategory": self.subcategory,
            "source": self.source,
            "transactionIds": list(self.transaction_ids),
        }
