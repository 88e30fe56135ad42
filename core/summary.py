"""
summary.py
-----------
Read-side helpers for the recurring charges view.

These compute what the dashboard shows around the list: totals per cadence,
the frequency filter, the "add a merchant" candidate list and the
next-charge label. Formatting of currency is left to the presentation layer.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, List, Optional

from core.merchant_normalizer import normalize
from core.models import FREQUENCIES, RecurringTransaction, Transaction
from core.overrides import covered_keys


@dataclass
class RecurringSummary:
    """Totals over a recurring list."""
    total_monthly: float
    count: int
    counts: dict = field(default_factory=dict)              # frequency -> count
    monthly_by_frequency: dict = field(default_factory=dict)  # frequency -> monthly sum


def summarize(recurring: Iterable[RecurringTransaction]) -> RecurringSummary:
    items = list(recurring)
    counts = {f: 0 for f in FREQUENCIES}
    monthly = {f: 0.0 for f in FREQUENCIES}
    for r in items:
        counts[r.frequency] = counts.get(r.frequency, 0) + 1
        monthly[r.frequency] = monthly.get(r.frequency, 0.0) + r.monthly_amount

    return RecurringSummary(
        total_monthly=sum(r.monthly_amount for r in items),
        count=len(items),
        counts=counts,
        monthly_by_frequency=monthly,
    )


def filter_by_frequency(
    recurring: Iterable[RecurringTransaction], frequency: str = "all"
) -> List[RecurringTransaction]:
    """
    Raises:
        ValueError: If frequency is neither "all" nor a known cadence.
    """
    if frequency == "all":
        return list(recurring)
    if frequency not in FREQUENCIES:
        raise ValueError(f"Unknown frequency '{frequency}'. Expected 'all' or one of {FREQUENCIES}.")
    return [r for r in recurring if r.frequency == frequency]


def addable_merchants(
    all_transactions: Iterable[Transaction],
    recurring: Iterable[RecurringTransaction],
    search: Optional[str] = None,
    limit: int = 60,
) -> List[Transaction]:
    """
    Merchants the user could force-include: non-income, not already listed
    under any key, including description variants grouped by the utility pass.

    One transaction per merchant key (the most recent), sorted by description.
    `search` is a case-insensitive substring filter on the description.
    """
    existing = covered_keys(recurring)
    seen: set[str] = set()
    candidates: List[Transaction] = []

    # Newest first so each key keeps its most recent description
    for tx in sorted(all_transactions, key=lambda t: t.date, reverse=True):
        if tx.type == "income":
            continue
        key = normalize(tx.description)
        if not key or key in seen or key in existing:
            continue
        seen.add(key)
        candidates.append(tx)

    candidates.sort(key=lambda t: t.description.lower())

    if search and search.strip():
        query = search.strip().lower()
        candidates = [t for t in candidates if query in t.description.lower()]

    return candidates[:limit]


def due_status(next_date: date, today: Optional[date] = None) -> tuple[str, bool]:
    """
    Human label for a predicted charge date and whether it needs attention.

    Returns:
        (label, urgent). Overdue and due-today are urgent.
    """
    today = today or date.today()
    diff_days = (next_date - today).days

    if diff_days < 0:
        return f"{abs(diff_days)}d overdue", True
    if diff_days == 0:
        return "Today", True
    if diff_days == 1:
        return "Tomorrow", False
    if diff_days <= 7:
        return f"In {diff_days} days", False
    return f"{next_date.strftime('%b')} {next_date.day}", False
