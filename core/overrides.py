"""
overrides.py
-------------
Composes automatic detections with the user's persisted decisions.

    force-exclude (is_recurring=False): the merchant is removed from the
        output, however strong the automatic signal was. A utility group is
        removed when any of its description variants is excluded.
    force-include (is_recurring=True):  the merchant is added when the
        detector missed it, synthesized from all of its non-income
        transactions with no amount or cadence validation.

The composer never mutates its inputs. It returns a new list sorted
descending by monthly amount.
"""

import logging
from typing import Iterable, List, Optional

from core.merchant_normalizer import normalize
from core.models import RecurringOverride, RecurringTransaction, Transaction
from core.recurring_detector import RecurringDetector, sort_by_monthly_amount

logger = logging.getLogger(__name__)


def covered_keys(recurring: Iterable[RecurringTransaction]) -> set[str]:
    """Merchant keys already represented by a list, including grouped variants."""
    keys: set[str] = set()
    for r in recurring:
        keys |= r.covered_keys()
    return keys


def build_manual_recurring(
    matching: Iterable[Transaction],
    merchant_key: str,
    detector: Optional[RecurringDetector] = None,
) -> Optional[RecurringTransaction]:
    """
    Synthesizes a RecurringTransaction for a force-included merchant.

    Args:
        matching: Transactions whose normalized description equals merchant_key.
        merchant_key: The override key. Used verbatim as the record's key.
        detector: Reused for its configuration. A default one is built if omitted.

    Returns:
        The synthesized record, or None if `matching` has no non-income rows.
    """
    detector = detector or RecurringDetector()
    return detector.build_manual(merchant_key, matching)


def apply_overrides(
    detected: Iterable[RecurringTransaction],
    overrides: Iterable[RecurringOverride],
    all_transactions: Iterable[Transaction],
    detector: Optional[RecurringDetector] = None,
) -> List[RecurringTransaction]:
    """
    Applies force-excludes, then force-includes, then re-sorts.

    Args:
        detected: Output of RecurringDetector.detect().
        overrides: Persisted user decisions. At most one per key is expected;
            if a key repeats, the last one wins.
        all_transactions: The same history the detector saw. Force-includes
            are synthesized from it.

    Returns:
        New list sorted descending by monthly_amount.
    """
    decisions = {o.merchant_key: o.is_recurring for o in overrides}
    if not decisions:
        return sort_by_monthly_amount(detected)

    # --- 1. Force-exclude ---
    excluded = {key for key, is_recurring in decisions.items() if not is_recurring}
    result = [r for r in detected if not (r.covered_keys() & excluded)]

    # --- 2. Force-include ---
    included = [key for key, is_recurring in decisions.items() if is_recurring]
    existing = covered_keys(result)
    missing = [key for key in included if key not in existing]

    if missing:
        by_key: dict[str, List[Transaction]] = {key: [] for key in missing}
        for tx in all_transactions:
            if tx.type == "income":
                continue
            key = normalize(tx.description)
            if key in by_key:
                by_key[key].append(tx)

        detector = detector or RecurringDetector()
        for key in missing:
            manual = build_manual_recurring(by_key[key], key, detector)
            if manual is None:
                logger.debug(f"[{key}] force-include skipped: no matching transactions")
                continue
            result.append(manual)

    logger.debug(
        f"Overrides applied: {len(excluded)} excluded, {len(missing)} include candidate(s)."
    )

    # --- 3. Re-sort ---
    return sort_by_monthly_amount(result)
