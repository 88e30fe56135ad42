"""
recurring_detector.py
----------------------
Recurring charge detection engine.

Answers one question for a user's transaction history:

    "Which merchants are recurring bills or subscriptions, at what cadence,
     and when is the next charge due?"

There is no source-provided "is recurring" flag. Detection runs in two
independent passes that share one output type:

    Pass 1 (exact):   group by exact merchant key, require 3+ occurrences,
                      consistent amounts and a regular weekly / biweekly /
                      monthly gap pattern.
    Pass 2 (utility): over utility transactions Pass 1 did not consume,
                      group by merchant key prefix, require 2+ occurrences
                      across 2+ calendar months, tolerate 45% amount swing,
                      assume monthly billing.

Groups that fail a check are dropped, never reported as errors. A missed
bill is preferable to a false one in a financial summary.

All thresholds and tolerances are read from config.yaml.
"""

import logging
import math
from collections import Counter
from datetime import timedelta
from typing import Iterable, List, NamedTuple, Optional

import numpy as np
import pandas as pd

from config.config_loader import get_recurring_detection_config, get_utility_fallback_config
from core.merchant_normalizer import is_groupable, normalize
from core.models import RecurringTransaction, Transaction
from core.taxonomy import UtilityTaxonomy

logger = logging.getLogger(__name__)

_FRAME_COLUMNS = ["id", "date", "description", "amount", "type", "category", "subcategory"]


class Cadence(NamedTuple):
    frequency: str
    interval_days: int
    monthly_multiplier: float


# =============================================================================
# SHARED HELPERS
# =============================================================================

def round_half_up(value: float) -> int:
    """Rounds .5 away from zero for positive values (2.5 -> 3, not 2)."""
    return int(math.floor(value + 0.5))


def classify_frequency(gaps: List[float], cadence_bands: dict) -> Optional[Cadence]:
    """
    Classifies a list of day gaps into a cadence band.

    Bands are tested in config order. The first band whose mean range
    contains the mean gap decides: if every gap is within that band's
    tolerance of the mean, the band matches, otherwise classification fails
    without trying the remaining bands.

    Returns:
        Cadence, or None if the gaps are empty, irregular, or fall between bands.
    """
    if not gaps:
        return None

    mean_gap = sum(gaps) / len(gaps)

    for name, band in cadence_bands.items():
        if not band["min_mean_days"] <= mean_gap <= band["max_mean_days"]:
            continue
        tolerance = band["gap_tolerance_days"]
        if all(abs(g - mean_gap) <= tolerance for g in gaps):
            return Cadence(name, round_half_up(mean_gap), float(band["monthly_multiplier"]))
        return None

    return None


def most_common(values: Iterable[Optional[str]]) -> Optional[str]:
    """Mode of the non-empty values. Ties go to the first value seen."""
    counts = Counter(v for v in values if v)
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def within_variance(amounts: np.ndarray, mean_amount: float, threshold: float) -> bool:
    """True if every amount is within `threshold` (a fraction) of the mean."""
    return bool(np.all(np.abs(amounts - mean_amount) / mean_amount <= threshold))


def gaps_in_days(dates: pd.Series) -> List[float]:
    """Day counts between adjacent entries of a chronologically sorted date series."""
    return dates.diff().dt.days.iloc[1:].astype(float).tolist()


def sort_by_monthly_amount(recurring: Iterable[RecurringTransaction]) -> List[RecurringTransaction]:
    """Biggest monthly-equivalent costs first."""
    return sorted(recurring, key=lambda r: r.monthly_amount, reverse=True)


# =============================================================================
# DETECTOR
# =============================================================================

class RecurringDetector:
    """
    Detects recurring charges in a transaction history.

    Usage:
        detector = RecurringDetector()
        recurring = detector.detect(transactions)

    Holds only configuration. Every method is a pure function of its inputs,
    so one instance can serve any number of requests.
    """

    def __init__(self, taxonomy: Optional[UtilityTaxonomy] = None):
        self.config = get_recurring_detection_config()
        self.fallback_config = get_utility_fallback_config()
        self.taxonomy = taxonomy or UtilityTaxonomy()

        self.min_occurrences = self.config["min_occurrences"]
        self.min_mean_amount = self.config["min_mean_amount"]
        self.default_variance = self.config["amount_variance"]["default"]
        self.utility_variance = self.config["amount_variance"]["utility"]
        self.cadence_bands = self.config["cadence_bands"]

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def detect(self, transactions: Iterable[Transaction]) -> List[RecurringTransaction]:
        """
        Run both passes and return the combined result.

        Args:
            transactions: Transactions for the detection window, any order.
                Income is ignored.

        Returns:
            RecurringTransaction list sorted descending by monthly_amount.
        """
        frame = self._prepare(transactions)
        if frame.empty:
            return []

        exact, consumed_ids = self._detect_exact(frame)
        utility = self._detect_utility(frame, consumed_ids)

        logger.debug(f"Detection: {len(exact)} exact, {len(utility)} utility fallback.")
        return sort_by_monthly_amount(exact + utility)

    def detect_exact(self, transactions: Iterable[Transaction]) -> tuple[List[RecurringTransaction], set]:
        """
        Pass 1 only.

        Returns:
            (detections, ids of every transaction consumed by a detection)
        """
        frame = self._prepare(transactions)
        if frame.empty:
            return [], set()
        return self._detect_exact(frame)

    def detect_utility_fallback(
        self, transactions: Iterable[Transaction], consumed_ids: Optional[set] = None
    ) -> List[RecurringTransaction]:
        """Pass 2 only, skipping transactions whose id is in consumed_ids."""
        frame = self._prepare(transactions)
        if frame.empty:
            return []
        return self._detect_utility(frame, consumed_ids or set())

    def build_manual(
        self, merchant_key: str, transactions: Iterable[Transaction]
    ) -> Optional[RecurringTransaction]:
        """
        Builds a record for a merchant the user flagged as recurring.

        No amount or cadence validation. The cadence is classified from the
        gaps when possible, otherwise the configured manual default
        (monthly / 30 days) applies.

        Returns:
            RecurringTransaction, or None if there are no non-income transactions.
        """
        frame = self._prepare(transactions)
        if frame.empty:
            return None

        ordered = frame.sort_values("date", kind="stable")
        mean_amount = float(np.mean(ordered["amount"].to_numpy(dtype=float)))

        cadence = classify_frequency(gaps_in_days(ordered["date"]), self.cadence_bands)
        if cadence is None:
            default = self.config["manual_default"]
            multiplier = self.cadence_bands[default["frequency"]]["monthly_multiplier"]
            cadence = Cadence(default["frequency"], int(default["interval_days"]), float(multiplier))

        return self._build_recurring(merchant_key, frame, ordered, mean_amount, cadence, source="manual")

    # -------------------------------------------------------------------------
    # INTERNAL: DATA PREPARATION
    # -------------------------------------------------------------------------

    def _prepare(self, transactions: Iterable[Transaction]) -> pd.DataFrame:
        """
        Builds the working frame: non-income rows with parsed dates, absolute
        amounts, merchant keys and the utility flag. Input order is kept, which
        is what makes category ties resolve to the first value seen.
        """
        rows = [
            {
                "id": t.id,
                "date": t.date,
                "description": t.description or "",
                "amount": t.amount,
                "type": t.type,
                "category": t.category or "",
                "subcategory": t.subcategory or "",
            }
            for t in transactions
            if t.type != "income"
        ]
        df = pd.DataFrame(rows, columns=_FRAME_COLUMNS)
        if df.empty:
            return df

        df["date"] = pd.to_datetime(df["date"])
        df["amount"] = df["amount"].astype(float).abs()
        df["merchant_key"] = df["description"].map(normalize)
        df["is_utility"] = [
            self.taxonomy.is_utility_label(c, s)
            for c, s in zip(df["category"], df["subcategory"])
        ]
        return df

    # -------------------------------------------------------------------------
    # INTERNAL: PASS 1 (EXACT KEY)
    # -------------------------------------------------------------------------

    def _detect_exact(self, frame: pd.DataFrame) -> tuple[List[RecurringTransaction], set]:
        candidates = frame[frame["merchant_key"].map(is_groupable)]

        results: List[RecurringTransaction] = []
        consumed: set = set()

        for key, group in candidates.groupby("merchant_key", sort=False):
            if len(group) < self.min_occurrences:
                continue

            rt = self._build_exact(key, group)
            if rt is not None:
                results.append(rt)
                consumed.update(rt.transaction_ids)

        return results, consumed

    def _build_exact(self, key: str, group: pd.DataFrame) -> Optional[RecurringTransaction]:
        """
        Validates one exact-key group and builds its record.

        Returns None if amounts are near zero or inconsistent, or if the gaps
        do not fit a cadence band.
        """
        ordered = group.sort_values("date", kind="stable")
        amounts = ordered["amount"].to_numpy(dtype=float)

        mean_amount = float(np.mean(amounts))
        if mean_amount < self.min_mean_amount:
            logger.debug(f"[{key}] dropped: mean amount {mean_amount:.4f}")
            return None

        # One utility row is enough to relax the tolerance for the whole group
        threshold = self.utility_variance if ordered["is_utility"].any() else self.default_variance
        if not within_variance(amounts, mean_amount, threshold):
            logger.debug(f"[{key}] dropped: amounts vary more than {threshold:.0%}")
            return None

        cadence = classify_frequency(gaps_in_days(ordered["date"]), self.cadence_bands)
        if cadence is None:
            logger.debug(f"[{key}] dropped: no cadence match")
            return None

        return self._build_recurring(key, group, ordered, mean_amount, cadence, source="exact")

    # -------------------------------------------------------------------------
    # INTERNAL: PASS 2 (UTILITY FALLBACK)
    # -------------------------------------------------------------------------

    def _detect_utility(self, frame: pd.DataFrame, consumed_ids: set) -> List[RecurringTransaction]:
        cfg = self.fallback_config
        prefix_length = cfg["prefix_length"]

        pool = frame[
            frame["is_utility"]
            & frame["merchant_key"].map(is_groupable)
            & ~frame["id"].isin(list(consumed_ids))
        ]
        if pool.empty:
            return []

        pool = pool.assign(prefix=pool["merchant_key"].map(lambda k: k[:prefix_length].rstrip()))
        cadence = Cadence(cfg["frequency"], int(cfg["interval_days"]), 1.0)

        results: List[RecurringTransaction] = []
        for prefix, group in pool.groupby("prefix", sort=False):
            if len(group) < cfg["min_occurrences"]:
                continue

            ordered = group.sort_values("date", kind="stable")
            months = ordered["date"].dt.strftime("%Y-%m").nunique()
            if months < cfg["min_distinct_months"]:
                logger.debug(f"[{prefix}] utility group dropped: {months} distinct month(s)")
                continue

            amounts = ordered["amount"].to_numpy(dtype=float)
            mean_amount = float(np.mean(amounts))
            if mean_amount < self.min_mean_amount:
                continue
            if not within_variance(amounts, mean_amount, cfg["amount_variance"]):
                logger.debug(f"[{prefix}] utility group dropped: amount variance")
                continue

            # Most frequent variant, earliest wins ties. Stable as new bills arrive.
            key = most_common(ordered["merchant_key"])
            results.append(
                self._build_recurring(key, group, ordered, mean_amount, cadence, source="utility")
            )

        return results

    # -------------------------------------------------------------------------
    # INTERNAL: RECORD CONSTRUCTION
    # -------------------------------------------------------------------------

    @staticmethod
    def _build_recurring(
        key: str,
        group: pd.DataFrame,
        ordered: pd.DataFrame,
        mean_amount: float,
        cadence: Cadence,
        source: str,
    ) -> RecurringTransaction:
        """
        Shared field derivation for all three sources.

        `group` is in input order (for first-seen category ties), `ordered`
        is the same rows sorted by date.
        """
        latest = ordered.iloc[-1]
        last_date = latest["date"].date()

        return RecurringTransaction(
            merchant=str(latest["description"]),
            merchant_key=key,
            average_amount=mean_amount,
            monthly_amount=mean_amount * cadence.monthly_multiplier,
            frequency=cadence.frequency,
            interval_days=cadence.interval_days,
            last_date=last_date,
            next_predicted_date=last_date + timedelta(days=cadence.interval_days),
            occurrences=len(group),
            category=most_common(group["category"]),
            subcategory=most_common(group["subcategory"]),
            source=source,
            transaction_ids=ordered["id"].tolist(),
            member_keys=list(dict.fromkeys(ordered["merchant_key"])),
        )


def detect_recurring(transactions: Iterable[Transaction]) -> List[RecurringTransaction]:
    """Convenience wrapper: both passes with the default configuration."""
    return RecurringDetector().detect(transactions)
