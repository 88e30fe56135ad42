"""
pipeline.py
------------
Main orchestration layer. Wires together, once per request:
    1. Transaction store  ->  transactions for the lookback window
    2. Override store     ->  user decisions (optional; failures degrade to none)
    3. RecurringDetector  ->  exact pass + utility fallback pass
    4. apply_overrides    ->  force-excludes, force-includes, final sort
    5. Output             ->  RecurringTransaction list, or a flat DataFrame

Also the input boundary: records coming from CSV files or API payloads are
validated by prepare_transactions() before they reach the detector, which
never raises on data.

Usage:
    from pipeline import RecurringPipeline

    pipeline = RecurringPipeline(transaction_store, override_store)
    recurring = pipeline.run()
"""

import logging
from datetime import date, timedelta
from typing import Iterable, List, Optional

import pandas as pd

from config.config_loader import get_recurring_detection_config
from core.models import TRANSACTION_TYPES, RecurringOverride, RecurringTransaction, Transaction
from core.overrides import apply_overrides
from core.recurring_detector import RecurringDetector

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["id", "date", "description", "amount", "type", "category", "subcategory"]

OUTPUT_COLUMNS = [
    "merchant", "merchantKey", "averageAmount", "frequency", "intervalDays",
    "lastDate", "nextPredictedDate", "monthlyAmount", "occurrences",
    "category", "subcategory", "source", "transactionIds",
]


# =============================================================================
# INPUT BOUNDARY
# =============================================================================

def prepare_transactions(records) -> List[Transaction]:
    """
    Validates raw transaction records and converts them to Transactions.

    Args:
        records: DataFrame, iterable of dicts, or iterable of Transaction.

    Returns:
        List of Transaction in input order.

    Raises:
        ValueError: Missing columns, malformed dates, negative or non-numeric
            amounts, or unknown transaction types.
    """
    if isinstance(records, pd.DataFrame):
        df = records.copy()
    else:
        records = list(records)
        if records and all(isinstance(r, Transaction) for r in records):
            df = pd.DataFrame([vars(r) for r in records])
        else:
            df = pd.DataFrame(records)

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        if df.empty and len(df.columns) == 0:
            return []
        raise ValueError(f"Missing required columns: {missing}")

    if df.empty:
        return []

    # --- Dates: strict YYYY-MM-DD ---
    if pd.api.types.is_datetime64_any_dtype(df["date"]):
        dates = df["date"].dt.normalize()
    else:
        dates = pd.to_datetime(
            df["date"].astype(str).str.strip(), format="%Y-%m-%d", errors="coerce"
        )
    bad_dates = df.loc[dates.isna(), "id"].tolist()
    if bad_dates:
        raise ValueError(f"Malformed dates for transaction ids: {bad_dates}")

    # --- Amounts: non-negative magnitudes ---
    amounts = pd.to_numeric(df["amount"], errors="coerce")
    bad_amounts = df.loc[amounts.isna() | (amounts < 0), "id"].tolist()
    if bad_amounts:
        raise ValueError(f"Amounts must be non-negative numbers. Offending ids: {bad_amounts}")

    # --- Types ---
    types = df["type"].astype(str).str.strip().str.lower()
    bad_types = sorted(set(types[~types.isin(TRANSACTION_TYPES)]))
    if bad_types:
        raise ValueError(f"Unknown transaction types: {bad_types}. Expected one of {TRANSACTION_TYPES}.")

    categories = df["category"].fillna("").astype(str)
    subcategories = df["subcategory"].fillna("").astype(str)

    return [
        Transaction(
            id=str(tx_id),
            date=tx_date.date(),
            description="" if pd.isna(desc) else str(desc),
            amount=float(amount),
            type=tx_type,
            category=category,
            subcategory=subcategory,
        )
        for tx_id, tx_date, desc, amount, tx_type, category, subcategory in zip(
            df["id"], dates, df["description"], amounts, types, categories, subcategories
        )
    ]


# =============================================================================
# PIPELINE
# =============================================================================

class RecurringPipeline:
    """
    End-to-end recurring charge detection for one user's data.

    Stateless between calls: every run() re-reads both stores and recomputes.
    """

    def __init__(self, transaction_store=None, override_store=None, lookback_days: int | None = None):
        """
        Args:
            transaction_store: Anything with get_by_date_range(start, end).
                Only needed by run().
            override_store: Anything with get_all() / upsert() / delete().
                Optional; without it no overrides apply.
            lookback_days: Override the default lookback window from config.
        """
        self.config = get_recurring_detection_config()
        self.lookback_days = (
            lookback_days if lookback_days is not None else self.config["default_lookback_days"]
        )
        self.transaction_store = transaction_store
        self.override_store = override_store
        self.detector = RecurringDetector()

        logger.info(
            f"Pipeline initialized. Lookback: {self.lookback_days} days. "
            f"Overrides: {'enabled' if override_store is not None else 'disabled'}."
        )

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def window(self, today: Optional[date] = None) -> tuple[date, date]:
        """(start, end) of the detection window ending on `today`."""
        end = today or date.today()
        return end - timedelta(days=self.lookback_days), end

    def run(self, today: Optional[date] = None) -> List[RecurringTransaction]:
        """
        Fetch, detect, compose.

        Raises:
            RuntimeError: If the pipeline has no transaction store.
        """
        if self.transaction_store is None:
            raise RuntimeError("RecurringPipeline.run() needs a transaction store.")

        start, end = self.window(today)
        transactions = self.transaction_store.get_by_date_range(start, end)
        logger.info(f"Fetched {len(transactions):,} transactions for {start} to {end}.")

        overrides = self._fetch_overrides()
        return self.detect_with_overrides(transactions, overrides)

    def detect_with_overrides(
        self,
        transactions: Iterable[Transaction],
        overrides: Iterable[RecurringOverride] = (),
    ) -> List[RecurringTransaction]:
        """Detection plus override composition over in-memory data."""
        transactions = list(transactions)
        overrides = list(overrides)

        detected = self.detector.detect(transactions)
        logger.info(f"Stage 1 complete. Detected: {len(detected):,}.")

        result = apply_overrides(detected, overrides, transactions, self.detector)
        logger.info(
            f"Stage 2 complete. Overrides: {len(overrides):,}. Output rows: {len(result):,}."
        )
        return result

    def run_detection_only(self, records) -> List[RecurringTransaction]:
        """
        Run only the detector (no overrides). Useful for debugging thresholds.
        Accepts the same inputs as prepare_transactions().
        """
        return self.detector.detect(prepare_transactions(records))

    # -------------------------------------------------------------------------
    # OVERRIDE MUTATIONS
    # -------------------------------------------------------------------------

    def set_override(self, merchant_key: str, is_recurring: bool) -> None:
        """
        Force-include (True) or force-exclude (False) a merchant.

        Raises:
            ValueError: Empty key or non-boolean flag.
            RuntimeError: No override store configured.
        """
        if not isinstance(merchant_key, str) or not merchant_key.strip():
            raise ValueError("merchant_key must be a non-empty string.")
        if not isinstance(is_recurring, bool):
            raise ValueError("is_recurring must be a boolean.")

        self._require_override_store().upsert(merchant_key, is_recurring)
        logger.info(f"Override saved: {merchant_key!r} -> is_recurring={is_recurring}.")

    def clear_override(self, merchant_key: str) -> None:
        """Reverts a merchant to automatic detection."""
        if not isinstance(merchant_key, str) or not merchant_key.strip():
            raise ValueError("merchant_key must be a non-empty string.")

        self._require_override_store().delete(merchant_key)
        logger.info(f"Override removed: {merchant_key!r}.")

    # -------------------------------------------------------------------------
    # OUTPUT
    # -------------------------------------------------------------------------

    @staticmethod
    def to_dataframe(recurring: Iterable[RecurringTransaction]) -> pd.DataFrame:
        """
        Flat DataFrame with the camelCase wire columns, sorted by
        monthlyAmount descending.
        """
        rows = []
        for r in recurring:
            row = r.to_dict()
            row["transactionIds"] = "|".join(str(x) for x in row["transactionIds"])
            rows.append(row)

        if not rows:
            return pd.DataFrame(columns=OUTPUT_COLUMNS)

        df = pd.DataFrame(rows, columns=OUTPUT_COLUMNS)
        return df.sort_values("monthlyAmount", ascending=False, kind="stable").reset_index(drop=True)

    # -------------------------------------------------------------------------
    # INTERNAL
    # -------------------------------------------------------------------------

    def _fetch_overrides(self) -> List[RecurringOverride]:
        """
        Overrides are an optional collaborator: any failure to read them
        (store missing, table not provisioned) means "no overrides".
        """
        if self.override_store is None:
            return []
        try:
            return list(self.override_store.get_all())
        except Exception as exc:
            logger.warning(f"Override store unavailable, continuing without overrides: {exc}")
            return []

    def _require_override_store(self):
        if self.override_store is None:
            raise RuntimeError("No override store configured.")
        return self.override_store
