"""
main.py
--------
Entry point for the Recurring Charge Detection Engine.

Reads transactions from a CSV export and/or a SQLite database, applies any
override changes given on the command line, runs detection and writes the
recurring list to an outputs/ folder under the current directory.

Usage (from the project root):
    python main.py --input transactions.csv

    # Persist to a database and manage overrides:
    python main.py --input transactions.csv --db recurring.db
    python main.py --db recurring.db --exclude "spotify" --include "city water dept"
    python main.py --db recurring.db --clear "spotify" --frequency monthly
"""

import sys
import os
import argparse
import logging
from datetime import date, datetime

import pandas as pd

from core.models import FREQUENCIES, RecurringTransaction
from core.summary import due_status, filter_by_frequency, summarize
from pipeline import RecurringPipeline, prepare_transactions
from storage.db_manager import DatabaseManager
from storage.override_store import OverrideStore
from storage.transaction_store import TransactionStore

# =============================================================================
# LOGGING SETUP
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("main")


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Recurring Charge Detection Engine: find subscriptions and bills in transaction history."
    )
    parser.add_argument(
        "--input", type=str, default=None,
        help="Path to a transactions CSV (id,date,description,amount,type,category,subcategory)."
    )
    parser.add_argument(
        "--db", type=str, default=None,
        help="SQLite database. With --input, the CSV is imported into it first."
    )
    parser.add_argument(
        "--lookback", type=int, default=None,
        help="Lookback window in days. Defaults to config value (730)."
    )
    parser.add_argument(
        "--as-of", type=date.fromisoformat, default=None,
        help="End of the lookback window, YYYY-MM-DD. Defaults to today."
    )
    parser.add_argument(
        "--frequency", type=str, default="all",
        choices=["all", *FREQUENCIES],
        help="Only output recurring charges of this cadence."
    )
    parser.add_argument(
        "--include", action="append", default=[], metavar="KEY",
        help="Force-include a merchant key. Repeatable. Requires --db."
    )
    parser.add_argument(
        "--exclude", action="append", default=[], metavar="KEY",
        help="Force-exclude a merchant key. Repeatable. Requires --db."
    )
    parser.add_argument(
        "--clear", action="append", default=[], metavar="KEY",
        help="Remove the override for a merchant key. Repeatable. Requires --db."
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help="Output directory. Defaults to outputs/ in the current directory."
    )
    return parser.parse_args(argv)


# =============================================================================
# MAIN
# =============================================================================

def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    if not args.input and not args.db:
        logger.error("Nothing to do: pass --input, --db, or both.")
        return 1

    if (args.include or args.exclude or args.clear) and not args.db:
        logger.error("--include/--exclude/--clear need --db to persist overrides.")
        return 1

    as_of = args.as_of or date.today()
    output_dir = args.output_dir or os.path.join(os.getcwd(), "outputs")
    os.makedirs(output_dir, exist_ok=True)

    # --- Load transactions ---
    transactions = None
    if args.input:
        logger.info(f"Loading transactions from: {args.input}")
        if not os.path.exists(args.input):
            logger.error(f"Input file not found: {args.input}")
            return 1
        raw = pd.read_csv(args.input, dtype=str, keep_default_na=False)
        try:
            transactions = prepare_transactions(raw)
        except ValueError as exc:
            logger.error(f"Rejected input: {exc}")
            return 1
        logger.info(f"Loaded {len(transactions):,} transactions.")

    # --- Run pipeline ---
    if args.db:
        db = DatabaseManager(args.db)
        try:
            db.initialize()
            transaction_store = TransactionStore(db)
            pipeline = RecurringPipeline(transaction_store, OverrideStore(db), lookback_days=args.lookback)

            if transactions is not None:
                written = transaction_store.add_many(transactions)
                logger.info(f"Imported {written:,} transactions into {args.db}.")

            for key in args.include:
                pipeline.set_override(key, True)
            for key in args.exclude:
                pipeline.set_override(key, False)
            for key in args.clear:
                pipeline.clear_override(key)

            recurring = pipeline.run(today=as_of)
        except ValueError as exc:
            logger.error(f"Rejected override: {exc}")
            return 1
        finally:
            db.close()
    else:
        pipeline = RecurringPipeline(lookback_days=args.lookback)
        start, end = pipeline.window(as_of)
        in_window = [t for t in transactions if start <= t.date <= end]
        recurring = pipeline.detect_with_overrides(in_window)

    recurring = filter_by_frequency(recurring, args.frequency)

    # --- Output ---
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    output_path = os.path.join(output_dir, f"recurring_{timestamp}.csv")
    pipeline.to_dataframe(recurring).to_csv(output_path, index=False)
    logger.info(f"Recurring charges saved to: {output_path}")

    _print_summary(recurring, as_of)
    return 0


def _print_summary(recurring: list[RecurringTransaction], as_of: date):
    """Prints a clean summary table to the console."""
    if not recurring:
        print("\n  No recurring charges detected.\n")
        return

    summary = summarize(recurring)

    print("\n" + "=" * 80)
    print("  RECURRING CHARGES")
    print("=" * 80)

    print(f"\n  {'Merchant':32s} {'Cadence':9s} {'Monthly':>10s}  Next charge")
    print("  " + "-" * 74)
    for r in recurring:
        label, urgent = due_status(r.next_predicted_date, as_of)
        flag = " !" if urgent else ""
        print(f"  {r.merchant[:32]:32s} {r.frequency:9s} {r.monthly_amount:>10.2f}  {label}{flag}")

    print(f"\n  By cadence:")
    print("  " + "-" * 60)
    for frequency in FREQUENCIES:
        print(
            f"    {frequency:10s}  {summary.counts[frequency]:>4,}  "
            f"{summary.monthly_by_frequency[frequency]:>10.2f} / month"
        )

    print(f"\n  Total: {summary.count:,} recurring, {summary.total_monthly:,.2f} per month")
    print("=" * 80 + "\n")


if __name__ == "__main__":
    sys.exit(main())
