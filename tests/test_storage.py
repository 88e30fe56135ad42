"""
test_storage.py
----------------
SQLite store tests, plus the pipeline and the command line running against
real stores.

Every test gets a fresh in-memory database.
"""

import sys
import os
import sqlite3
import logging
import pytest
from datetime import date

# Ensure the project root is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from config.config_loader import reset_config
import main
from core.models import Transaction
from pipeline import RecurringPipeline
from storage.db_manager import DatabaseManager
from storage.override_store import OverrideStore
from storage.transaction_store import TransactionStore


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def reset_config_cache():
    reset_config()
    yield
    reset_config()


@pytest.fixture
def db():
    manager = DatabaseManager(":memory:")
    manager.initialize()
    yield manager
    manager.close()


def _transactions() -> list[Transaction]:
    return [
        Transaction("n1", date(2026, 1, 1), "Netflix", 15.99, "expense", "Entertainment", ""),
        Transaction("n2", date(2026, 2, 1), "Netflix", 15.99, "expense", "Entertainment", ""),
        Transaction("n3", date(2026, 3, 1), "Netflix", 15.99, "expense", "Entertainment", ""),
        Transaction("p1", date(2026, 1, 15), "ACME PAYROLL", 3000.0, "income", "Income", "Salary"),
        Transaction("g1", date(2026, 1, 10), "Gym Membership", 40.0, "expense", "Fitness", ""),
        Transaction("g2", date(2026, 2, 10), "Gym Membership", 40.0, "expense", "Fitness", ""),
    ]


# =============================================================================
# TRANSACTION STORE
# =============================================================================

class TestTransactionStore:
    def test_add_and_get_all(self, db):
        store = TransactionStore(db)
        assert store.add_many(_transactions()) == 6
        rows = store.get_all()
        assert len(rows) == 6
        assert rows[0] == _transactions()[0]

    def test_add_replaces_by_id(self, db):
        store = TransactionStore(db)
        store.add_many(_transactions())
        store.add_many([Transaction("n1", date(2026, 1, 1), "Netflix", 17.99, "expense", "Entertainment", "")])
        rows = {t.id: t for t in store.get_all()}
        assert len(rows) == 6
        assert rows["n1"].amount == 17.99

    def test_date_range_inclusive(self, db):
        store = TransactionStore(db)
        store.add_many(_transactions())
        rows = store.get_by_date_range(date(2026, 1, 10), date(2026, 2, 1))
        assert {t.id for t in rows} == {"g1", "p1", "n2"}

    def test_type_filter(self, db):
        store = TransactionStore(db)
        store.add_many(_transactions())
        income = store.get_by_date_range(date(2025, 1, 1), date(2026, 12, 31), type_filter="income")
        assert [t.id for t in income] == ["p1"]
        everything = store.get_by_date_range(date(2025, 1, 1), date(2026, 12, 31), type_filter="all")
        assert len(everything) == 6

    def test_negative_amount_rejected(self, db):
        store = TransactionStore(db)
        with pytest.raises(sqlite3.IntegrityError):
            store.add_many([Transaction("x", date(2026, 1, 1), "Bad", -1.0, "expense")])


# =============================================================================
# OVERRIDE STORE
# =============================================================================

class TestOverrideStore:
    def test_upsert_and_get(self, db):
        store = OverrideStore(db)
        store.upsert("netflix", False)
        store.upsert("gym membership", True)
        overrides = store.get_all()
        assert [o.merchant_key for o in overrides] == ["gym membership", "netflix"]
        assert overrides[0].is_recurring is True
        assert overrides[0].created_at is not None

    def test_last_write_wins(self, db):
        store = OverrideStore(db)
        store.upsert("netflix", False)
        store.upsert("netflix", True)
        overrides = store.get_all()
        assert len(overrides) == 1
        assert overrides[0].is_recurring is True

    def test_delete(self, db):
        store = OverrideStore(db)
        store.upsert("netflix", False)
        store.delete("netflix")
        store.delete("never existed")
        assert store.get_all() == []

    def test_missing_table_raises(self):
        manager = DatabaseManager(":memory:")
        manager.initialize(with_overrides=False)
        with pytest.raises(sqlite3.OperationalError):
            OverrideStore(manager).get_all()
        manager.close()


# =============================================================================
# PIPELINE ON SQLITE
# =============================================================================

class TestPipelineWithStores:
    def test_full_flow(self, db):
        transactions = TransactionStore(db)
        transactions.add_many(_transactions())
        pipeline = RecurringPipeline(transactions, OverrideStore(db))

        result = pipeline.run(today=date(2026, 3, 15))
        assert [r.merchant_key for r in result] == ["netflix"]

        pipeline.set_override("gym membership", True)
        pipeline.set_override("netflix", False)
        result = pipeline.run(today=date(2026, 3, 15))
        assert [r.merchant_key for r in result] == ["gym membership"]
        assert result[0].source == "manual"
        assert result[0].occurrences == 2

        pipeline.clear_override("netflix")
        result = pipeline.run(today=date(2026, 3, 15))
        assert [r.merchant_key for r in result] == ["gym membership", "netflix"]

    def test_overrides_table_not_provisioned(self):
        manager = DatabaseManager(":memory:")
        manager.initialize(with_overrides=False)
        transactions = TransactionStore(manager)
        transactions.add_many(_transactions())

        pipeline = RecurringPipeline(transactions, OverrideStore(manager))
        result = pipeline.run(today=date(2026, 3, 15))
        assert [r.merchant_key for r in result] == ["netflix"]
        manager.close()


# =============================================================================
# COMMAND LINE
# =============================================================================

def _write_csv(path):
    rows = ["id,date,description,amount,type,category,subcategory"]
    rows += [
        f"{t.id},{t.date.isoformat()},{t.description},{t.amount},{t.type},{t.category},{t.subcategory}"
        for t in _transactions()
    ]
    path.write_text("\n".join(rows) + "\n")
    return str(path)


class TestCommandLine:
    def test_default_output_dir_is_working_directory(self, tmp_path, monkeypatch):
        csv_path = _write_csv(tmp_path / "transactions.csv")
        monkeypatch.chdir(tmp_path)

        assert main.main(["--input", csv_path, "--as-of", "2026-03-15"]) == 0
        written = list((tmp_path / "outputs").glob("recurring_*.csv"))
        assert len(written) == 1

    def test_blank_override_key_rejected(self, tmp_path, monkeypatch, caplog):
        closed = []
        original_close = DatabaseManager.close

        def tracking_close(self):
            closed.append(self.db_path)
            original_close(self)

        monkeypatch.setattr(DatabaseManager, "close", tracking_close)
        db_path = str(tmp_path / "recurring.db")

        with caplog.at_level(logging.ERROR):
            code = main.main(["--db", db_path, "--include", " ", "--output-dir", str(tmp_path)])
        assert code == 1
        assert "Rejected override" in caplog.text
        assert closed == [db_path]
