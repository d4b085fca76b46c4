"""Integration tests for batch and onboarding imports"""

import pytest
from datetime import date
from pathlib import Path
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from lending_ledger.domain.exceptions import PersistenceError, ValidationError
from lending_ledger.infrastructure.database.models import LoanAccount, MonthlyBalance, Owner, YieldDeposit
from lending_ledger.infrastructure.database.repositories import AccountRepository, OwnerRepository, TransactionRepository
from lending_ledger.services.engine import LedgerEngine
from lending_ledger.utils.clock import FixedClock


def _account_for(db: Session, email: str) -> LoanAccount:
    owner = OwnerRepository(db).get_by_email(email)
    return AccountRepository(db).get_by_owner(owner.id)


def test_partial_failure(db: Session, engine: LedgerEngine):
    rows = [
        {"email": "a@x.com", "amount": 1000, "type": "principal", "date": "2024-01-01"},
        {"email": "a@x.com", "amount": "bad", "type": "principal", "date": "2024-01-02"},
    ]

    summary = engine.import_batch(rows)

    assert len(summary.applied_transactions) == 1
    assert len(summary.errors) == 1
    assert summary.errors[0].row_number == 3
    assert "amount" in summary.errors[0].reason
    assert _account_for(db, "a@x.com").current_balance_cents == 100000


def test_provisions_owner_and_account_once(db: Session, engine: LedgerEngine, sample_rows: list[dict]):
    summary = engine.import_batch(sample_rows)

    assert summary.total_rows == 3
    assert summary.succeeded == 3
    assert summary.failed == 0
    assert len(summary.created_accounts) == 1
    assert summary.created_accounts[0].email == "carol@example.com"
    assert db.query(Owner).count() == 1

    account = _account_for(db, "carol@example.com")
    assert account.principal_cents == 0
    assert account.current_balance_cents == 100000 + 2550 - 10000
    assert account.total_bonuses_cents == 2550
    assert account.total_withdrawals_cents == 10000
    assert engine.reconcile(account.id).balanced


def test_rows_applied_in_date_order(engine: LedgerEngine):
    """The withdrawal comes first in the file but is dated after the principal"""
    rows = [
        {"email": "d@x.com", "transaction_type": "withdrawal", "amount": 50, "transaction_date": "2024-02-01"},
        {"email": "d@x.com", "transaction_type": "principal", "amount": 100, "transaction_date": "2024-01-01"},
    ]

    summary = engine.import_batch(rows)

    assert summary.errors == []
    assert [a.row_number for a in summary.applied_transactions] == [3, 2]
    assert [a.transaction_date for a in summary.applied_transactions] == [date(2024, 1, 1), date(2024, 2, 1)]


def test_failed_row_rolls_back_new_owner(db: Session, engine: LedgerEngine):
    """An overdraw on a brand new owner leaves no owner behind"""
    rows = [{"email": "e@x.com", "transaction_type": "withdrawal", "amount": 10, "transaction_date": "2024-01-01"}]

    summary = engine.import_batch(rows)

    assert summary.succeeded == 0
    assert summary.failed == 1
    assert "Insufficient balance" in summary.errors[0].reason
    assert summary.created_accounts == []
    assert OwnerRepository(db).get_by_email("e@x.com") is None


def test_every_row_applied_or_reported(engine: LedgerEngine):
    rows = [
        {"email": "f@x.com", "transaction_type": "principal", "amount": 500, "transaction_date": 45292},
        {"email": "broken", "transaction_type": "principal", "amount": 500, "transaction_date": 45292},
        {"email": "f@x.com", "transaction_type": "deposit_deletion", "amount": 500, "transaction_date": 45292},
        {"email": "f@x.com", "transaction_type": "withdrawal", "amount": 9999, "transaction_date": 45300},
        {"email": "f@x.com", "transaction_type": "bonus", "amount": 5, "transaction_date": 45301, "bonus_percentage": 0.01},
    ]

    summary = engine.import_batch(rows)

    applied = {a.row_number for a in summary.applied_transactions}
    failed = {e.row_number for e in summary.errors}
    assert applied == {2, 6}
    assert failed == {3, 4, 5}
    assert applied | failed == set(range(2, 7))
    assert [e.row_number for e in summary.errors] == [3, 4, 5]


def test_yield_deposit_rows_create_deposits(db: Session, engine: LedgerEngine):
    rows = [{"email": "g@x.com", "transaction_type": "yield_deposit", "amount": 2500, "transaction_date": "2024-02-01"}]

    summary = engine.import_batch(rows)

    applied = summary.applied_transactions[0]
    deposit = db.get(YieldDeposit, applied.deposit_id)
    assert deposit.principal_cents == 250000
    assert deposit.start_date == date(2024, 2, 1)
    assert deposit.annual_yield_rate == 0.12
    assert _account_for(db, "g@x.com").current_balance_cents == 250000


def test_existing_owner_is_reused(db: Session, engine: LedgerEngine, account: LoanAccount):
    rows = [{"email": "ALICE@example.com", "transaction_type": "bonus", "amount": 10, "transaction_date": "2024-01-01"}]

    summary = engine.import_batch(rows)

    assert summary.created_accounts == []
    assert account.current_balance_cents == 101000


def test_snapshots_rebuilt_after_import(db: Session, clock: FixedClock, sample_rows: list[dict]):
    engine = LedgerEngine(db, clock=clock, rebuild_snapshots_after_import=True)

    summary = engine.import_batch(sample_rows)

    assert summary.errors == []
    account = _account_for(db, "carol@example.com")
    months = db.query(MonthlyBalance).filter(MonthlyBalance.account_id == account.id).all()
    assert len(months) == 2
    assert max(m.month_end_date for m in months) == date(2024, 2, 29)


def test_onboarding_import(db: Session, engine: LedgerEngine):
    rows = [
        {"email": "h@x.com", "deposit_amount": 10000, "start_date": 45352, "first_name": "Hana", "annual_yield_rate": 0.1},
        {"email": "i@x.com", "deposit_amount": 500, "start_date": "2024-02-15"},
        {"email": "j@x.com", "deposit_amount": 0, "start_date": "2024-02-15"},
    ]

    summary = engine.import_onboarding(rows)

    assert summary.succeeded == 2
    assert [e.row_number for e in summary.errors] == [4]
    assert len(summary.created_accounts) == 2
    # sorted by start date
    assert [a.email for a in summary.applied_transactions] == ["i@x.com", "h@x.com"]

    hana = OwnerRepository(db).get_by_email("h@x.com")
    assert hana.first_name == "Hana"
    [deposit] = db.query(YieldDeposit).filter(YieldDeposit.owner_id == hana.id).all()
    assert deposit.principal_cents == 1000000
    assert deposit.annual_yield_rate == 0.1
    assert deposit.start_date == date(2024, 3, 1)


def test_import_csv_file(db: Session, engine: LedgerEngine, tmp_path: Path):
    path = tmp_path / "transactions.csv"
    path.write_text(
        "Email,Transaction_Type,Amount,Transaction_Date,Description,Bonus_Percentage,Phone\n"
        "k@x.com,principal,1500.00,45292,Opening principal,,0155512345\n"
        "k@x.com,bonus,15,2024-01-20,,0.01,\n"
        "k@x.com,withdrawal,abc,2024-01-21,,,\n"
        ",,,,,,\n"
    )

    summary = engine.import_file(path)

    assert summary.total_rows == 3
    assert summary.succeeded == 2
    assert [e.row_number for e in summary.errors] == [4]
    assert OwnerRepository(db).get_by_email("k@x.com").phone == "0155512345"
    assert _account_for(db, "k@x.com").current_balance_cents == 151500


def test_onboard_csv_file(db: Session, engine: LedgerEngine, tmp_path: Path):
    path = tmp_path / "clients.csv"
    path.write_text("email,deposit_amount,start_date\nl@x.com,2000,2024-03-01\n")

    summary = engine.onboard_file(path)

    assert summary.succeeded == 1
    assert _account_for(db, "l@x.com").current_balance_cents == 200000


def test_import_file_rejects_unknown_extension(engine: LedgerEngine, tmp_path: Path):
    path = tmp_path / "transactions.json"
    path.write_text("[]")

    with pytest.raises(ValidationError):
        engine.import_file(path)


def test_import_missing_file(engine: LedgerEngine, tmp_path: Path):
    with pytest.raises(ValidationError):
        engine.import_file(tmp_path / "missing.csv")


def test_oversized_amount_is_a_row_error(db: Session, engine: LedgerEngine):
    rows = [
        {"email": "n@x.com", "transaction_type": "principal", "amount": 1000, "transaction_date": "2024-01-01"},
        {"email": "n@x.com", "transaction_type": "bonus", "amount": "1e20", "transaction_date": "2024-01-02"},
        {"email": "n@x.com", "transaction_type": "bonus", "amount": 5, "transaction_date": "2024-01-03"},
    ]

    summary = engine.import_batch(rows)

    assert [a.row_number for a in summary.applied_transactions] == [2, 4]
    assert [e.row_number for e in summary.errors] == [3]
    assert "too large" in summary.errors[0].reason
    assert _account_for(db, "n@x.com").current_balance_cents == 100500


def test_row_overflowing_balance_is_a_row_error(db: Session, engine: LedgerEngine):
    """Each amount fits on its own, their sum does not"""
    rows = [
        {"email": "o@x.com", "transaction_type": "principal", "amount": "90000000000000000", "transaction_date": "2024-01-01"},
        {"email": "o@x.com", "transaction_type": "bonus", "amount": "90000000000000000", "transaction_date": "2024-01-02"},
        {"email": "o@x.com", "transaction_type": "bonus", "amount": 5, "transaction_date": "2024-01-03"},
    ]

    summary = engine.import_batch(rows)

    assert [a.row_number for a in summary.applied_transactions] == [2, 4]
    assert [e.row_number for e in summary.errors] == [3]
    assert _account_for(db, "o@x.com").current_balance_cents == 9000000000000000000 + 500


def test_storage_failure_stops_batch(db: Session, engine: LedgerEngine, monkeypatch):
    """Rows before the outage stay committed, nothing after it is attempted"""
    rows = [
        {"email": "p@x.com", "transaction_type": "principal", "amount": 100, "transaction_date": "2024-01-01"},
        {"email": "p@x.com", "transaction_type": "bonus", "amount": 5, "transaction_date": "2024-01-02"},
        {"email": "p@x.com", "transaction_type": "bonus", "amount": 6, "transaction_date": "2024-01-03"},
    ]
    add = TransactionRepository.add
    calls = []

    def add_failing_on_second_row(self, *args, **kwargs):
        calls.append(kwargs.get("transaction_date"))
        if len(calls) == 2:
            raise OperationalError("INSERT INTO ledger_transaction", {}, Exception("disk I/O error"))
        return add(self, *args, **kwargs)

    monkeypatch.setattr(TransactionRepository, "add", add_failing_on_second_row)
    with pytest.raises(PersistenceError):
        engine.import_batch(rows)
    monkeypatch.undo()

    assert calls == [date(2024, 1, 1), date(2024, 1, 2)]
    assert _account_for(db, "p@x.com").current_balance_cents == 10000
