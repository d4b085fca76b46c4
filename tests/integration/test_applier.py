"""Integration tests for transaction application and reconciliation"""

import re
import uuid
import pytest
from datetime import date
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from lending_ledger.domain.exceptions import InsufficientBalanceError, NotFoundError, PersistenceError, ValidationError
from lending_ledger.domain.ledger import MAX_AMOUNT_CENTS
from lending_ledger.infrastructure.database.models import LedgerTransaction, LoanAccount
from lending_ledger.services.engine import LedgerEngine


def test_open_account_sets_opening_balance(account: LoanAccount):
    assert account.principal_cents == 100000
    assert account.current_balance_cents == 100000
    assert re.fullmatch(r"ACC[0-9A-F]{10}", account.account_number)
    assert account.account_number == f"ACC{account.id.hex[:10].upper()}"
    assert account.owner.email == "alice@example.com"


def test_open_account_twice_rejected(engine: LedgerEngine, account: LoanAccount):
    with pytest.raises(ValidationError):
        engine.open_account("ALICE@example.com")


def test_open_account_rejects_bad_email(engine: LedgerEngine):
    with pytest.raises(ValidationError):
        engine.open_account("not-an-email")


def test_open_account_principal_range(engine: LedgerEngine):
    with pytest.raises(ValidationError):
        engine.open_account("neg@example.com", principal_cents=-1)
    with pytest.raises(ValidationError):
        engine.open_account("huge@example.com", principal_cents=MAX_AMOUNT_CENTS + 1)


def test_apply_bonus_updates_aggregates(engine: LedgerEngine, account: LoanAccount):
    entry = engine.apply_transaction(
        account.id, "bonus", 2500, date(2024, 1, 15), bonus_percentage=0.025, description="Loyalty bonus"
    )

    assert entry.id is not None
    assert entry.transaction_type == "bonus"
    assert entry.bonus_percentage == 0.025
    assert account.current_balance_cents == 102500
    assert account.total_bonuses_cents == 2500
    assert account.total_withdrawals_cents == 0


def test_apply_withdrawal_tracks_total(engine: LedgerEngine, account: LoanAccount):
    engine.apply_transaction(account.id, "withdrawal", 30000, date(2024, 1, 20))

    assert account.current_balance_cents == 70000
    assert account.total_withdrawals_cents == 30000


def test_overdraw_rejected_and_nothing_written(db: Session, engine: LedgerEngine, account: LoanAccount):
    with pytest.raises(InsufficientBalanceError) as exc_info:
        engine.apply_transaction(account.id, "adjustment_decrease", 100001, date(2024, 1, 20))

    assert exc_info.value.balance_cents == 100000
    assert exc_info.value.requested_cents == 100001
    assert account.current_balance_cents == 100000
    assert db.query(LedgerTransaction).count() == 0


def test_credit_past_storable_balance_rejected(db: Session, engine: LedgerEngine, account: LoanAccount):
    with pytest.raises(ValidationError):
        engine.apply_transaction(account.id, "bonus", MAX_AMOUNT_CENTS, date(2024, 1, 20))
    with pytest.raises(ValidationError):
        engine.apply_transaction(account.id, "bonus", MAX_AMOUNT_CENTS + 1, date(2024, 1, 20))

    assert account.current_balance_cents == 100000
    assert db.query(LedgerTransaction).count() == 0


def test_failed_balance_write_drops_ledger_row(db: Session, engine: LedgerEngine, account: LoanAccount, monkeypatch):
    """Entry is flushed, then the account update fails; neither survives"""
    flush = db.flush

    def flush_failing_on_balance(objects=None):
        if account in db.dirty:
            raise OperationalError("UPDATE loan_account", {}, Exception("database is locked"))
        return flush(objects)

    monkeypatch.setattr(db, "flush", flush_failing_on_balance)
    with pytest.raises(PersistenceError):
        engine.apply_transaction(account.id, "bonus", 2500, date(2024, 1, 15))
    monkeypatch.undo()

    assert account.current_balance_cents == 100000
    assert account.total_bonuses_cents == 0
    assert db.query(LedgerTransaction).filter(LedgerTransaction.account_id == account.id).count() == 0


def test_invalid_input_rejected(engine: LedgerEngine, account: LoanAccount):
    with pytest.raises(ValidationError):
        engine.apply_transaction(account.id, "refund", 100, date(2024, 1, 1))
    with pytest.raises(ValidationError):
        engine.apply_transaction(account.id, "bonus", 0, date(2024, 1, 1))
    with pytest.raises(ValidationError):
        engine.apply_transaction(account.id, "bonus", 100, date(2024, 1, 1), bonus_percentage=3)


def test_unknown_account(engine: LedgerEngine):
    with pytest.raises(NotFoundError):
        engine.apply_transaction(uuid.uuid4(), "bonus", 100, date(2024, 1, 1))


def test_balance_equals_principal_plus_deltas(engine: LedgerEngine, account: LoanAccount):
    """Reconciliation invariant holds after a mixed sequence"""
    operations = [
        ("bonus", 1500),
        ("withdrawal", 20000),
        ("monthly_payment", 833),
        ("adjustment_increase", 42),
        ("adjustment_decrease", 17),
        ("yield_payment", 1200),
        ("withdrawal", 5000),
    ]
    for day, (transaction_type, amount) in enumerate(operations, start=1):
        engine.apply_transaction(account.id, transaction_type, amount, date(2024, 2, day))

    report = engine.reconcile(account.id)

    assert report.balanced
    assert report.computed_balance_cents == 100000 + 1500 - 20000 + 833 + 42 - 17 + 1200 - 5000
    assert report.stored_balance_cents == account.current_balance_cents
    assert report.computed_bonuses_cents == 1500
    assert report.computed_withdrawals_cents == 25000


def test_reconcile_detects_and_repairs_drift(db: Session, engine: LedgerEngine, account: LoanAccount):
    engine.apply_transaction(account.id, "bonus", 1000, date(2024, 1, 1))
    account.current_balance_cents += 7
    account.total_bonuses_cents = 0
    db.commit()

    report = engine.reconcile(account.id)
    assert not report.balanced
    assert report.balance_drift_cents == 7
    assert not report.repaired
    assert account.current_balance_cents == 101007

    repaired = engine.reconcile(account.id, repair=True)
    assert repaired.repaired
    assert account.current_balance_cents == 101000
    assert account.total_bonuses_cents == 1000
    assert engine.reconcile(account.id).balanced
