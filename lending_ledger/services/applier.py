"""Transaction Applier - posts one ledger entry and moves the account balance with it"""

import logging
import uuid
from datetime import date
from typing import Optional
from sqlalchemy.orm import Session

from lending_ledger.domain.exceptions import InsufficientBalanceError, NotFoundError, ValidationError
from lending_ledger.domain.ledger import (
    MAX_AMOUNT_CENTS,
    TransactionType,
    bonus_delta,
    parse_transaction_type,
    replay_totals,
    signed_delta,
    validate_amount,
    validate_bonus_percentage,
    withdrawal_delta,
)
from lending_ledger.domain.models import LedgerEntry, ReconciliationReport
from lending_ledger.infrastructure.database.models import LedgerTransaction, LoanAccount
from lending_ledger.infrastructure.database.repositories import AccountRepository, TransactionRepository
from lending_ledger.infrastructure.database.session import atomic
from lending_ledger.infrastructure.observability.metrics import transactions_applied_counter

logger = logging.getLogger(__name__)


class TransactionApplier:
    """Applies validated transactions to accounts"""

    def __init__(self, db: Session):
        self.db = db
        self.accounts = AccountRepository(db)
        self.transactions = TransactionRepository(db)

    def apply(
        self,
        account_id: uuid.UUID,
        transaction_type: TransactionType | str,
        amount_cents: int,
        transaction_date: date,
        bonus_percentage: Optional[float] = None,
        description: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> LedgerTransaction:
        """
        Apply one transaction as its own atomic unit.

        Raises:
            ValidationError: bad type, amount or bonus percentage
            NotFoundError: account does not exist
            InsufficientBalanceError: a debit would overdraw the account
        """
        with atomic(self.db):
            account = self.lock_account(account_id)
            entry = self.post(
                account,
                transaction_type,
                amount_cents,
                transaction_date,
                bonus_percentage=bonus_percentage,
                description=description,
                reference_id=reference_id,
            )
        return entry

    def lock_account(self, account_id: uuid.UUID) -> LoanAccount:
        account = self.accounts.get_for_update(account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found")
        return account

    def post(
        self,
        account: LoanAccount,
        transaction_type: TransactionType | str,
        amount_cents: int,
        transaction_date: date,
        bonus_percentage: Optional[float] = None,
        description: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> LedgerTransaction:
        """
        Stage a transaction inside the caller's unit of work (no commit).

        The account must already be locked by the caller. Validation happens
        before anything is written, so a rejected transaction leaves the
        session untouched.
        """
        transaction_type = parse_transaction_type(transaction_type)
        validate_amount(transaction_type, amount_cents)
        validate_bonus_percentage(bonus_percentage)

        delta = signed_delta(transaction_type, amount_cents)
        new_balance = account.current_balance_cents + delta
        if delta < 0 and new_balance < 0:
            raise InsufficientBalanceError(
                f"Insufficient balance for {transaction_type.value}: "
                f"balance {account.current_balance_cents} cents, requested {abs(delta)} cents",
                balance_cents=account.current_balance_cents,
                requested_cents=abs(delta),
            )
        if new_balance > MAX_AMOUNT_CENTS:
            raise ValidationError(
                f"{transaction_type.value} of {amount_cents} cents would push the balance of account "
                f"{account.id} past the largest storable value"
            )

        entry = self.transactions.add(
            account_id=account.id,
            transaction_type=transaction_type.value,
            amount_cents=amount_cents,
            transaction_date=transaction_date,
            bonus_percentage=bonus_percentage,
            description=description or f"{transaction_type.value} transaction",
            reference_id=reference_id,
        )

        account.current_balance_cents = new_balance
        account.total_bonuses_cents += bonus_delta(transaction_type, amount_cents)
        account.total_withdrawals_cents += withdrawal_delta(transaction_type, amount_cents)
        self.db.flush()
        transactions_applied_counter.labels(transaction_type=transaction_type.value).inc()

        logger.debug(
            f"Posted {transaction_type.value} {amount_cents} cents to account {account.id}",
            extra={"account_id": str(account.id), "transaction_id": entry.id},
        )
        return entry

    def reconcile(self, account_id: uuid.UUID, repair: bool = False) -> ReconciliationReport:
        """
        Compare cached account aggregates with the ledger.

        With repair=True the cached balance and totals are overwritten with
        the recomputed values in one atomic unit.
        """
        with atomic(self.db):
            account = self.lock_account(account_id) if repair else self.accounts.get(account_id)
            if account is None:
                raise NotFoundError(f"Account {account_id} not found")

            entries = [
                LedgerEntry(t.transaction_type, t.amount_cents, t.transaction_date)
                for t in self.transactions.list_for_account(account_id)
            ]
            balance, bonuses, withdrawals = replay_totals(account.principal_cents, entries)

            report = ReconciliationReport(
                account_id=account.id,
                stored_balance_cents=account.current_balance_cents,
                computed_balance_cents=balance,
                stored_bonuses_cents=account.total_bonuses_cents,
                computed_bonuses_cents=bonuses,
                stored_withdrawals_cents=account.total_withdrawals_cents,
                computed_withdrawals_cents=withdrawals,
            )

            if not report.balanced:
                logger.warning(
                    f"Account {account_id} aggregates drifted from ledger",
                    extra={"account_id": str(account_id), "balance_drift_cents": report.balance_drift_cents},
                )
                if repair:
                    account.current_balance_cents = balance
                    account.total_bonuses_cents = bonuses
                    account.total_withdrawals_cents = withdrawals
                    report.repaired = True

        return report
