"""Data access layer for ledger entities"""

import uuid
from datetime import date, datetime
from typing import List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from lending_ledger.infrastructure.database.models import (
    LedgerTransaction,
    LoanAccount,
    MonthlyBalance,
    Owner,
    YieldDeposit,
    YieldPayout,
)
from lending_ledger.domain.exceptions import DuplicatePayoutError
from lending_ledger.domain.models import MonthlySnapshotData


class OwnerRepository:
    """Repository for owner identities"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_email(self, email: str) -> Optional[Owner]:
        """Fetch owner by normalized (lowercase) email"""
        return self.db.query(Owner).filter(Owner.email == email).first()

    def create(
        self,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Owner:
        owner = Owner(email=email, first_name=first_name, last_name=last_name, phone=phone)
        self.db.add(owner)
        self.db.flush()  # Get ID without committing
        return owner


class AccountRepository:
    """Repository for loan accounts"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, account_id: uuid.UUID) -> Optional[LoanAccount]:
        return self.db.get(LoanAccount, account_id)

    def get_for_update(self, account_id: uuid.UUID) -> Optional[LoanAccount]:
        """
        Fetch account with a row lock held until the unit of work ends.

        Locked reads refresh any copy already in the session, so callers never
        decide on values loaded before the lock was taken.
        """
        return (
            self.db.query(LoanAccount)
            .filter(LoanAccount.id == account_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_by_owner(self, owner_id: uuid.UUID, for_update: bool = False) -> Optional[LoanAccount]:
        query = self.db.query(LoanAccount).filter(LoanAccount.owner_id == owner_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    def create(self, owner_id: uuid.UUID, principal_cents: int = 0, monthly_rate: float = 0.01) -> LoanAccount:
        """Open an account; the opening principal is also the opening balance"""
        account_id = uuid.uuid4()
        account = LoanAccount(
            id=account_id,
            owner_id=owner_id,
            account_number=f"ACC{account_id.hex[:10].upper()}",
            principal_cents=principal_cents,
            current_balance_cents=principal_cents,
            monthly_rate=monthly_rate,
            total_bonuses_cents=0,
            total_withdrawals_cents=0,
        )
        self.db.add(account)
        self.db.flush()
        return account


class TransactionRepository:
    """Repository for immutable ledger entries"""

    def __init__(self, db: Session):
        self.db = db

    def add(
        self,
        account_id: uuid.UUID,
        transaction_type: str,
        amount_cents: int,
        transaction_date: date,
        bonus_percentage: Optional[float] = None,
        description: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> LedgerTransaction:
        entry = LedgerTransaction(
            account_id=account_id,
            transaction_type=transaction_type,
            amount_cents=amount_cents,
            transaction_date=transaction_date,
            bonus_percentage=bonus_percentage,
            description=description,
            reference_id=reference_id,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def list_for_account(self, account_id: uuid.UUID) -> List[LedgerTransaction]:
        """All entries in ledger order: date ascending, then insertion order"""
        return (
            self.db.query(LedgerTransaction)
            .filter(LedgerTransaction.account_id == account_id)
            .order_by(LedgerTransaction.transaction_date.asc(), LedgerTransaction.id.asc())
            .all()
        )


class DepositRepository:
    """Repository for yield deposits"""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        owner_id: uuid.UUID,
        principal_cents: int,
        annual_yield_rate: float,
        start_date: date,
        created_at: datetime,
        notes: Optional[str] = None,
    ) -> YieldDeposit:
        deposit = YieldDeposit(
            owner_id=owner_id,
            principal_cents=principal_cents,
            annual_yield_rate=annual_yield_rate,
            start_date=start_date,
            status="active",
            total_paid_out_cents=0,
            notes=notes,
            created_at=created_at,
        )
        self.db.add(deposit)
        self.db.flush()
        return deposit

    def get(self, deposit_id: int, for_update: bool = False) -> Optional[YieldDeposit]:
        query = self.db.query(YieldDeposit).filter(YieldDeposit.id == deposit_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    def list_active_for_owner(self, owner_id: uuid.UUID) -> List[YieldDeposit]:
        """Active deposits with principal left, newest first"""
        return (
            self.db.query(YieldDeposit)
            .filter(
                YieldDeposit.owner_id == owner_id,
                YieldDeposit.status == "active",
                YieldDeposit.principal_cents > 0,
            )
            .order_by(YieldDeposit.created_at.desc(), YieldDeposit.id.desc())
            .with_for_update()
            .populate_existing()
            .all()
        )

    def list_accruing(self, on_date: date) -> List[YieldDeposit]:
        """Active deposits that have started on or before on_date"""
        return (
            self.db.query(YieldDeposit)
            .filter(YieldDeposit.status == "active", YieldDeposit.start_date <= on_date)
            .order_by(YieldDeposit.id.asc())
            .all()
        )


class PayoutRepository:
    """Repository for yield payouts"""

    def __init__(self, db: Session):
        self.db = db

    def exists(self, deposit_id: int, payout_date: date) -> bool:
        return (
            self.db.query(YieldPayout.id)
            .filter(YieldPayout.deposit_id == deposit_id, YieldPayout.payout_date == payout_date)
            .first()
            is not None
        )

    def create(self, deposit_id: int, amount_cents: int, payout_date: date, transaction_id: int) -> YieldPayout:
        """
        Insert a payout row.

        Raises:
            DuplicatePayoutError: (deposit_id, payout_date) already taken, e.g.
                by a concurrent run; the caller's unit of work must roll back
        """
        payout = YieldPayout(
            deposit_id=deposit_id,
            amount_cents=amount_cents,
            payout_date=payout_date,
            transaction_id=transaction_id,
        )
        self.db.add(payout)
        try:
            self.db.flush()
        except IntegrityError as e:
            raise DuplicatePayoutError(
                f"Payout already exists for deposit {deposit_id} on {payout_date.isoformat()}"
            ) from e
        return payout

    def list_for_deposit(self, deposit_id: int) -> List[YieldPayout]:
        return (
            self.db.query(YieldPayout)
            .filter(YieldPayout.deposit_id == deposit_id)
            .order_by(YieldPayout.payout_date.asc())
            .all()
        )


class SnapshotRepository:
    """Repository for monthly balance snapshots"""

    def __init__(self, db: Session):
        self.db = db

    def replace_for_account(self, account_id: uuid.UUID, snapshots: List[MonthlySnapshotData]) -> List[MonthlyBalance]:
        """Delete every snapshot of the account and insert the new set (no commit)"""
        self.db.query(MonthlyBalance).filter(MonthlyBalance.account_id == account_id).delete(
            synchronize_session="fetch"
        )
        rows = [
            MonthlyBalance(
                account_id=account_id,
                month_end_date=s.month_end_date,
                starting_balance_cents=s.starting_balance_cents,
                ending_balance_cents=s.ending_balance_cents,
                monthly_growth_cents=s.monthly_growth_cents,
                total_deposits_cents=s.total_deposits_cents,
                total_withdrawals_cents=s.total_withdrawals_cents,
                total_bonuses_cents=s.total_bonuses_cents,
                total_payments_cents=s.total_payments_cents,
            )
            for s in snapshots
        ]
        self.db.add_all(rows)
        self.db.flush()
        return rows

    def list_for_account(self, account_id: uuid.UUID, since: Optional[date] = None) -> List[MonthlyBalance]:
        query = self.db.query(MonthlyBalance).filter(MonthlyBalance.account_id == account_id)
        if since is not None:
            query = query.filter(MonthlyBalance.month_end_date >= since)
        return query.order_by(MonthlyBalance.month_end_date.asc()).all()
