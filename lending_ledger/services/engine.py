"""LedgerEngine - single entry point over the ledger services sharing one session"""

import logging
import uuid
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy.orm import Session

from lending_ledger.domain.exceptions import ValidationError
from lending_ledger.domain.ledger import MAX_AMOUNT_CENTS, TransactionType
from lending_ledger.domain.models import DailyYieldResult, ImportSummary, PayoutRecord, ReconciliationReport, WithdrawalResult
from lending_ledger.infrastructure.database.models import LedgerTransaction, LoanAccount, MonthlyBalance, YieldDeposit
from lending_ledger.infrastructure.database.session import atomic
from lending_ledger.services.allocator import YieldDepositAllocator
from lending_ledger.services.applier import TransactionApplier
from lending_ledger.services.importer import BatchImporter
from lending_ledger.services.provisioning import LocalOwnerProvisioner, OwnerProvisioner
from lending_ledger.services.snapshots import SnapshotCompiler
from lending_ledger.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class LedgerEngine:
    """
    Facade wiring applier, allocator, snapshot compiler and importer together.

    All services share the session and clock handed in here, so one engine
    is one caller's view of the ledger.
    """

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        provisioner: Optional[OwnerProvisioner] = None,
        shortfall_policy: Optional[str] = None,
        rebuild_snapshots_after_import: Optional[bool] = None,
    ):
        self.db = db
        self.clock = clock or SystemClock()
        self.provisioner = provisioner or LocalOwnerProvisioner(db)
        self.applier = TransactionApplier(db)
        self.allocator = YieldDepositAllocator(
            db, applier=self.applier, clock=self.clock, shortfall_policy=shortfall_policy
        )
        self.snapshots = SnapshotCompiler(db, clock=self.clock)
        self.importer = BatchImporter(
            db,
            applier=self.applier,
            allocator=self.allocator,
            snapshots=self.snapshots,
            provisioner=self.provisioner,
            clock=self.clock,
            rebuild_snapshots=rebuild_snapshots_after_import,
        )

    def open_account(
        self,
        email: str,
        principal_cents: int = 0,
        monthly_rate: Optional[float] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> LoanAccount:
        """
        Open an account for an email, provisioning the owner when needed.

        The opening principal becomes the opening balance and is never
        changed afterwards.

        Raises:
            ValidationError: principal out of range or the owner already has an account
        """
        if principal_cents < 0:
            raise ValidationError(f"Principal must not be negative, got {principal_cents}")
        if principal_cents > MAX_AMOUNT_CENTS:
            raise ValidationError(f"Principal exceeds the largest storable value: {principal_cents} cents")

        with atomic(self.db):
            owner, account, created = self.provisioner.resolve(
                email, first_name=first_name, last_name=last_name, phone=phone
            )
            if not created:
                raise ValidationError(f"Owner {owner.email} already has account {account.account_number}")
            # freshly provisioned, nothing posted against it yet
            account.principal_cents = principal_cents
            account.current_balance_cents = principal_cents
            if monthly_rate is not None:
                account.monthly_rate = monthly_rate
            self.db.flush()

        logger.info(f"Opened account {account.account_number} for {email}")
        return account

    def apply_transaction(
        self,
        account_id: uuid.UUID,
        transaction_type: TransactionType | str,
        amount_cents: int,
        transaction_date: date,
        **metadata: Any,
    ) -> LedgerTransaction:
        """metadata: bonus_percentage, description, reference_id"""
        return self.applier.apply(account_id, transaction_type, amount_cents, transaction_date, **metadata)

    def reconcile(self, account_id: uuid.UUID, repair: bool = False) -> ReconciliationReport:
        return self.applier.reconcile(account_id, repair=repair)

    def create_deposit(
        self,
        owner_id: uuid.UUID,
        principal_cents: int,
        annual_rate: Optional[float] = None,
        start_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> YieldDeposit:
        return self.allocator.create_deposit(owner_id, principal_cents, annual_rate, start_date, notes=notes)

    def process_withdrawal(
        self,
        owner_id: uuid.UUID,
        amount_cents: int,
        withdrawal_date: Optional[date] = None,
        description: Optional[str] = None,
    ) -> WithdrawalResult:
        return self.allocator.process_withdrawal(owner_id, amount_cents, withdrawal_date, description)

    def remove_deposit(self, deposit_id: int, removal_date: Optional[date] = None) -> LedgerTransaction:
        return self.allocator.remove_deposit(deposit_id, removal_date)

    def run_daily_yield(self, payout_date: Optional[date] = None, dry_run: bool = False) -> DailyYieldResult:
        return self.allocator.run_daily_yield(payout_date, dry_run=dry_run)

    def process_payout(self, deposit_id: int, payout_date: Optional[date] = None) -> PayoutRecord:
        return self.allocator.process_payout(deposit_id, payout_date)

    def rebuild_snapshots(self, account_id: uuid.UUID) -> List[MonthlyBalance]:
        return self.snapshots.rebuild(account_id)

    def snapshot_history(self, account_id: uuid.UUID, months: Optional[int] = None) -> List[MonthlyBalance]:
        return self.snapshots.history(account_id, months)

    def import_batch(self, rows: Iterable[Dict[str, Any]], first_row_number: int = 2) -> ImportSummary:
        return self.importer.import_batch(rows, first_row_number)

    def import_onboarding(self, rows: Iterable[Dict[str, Any]], first_row_number: int = 2) -> ImportSummary:
        return self.importer.import_onboarding(rows, first_row_number)

    def import_file(self, path: str | Path) -> ImportSummary:
        return self.importer.import_file(path)

    def onboard_file(self, path: str | Path) -> ImportSummary:
        return self.importer.onboard_file(path)
