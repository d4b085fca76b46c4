"""Batch Importer - folds spreadsheet rows into ledger transactions, one atomic unit per row"""

import logging
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional
from sqlalchemy.orm import Session

from lending_ledger.config import settings
from lending_ledger.domain.exceptions import LedgerError, PersistenceError
from lending_ledger.domain.import_rows import ImportRow, OnboardingRow, validate_rows
from lending_ledger.domain.ledger import TransactionType
from lending_ledger.domain.models import AppliedRow, CreatedAccount, ImportSummary, RowError
from lending_ledger.infrastructure.database.models import LoanAccount
from lending_ledger.infrastructure.database.session import atomic
from lending_ledger.infrastructure.observability.logging import log_import_summary
from lending_ledger.infrastructure.observability.metrics import record_import_rows
from lending_ledger.infrastructure.tabular import read_rows
from lending_ledger.services.allocator import YieldDepositAllocator
from lending_ledger.services.applier import TransactionApplier
from lending_ledger.services.provisioning import LocalOwnerProvisioner, OwnerProvisioner
from lending_ledger.services.snapshots import SnapshotCompiler
from lending_ledger.utils.clock import Clock

logger = logging.getLogger(__name__)


class BatchImporter:
    """
    Applies imported rows to the ledger.

    Every input row ends up either applied or reported as a RowError; a bad
    row never stops the batch. A storage failure does stop it and propagates
    as PersistenceError.
    """

    def __init__(
        self,
        db: Session,
        applier: Optional[TransactionApplier] = None,
        allocator: Optional[YieldDepositAllocator] = None,
        snapshots: Optional[SnapshotCompiler] = None,
        provisioner: Optional[OwnerProvisioner] = None,
        clock: Optional[Clock] = None,
        rebuild_snapshots: Optional[bool] = None,
    ):
        self.db = db
        self.applier = applier or TransactionApplier(db)
        self.allocator = allocator or YieldDepositAllocator(db, applier=self.applier, clock=clock)
        self.snapshots = snapshots or SnapshotCompiler(db, clock=clock)
        self.provisioner = provisioner or LocalOwnerProvisioner(db)
        self.rebuild_snapshots = (
            settings.rebuild_snapshots_after_import if rebuild_snapshots is None else rebuild_snapshots
        )

    def import_batch(self, rows: Iterable[Dict[str, Any]], first_row_number: int = 2) -> ImportSummary:
        """Import transaction rows (email, transaction_type, amount, transaction_date, ...)"""
        return self._run(ImportRow, rows, first_row_number, self._apply_transaction_row)

    def import_onboarding(self, rows: Iterable[Dict[str, Any]], first_row_number: int = 2) -> ImportSummary:
        """Import client onboarding rows (email, deposit_amount, start_date, ...)"""
        return self._run(OnboardingRow, rows, first_row_number, self._apply_onboarding_row)

    def import_file(self, path: str | Path) -> ImportSummary:
        return self.import_batch(read_rows(path))

    def onboard_file(self, path: str | Path) -> ImportSummary:
        return self.import_onboarding(read_rows(path))

    def _run(
        self,
        model: type,
        rows: Iterable[Dict[str, Any]],
        first_row_number: int,
        apply_row: Callable[[int, Any, LoanAccount], AppliedRow],
    ) -> ImportSummary:
        start_time = time.time()
        rows = list(rows)
        summary = ImportSummary(total_rows=len(rows))

        valid, errors = validate_rows(model, rows, first_row_number)
        invalid = len(errors)
        touched: List[uuid.UUID] = []

        for row_number, row in valid:
            try:
                with atomic(self.db):
                    owner, account, created = self.provisioner.resolve(
                        row.email,
                        first_name=row.first_name,
                        last_name=row.last_name,
                        phone=row.phone,
                    )
                    applied = apply_row(row_number, row, account)
                    account_id = account.id
                    created_account = CreatedAccount(row.email, owner.id, account.id) if created else None
            except PersistenceError:
                # rows already applied stay committed
                raise
            except LedgerError as e:
                logger.warning(f"Import row {row_number} rolled back: {e}", extra={"row_number": row_number})
                errors.append(RowError(row_number=row_number, reason=str(e)))
                continue

            summary.applied_transactions.append(applied)
            if created_account is not None:
                summary.created_accounts.append(created_account)
            if account_id not in touched:
                touched.append(account_id)

        failed = len(errors) - invalid

        if self.rebuild_snapshots:
            for account_id in touched:
                try:
                    self.snapshots.rebuild(account_id)
                except PersistenceError:
                    raise
                except LedgerError as e:
                    logger.error(f"Snapshot rebuild after import failed for account {account_id}: {e}")
                    errors.append(RowError(row_number=None, reason=f"Snapshot rebuild failed for account {account_id}: {e}"))

        # row-less (batch-level) errors go last
        summary.errors = sorted(errors, key=lambda e: (e.row_number is None, e.row_number or 0))

        record_import_rows(summary.succeeded, invalid, failed)
        duration_ms = (time.time() - start_time) * 1000
        log_import_summary(
            summary.total_rows,
            summary.succeeded,
            summary.failed,
            len(summary.created_accounts),
            duration_ms,
        )
        return summary

    def _apply_transaction_row(self, row_number: int, row: ImportRow, account: LoanAccount) -> AppliedRow:
        deposit_id = None
        if row.transaction_type is TransactionType.YIELD_DEPOSIT:
            deposit, entry = self.allocator.stage_deposit(
                account,
                row.amount_cents,
                start_date=row.transaction_date,
                description=row.description,
            )
            deposit_id = deposit.id
        else:
            # withdrawals debit the balance only; imported history is not re-allocated over deposits
            entry = self.applier.post(
                account,
                row.transaction_type,
                row.amount_cents,
                row.transaction_date,
                bonus_percentage=row.bonus_percentage,
                description=row.description,
                reference_id=row.reference_id,
            )

        return AppliedRow(
            row_number=row_number,
            email=row.email,
            transaction_type=row.transaction_type.value,
            amount_cents=row.amount_cents,
            transaction_date=row.transaction_date,
            transaction_id=entry.id,
            deposit_id=deposit_id,
        )

    def _apply_onboarding_row(self, row_number: int, row: OnboardingRow, account: LoanAccount) -> AppliedRow:
        deposit, entry = self.allocator.stage_deposit(
            account,
            row.deposit_cents,
            annual_rate=row.annual_yield_rate,
            start_date=row.start_date,
            notes="Onboarding import",
        )
        return AppliedRow(
            row_number=row_number,
            email=row.email,
            transaction_type=TransactionType.YIELD_DEPOSIT.value,
            amount_cents=row.deposit_cents,
            transaction_date=row.start_date,
            transaction_id=entry.id,
            deposit_id=deposit.id,
        )
