"""Monthly Snapshot Compiler - rebuilds stored month-end balances from the ledger"""

import logging
import time
import uuid
from typing import List, Optional
from sqlalchemy.orm import Session

from lending_ledger.domain.exceptions import NotFoundError, ValidationError
from lending_ledger.domain.models import LedgerEntry
from lending_ledger.domain.snapshots import compile_monthly_snapshots
from lending_ledger.infrastructure.database.models import MonthlyBalance
from lending_ledger.infrastructure.database.repositories import (
    AccountRepository,
    SnapshotRepository,
    TransactionRepository,
)
from lending_ledger.infrastructure.database.session import atomic
from lending_ledger.infrastructure.observability.logging import log_snapshot_rebuild
from lending_ledger.infrastructure.observability.metrics import snapshot_rebuild_histogram
from lending_ledger.utils.clock import Clock, SystemClock
from lending_ledger.utils.date_utils import months_back

logger = logging.getLogger(__name__)


class SnapshotCompiler:
    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or SystemClock()
        self.accounts = AccountRepository(db)
        self.transactions = TransactionRepository(db)
        self.snapshots = SnapshotRepository(db)

    def rebuild(self, account_id: uuid.UUID) -> List[MonthlyBalance]:
        """
        Replace every stored snapshot of an account with a fresh replay.

        Delete and insert share one unit of work, so a failed rebuild keeps
        the previous set. Running it twice yields the same rows.

        Raises:
            NotFoundError: account does not exist
        """
        start_time = time.time()

        with snapshot_rebuild_histogram.time():
            with atomic(self.db):
                account = self.accounts.get_for_update(account_id)
                if account is None:
                    raise NotFoundError(f"Account {account_id} not found")

                entries = [
                    LedgerEntry(t.transaction_type, t.amount_cents, t.transaction_date)
                    for t in self.transactions.list_for_account(account_id)
                ]
                compiled = compile_monthly_snapshots(account.principal_cents, entries)
                rows = self.snapshots.replace_for_account(account_id, compiled)

        duration_ms = (time.time() - start_time) * 1000
        log_snapshot_rebuild(str(account_id), len(rows), duration_ms)
        return rows

    def history(self, account_id: uuid.UUID, months: Optional[int] = None) -> List[MonthlyBalance]:
        """Stored snapshots, oldest first, optionally only the trailing `months` months"""
        if self.accounts.get(account_id) is None:
            raise NotFoundError(f"Account {account_id} not found")

        since = None
        if months is not None:
            if months <= 0:
                raise ValidationError(f"months must be positive, got {months}")
            since = months_back(self.clock.today(), months - 1)
        return self.snapshots.list_for_account(account_id, since=since)
