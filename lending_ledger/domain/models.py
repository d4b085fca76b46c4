"""Domain models - pure Python dataclasses representing ledger results and inputs"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional


@dataclass
class LedgerEntry:
    """Minimal view of a ledger transaction used for replay and reconciliation"""

    transaction_type: str
    amount_cents: int
    transaction_date: date


@dataclass
class MonthlySnapshotData:
    """Computed balance aggregate for one calendar month"""

    month_end_date: date
    starting_balance_cents: int
    ending_balance_cents: int
    monthly_growth_cents: int
    total_deposits_cents: int = 0
    total_withdrawals_cents: int = 0
    total_bonuses_cents: int = 0
    total_payments_cents: int = 0


@dataclass
class DepositPosition:
    """Active deposit as seen by the withdrawal allocator"""

    deposit_id: int
    principal_cents: int
    created_at: datetime


@dataclass
class DepositReduction:
    """How much one deposit absorbed from a withdrawal"""

    deposit_id: int
    original_principal_cents: int
    reduced_by_cents: int
    new_principal_cents: int

    @property
    def exhausted(self) -> bool:
        return self.new_principal_cents == 0


@dataclass
class AllocationPlan:
    """Output of LIFO allocation over a set of deposits"""

    reductions: List[DepositReduction]
    unallocated_cents: int


@dataclass
class WithdrawalResult:
    """Outcome of a processed withdrawal"""

    account_id: uuid.UUID
    transaction_id: int
    amount_cents: int
    new_balance_cents: int
    reductions: List[DepositReduction]
    unallocated_cents: int
    shortfall_policy: str


@dataclass
class PayoutRecord:
    """One daily yield payment, written or (in dry-run mode) planned"""

    deposit_id: int
    account_id: uuid.UUID
    principal_cents: int
    amount_cents: int
    payout_id: Optional[int] = None
    transaction_id: Optional[int] = None


@dataclass
class DailyYieldResult:
    """Aggregate result of a daily yield run"""

    payout_date: date
    dry_run: bool = False
    payments_processed: int = 0
    total_amount_cents: int = 0
    payouts: List[PayoutRecord] = field(default_factory=list)
    skipped_deposit_ids: List[int] = field(default_factory=list)
    below_minimum_deposit_ids: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class ReconciliationReport:
    """Stored account aggregates compared with values recomputed from the ledger"""

    account_id: uuid.UUID
    stored_balance_cents: int
    computed_balance_cents: int
    stored_bonuses_cents: int
    computed_bonuses_cents: int
    stored_withdrawals_cents: int
    computed_withdrawals_cents: int
    repaired: bool = False

    @property
    def balanced(self) -> bool:
        return (
            self.stored_balance_cents == self.computed_balance_cents
            and self.stored_bonuses_cents == self.computed_bonuses_cents
            and self.stored_withdrawals_cents == self.computed_withdrawals_cents
        )

    @property
    def balance_drift_cents(self) -> int:
        return self.stored_balance_cents - self.computed_balance_cents


@dataclass
class RowError:
    """Reason a single import row was not applied (row_number None = batch-level)"""

    row_number: Optional[int]
    reason: str


@dataclass
class CreatedAccount:
    """Owner and account provisioned during an import"""

    email: str
    owner_id: uuid.UUID
    account_id: uuid.UUID


@dataclass
class AppliedRow:
    """Import row that was applied to the ledger"""

    row_number: int
    email: str
    transaction_type: str
    amount_cents: int
    transaction_date: date
    transaction_id: int
    deposit_id: Optional[int] = None


@dataclass
class ImportSummary:
    """Aggregate import outcome: every input row is either applied or in errors"""

    total_rows: int = 0
    created_accounts: List[CreatedAccount] = field(default_factory=list)
    applied_transactions: List[AppliedRow] = field(default_factory=list)
    errors: List[RowError] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.applied_transactions)

    @property
    def failed(self) -> int:
        return len([e for e in self.errors if e.row_number is not None])
