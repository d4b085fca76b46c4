"""Yield Deposit Allocator - deposit lifecycle, LIFO withdrawals and yield accrual"""

import logging
import time
import uuid
from datetime import date, datetime, timezone
from typing import Optional, Tuple
from sqlalchemy.orm import Session

from lending_ledger.config import settings
from lending_ledger.domain.accrual import annual_payout_cents, daily_yield_cents, is_accruing
from lending_ledger.domain.allocation import allocate_withdrawal
from lending_ledger.domain.exceptions import (
    DuplicatePayoutError,
    InsufficientBalanceError,
    NotFoundError,
    UnallocatedWithdrawalError,
    ValidationError,
)
from lending_ledger.domain.ledger import TransactionType, validate_amount
from lending_ledger.domain.models import DailyYieldResult, DepositPosition, PayoutRecord, WithdrawalResult
from lending_ledger.infrastructure.database.models import LedgerTransaction, LoanAccount, YieldDeposit
from lending_ledger.infrastructure.database.repositories import (
    AccountRepository,
    DepositRepository,
    PayoutRepository,
)
from lending_ledger.infrastructure.database.session import atomic
from lending_ledger.infrastructure.observability.logging import log_daily_yield, log_withdrawal
from lending_ledger.infrastructure.observability.metrics import (
    payout_amount_cents_counter,
    payouts_created_counter,
    unallocated_withdrawal_cents_counter,
    withdrawal_rejected_counter,
)
from lending_ledger.services.applier import TransactionApplier
from lending_ledger.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

SHORTFALL_POLICIES = ("reject", "allow")


def _naive_utc(moment: datetime) -> datetime:
    # SQLite hands back naive datetimes, freshly created rows are aware
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def _position(deposit: YieldDeposit) -> DepositPosition:
    return DepositPosition(
        deposit_id=deposit.id,
        principal_cents=deposit.principal_cents,
        created_at=_naive_utc(deposit.created_at),
    )


class YieldDepositAllocator:
    """Owns every mutation of yield deposits"""

    def __init__(
        self,
        db: Session,
        applier: Optional[TransactionApplier] = None,
        clock: Optional[Clock] = None,
        shortfall_policy: Optional[str] = None,
    ):
        self.db = db
        self.applier = applier or TransactionApplier(db)
        self.clock = clock or SystemClock()
        self.shortfall_policy = shortfall_policy or settings.withdrawal_shortfall_policy
        if self.shortfall_policy not in SHORTFALL_POLICIES:
            raise ValidationError(f"Unknown withdrawal shortfall policy: {self.shortfall_policy}")

        self.accounts = AccountRepository(db)
        self.deposits = DepositRepository(db)
        self.payouts = PayoutRepository(db)

    def create_deposit(
        self,
        owner_id: uuid.UUID,
        principal_cents: int,
        annual_rate: Optional[float] = None,
        start_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> YieldDeposit:
        """
        Create an active deposit and credit its principal to the owner's account.

        Raises:
            ValidationError: non-positive principal or rate outside [0, 1]
            NotFoundError: owner has no account
        """
        with atomic(self.db):
            account = self._lock_owner_account(owner_id)
            deposit, _ = self.stage_deposit(account, principal_cents, annual_rate, start_date, notes=notes)

        logger.info(
            f"Created yield deposit {deposit.id} for owner {owner_id}",
            extra={
                "deposit_id": deposit.id,
                "principal_cents": deposit.principal_cents,
                "annual_payout_cents": annual_payout_cents(deposit.principal_cents, deposit.annual_yield_rate),
            },
        )
        return deposit

    def stage_deposit(
        self,
        account: LoanAccount,
        principal_cents: int,
        annual_rate: Optional[float] = None,
        start_date: Optional[date] = None,
        notes: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Tuple[YieldDeposit, LedgerTransaction]:
        """Insert a deposit plus its yield_deposit entry inside the caller's unit of work"""
        annual_rate = settings.default_annual_yield_rate if annual_rate is None else annual_rate
        start_date = start_date or self.clock.today()

        validate_amount(TransactionType.YIELD_DEPOSIT, principal_cents)
        if not 0 <= annual_rate <= 1:
            raise ValidationError(f"Annual yield rate must be between 0 and 1, got {annual_rate}")

        deposit = self.deposits.create(
            owner_id=account.owner_id,
            principal_cents=principal_cents,
            annual_yield_rate=annual_rate,
            start_date=start_date,
            created_at=self.clock.now(),
            notes=notes,
        )
        entry = self.applier.post(
            account,
            TransactionType.YIELD_DEPOSIT,
            principal_cents,
            start_date,
            description=description or f"Yield deposit principal - {annual_rate * 100:g}% annual yield",
            reference_id=f"deposit:{deposit.id}",
        )
        return deposit, entry

    def remove_deposit(self, deposit_id: int, removal_date: Optional[date] = None) -> LedgerTransaction:
        """
        Withdraw a deposit's remaining principal with a compensating deposit_deletion entry.

        The deposit row and its payouts are kept for audit; the deposit ends
        inactive with zero principal.

        Raises:
            NotFoundError: unknown deposit
            ValidationError: deposit already inactive
            InsufficientBalanceError: account balance cannot cover the principal
        """
        removal_date = removal_date or self.clock.today()

        with atomic(self.db):
            account, deposit = self._lock_deposit(deposit_id)
            if deposit.status != "active" or deposit.principal_cents == 0:
                raise ValidationError(f"Deposit {deposit_id} is already inactive")

            principal = deposit.principal_cents
            entry = self.applier.post(
                account,
                TransactionType.DEPOSIT_DELETION,
                -principal,
                removal_date,
                description=f"Deposit deletion - principal withdrawal for deposit #{deposit_id}",
                reference_id=f"deposit:{deposit_id}",
            )
            deposit.principal_cents = 0
            deposit.status = "inactive"

        logger.info(f"Removed yield deposit {deposit_id}, {principal} cents withdrawn from account {account.id}")
        return entry

    def process_withdrawal(
        self,
        owner_id: uuid.UUID,
        amount_cents: int,
        withdrawal_date: Optional[date] = None,
        description: Optional[str] = None,
    ) -> WithdrawalResult:
        """
        Debit the owner's account and draw the amount down from deposits, newest first.

        Flow:
        1. Lock the account; refuse if the amount exceeds the balance
        2. Plan LIFO allocation over active deposits
        3. Apply the shortfall policy if deposits cannot absorb everything
        4. Reduce deposits (exhausted ones become inactive)
        5. Post a single withdrawal entry for the full amount

        Every check runs before the first mutation, so a refused withdrawal
        leaves the balance and all deposits untouched.

        Raises:
            ValidationError: non-positive amount
            NotFoundError: owner has no account
            InsufficientBalanceError: amount exceeds the current balance
            UnallocatedWithdrawalError: reject policy and deposits fall short
        """
        withdrawal_date = withdrawal_date or self.clock.today()
        validate_amount(TransactionType.WITHDRAWAL, amount_cents)

        with atomic(self.db):
            account = self._lock_owner_account(owner_id)

            if amount_cents > account.current_balance_cents:
                withdrawal_rejected_counter.labels(reason="insufficient_balance").inc()
                raise InsufficientBalanceError(
                    f"Insufficient balance: balance {account.current_balance_cents} cents, "
                    f"requested {amount_cents} cents",
                    balance_cents=account.current_balance_cents,
                    requested_cents=amount_cents,
                )

            deposits = self.deposits.list_active_for_owner(owner_id)
            plan = allocate_withdrawal([_position(d) for d in deposits], amount_cents)

            if plan.unallocated_cents and self.shortfall_policy == "reject":
                withdrawal_rejected_counter.labels(reason="unallocated").inc()
                raise UnallocatedWithdrawalError(
                    f"Active deposits cover only {amount_cents - plan.unallocated_cents} of "
                    f"{amount_cents} cents requested",
                    balance_cents=account.current_balance_cents,
                    requested_cents=amount_cents,
                )

            by_id = {d.id: d for d in deposits}
            for reduction in plan.reductions:
                deposit = by_id[reduction.deposit_id]
                deposit.principal_cents = reduction.new_principal_cents
                if reduction.exhausted:
                    deposit.status = "inactive"
                    logger.info(f"Yield deposit {deposit.id} fully withdrawn, marked inactive")

            if plan.unallocated_cents:
                unallocated_withdrawal_cents_counter.inc(plan.unallocated_cents)
                logger.warning(
                    f"Withdrawal of {amount_cents} cents exceeds active deposit principal by "
                    f"{plan.unallocated_cents} cents; debited under allow policy",
                    extra={"account_id": str(account.id), "unallocated_cents": plan.unallocated_cents},
                )

            entry = self.applier.post(
                account,
                TransactionType.WITHDRAWAL,
                amount_cents,
                withdrawal_date,
                description=description or "Withdrawal",
            )

            result = WithdrawalResult(
                account_id=account.id,
                transaction_id=entry.id,
                amount_cents=amount_cents,
                new_balance_cents=account.current_balance_cents,
                reductions=plan.reductions,
                unallocated_cents=plan.unallocated_cents,
                shortfall_policy=self.shortfall_policy,
            )

        log_withdrawal(
            str(result.account_id),
            amount_cents,
            len(result.reductions),
            result.unallocated_cents,
            result.shortfall_policy,
        )
        return result

    def run_daily_yield(self, payout_date: Optional[date] = None, dry_run: bool = False) -> DailyYieldResult:
        """
        Pay one day of yield on every accruing deposit.

        Requirements:
        - Only active deposits with start_date <= payout_date accrue
        - A deposit already paid for payout_date is skipped, so re-running the
          same date creates nothing new
        - Each deposit's payout, ledger entry and deposit update commit
          together; one deposit failing does not undo the others
        - dry_run computes the same result without writing anything

        Storage failures propagate; per-deposit business failures are
        collected in result.errors.
        """
        payout_date = payout_date or self.clock.today()
        start_time = time.time()
        result = DailyYieldResult(payout_date=payout_date, dry_run=dry_run)

        deposit_ids = [d.id for d in self.deposits.list_accruing(payout_date)]

        for deposit_id in deposit_ids:
            record = None
            try:
                with atomic(self.db):
                    account, deposit = self._lock_deposit(deposit_id, lock=not dry_run)
                    if not is_accruing(deposit.status, deposit.start_date, payout_date):
                        continue
                    if self.payouts.exists(deposit.id, payout_date):
                        result.skipped_deposit_ids.append(deposit.id)
                        continue

                    amount = daily_yield_cents(deposit.principal_cents, deposit.annual_yield_rate)
                    if amount == 0:
                        result.below_minimum_deposit_ids.append(deposit.id)
                        continue

                    if dry_run:
                        record = PayoutRecord(
                            deposit_id=deposit.id,
                            account_id=account.id,
                            principal_cents=deposit.principal_cents,
                            amount_cents=amount,
                        )
                    else:
                        record = self._pay(
                            account,
                            deposit,
                            payout_date,
                            amount,
                            TransactionType.DAILY_YIELD,
                            f"Daily yield payment ({deposit.annual_yield_rate / 365 * 100:.6f}%) "
                            f"for deposit #{deposit.id}",
                        )
            except DuplicatePayoutError as e:
                logger.warning(f"Skipping deposit {deposit_id}: {e}")
                result.skipped_deposit_ids.append(deposit_id)
                continue
            except (NotFoundError, ValidationError, InsufficientBalanceError) as e:
                logger.error(f"Daily yield failed for deposit {deposit_id}: {e}")
                result.errors.append(f"Deposit {deposit_id}: {e}")
                continue

            if record is not None:
                result.payouts.append(record)
                result.payments_processed += 1
                result.total_amount_cents += record.amount_cents
                if not dry_run:
                    payouts_created_counter.inc()
                    payout_amount_cents_counter.inc(record.amount_cents)

        duration_ms = (time.time() - start_time) * 1000
        log_daily_yield(
            payout_date.isoformat(),
            result.payments_processed,
            result.total_amount_cents,
            len(result.skipped_deposit_ids),
            dry_run,
            duration_ms,
        )
        return result

    def process_payout(self, deposit_id: int, payout_date: Optional[date] = None) -> PayoutRecord:
        """
        Manually pay a deposit's annual yield (principal * rate) as a yield_payment.

        Shares the (deposit, date) idempotency key with daily payouts.

        Raises:
            NotFoundError: deposit missing or inactive
            ValidationError: deposit has not started, or yield rounds to zero
            DuplicatePayoutError: deposit already paid for payout_date
        """
        payout_date = payout_date or self.clock.today()

        with atomic(self.db):
            account, deposit = self._lock_deposit(deposit_id)
            if deposit.status != "active":
                raise NotFoundError(f"Deposit {deposit_id} is not active")
            if deposit.start_date > payout_date:
                raise ValidationError(f"Deposit {deposit_id} starts after {payout_date.isoformat()}")
            if self.payouts.exists(deposit.id, payout_date):
                raise DuplicatePayoutError(
                    f"Payout already exists for deposit {deposit_id} on {payout_date.isoformat()}"
                )

            amount = annual_payout_cents(deposit.principal_cents, deposit.annual_yield_rate)
            if amount == 0:
                raise ValidationError(f"Deposit {deposit_id} yield rounds to zero")

            record = self._pay(
                account,
                deposit,
                payout_date,
                amount,
                TransactionType.YIELD_PAYMENT,
                f"{deposit.annual_yield_rate * 100:g}% yield payment for deposit #{deposit.id}",
            )

        payouts_created_counter.inc()
        payout_amount_cents_counter.inc(record.amount_cents)
        return record

    def _pay(
        self,
        account: LoanAccount,
        deposit: YieldDeposit,
        payout_date: date,
        amount_cents: int,
        transaction_type: TransactionType,
        description: str,
    ) -> PayoutRecord:
        """Stage ledger entry, payout row and deposit totals for one payment"""
        entry = self.applier.post(
            account,
            transaction_type,
            amount_cents,
            payout_date,
            description=description,
            reference_id=f"deposit:{deposit.id}",
        )
        payout = self.payouts.create(deposit.id, amount_cents, payout_date, entry.id)

        if deposit.last_payout_date is None or deposit.last_payout_date < payout_date:
            deposit.last_payout_date = payout_date
        deposit.total_paid_out_cents += amount_cents
        self.db.flush()

        return PayoutRecord(
            deposit_id=deposit.id,
            account_id=account.id,
            principal_cents=deposit.principal_cents,
            amount_cents=amount_cents,
            payout_id=payout.id,
            transaction_id=entry.id,
        )

    def _lock_owner_account(self, owner_id: uuid.UUID) -> LoanAccount:
        account = self.accounts.get_by_owner(owner_id, for_update=True)
        if account is None:
            raise NotFoundError(f"No account for owner {owner_id}")
        return account

    def _lock_deposit(self, deposit_id: int, lock: bool = True) -> Tuple[LoanAccount, YieldDeposit]:
        """
        Lock the owning account, then the deposit.

        Account-before-deposit is the lock order used by withdrawals too, so
        two operations on the same owner cannot deadlock.
        """
        deposit = self.deposits.get(deposit_id)
        if deposit is None:
            raise NotFoundError(f"Deposit {deposit_id} not found")

        account = self.accounts.get_by_owner(deposit.owner_id, for_update=lock)
        if account is None:
            raise NotFoundError(f"No account for owner {deposit.owner_id}")
        if lock:
            deposit = self.deposits.get(deposit_id, for_update=True)
        return account, deposit
