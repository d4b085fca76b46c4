"""Ledger sign rules - how each transaction type moves an account balance"""

from enum import Enum
from typing import Iterable, Optional

from lending_ledger.domain.exceptions import ValidationError
from lending_ledger.domain.models import LedgerEntry


class TransactionType(str, Enum):
    PRINCIPAL = "principal"
    MONTHLY_PAYMENT = "monthly_payment"
    BONUS = "bonus"
    WITHDRAWAL = "withdrawal"
    ADJUSTMENT_INCREASE = "adjustment_increase"
    ADJUSTMENT_DECREASE = "adjustment_decrease"
    YIELD_DEPOSIT = "yield_deposit"
    YIELD_PAYMENT = "yield_payment"
    DAILY_YIELD = "daily_yield"
    DEPOSIT_DELETION = "deposit_deletion"


CREDIT_TYPES = frozenset(
    {
        TransactionType.PRINCIPAL,
        TransactionType.MONTHLY_PAYMENT,
        TransactionType.BONUS,
        TransactionType.ADJUSTMENT_INCREASE,
        TransactionType.YIELD_DEPOSIT,
        TransactionType.YIELD_PAYMENT,
        TransactionType.DAILY_YIELD,
    }
)

DEBIT_TYPES = frozenset({TransactionType.WITHDRAWAL, TransactionType.ADJUSTMENT_DECREASE})

# largest value a BIGINT amount or balance column holds
MAX_AMOUNT_CENTS = 2**63 - 1

# deposit_deletion entries are produced by deposit removal, never imported
IMPORTABLE_TYPES = frozenset(t for t in TransactionType if t is not TransactionType.DEPOSIT_DELETION)


def parse_transaction_type(value: object) -> TransactionType:
    """Coerce a raw value to TransactionType, raising ValidationError if unknown"""
    if isinstance(value, TransactionType):
        return value
    try:
        return TransactionType(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown transaction type: {value!r}") from None


def validate_amount(transaction_type: TransactionType, amount_cents: int) -> None:
    """
    Check the stored amount for a transaction type.

    Every type carries a positive magnitude except deposit_deletion, which
    carries the caller's signed amount and only has to be non-zero.
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise ValidationError(f"Amount must be an integer number of cents, got {amount_cents!r}")
    if abs(amount_cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"Amount exceeds the largest storable value: {amount_cents} cents")

    if transaction_type is TransactionType.DEPOSIT_DELETION:
        if amount_cents == 0:
            raise ValidationError("deposit_deletion amount must be non-zero")
    elif amount_cents <= 0:
        raise ValidationError(f"{transaction_type.value} amount must be positive, got {amount_cents}")


def validate_bonus_percentage(bonus_percentage: Optional[float]) -> None:
    if bonus_percentage is None:
        return
    if not 0 <= bonus_percentage <= 1:
        raise ValidationError(f"Bonus percentage must be between 0 and 1, got {bonus_percentage}")


def signed_delta(transaction_type: TransactionType, amount_cents: int) -> int:
    """Balance change produced by one transaction"""
    transaction_type = parse_transaction_type(transaction_type)

    if transaction_type in CREDIT_TYPES:
        return amount_cents
    if transaction_type in DEBIT_TYPES:
        return -amount_cents
    # deposit_deletion: the stored amount is already signed
    return amount_cents


def bonus_delta(transaction_type: TransactionType, amount_cents: int) -> int:
    return amount_cents if parse_transaction_type(transaction_type) is TransactionType.BONUS else 0


def withdrawal_delta(transaction_type: TransactionType, amount_cents: int) -> int:
    return amount_cents if parse_transaction_type(transaction_type) is TransactionType.WITHDRAWAL else 0


def replay_totals(principal_cents: int, entries: Iterable[LedgerEntry]) -> tuple[int, int, int]:
    """
    Recompute (balance, total_bonuses, total_withdrawals) from the ledger.

    Account aggregates are a cache of this function; reconciliation compares
    the two.
    """
    balance = principal_cents
    bonuses = 0
    withdrawals = 0

    for entry in entries:
        balance += signed_delta(entry.transaction_type, entry.amount_cents)
        bonuses += bonus_delta(entry.transaction_type, entry.amount_cents)
        withdrawals += withdrawal_delta(entry.transaction_type, entry.amount_cents)

    return balance, bonuses, withdrawals
