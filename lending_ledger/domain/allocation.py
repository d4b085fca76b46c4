"""Withdrawal allocation across yield deposits (last in, first out)"""

from typing import List

from lending_ledger.domain.exceptions import ValidationError
from lending_ledger.domain.models import AllocationPlan, DepositPosition, DepositReduction


def order_lifo(deposits: List[DepositPosition]) -> List[DepositPosition]:
    """Newest deposit first; deposit id breaks ties between equal creation times"""
    return sorted(deposits, key=lambda d: (d.created_at, d.deposit_id), reverse=True)


def allocate_withdrawal(deposits: List[DepositPosition], amount_cents: int) -> AllocationPlan:
    """
    Spread a withdrawal across active deposits, newest first.

    Requirements:
    - Each deposit absorbs min(remaining, principal)
    - Stop as soon as the remaining amount reaches zero
    - Deposits with zero principal are ignored
    - Whatever the deposits cannot absorb is returned as unallocated_cents;
      the caller decides whether that is acceptable

    Example:
        D1 (older) $100, D2 (newer) $200, withdraw $250
        -> D2 reduced by $200 to $0, D1 reduced by $50 to $50
    """
    if amount_cents <= 0:
        raise ValidationError(f"Withdrawal amount must be positive, got {amount_cents}")

    remaining = amount_cents
    reductions = []

    for deposit in order_lifo(deposits):
        if remaining == 0:
            break
        if deposit.principal_cents <= 0:
            continue

        reduced_by = min(remaining, deposit.principal_cents)
        reductions.append(
            DepositReduction(
                deposit_id=deposit.deposit_id,
                original_principal_cents=deposit.principal_cents,
                reduced_by_cents=reduced_by,
                new_principal_cents=deposit.principal_cents - reduced_by,
            )
        )
        remaining -= reduced_by

    return AllocationPlan(reductions=reductions, unallocated_cents=remaining)
