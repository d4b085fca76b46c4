"""Daily yield accrual for deposits"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP

DAYS_PER_YEAR = 365


def daily_yield_cents(principal_cents: int, annual_yield_rate: float) -> int:
    """
    Daily payment = principal * (annual_rate / 365), rounded half-up to the cent.

    Decimal arithmetic keeps float error out of the ledger; the rate goes
    through str() so 0.12 stays exactly 0.12.

    Example:
        $10,000.00 at 12% -> 1,000,000 * 0.12 / 365 = 328.767 -> 329 cents
    """
    if principal_cents <= 0:
        return 0
    rate = Decimal(str(annual_yield_rate))
    amount = Decimal(principal_cents) * rate / Decimal(DAYS_PER_YEAR)
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def is_accruing(status: str, start_date: date, on_date: date) -> bool:
    """Deposit earns yield on a date once it has started and while still active"""
    return status == "active" and start_date <= on_date


def annual_payout_cents(principal_cents: int, annual_yield_rate: float) -> int:
    """Yearly yield on the principal, paid out by a manual payout"""
    amount = Decimal(principal_cents) * Decimal(str(annual_yield_rate))
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
