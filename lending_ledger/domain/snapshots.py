"""Monthly balance snapshots - chronological replay of an account's ledger"""

from datetime import date
from typing import Dict, List

from lending_ledger.domain.ledger import TransactionType, parse_transaction_type, signed_delta
from lending_ledger.domain.models import LedgerEntry, MonthlySnapshotData
from lending_ledger.utils.date_utils import generate_month_ends, month_end

DEPOSIT_BUCKET = frozenset(
    {TransactionType.PRINCIPAL, TransactionType.YIELD_DEPOSIT, TransactionType.DEPOSIT_DELETION}
)
PAYMENT_BUCKET = frozenset(
    {TransactionType.MONTHLY_PAYMENT, TransactionType.YIELD_PAYMENT, TransactionType.DAILY_YIELD}
)


def _accumulate(snapshot: MonthlySnapshotData, entry: LedgerEntry) -> None:
    transaction_type = parse_transaction_type(entry.transaction_type)

    if transaction_type in DEPOSIT_BUCKET:
        # deposit_deletion is signed and nets against the month's deposits
        snapshot.total_deposits_cents += entry.amount_cents
    elif transaction_type is TransactionType.WITHDRAWAL:
        snapshot.total_withdrawals_cents += entry.amount_cents
    elif transaction_type is TransactionType.BONUS:
        snapshot.total_bonuses_cents += entry.amount_cents
    elif transaction_type in PAYMENT_BUCKET:
        snapshot.total_payments_cents += entry.amount_cents
    # adjustments move the balance only


def compile_monthly_snapshots(principal_cents: int, entries: List[LedgerEntry]) -> List[MonthlySnapshotData]:
    """
    Replay ledger entries month by month.

    Requirements:
    - Entries must already be in ledger order (date asc, insertion order asc);
      same-day entries have no other ordering signal so they are not re-sorted
    - Running balance starts at the account principal
    - ending_balance = running balance after the month's last entry
    - monthly_growth = ending_balance - starting_balance
    - Calendar months with no activity between the first and last active month
      are emitted with zero totals and carried balance, so that
      ending(N) == ending(N+1) - growth(N+1) holds for every adjacent pair

    Returns:
        Snapshots ordered by month_end_date ascending (empty if no entries)
    """
    if not entries:
        return []

    running_balance = principal_cents
    by_month: Dict[date, MonthlySnapshotData] = {}

    for entry in entries:
        key = month_end(entry.transaction_date)
        snapshot = by_month.get(key)
        if snapshot is None:
            snapshot = MonthlySnapshotData(
                month_end_date=key,
                starting_balance_cents=running_balance,
                ending_balance_cents=running_balance,
                monthly_growth_cents=0,
            )
            by_month[key] = snapshot

        running_balance += signed_delta(entry.transaction_type, entry.amount_cents)
        _accumulate(snapshot, entry)
        snapshot.ending_balance_cents = running_balance
        snapshot.monthly_growth_cents = running_balance - snapshot.starting_balance_cents

    months = generate_month_ends(min(by_month), max(by_month))
    snapshots = []
    carried = principal_cents

    for key in months:
        snapshot = by_month.get(key)
        if snapshot is None:
            snapshot = MonthlySnapshotData(
                month_end_date=key,
                starting_balance_cents=carried,
                ending_balance_cents=carried,
                monthly_growth_cents=0,
            )
        snapshots.append(snapshot)
        carried = snapshot.ending_balance_cents

    return snapshots
