"""Unit tests for monthly snapshot replay"""

from datetime import date
from lending_ledger.domain.models import LedgerEntry
from lending_ledger.domain.snapshots import compile_monthly_snapshots


def test_empty_ledger_produces_no_snapshots():
    assert compile_monthly_snapshots(100000, []) == []


def test_single_month_totals():
    entries = [
        LedgerEntry("principal", 50000, date(2024, 1, 2)),
        LedgerEntry("bonus", 1000, date(2024, 1, 10)),
        LedgerEntry("withdrawal", 2000, date(2024, 1, 20)),
        LedgerEntry("monthly_payment", 300, date(2024, 1, 31)),
    ]

    [january] = compile_monthly_snapshots(0, entries)

    assert january.month_end_date == date(2024, 1, 31)
    assert january.starting_balance_cents == 0
    assert january.ending_balance_cents == 49300
    assert january.monthly_growth_cents == 49300
    assert january.total_deposits_cents == 50000
    assert january.total_bonuses_cents == 1000
    assert january.total_withdrawals_cents == 2000
    assert january.total_payments_cents == 300


def test_balance_starts_at_principal():
    entries = [LedgerEntry("daily_yield", 33, date(2024, 3, 1))]

    [march] = compile_monthly_snapshots(100000, entries)

    assert march.starting_balance_cents == 100000
    assert march.ending_balance_cents == 100033


def test_adjustments_move_balance_only():
    entries = [
        LedgerEntry("adjustment_increase", 700, date(2024, 1, 3)),
        LedgerEntry("adjustment_decrease", 200, date(2024, 1, 4)),
    ]

    [january] = compile_monthly_snapshots(1000, entries)

    assert january.ending_balance_cents == 1500
    assert january.total_deposits_cents == 0
    assert january.total_withdrawals_cents == 0


def test_deposit_deletion_nets_against_deposits():
    entries = [
        LedgerEntry("yield_deposit", 5000, date(2024, 1, 3)),
        LedgerEntry("deposit_deletion", -5000, date(2024, 1, 9)),
    ]

    [january] = compile_monthly_snapshots(0, entries)

    assert january.total_deposits_cents == 0
    assert january.ending_balance_cents == 0


def test_gap_months_carry_balance():
    """February has no activity but still gets a snapshot"""
    entries = [
        LedgerEntry("principal", 10000, date(2024, 1, 15)),
        LedgerEntry("bonus", 500, date(2024, 3, 2)),
    ]

    snapshots = compile_monthly_snapshots(0, entries)

    assert [s.month_end_date for s in snapshots] == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)]
    february = snapshots[1]
    assert february.starting_balance_cents == 10000
    assert february.ending_balance_cents == 10000
    assert february.monthly_growth_cents == 0
    assert february.total_deposits_cents == 0


def test_continuity_across_months():
    entries = [
        LedgerEntry("principal", 80000, date(2023, 11, 5)),
        LedgerEntry("withdrawal", 1000, date(2023, 12, 1)),
        LedgerEntry("daily_yield", 26, date(2024, 2, 1)),
        LedgerEntry("bonus", 4000, date(2024, 2, 28)),
    ]

    snapshots = compile_monthly_snapshots(0, entries)

    for previous, current in zip(snapshots, snapshots[1:]):
        assert previous.ending_balance_cents == current.ending_balance_cents - current.monthly_growth_cents
        assert current.starting_balance_cents == previous.ending_balance_cents


def test_same_day_entries_keep_given_order():
    """Ending balance is the running balance after the last entry given"""
    entries = [
        LedgerEntry("principal", 1000, date(2024, 5, 1)),
        LedgerEntry("withdrawal", 1000, date(2024, 5, 1)),
    ]

    [may] = compile_monthly_snapshots(0, entries)

    assert may.ending_balance_cents == 0
    assert may.total_deposits_cents == 1000
    assert may.total_withdrawals_cents == 1000
