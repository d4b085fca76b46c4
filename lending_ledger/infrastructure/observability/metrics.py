"""Prometheus metrics for ledger activity, yield payouts and imports"""

from prometheus_client import Counter, Histogram, generate_latest

# Ledger metrics
transactions_applied_counter = Counter(
    "ledger_transactions_applied_total",
    "Ledger transactions posted",
    ["transaction_type"],
)

withdrawal_rejected_counter = Counter(
    "ledger_withdrawals_rejected_total",
    "Withdrawals refused before any mutation",
    ["reason"],  # insufficient_balance | unallocated
)

unallocated_withdrawal_cents_counter = Counter(
    "ledger_unallocated_withdrawal_cents_total",
    "Withdrawn cents that no active deposit absorbed (allow policy)",
)

# Yield metrics
payouts_created_counter = Counter(
    "yield_payouts_created_total",
    "Yield payouts written",
)

payout_amount_cents_counter = Counter(
    "yield_payout_cents_total",
    "Yield paid out in cents",
)

# Import metrics
import_rows_counter = Counter(
    "import_rows_total",
    "Bulk import rows by outcome",
    ["outcome"],  # applied | invalid | failed
)

# Snapshot metrics
snapshot_rebuild_histogram = Histogram(
    "snapshot_rebuild_duration_seconds",
    "Monthly snapshot rebuild time per account",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)


def record_import_rows(applied: int, invalid: int, failed: int) -> None:
    """Record per-outcome row counts for one import batch"""
    if applied:
        import_rows_counter.labels(outcome="applied").inc(applied)
    if invalid:
        import_rows_counter.labels(outcome="invalid").inc(invalid)
    if failed:
        import_rows_counter.labels(outcome="failed").inc(failed)


def render_metrics() -> bytes:
    """Prometheus exposition text for whatever exporter the caller wires up"""
    return generate_latest()
