"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from lending_ledger.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON to stderr so CLI summaries on stdout stay machine-readable
    handler = logging.StreamHandler(sys.stderr)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_withdrawal(
    account_id: str,
    amount_cents: int,
    deposits_touched: int,
    unallocated_cents: int,
    shortfall_policy: str,
) -> None:
    """Log structured withdrawal allocation outcome"""
    logging.info(
        "Withdrawal processed",
        extra={
            "account_id": account_id,
            "step": "withdrawal_complete",
            "amount_cents": amount_cents,
            "deposits_touched": deposits_touched,
            "unallocated_cents": unallocated_cents,
            "shortfall_policy": shortfall_policy,
        },
    )


def log_daily_yield(
    payout_date: str,
    payments_processed: int,
    total_amount_cents: int,
    skipped: int,
    dry_run: bool,
    duration_ms: float,
) -> None:
    """Log structured daily yield run summary"""
    logging.info(
        "Daily yield run completed",
        extra={
            "payout_date": payout_date,
            "step": "daily_yield_complete",
            "payments_processed": payments_processed,
            "total_amount_cents": total_amount_cents,
            "skipped": skipped,
            "dry_run": dry_run,
            "duration_ms": duration_ms,
        },
    )


def log_import_summary(
    total_rows: int,
    succeeded: int,
    failed: int,
    created_accounts: int,
    duration_ms: float,
) -> None:
    """Log structured batch import outcome"""
    logging.info(
        "Batch import completed",
        extra={
            "step": "import_complete",
            "total_rows": total_rows,
            "succeeded": succeeded,
            "failed": failed,
            "created_accounts": created_accounts,
            "duration_ms": duration_ms,
        },
    )


def log_snapshot_rebuild(account_id: str, months: int, duration_ms: float) -> None:
    """Log structured snapshot rebuild outcome"""
    logging.info(
        "Monthly snapshots rebuilt",
        extra={
            "account_id": account_id,
            "step": "snapshot_rebuild_complete",
            "months": months,
            "duration_ms": duration_ms,
        },
    )
