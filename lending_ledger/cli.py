"""
Operator command line for the lending ledger.

Usage:
    lending-ledger init-db
    lending-ledger daily-yield [--date YYYY-MM-DD] [--dry-run]
    lending-ledger import transactions.xlsx
    lending-ledger onboard clients.csv
    lending-ledger rebuild <account-id>
    lending-ledger reconcile <account-id> [--repair]

Every command prints a JSON summary on stdout; logs go to stderr.

Exit codes:
    0  success
    1  the command ran but reported row or deposit errors (or drift)
    2  the command was refused (validation, missing account, storage failure)
"""

import argparse
import dataclasses
import json
import logging
import sys
import uuid
from datetime import date
from pathlib import Path
from typing import Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from lending_ledger.config import settings
from lending_ledger.domain.exceptions import LedgerError
from lending_ledger.infrastructure.database.session import SessionLocal, build_engine, init_db
from lending_ledger.infrastructure.observability.logging import setup_logging
from lending_ledger.services.engine import LedgerEngine

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_REPORTED_ERRORS = 1
EXIT_REFUSED = 2


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="lending-ledger",
        description="Loan and yield deposit ledger operations.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database URL (default: DATABASE_URL setting).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create ledger tables if missing.")

    daily = subparsers.add_parser("daily-yield", help="Pay one day of yield on every accruing deposit.")
    daily.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Payout date (YYYY-MM-DD). Default: today.",
    )
    daily.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute payouts without writing anything.",
    )

    importer = subparsers.add_parser("import", help="Import a transaction workbook or CSV.")
    importer.add_argument("file", type=Path, help="Path to .xlsx or .csv file.")

    onboard = subparsers.add_parser("onboard", help="Import a client onboarding workbook or CSV.")
    onboard.add_argument("file", type=Path, help="Path to .xlsx or .csv file.")

    rebuild = subparsers.add_parser("rebuild", help="Rebuild monthly snapshots for an account.")
    rebuild.add_argument("account_id", type=uuid.UUID, help="Account UUID.")

    reconcile = subparsers.add_parser("reconcile", help="Compare cached account totals with the ledger.")
    reconcile.add_argument("account_id", type=uuid.UUID, help="Account UUID.")
    reconcile.add_argument(
        "--repair",
        action="store_true",
        help="Overwrite drifted totals with the recomputed values.",
    )

    return parser.parse_args(argv)


def _to_json(value: Any) -> str:
    if dataclasses.is_dataclass(value):
        value = dataclasses.asdict(value)
    return json.dumps(value, indent=2, default=str)


def _run(args: argparse.Namespace, db: Session) -> int:
    engine = LedgerEngine(db)

    if args.command == "daily-yield":
        result = engine.run_daily_yield(args.date, dry_run=args.dry_run)
        print(_to_json(result))
        return EXIT_REPORTED_ERRORS if result.errors else EXIT_OK

    if args.command in ("import", "onboard"):
        if args.command == "import":
            summary = engine.import_file(args.file)
        else:
            summary = engine.onboard_file(args.file)
        payload = dataclasses.asdict(summary)
        payload["succeeded"] = summary.succeeded
        payload["failed"] = summary.failed
        print(_to_json(payload))
        return EXIT_REPORTED_ERRORS if summary.errors else EXIT_OK

    if args.command == "rebuild":
        rows = engine.rebuild_snapshots(args.account_id)
        print(_to_json({
            "account_id": args.account_id,
            "months": [
                {
                    "month_end_date": row.month_end_date,
                    "starting_balance_cents": row.starting_balance_cents,
                    "ending_balance_cents": row.ending_balance_cents,
                    "monthly_growth_cents": row.monthly_growth_cents,
                }
                for row in rows
            ],
        }))
        return EXIT_OK

    if args.command == "reconcile":
        report = engine.reconcile(args.account_id, repair=args.repair)
        payload = dataclasses.asdict(report)
        payload["balanced"] = report.balanced
        print(_to_json(payload))
        return EXIT_OK if report.balanced or report.repaired else EXIT_REPORTED_ERRORS

    raise ValueError(f"Unhandled command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    setup_logging(settings.log_level)

    if args.database_url:
        bind = build_engine(args.database_url)
        session_factory = sessionmaker(autocommit=False, autoflush=False, bind=bind)
    else:
        bind = None
        session_factory = SessionLocal

    if args.command == "init-db":
        try:
            init_db(bind)
        except SQLAlchemyError as e:
            print(f"ERROR: Database init failed: {e}", file=sys.stderr)
            return EXIT_REFUSED
        print(_to_json({"status": "ok"}))
        return EXIT_OK

    db = session_factory()
    try:
        return _run(args, db)
    except LedgerError as e:
        logger.error(f"{args.command} refused: {e}")
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_REFUSED
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
