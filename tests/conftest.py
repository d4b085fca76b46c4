"""Pytest fixtures for testing"""

import pytest
from datetime import date, datetime, timezone
from typing import Generator
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from lending_ledger.infrastructure.database.models import Base, LoanAccount
from lending_ledger.services.engine import LedgerEngine
from lending_ledger.utils.clock import FixedClock


@pytest.fixture
def database_url(tmp_path) -> str:
    """File-backed SQLite database private to one test"""
    return f"sqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
def db(database_url: str) -> Generator[Session, None, None]:
    """Create test database and session"""
    engine = create_engine(database_url, connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def clock() -> FixedClock:
    """Clock pinned to 2024-03-01 09:00 UTC"""
    return FixedClock(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def engine(db: Session, clock: FixedClock) -> LedgerEngine:
    """Ledger engine with snapshot rebuild after import switched off"""
    return LedgerEngine(db, clock=clock, rebuild_snapshots_after_import=False)


@pytest.fixture
def account(engine: LedgerEngine) -> LoanAccount:
    """Account opened with $1,000.00 principal"""
    return engine.open_account("alice@example.com", principal_cents=100000, first_name="Alice")


@pytest.fixture
def empty_account(engine: LedgerEngine) -> LoanAccount:
    """Account with zero principal, funded only through deposits"""
    return engine.open_account("bob@example.com")


@pytest.fixture
def sample_rows() -> list[dict]:
    """Import rows as they come out of a spreadsheet (serial dates, float amounts)"""
    return [
        {"email": "Carol@Example.com", "transaction_type": "principal", "amount": 1000.0, "transaction_date": 45292},
        {"email": "carol@example.com", "transaction_type": "bonus", "amount": "25.50", "transaction_date": "2024-01-15", "bonus_percentage": 0.05},
        {"email": "carol@example.com", "transaction_type": "withdrawal", "amount": 100, "transaction_date": date(2024, 2, 10)},
    ]
