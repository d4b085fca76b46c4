"""SQLAlchemy ORM models for the lending ledger"""

import uuid
from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class Owner(Base):
    """Account owner identity, keyed by email"""

    __tablename__ = "owner"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(Text, nullable=False, unique=True)
    first_name = Column(Text, nullable=True)
    last_name = Column(Text, nullable=True)
    phone = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    account = relationship("LoanAccount", back_populates="owner", uselist=False)
    deposits = relationship("YieldDeposit", back_populates="owner")


class LoanAccount(Base):
    """One owner's loan/investment account; balances are a cache of the ledger"""

    __tablename__ = "loan_account"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid(as_uuid=True), ForeignKey("owner.id"), nullable=False, unique=True)
    account_number = Column(Text, nullable=False, unique=True)
    principal_cents = Column(BigInteger, nullable=False, default=0)
    current_balance_cents = Column(BigInteger, nullable=False, default=0)
    monthly_rate = Column(Float, nullable=False, default=0.01)
    total_bonuses_cents = Column(BigInteger, nullable=False, default=0)
    total_withdrawals_cents = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    owner = relationship("Owner", back_populates="account")
    transactions = relationship("LedgerTransaction", back_populates="account", order_by="LedgerTransaction.id")
    snapshots = relationship("MonthlyBalance", back_populates="account", order_by="MonthlyBalance.month_end_date")


class LedgerTransaction(Base):
    """Immutable ledger entry; id is the insertion order used as same-day tiebreak"""

    __tablename__ = "ledger_transaction"
    __table_args__ = (Index("ix_ledger_transaction_account_order", "account_id", "transaction_date", "id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Uuid(as_uuid=True), ForeignKey("loan_account.id"), nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    transaction_type = Column(Text, nullable=False)
    transaction_date = Column(Date, nullable=False)
    bonus_percentage = Column(Float, nullable=True)
    description = Column(Text, nullable=True)
    reference_id = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    account = relationship("LoanAccount", back_populates="transactions")


class YieldDeposit(Base):
    """Yield-bearing principal; principal only ever decreases after creation"""

    __tablename__ = "yield_deposit"
    __table_args__ = (CheckConstraint("principal_cents >= 0", name="ck_yield_deposit_principal_non_negative"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Uuid(as_uuid=True), ForeignKey("owner.id"), nullable=False, index=True)
    principal_cents = Column(BigInteger, nullable=False)
    annual_yield_rate = Column(Float, nullable=False, default=0.12)
    start_date = Column(Date, nullable=False, index=True)
    status = Column(Text, nullable=False, default="active", index=True)
    last_payout_date = Column(Date, nullable=True)
    total_paid_out_cents = Column(BigInteger, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    # Set from the injected clock with sub-second precision; drives LIFO order
    created_at = Column(DateTime(timezone=True), nullable=False)

    owner = relationship("Owner", back_populates="deposits")
    payouts = relationship("YieldPayout", back_populates="deposit", order_by="YieldPayout.payout_date")


class YieldPayout(Base):
    """One yield disbursement; (deposit_id, payout_date) is the idempotency key"""

    __tablename__ = "yield_payout"
    __table_args__ = (UniqueConstraint("deposit_id", "payout_date", name="uq_yield_payout_deposit_date"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    deposit_id = Column(Integer, ForeignKey("yield_deposit.id"), nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    payout_date = Column(Date, nullable=False, index=True)
    transaction_id = Column(Integer, ForeignKey("ledger_transaction.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    deposit = relationship("YieldDeposit", back_populates="payouts")


class MonthlyBalance(Base):
    """Derived monthly snapshot, fully rewritten on every rebuild"""

    __tablename__ = "monthly_balance"
    __table_args__ = (UniqueConstraint("account_id", "month_end_date", name="uq_monthly_balance_account_month"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Uuid(as_uuid=True), ForeignKey("loan_account.id"), nullable=False)
    month_end_date = Column(Date, nullable=False)
    starting_balance_cents = Column(BigInteger, nullable=False)
    ending_balance_cents = Column(BigInteger, nullable=False)
    monthly_growth_cents = Column(BigInteger, nullable=False)
    total_deposits_cents = Column(BigInteger, nullable=False, default=0)
    total_withdrawals_cents = Column(BigInteger, nullable=False, default=0)
    total_bonuses_cents = Column(BigInteger, nullable=False, default=0)
    total_payments_cents = Column(BigInteger, nullable=False, default=0)

    account = relationship("LoanAccount", back_populates="snapshots")
