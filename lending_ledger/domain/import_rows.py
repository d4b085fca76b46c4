"""Pydantic schemas for bulk import rows and the validation fold over them"""

import math
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from lending_ledger.domain.ledger import IMPORTABLE_TYPES, MAX_AMOUNT_CENTS, TransactionType
from lending_ledger.domain.models import RowError
from lending_ledger.utils.date_utils import to_calendar_date

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def to_cents(value: Any) -> int:
    """
    Convert a currency amount ("1000", 1000.5, Decimal) to integer cents.

    Raises:
        ValueError: non-numeric, non-positive, too large or finer than one cent
    """
    if isinstance(value, bool) or _blank(value):
        raise ValueError("Amount is required")
    try:
        amount = Decimal(str(value).strip().replace(",", ""))
    except InvalidOperation:
        raise ValueError(f"Amount must be a number, got {value!r}") from None
    if not amount.is_finite() or amount <= 0:
        raise ValueError(f"Amount must be a positive number, got {value!r}")

    cents = amount * 100
    if cents != cents.to_integral_value():
        raise ValueError(f"Amount has more than two decimal places: {value!r}")
    if cents > MAX_AMOUNT_CENTS:
        raise ValueError(f"Amount is too large: {value!r}")
    return int(cents)


def _optional_text(value: Any) -> Optional[str]:
    if _blank(value):
        return None
    return str(value).strip()


class _RowBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, value: Any) -> str:
        if _blank(value) or not isinstance(value, str):
            raise ValueError("Email is required")
        email = value.strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ValueError(f"Invalid email format: {value!r}")
        return email

    @field_validator("first_name", "last_name", "phone", mode="before")
    @classmethod
    def _clean_text(cls, value: Any) -> Optional[str]:
        return _optional_text(value)


class ImportRow(_RowBase):
    """One validated row of the bulk transaction import"""

    transaction_type: TransactionType = Field(..., validation_alias=AliasChoices("transaction_type", "type"))
    amount_cents: int = Field(..., gt=0, validation_alias="amount")
    transaction_date: date = Field(..., validation_alias=AliasChoices("transaction_date", "date"))
    description: Optional[str] = None
    bonus_percentage: Optional[float] = None
    reference_id: Optional[str] = None

    @field_validator("transaction_type", mode="before")
    @classmethod
    def _importable_type(cls, value: Any) -> TransactionType:
        if _blank(value):
            raise ValueError("Transaction type is required")
        try:
            transaction_type = TransactionType(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown transaction type: {value!r}") from None
        if transaction_type not in IMPORTABLE_TYPES:
            raise ValueError(f"Transaction type {transaction_type.value} cannot be imported")
        return transaction_type

    @field_validator("amount_cents", mode="before")
    @classmethod
    def _amount_to_cents(cls, value: Any) -> int:
        return to_cents(value)

    @field_validator("transaction_date", mode="before")
    @classmethod
    def _normalize_date(cls, value: Any) -> date:
        if _blank(value):
            raise ValueError("Transaction date is required")
        return to_calendar_date(value)

    @field_validator("bonus_percentage", mode="before")
    @classmethod
    def _bonus_in_range(cls, value: Any) -> Optional[float]:
        if _blank(value):
            return None
        try:
            percentage = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"Bonus percentage must be a number, got {value!r}") from None
        if not 0 <= percentage <= 1:
            raise ValueError(f"Bonus percentage must be between 0 and 1, got {value!r}")
        return percentage

    @field_validator("description", "reference_id", mode="before")
    @classmethod
    def _clean_optional(cls, value: Any) -> Optional[str]:
        return _optional_text(value)

    @property
    def sort_date(self) -> date:
        return self.transaction_date


class OnboardingRow(_RowBase):
    """One validated row of the client onboarding import"""

    deposit_cents: int = Field(..., gt=0, validation_alias="deposit_amount")
    start_date: date
    annual_yield_rate: Optional[float] = None

    @field_validator("deposit_cents", mode="before")
    @classmethod
    def _amount_to_cents(cls, value: Any) -> int:
        return to_cents(value)

    @field_validator("start_date", mode="before")
    @classmethod
    def _normalize_date(cls, value: Any) -> date:
        if _blank(value):
            raise ValueError("Start date is required")
        return to_calendar_date(value)

    @field_validator("annual_yield_rate", mode="before")
    @classmethod
    def _rate_in_range(cls, value: Any) -> Optional[float]:
        if _blank(value):
            return None
        try:
            rate = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"Annual yield rate must be a number, got {value!r}") from None
        if not 0 <= rate <= 1:
            raise ValueError(f"Annual yield rate must be between 0 and 1, got {value!r}")
        return rate

    @property
    def sort_date(self) -> date:
        return self.start_date


def _describe(error: PydanticValidationError) -> str:
    """Flatten pydantic errors into one readable reason"""
    parts = []
    for item in error.errors():
        field = ".".join(str(loc) for loc in item.get("loc", ())) or "row"
        message = item.get("msg", "invalid").removeprefix("Value error, ")
        parts.append(f"{field}: {message}")
    return "; ".join(parts)


def validate_row(model: type, raw: Dict[str, Any]) -> Tuple[Optional[BaseModel], Optional[str]]:
    """Validate one raw row; returns (row, None) or (None, reason) instead of raising"""
    try:
        return model.model_validate(raw), None
    except PydanticValidationError as e:
        return None, _describe(e)


def validate_rows(model: type, rows: List[Dict[str, Any]], first_row_number: int = 2) -> Tuple[List[Tuple[int, BaseModel]], List[RowError]]:
    """
    Fold raw rows into (valid rows with their row numbers, row errors).

    Valid rows come back stable-sorted by date, so same-day rows keep their
    input order.
    """
    valid = []
    errors = []

    for offset, raw in enumerate(rows):
        row_number = first_row_number + offset
        if not isinstance(raw, dict):
            errors.append(RowError(row_number=row_number, reason="Row is not a mapping of column names to values"))
            continue
        row, reason = validate_row(model, raw)
        if row is None:
            errors.append(RowError(row_number=row_number, reason=reason))
        else:
            valid.append((row_number, row))

    valid.sort(key=lambda pair: pair[1].sort_date)
    return valid, errors
