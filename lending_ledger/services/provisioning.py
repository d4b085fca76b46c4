"""Owner provisioning - resolves an email to an owner and account, creating them when missing"""

import logging
from typing import Optional, Protocol, Tuple
from sqlalchemy.orm import Session

from lending_ledger.config import settings
from lending_ledger.domain.exceptions import ValidationError
from lending_ledger.domain.import_rows import EMAIL_PATTERN
from lending_ledger.infrastructure.database.models import LoanAccount, Owner
from lending_ledger.infrastructure.database.repositories import AccountRepository, OwnerRepository

logger = logging.getLogger(__name__)


class OwnerProvisioner(Protocol):
    def resolve(
        self,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Tuple[Owner, LoanAccount, bool]:
        """Return (owner, account, created) inside the caller's unit of work"""
        ...


class LocalOwnerProvisioner:
    """Provisions owners in the ledger's own owner table"""

    def __init__(self, db: Session, monthly_rate: Optional[float] = None):
        self.owners = OwnerRepository(db)
        self.accounts = AccountRepository(db)
        self.monthly_rate = settings.default_monthly_rate if monthly_rate is None else monthly_rate

    def resolve(
        self,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Tuple[Owner, LoanAccount, bool]:
        """
        Find the owner by email, or create owner plus a zero-principal account.

        The account comes back row-locked. Nothing is committed here, so a
        failing import row takes a freshly provisioned owner down with it.
        """
        email = email.strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ValidationError(f"Invalid email format: {email!r}")

        owner = self.owners.get_by_email(email)
        if owner is not None:
            account = self.accounts.get_by_owner(owner.id, for_update=True)
            if account is not None:
                return owner, account, False
            account = self.accounts.create(owner.id, principal_cents=0, monthly_rate=self.monthly_rate)
            logger.info(f"Opened missing account {account.account_number} for {email}")
            return owner, account, True

        owner = self.owners.create(email, first_name=first_name, last_name=last_name, phone=phone)
        account = self.accounts.create(owner.id, principal_cents=0, monthly_rate=self.monthly_rate)
        logger.info(f"Provisioned owner {owner.id} with account {account.account_number} for {email}")
        return owner, account, True
