"""Domain-specific exceptions"""


class LedgerError(Exception):
    """Base exception for the ledger engine"""

    pass


class ValidationError(LedgerError):
    """An input field is malformed or out of range"""

    pass


class NotFoundError(LedgerError):
    """Referenced owner, account or deposit does not exist"""

    pass


class InsufficientBalanceError(LedgerError):
    """Debit would drive the account balance below zero"""

    def __init__(self, message: str, balance_cents: int = 0, requested_cents: int = 0):
        super().__init__(message)
        self.balance_cents = balance_cents
        self.requested_cents = requested_cents


class UnallocatedWithdrawalError(InsufficientBalanceError):
    """Active deposits cannot absorb the full withdrawal under the reject policy"""

    pass


class DuplicatePayoutError(LedgerError):
    """A payout already exists for this deposit and date"""

    pass


class PersistenceError(LedgerError):
    """Storage layer is unavailable or rejected the write"""

    pass
