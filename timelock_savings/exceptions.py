"""
Ledger Exceptions

Typed failures for every precondition the savings ledger enforces. All of
them derive from ValueError so existing callers that guard ledger calls with
``except ValueError`` continue to work.
"""


class SavingsLedgerError(ValueError):
    """Base exception for all savings ledger errors"""
    pass


class InvalidAmount(SavingsLedgerError):
    """Amount is not a positive integer or is below the configured minimum"""
    pass


class DepositNotFound(SavingsLedgerError):
    """Deposit index is unknown or belongs to a different owner"""
    pass


class AlreadyWithdrawn(SavingsLedgerError):
    """Deposit is no longer ACTIVE"""
    pass


class TransferFailed(SavingsLedgerError):
    """The asset interface rejected a token movement"""
    pass


class Unauthorized(SavingsLedgerError):
    """Caller is not allowed to perform an administrative operation"""
    pass


class InsufficientSurplus(SavingsLedgerError):
    """No balance exists above current liabilities"""
    pass


class ReentrantCall(SavingsLedgerError):
    """A mutating operation was invoked while another one is still in progress"""
    pass
