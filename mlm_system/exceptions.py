# mlm_system/exceptions.py
"""
Exceptions raised by the MLM commission engine.

Hierarchy:
    MLMError
    ├── LedgerError
    │   ├── InvalidAmount          - non-positive or sub-cent amount
    │   ├── InsufficientBalance    - debit exceeds balance (expected, user-facing)
    │   ├── DuplicateTransaction   - idempotency key already used
    │   └── AppendOnlyViolation    - attempt to change a journal row
    ├── MemberNotFound             - referral graph integrity violation
    ├── ConcurrentModification     - lock/version conflict, retried internally
    ├── InvalidWithdrawal          - withdrawal request rejected by validation
    ├── InvalidInvestment          - investment purchase rejected by validation
    └── ActivationError            - activation code cannot be redeemed
"""
from decimal import Decimal
from typing import Optional


class MLMError(Exception):
    """Base class for all engine errors."""
    pass


class LedgerError(MLMError):
    """Wallet/journal operation failed."""
    pass


class InvalidAmount(LedgerError):
    """Credit or debit attempted with amount <= 0 or finer than one cent."""

    def __init__(self, amount):
        self.amount = amount
        super().__init__(f"Amount must be a positive number of whole cents, got {amount}")


class InsufficientBalance(LedgerError):
    """Debit exceeds available balance."""

    def __init__(self, userId: int, requested: Decimal, available: Decimal):
        self.userId = userId
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient balance for user {userId}: "
            f"requested {requested}, available {available}"
        )


class DuplicateTransaction(LedgerError):
    """Transaction with this idempotency key already exists."""

    def __init__(self, idempotencyKey: str):
        self.idempotencyKey = idempotencyKey
        super().__init__(f"Transaction already recorded: {idempotencyKey}")


class AppendOnlyViolation(LedgerError):
    """Journal rows can never be updated or deleted."""
    pass


class MemberNotFound(MLMError):
    """Referenced member (or its wallet) does not exist."""

    def __init__(self, userId: Optional[int], context: str = ""):
        self.userId = userId
        message = f"Member {userId} not found"
        if context:
            message += f" ({context})"
        super().__init__(message)


class ConcurrentModification(MLMError):
    """Row version or lock conflict - safe to retry."""
    pass


class InvalidWithdrawal(MLMError):
    """Withdrawal request failed validation."""
    pass


class ActivationError(MLMError):
    """Activation code redemption failed."""
    pass


class InvalidInvestment(MLMError):
    """Investment purchase rejected by validation."""
    pass
