# models/listeners/ledger_listeners.py
"""
Ledger Event Listeners - protect the wallet journal.

Architecture:
    WalletTransaction  INSERT only. UPDATE/DELETE raise AppendOnlyViolation.
    Wallet.balance     written only inside LedgerService (ledger_write()).
                       Any other assignment logs a WARNING with stack.

LedgerService keeps Wallet.balance == SUM(WalletTransaction.amount);
reconciliation lives in LedgerService.findDiscrepancies().
"""
import logging
import traceback
from contextlib import contextmanager
from contextvars import ContextVar

from sqlalchemy import event, inspect

logger = logging.getLogger(__name__)

_ledger_write: ContextVar[bool] = ContextVar("ledger_write", default=False)


@contextmanager
def ledger_write():
    """Mark wallet mutations as performed by the ledger."""
    token = _ledger_write.set(True)
    try:
        yield
    finally:
        _ledger_write.reset(token)


def is_ledger_write() -> bool:
    return _ledger_write.get()


# =========================================================================
# JOURNAL: append-only
# =========================================================================

def register_journal_protection():
    """
    Reject UPDATE and DELETE of journal rows.

    Called once during application startup from models/listeners/__init__.py
    """
    from models.wallet_transaction import WalletTransaction
    from mlm_system.exceptions import AppendOnlyViolation

    def reject_update(mapper, connection, target):
        logger.error(
            f"Attempt to UPDATE journal row {target.transactionID} "
            f"(user={target.userID}, type={target.type})"
        )
        raise AppendOnlyViolation(
            f"WalletTransaction {target.transactionID} is append-only and cannot be updated"
        )

    def reject_delete(mapper, connection, target):
        logger.error(
            f"Attempt to DELETE journal row {target.transactionID} "
            f"(user={target.userID}, type={target.type})"
        )
        raise AppendOnlyViolation(
            f"WalletTransaction {target.transactionID} is append-only and cannot be deleted"
        )

    event.listen(WalletTransaction, 'before_update', reject_update)
    event.listen(WalletTransaction, 'before_delete', reject_delete)


# =========================================================================
# SAFETY: Prevent direct balance modification
# =========================================================================

def register_balance_protection():
    """
    Log warnings when Wallet.balance is modified outside LedgerService.
    """
    from models.wallet import Wallet

    @event.listens_for(Wallet.balance, 'set')
    def warn_direct_balance_set(target, value, oldvalue, initiator):
        """Warn when balance is set directly (not via ledger)."""
        if is_ledger_write():
            return

        # New wallets get their zero balance in the constructor
        state = inspect(target)
        if state.transient or state.pending:
            return

        if value != oldvalue:
            stack = ''.join(traceback.format_stack()[-5:-1])

            logger.warning(
                f"DIRECT balance modification detected! "
                f"user={target.userID}, {oldvalue} → {value}\n"
                f"Stack:\n{stack}"
            )
