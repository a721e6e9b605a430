# mlm_system/services/ledger_service.py
"""
Ledger service - the only component allowed to change wallets.

Each operation runs in one SAVEPOINT: lock the wallet row, update the cached
fields, append one journal row. Either all of it is applied or nothing.
The caller owns the outer transaction and commits it.
"""
from decimal import Decimal
from typing import Dict, List, Optional, Union, Iterable
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
import logging

from models.wallet import Wallet, EARNING_COLUMNS
from models.wallet_transaction import WalletTransaction
from models.listeners.ledger_listeners import ledger_write
from mlm_system.config.income import (
    IncomeCategory,
    TransactionType,
    CATEGORY_TRANSACTION_TYPES,
)
from mlm_system.exceptions import (
    InvalidAmount,
    InsufficientBalance,
    DuplicateTransaction,
    MemberNotFound,
    ConcurrentModification,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class LedgerService:
    """Wallet mutations with an append-only journal."""

    def __init__(self, session: Session):
        self.session = session

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def credit(
            self,
            userId: int,
            category: Union[IncomeCategory, str],
            amount,
            reason: Optional[str] = None,
            *,
            transactionType: Optional[TransactionType] = None,
            level: Optional[int] = None,
            sourceUserId: Optional[int] = None,
            idempotencyKey: Optional[str] = None,
            notes: Optional[str] = None
    ) -> WalletTransaction:
        """
        Credit earnings to a wallet.

        Increments balance, the category counter and totalEarnings.

        Raises:
            InvalidAmount: amount <= 0 or finer than one cent
            DuplicateTransaction: idempotencyKey already used
            MemberNotFound: wallet does not exist
            ConcurrentModification: wallet version changed underneath
        """
        amount = self._validateAmount(userId, amount)
        category = IncomeCategory(category)
        if transactionType is None:
            transactionType = CATEGORY_TRANSACTION_TYPES[category]

        self._checkDuplicate(idempotencyKey)

        def apply(wallet: Wallet):
            wallet.balance = wallet.balance + amount
            setattr(wallet, category.value, getattr(wallet, category.value) + amount)
            wallet.totalEarnings = wallet.totalEarnings + amount

        transaction = self._apply(
            userId,
            apply,
            WalletTransaction(
                userID=userId,
                sourceUserID=sourceUserId,
                type=transactionType.value,
                amount=amount,
                level=level,
                reason=reason,
                notes=notes,
                idempotencyKey=idempotencyKey
            )
        )

        logger.info(
            f"Credited {amount} to user {userId} ({category.value}, "
            f"{transactionType.value}), txn {transaction.transactionID}"
        )
        return transaction

    def debit(
            self,
            userId: int,
            amount,
            reason: Optional[str] = None,
            *,
            transactionType: TransactionType = TransactionType.WITHDRAWAL,
            idempotencyKey: Optional[str] = None,
            notes: Optional[str] = None
    ) -> WalletTransaction:
        """
        Debit a wallet (withdrawal request, investment purchase).

        Raises:
            InvalidAmount: amount <= 0 or finer than one cent
            InsufficientBalance: balance < amount
        """
        amount = self._validateAmount(userId, amount)
        self._checkDuplicate(idempotencyKey)

        def apply(wallet: Wallet):
            if wallet.balance < amount:
                raise InsufficientBalance(userId, amount, wallet.balance)
            wallet.balance = wallet.balance - amount
            wallet.withdrawnAmount = wallet.withdrawnAmount + amount

        transaction = self._apply(
            userId,
            apply,
            WalletTransaction(
                userID=userId,
                type=transactionType.value,
                amount=-amount,
                reason=reason,
                notes=notes,
                idempotencyKey=idempotencyKey
            )
        )

        logger.info(
            f"Debited {amount} from user {userId} ({transactionType.value}), "
            f"txn {transaction.transactionID}"
        )
        return transaction

    def refund(
            self,
            userId: int,
            amount,
            reason: Optional[str] = None,
            *,
            idempotencyKey: Optional[str] = None,
            notes: Optional[str] = None
    ) -> WalletTransaction:
        """
        Return a previously debited amount.
        Not an earning: totalEarnings is untouched, withdrawnAmount goes down.
        """
        amount = self._validateAmount(userId, amount)
        self._checkDuplicate(idempotencyKey)

        def apply(wallet: Wallet):
            wallet.balance = wallet.balance + amount
            wallet.withdrawnAmount = wallet.withdrawnAmount - amount

        transaction = self._apply(
            userId,
            apply,
            WalletTransaction(
                userID=userId,
                type=TransactionType.REFUND.value,
                amount=amount,
                reason=reason,
                notes=notes,
                idempotencyKey=idempotencyKey
            )
        )

        logger.info(f"Refunded {amount} to user {userId}, txn {transaction.transactionID}")
        return transaction

    # =========================================================================
    # QUERIES
    # =========================================================================

    def hasTransaction(self, idempotencyKey: str) -> bool:
        """Check whether a journal row with this key exists."""
        return self.session.query(WalletTransaction.transactionID).filter_by(
            idempotencyKey=idempotencyKey
        ).first() is not None

    def getWallet(self, userId: int) -> Wallet:
        wallet = self.session.query(Wallet).filter_by(userID=userId).first()
        if not wallet:
            raise MemberNotFound(userId, "wallet")
        return wallet

    def getTransactions(
            self,
            userId: int,
            transactionType: Optional[TransactionType] = None
    ) -> List[WalletTransaction]:
        query = self.session.query(WalletTransaction).filter_by(userID=userId)
        if transactionType is not None:
            query = query.filter_by(type=TransactionType(transactionType).value)
        return query.order_by(WalletTransaction.transactionID).all()

    # =========================================================================
    # RECONCILIATION
    # =========================================================================

    def calculateJournalBalance(self, userId: int) -> Decimal:
        """SUM of all journal amounts of a user."""
        total = self.session.query(
            func.coalesce(func.sum(WalletTransaction.amount), 0)
        ).filter(WalletTransaction.userID == userId).scalar()
        return Decimal(str(total)).quantize(CENT)

    def reconcile(self, userId: int) -> Dict:
        """
        Compare cached wallet fields against the journal.

        Returns:
            Dict with walletBalance, journalBalance, expectedBalance,
            categoryTotal, totalEarnings and isConsistent
        """
        wallet = self.getWallet(userId)
        journalBalance = self.calculateJournalBalance(userId)
        categoryTotal = sum(
            (getattr(wallet, column) for column in EARNING_COLUMNS),
            Decimal("0")
        )
        expectedBalance = wallet.totalEarnings - wallet.withdrawnAmount

        isConsistent = (
            wallet.balance == journalBalance
            and wallet.balance == expectedBalance
            and wallet.totalEarnings == categoryTotal
        )

        if not isConsistent:
            logger.warning(
                f"Wallet mismatch for user {userId}: balance={wallet.balance}, "
                f"journal={journalBalance}, earned-withdrawn={expectedBalance}, "
                f"categories={categoryTotal}, totalEarnings={wallet.totalEarnings}"
            )

        return {
            "userId": userId,
            "walletBalance": wallet.balance,
            "journalBalance": journalBalance,
            "expectedBalance": expectedBalance,
            "categoryTotal": categoryTotal,
            "totalEarnings": wallet.totalEarnings,
            "isConsistent": isConsistent
        }

    def findDiscrepancies(self, userIds: Optional[Iterable[int]] = None) -> List[Dict]:
        """
        Reconcile many wallets.

        Args:
            userIds: Users to check, all wallets if None

        Returns:
            Reconcile reports of inconsistent wallets only
        """
        if userIds is None:
            userIds = [row[0] for row in self.session.query(Wallet.userID).order_by(Wallet.userID).all()]

        discrepancies = []
        for userId in userIds:
            report = self.reconcile(userId)
            if not report["isConsistent"]:
                discrepancies.append(report)

        if discrepancies:
            logger.warning(f"Found {len(discrepancies)} wallet discrepancies")
        else:
            logger.info("Ledger reconciliation passed ✓")

        return discrepancies

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _validateAmount(self, userId: int, amount) -> Decimal:
        """Positive, finite and whole cents; columns hold two decimals."""
        amount = Decimal(str(amount))
        if not amount.is_finite() or amount <= 0 or amount != amount.quantize(CENT):
            logger.error(f"Invalid ledger amount {amount} for user {userId}")
            raise InvalidAmount(amount)
        return amount

    def _checkDuplicate(self, idempotencyKey: Optional[str]) -> None:
        if idempotencyKey and self.hasTransaction(idempotencyKey):
            logger.debug(f"Transaction {idempotencyKey} already recorded, skipping")
            raise DuplicateTransaction(idempotencyKey)

    def _lockWallet(self, userId: int) -> Wallet:
        wallet = self.session.query(Wallet).filter_by(
            userID=userId
        ).with_for_update().populate_existing().first()

        if not wallet:
            raise MemberNotFound(userId, "wallet")
        return wallet

    def _apply(self, userId: int, mutate, transaction: WalletTransaction) -> WalletTransaction:
        """Lock wallet, mutate cached fields, append journal row - one savepoint."""
        try:
            with self.session.begin_nested():
                wallet = self._lockWallet(userId)
                with ledger_write():
                    mutate(wallet)
                self.session.add(transaction)
                self.session.flush()

        except IntegrityError as e:
            if transaction.idempotencyKey:
                logger.debug(f"Concurrent duplicate of {transaction.idempotencyKey} rejected")
                raise DuplicateTransaction(transaction.idempotencyKey) from e
            raise

        except StaleDataError as e:
            logger.warning(f"Wallet of user {userId} changed concurrently: {e}")
            raise ConcurrentModification(f"Wallet {userId} version conflict") from e

        return transaction
