# mlm_system/services/withdrawal_service.py
"""
Withdrawal service - payout requests.

Funds are debited at request time, so concurrent requests can never exceed
the balance. Approval only changes status; rejection refunds exactly the
debited amount, once.
"""
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy import update
from sqlalchemy.orm import Session
import logging

from config import Config
from models.user import User
from models.withdrawal import Withdrawal
from mlm_system.config.income import TransactionType
from mlm_system.services.ledger_service import LedgerService, CENT
from mlm_system.utils.member_locks import MemberLocks, memberLocks
from mlm_system.utils.time_machine import timeMachine
from mlm_system.exceptions import InvalidAmount, InvalidWithdrawal, MemberNotFound

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("upi", "bank")
BANK_FIELDS = ("accountNumber", "ifscCode", "accountHolderName")


class WithdrawalService:
    """Service for withdrawal requests and their resolution."""

    def __init__(self, session: Session, locks: Optional[MemberLocks] = None):
        self.session = session
        self.locks = locks or memberLocks
        self.ledger = LedgerService(session)

    def requestWithdrawal(
            self,
            userId: int,
            amount,
            paymentMethod: str = "upi",
            paymentDetails: Optional[Dict] = None
    ) -> Withdrawal:
        """
        Validate, debit the wallet and create a pending withdrawal.

        Raises:
            InvalidAmount: amount <= 0 or finer than one cent
            InvalidWithdrawal: below minimum, bad payment data, inactive member
            InsufficientBalance: balance < amount
            MemberNotFound: unknown member
        """
        amount = Decimal(str(amount))
        if not amount.is_finite() or amount <= 0 or amount != amount.quantize(CENT):
            raise InvalidAmount(amount)

        minimum = Config.get(Config.MIN_WITHDRAWAL, Decimal("150"))
        if amount < minimum:
            raise InvalidWithdrawal(f"Minimum withdrawal amount is {minimum}")

        self._validatePayment(paymentMethod, paymentDetails)

        user = self.session.get(User, userId)
        if not user:
            raise MemberNotFound(userId, "withdrawal request")
        if not user.isActive:
            raise InvalidWithdrawal(f"User {userId} is not active")
        if user.isBlocked:
            raise InvalidWithdrawal(f"User {userId} is blocked")

        self.session.commit()

        with self.locks.hold([userId]):
            try:
                transaction = self.ledger.debit(
                    userId,
                    amount,
                    reason="withdrawal",
                    transactionType=TransactionType.WITHDRAWAL,
                    notes=paymentMethod
                )

                withdrawal = Withdrawal(
                    userID=userId,
                    amount=amount,
                    paymentMethod=paymentMethod,
                    paymentDetails=paymentDetails,
                    status="pending",
                    debitTransactionID=transaction.transactionID
                )
                self.session.add(withdrawal)
                self.session.flush()
                withdrawalId = withdrawal.withdrawalID
                self.session.commit()

            except Exception:
                self.session.rollback()
                raise

        logger.info(
            f"Withdrawal {withdrawalId} requested by user {userId}: "
            f"{amount} via {paymentMethod}"
        )
        return withdrawal

    def approveWithdrawal(self, withdrawalId: int, transactionRef: Optional[str] = None) -> Withdrawal:
        """Mark as paid out. Funds were already debited at request time."""
        withdrawal = self._getWithdrawal(withdrawalId)

        if withdrawal.status == "approved":
            logger.debug(f"Withdrawal {withdrawalId} already approved")
            return withdrawal

        result = self.session.execute(
            update(Withdrawal)
            .where(Withdrawal.withdrawalID == withdrawalId, Withdrawal.status == "pending")
            .values(status="approved", processedAt=timeMachine.now, transactionRef=transactionRef)
        )

        if result.rowcount != 1:
            self.session.rollback()
            raise InvalidWithdrawal(f"Withdrawal {withdrawalId} is {withdrawal.status}, cannot approve")

        self.session.commit()
        logger.info(f"Withdrawal {withdrawalId} approved (ref={transactionRef})")
        return self._getWithdrawal(withdrawalId)

    def rejectWithdrawal(self, withdrawalId: int, reason: Optional[str] = None) -> Withdrawal:
        """
        Reject and refund the debited amount.
        Rejecting an already rejected withdrawal changes nothing.
        """
        withdrawal = self._getWithdrawal(withdrawalId)
        userId = withdrawal.userID
        amount = withdrawal.amount

        if withdrawal.status == "rejected":
            logger.debug(f"Withdrawal {withdrawalId} already rejected")
            return withdrawal
        if withdrawal.status == "approved":
            raise InvalidWithdrawal(f"Withdrawal {withdrawalId} is already approved")

        self.session.commit()

        with self.locks.hold([userId]):
            try:
                claimed = self.session.execute(
                    update(Withdrawal)
                    .where(Withdrawal.withdrawalID == withdrawalId, Withdrawal.status == "pending")
                    .values(status="rejected", processedAt=timeMachine.now, rejectionReason=reason)
                ).rowcount

                if claimed != 1:
                    self.session.rollback()
                    logger.debug(f"Withdrawal {withdrawalId} resolved concurrently, skipping refund")
                    return self._getWithdrawal(withdrawalId)

                transaction = self.ledger.refund(
                    userId,
                    amount,
                    reason=f"withdrawal={withdrawalId}",
                    idempotencyKey=f"withdrawal_refund:{withdrawalId}",
                    notes=reason
                )

                self.session.execute(
                    update(Withdrawal)
                    .where(Withdrawal.withdrawalID == withdrawalId)
                    .values(refundTransactionID=transaction.transactionID)
                )
                self.session.commit()

            except Exception:
                self.session.rollback()
                raise

        logger.info(f"Withdrawal {withdrawalId} rejected, refunded {amount} to user {userId}")
        return self._getWithdrawal(withdrawalId)

    def findPendingWithdrawal(self, userId: int, amount) -> Optional[Withdrawal]:
        """Oldest pending withdrawal of a member with exactly this amount."""
        return self.session.query(Withdrawal).filter_by(
            userID=userId,
            status="pending",
            amount=Decimal(str(amount))
        ).order_by(Withdrawal.withdrawalID).first()

    def getWithdrawalHistory(self, userId: int) -> List[Withdrawal]:
        """All withdrawals of a member, newest first."""
        return self.session.query(Withdrawal).filter_by(
            userID=userId
        ).order_by(Withdrawal.withdrawalID.desc()).all()

    def _getWithdrawal(self, withdrawalId: int) -> Withdrawal:
        withdrawal = self.session.query(Withdrawal).filter_by(
            withdrawalID=withdrawalId
        ).populate_existing().first()
        if not withdrawal:
            raise InvalidWithdrawal(f"Withdrawal {withdrawalId} not found")
        return withdrawal

    def _validatePayment(self, paymentMethod: str, paymentDetails: Optional[Dict]) -> None:
        if paymentMethod not in PAYMENT_METHODS:
            raise InvalidWithdrawal(f"Invalid payment method: {paymentMethod}")

        if paymentDetails is None:
            return

        if paymentMethod == "upi" and not paymentDetails.get("upiId"):
            raise InvalidWithdrawal("UPI ID is required for UPI withdrawal")

        if paymentMethod == "bank":
            bankDetails = paymentDetails.get("bankDetails") or {}
            missing = [field for field in BANK_FIELDS if not bankDetails.get(field)]
            if missing:
                raise InvalidWithdrawal(f"Bank details missing: {', '.join(missing)}")
