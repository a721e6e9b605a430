# mlm_system/services/investment_service.py
"""
Investment service - fixed package bought from the wallet.

The purchase is debited at once; after the term the fixed return is
credited exactly once (status compare-and-set active -> matured).
"""
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy import update
from sqlalchemy.orm import Session
import logging

from config import Config
from models.user import User
from models.investment import Investment
from mlm_system.config.income import IncomeCategory, TransactionType
from mlm_system.services.ledger_service import LedgerService
from mlm_system.utils.member_locks import MemberLocks, memberLocks
from mlm_system.utils.time_machine import timeMachine
from mlm_system.exceptions import InvalidInvestment, MemberNotFound, DuplicateTransaction

logger = logging.getLogger(__name__)


class InvestmentService:
    """Service for investment purchases and maturity payouts."""

    def __init__(self, session: Session, locks: Optional[MemberLocks] = None):
        self.session = session
        self.locks = locks or memberLocks
        self.ledger = LedgerService(session)

    def createInvestment(self, userId: int) -> Investment:
        """
        Buy the investment package from the wallet balance.

        Raises:
            MemberNotFound: unknown member
            InvalidInvestment: member inactive/blocked or already invested
            InsufficientBalance: balance below package price
        """
        user = self.session.get(User, userId)
        if not user:
            raise MemberNotFound(userId, "investment")
        if not user.isActive or user.isBlocked:
            raise InvalidInvestment(f"User {userId} cannot invest (active={user.isActive}, status={user.status})")

        amount = Config.get(Config.INVESTMENT_AMOUNT)
        returnAmount = Config.get(Config.INVESTMENT_RETURN)
        termDays = Config.get(Config.INVESTMENT_TERM_DAYS)

        self.session.commit()

        with self.locks.hold([userId]):
            try:
                if self._activeInvestment(userId):
                    raise InvalidInvestment(f"User {userId} already has an active investment")

                transaction = self.ledger.debit(
                    userId,
                    amount,
                    reason="investment",
                    transactionType=TransactionType.INVESTMENT_PURCHASE
                )

                investment = Investment(
                    userID=userId,
                    amount=amount,
                    returnAmount=returnAmount,
                    termDays=termDays,
                    status="active",
                    startDate=timeMachine.now,
                    purchaseTransactionID=transaction.transactionID
                )
                self.session.add(investment)
                self.session.flush()
                investmentId = investment.investmentID
                self.session.commit()

            except Exception:
                self.session.rollback()
                raise

        logger.info(
            f"Investment {investmentId} created for user {userId}: "
            f"{amount} -> {returnAmount} after {termDays} days"
        )
        return investment

    def processMaturities(self) -> Dict:
        """
        Pay every active investment whose term has passed.
        Re-runnable: a matured investment is never paid again.
        """
        now = timeMachine.now
        stats = {"processed": 0, "matured": 0, "skipped": 0, "errors": 0, "totalAmount": Decimal("0")}

        candidates = self.session.query(
            Investment.investmentID,
            Investment.userID,
            Investment.startDate,
            Investment.termDays,
            Investment.returnAmount
        ).filter(Investment.status == "active").order_by(Investment.investmentID).all()

        due = [
            row for row in candidates
            if row.startDate + timedelta(days=row.termDays) <= now
        ]
        self.session.commit()

        for investmentId, userId, startDate, termDays, returnAmount in due:
            stats["processed"] += 1
            try:
                with self.locks.hold([userId]):
                    claimed = self.session.execute(
                        update(Investment)
                        .where(Investment.investmentID == investmentId, Investment.status == "active")
                        .values(status="matured", maturedAt=now)
                    ).rowcount

                    if claimed != 1:
                        self.session.rollback()
                        stats["skipped"] += 1
                        continue

                    try:
                        transaction = self.ledger.credit(
                            userId,
                            IncomeCategory.INVESTMENT_INCOME,
                            returnAmount,
                            reason=f"investment={investmentId}",
                            transactionType=TransactionType.INVESTMENT_MATURITY,
                            idempotencyKey=f"investment_maturity:{investmentId}"
                        )
                    except DuplicateTransaction:
                        self.session.commit()
                        stats["skipped"] += 1
                        continue

                    self.session.execute(
                        update(Investment)
                        .where(Investment.investmentID == investmentId)
                        .values(maturityTransactionID=transaction.transactionID)
                    )
                    self.session.commit()

                    stats["matured"] += 1
                    stats["totalAmount"] += returnAmount
                    logger.info(f"Investment {investmentId} of user {userId} matured, paid {returnAmount}")

            except Exception as e:
                self.session.rollback()
                logger.error(f"Maturity of investment {investmentId} failed: {e}", exc_info=True)
                stats["errors"] += 1

        logger.info(
            f"Investment maturities: {stats['matured']} matured, "
            f"{stats['skipped']} skipped, {stats['errors']} errors"
        )
        return stats

    def getInvestments(self, userId: int) -> List[Investment]:
        """All investments of a member, newest first."""
        return self.session.query(Investment).filter_by(
            userID=userId
        ).order_by(Investment.investmentID.desc()).all()

    def _activeInvestment(self, userId: int) -> Optional[Investment]:
        return self.session.query(Investment).filter_by(
            userID=userId,
            status="active"
        ).first()
