# mlm_system/services/daily_income_service.py
"""
Daily income batch jobs.

processDailyIncome        - fixed amount to every active member, once per day
processDailyMatrixIncome  - rewardTable[L] for every level at capacity, once per day

The last-credited timestamp is the idempotency marker: it is moved forward
by a conditional UPDATE in the same transaction as the credit, so an
interrupted run simply resumes with the members not yet paid today.
"""
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session
import logging

from models.user import User
from models.matrix_level import MatrixLevel
from models.wallet_transaction import WalletTransaction
from mlm_system.config.income import IncomeCategory, TransactionType, daily_income_amount
from mlm_system.config.matrix import get_matrix_capacity, get_matrix_rewards, get_max_depth
from mlm_system.services.ledger_service import LedgerService, CENT
from mlm_system.utils.member_locks import MemberLocks, memberLocks
from mlm_system.utils.time_machine import timeMachine
from mlm_system.exceptions import DuplicateTransaction

logger = logging.getLogger(__name__)


class DailyIncomeService:
    """Service for daily income and daily matrix (team) income."""

    def __init__(self, session: Session, locks: Optional[MemberLocks] = None):
        self.session = session
        self.locks = locks or memberLocks
        self.ledger = LedgerService(session)

    def processDailyTick(self) -> Dict:
        """Run both daily batches for today."""
        logger.info(f"Daily tick for {timeMachine.today}")

        summary = {
            "date": timeMachine.today,
            "dailyIncome": self.processDailyIncome(),
            "dailyMatrixIncome": self.processDailyMatrixIncome()
        }

        logger.info(
            f"Daily tick {summary['date']} done: "
            f"{summary['dailyIncome']['credited']} daily, "
            f"{summary['dailyMatrixIncome']['credited']} matrix credits"
        )
        return summary

    def processDailyIncome(self) -> Dict:
        """
        Credit DAILY_INCOME_AMOUNT to every active, non-blocked member
        not yet credited today.
        """
        todayStart = timeMachine.todayStart
        today = timeMachine.today
        amount = daily_income_amount()

        stats = self._newStats(today)

        notPaidToday = or_(User.lastDailyIncomeAt.is_(None), User.lastDailyIncomeAt < todayStart)

        userIds = [
            row[0] for row in self.session.query(User.userID).filter(
                User.isActive == True,
                User.status != "blocked",
                notPaidToday
            ).order_by(User.userID).all()
        ]
        self.session.commit()

        for userId in userIds:
            stats["processed"] += 1
            try:
                with self.locks.hold([userId]):
                    claimed = self.session.execute(
                        update(User)
                        .where(User.userID == userId, notPaidToday)
                        .values(lastDailyIncomeAt=timeMachine.now)
                    ).rowcount

                    if claimed != 1:
                        self.session.rollback()
                        stats["skipped"] += 1
                        continue

                    try:
                        self.ledger.credit(
                            userId,
                            IncomeCategory.DAILY_INCOME,
                            amount,
                            reason=f"daily={today}",
                            transactionType=TransactionType.DAILY_INCOME,
                            idempotencyKey=f"daily_income:{userId}:{today}"
                        )
                    except DuplicateTransaction:
                        # Paid before the marker was written; keep the marker
                        self.session.commit()
                        stats["skipped"] += 1
                        continue

                    self.session.commit()
                    stats["credited"] += 1
                    stats["totalAmount"] += amount

            except Exception as e:
                self.session.rollback()
                logger.error(f"Daily income failed for user {userId}: {e}", exc_info=True)
                stats["errors"] += 1

        logger.info(
            f"Daily income {today}: {stats['credited']} credited, "
            f"{stats['skipped']} skipped, {stats['errors']} errors, total {stats['totalAmount']}"
        )
        return stats

    def processDailyMatrixIncome(self) -> Dict:
        """
        Credit rewardTable[L] for every level whose active count is at or
        above capacity, once per (member, level) per day.
        """
        todayStart = timeMachine.todayStart
        today = timeMachine.today
        capacity = get_matrix_capacity()
        rewards = get_matrix_rewards()
        maxDepth = get_max_depth()

        stats = self._newStats(today)

        notPaidToday = or_(
            MatrixLevel.lastDailyCreditAt.is_(None),
            MatrixLevel.lastDailyCreditAt < todayStart
        )

        rows = self.session.query(
            MatrixLevel.userID,
            MatrixLevel.level,
            MatrixLevel.activeCount
        ).join(User, User.userID == MatrixLevel.userID).filter(
            User.isActive == True,
            User.status != "blocked",
            MatrixLevel.level <= maxDepth,
            MatrixLevel.activeCount > 0,
            notPaidToday
        ).order_by(MatrixLevel.userID, MatrixLevel.level).all()

        eligible = [
            (userId, level) for userId, level, activeCount in rows
            if activeCount >= capacity[level]
        ]
        self.session.commit()

        for userId, level in eligible:
            stats["processed"] += 1
            try:
                with self.locks.hold([userId]):
                    claimed = self.session.execute(
                        update(MatrixLevel)
                        .where(
                            MatrixLevel.userID == userId,
                            MatrixLevel.level == level,
                            MatrixLevel.activeCount >= capacity[level],
                            notPaidToday
                        )
                        .values(lastDailyCreditAt=timeMachine.now)
                    ).rowcount

                    if claimed != 1:
                        self.session.rollback()
                        stats["skipped"] += 1
                        continue

                    try:
                        self.ledger.credit(
                            userId,
                            IncomeCategory.DAILY_TEAM_INCOME,
                            rewards[level],
                            reason=f"daily_matrix={today}",
                            transactionType=TransactionType.DAILY_MATRIX_INCOME,
                            level=level,
                            idempotencyKey=f"daily_matrix_income:{userId}:L{level}:{today}"
                        )
                    except DuplicateTransaction:
                        self.session.commit()
                        stats["skipped"] += 1
                        continue

                    self.session.commit()
                    stats["credited"] += 1
                    stats["totalAmount"] += rewards[level]

            except Exception as e:
                self.session.rollback()
                logger.error(
                    f"Daily matrix income failed for user {userId} level {level}: {e}",
                    exc_info=True
                )
                stats["errors"] += 1

        logger.info(
            f"Daily matrix income {today}: {stats['credited']} credited, "
            f"{stats['skipped']} skipped, {stats['errors']} errors, total {stats['totalAmount']}"
        )
        return stats

    def getDailyIncomeStats(self) -> Dict:
        """
        Daily income overview for today.

        Returns:
            Dict with activeMembers, creditedToday, pendingToday,
            amountToday and totalDailyIncome
        """
        todayStart = timeMachine.todayStart

        activeMembers = self.session.query(func.count(User.userID)).filter(
            User.isActive == True,
            User.status != "blocked"
        ).scalar() or 0

        creditedToday = self.session.query(func.count(User.userID)).filter(
            User.isActive == True,
            User.lastDailyIncomeAt >= todayStart
        ).scalar() or 0

        amountToday = self._sumTransactions(
            [TransactionType.DAILY_INCOME, TransactionType.DAILY_MATRIX_INCOME],
            since=todayStart
        )
        totalDailyIncome = self._sumTransactions([TransactionType.DAILY_INCOME])

        return {
            "date": timeMachine.today,
            "activeMembers": activeMembers,
            "creditedToday": creditedToday,
            "pendingToday": max(activeMembers - creditedToday, 0),
            "amountToday": amountToday,
            "totalDailyIncome": totalDailyIncome
        }

    def _sumTransactions(self, types: List[TransactionType], since=None) -> Decimal:
        query = self.session.query(
            func.coalesce(func.sum(WalletTransaction.amount), 0)
        ).filter(WalletTransaction.type.in_([t.value for t in types]))
        if since is not None:
            query = query.filter(WalletTransaction.createdAt >= since)
        return Decimal(str(query.scalar())).quantize(CENT)

    @staticmethod
    def _newStats(today: str) -> Dict:
        return {
            "date": today,
            "processed": 0,
            "credited": 0,
            "skipped": 0,
            "errors": 0,
            "totalAmount": Decimal("0")
        }
