# mlm_system/services/commission_service.py
"""
Commission calculation service - distributes income when a member activates.

onMemberActivated runs four steps, each in its own transaction:
    1. self income to the member
    2. direct income to the active referrer
    3. matrix counters and level completion payouts (MatrixService)
    4. rank evaluation of the direct referrer (RankService)

Every payout is guarded by an idempotency key or the completed flag, so the
whole event can be replayed after a crash without paying anything twice.
Commissions are a side effect of activation: a failed step is logged and
reported, never undoes the earlier steps and never undoes the activation.
"""
import time
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
import logging

from config import Config
from models.user import User
from mlm_system.config.income import (
    IncomeCategory,
    TransactionType,
    self_income_amount,
    direct_income_amount,
)
from mlm_system.config.ranks import RANK_CONFIG
from mlm_system.services.ledger_service import LedgerService
from mlm_system.services.matrix_service import MatrixService
from mlm_system.services.rank_service import RankService
from mlm_system.utils.referral_graph import ReferralGraph
from mlm_system.utils.member_locks import MemberLocks, memberLocks
from mlm_system.exceptions import (
    InvalidAmount,
    MemberNotFound,
    DuplicateTransaction,
    ConcurrentModification,
)

logger = logging.getLogger(__name__)


class CommissionService:
    """Service for distributing activation commissions."""

    def __init__(self, session: Session, locks: Optional[MemberLocks] = None):
        self.session = session
        self.locks = locks or memberLocks
        self.ledger = LedgerService(session)
        self.graph = ReferralGraph(session)
        self.matrixService = MatrixService(session, self.ledger)
        self.rankService = RankService(session, self.ledger)

    def onMemberActivated(self, userId: int) -> Dict:
        """
        Process all commissions for an activation.
        Idempotent: calling it again pays only what is still owed.
        """
        user = self.session.get(User, userId)

        if not user:
            logger.error(f"User {userId} not found")
            return {"success": False, "userId": userId, "error": "User not found"}

        if not user.isActive:
            logger.error(f"User {userId} is not active, no commissions")
            return {"success": False, "userId": userId, "error": "User is not active"}

        referrerId = user.upline
        uplineIds = self.graph.upline_ids(userId)

        results = {
            "success": True,
            "userId": userId,
            "selfIncome": Decimal("0"),
            "directIncome": Decimal("0"),
            "matrixPayouts": [],
            "ranksAchieved": [],
            "rankRewards": Decimal("0"),
            "totalDistributed": Decimal("0"),
            "errors": []
        }

        # 1. Self income
        paid = self._guardedStep(
            "self_income", userId, [userId],
            lambda: self._paySelfIncome(userId),
            results
        )
        results["selfIncome"] = paid or Decimal("0")

        # 2. Direct income to referrer
        if referrerId:
            paid = self._guardedStep(
                "direct_income", userId, [referrerId],
                lambda: self._payDirectIncome(userId, referrerId),
                results
            )
            results["directIncome"] = paid or Decimal("0")

        # 3. Matrix counters and completions
        matrix = self._guardedStep(
            "matrix_income", userId, [userId] + uplineIds,
            lambda: self.matrixService.processActivation(userId),
            results
        )
        if matrix:
            results["matrixPayouts"] = matrix["payouts"]

        # 4. Rank of the direct referrer only
        if referrerId:
            ranks = self._guardedStep(
                "rank", userId, [referrerId],
                lambda: self.rankService.evaluate(referrerId),
                results
            )
            results["ranksAchieved"] = [rank.value for rank in ranks or []]
            rankConfig = RANK_CONFIG()
            results["rankRewards"] = sum(
                (rankConfig[rank]["reward"] for rank in ranks or []), Decimal("0")
            )

        results["totalDistributed"] = (
            results["selfIncome"]
            + results["directIncome"]
            + sum((payout["amount"] for payout in results["matrixPayouts"]), Decimal("0"))
            + results["rankRewards"]
        )
        results["success"] = not results["errors"]

        logger.info(
            f"Processed activation of user {userId}: "
            f"self={results['selfIncome']}, direct={results['directIncome']}, "
            f"matrix={len(results['matrixPayouts'])} level(s), "
            f"ranks={results['ranksAchieved']}, total {results['totalDistributed']}"
        )

        return results

    # =========================================================================
    # OTHER ENTRY POINTS
    # =========================================================================

    def onDailyTick(self) -> Dict:
        """Daily income and daily matrix income for today."""
        from mlm_system.services.daily_income_service import DailyIncomeService
        return DailyIncomeService(self.session, self.locks).processDailyTick()

    def onWithdrawalRequested(
            self,
            userId: int,
            amount,
            paymentMethod: str = "upi",
            paymentDetails: Optional[Dict] = None
    ):
        """Debit immediately and create a pending withdrawal."""
        from mlm_system.services.withdrawal_service import WithdrawalService
        return WithdrawalService(self.session, self.locks).requestWithdrawal(
            userId, amount, paymentMethod, paymentDetails
        )

    def onWithdrawalRejected(self, userId: int, amount, reason: Optional[str] = None):
        """Refund the oldest pending withdrawal of this member with this amount."""
        from mlm_system.services.withdrawal_service import WithdrawalService
        service = WithdrawalService(self.session, self.locks)
        withdrawal = service.findPendingWithdrawal(userId, amount)
        if not withdrawal:
            logger.warning(f"No pending withdrawal of {amount} for user {userId}")
            return None
        return service.rejectWithdrawal(withdrawal.withdrawalID, reason)

    # =========================================================================
    # STEPS
    # =========================================================================

    def _paySelfIncome(self, userId: int) -> Decimal:
        idempotencyKey = f"self_income:{userId}"
        if self.ledger.hasTransaction(idempotencyKey):
            logger.debug(f"User {userId} already received self income")
            return Decimal("0")

        amount = self_income_amount()
        try:
            self.ledger.credit(
                userId,
                IncomeCategory.SELF_INCOME,
                amount,
                reason="activation",
                transactionType=TransactionType.SELF_INCOME,
                idempotencyKey=idempotencyKey
            )
        except DuplicateTransaction:
            return Decimal("0")

        return amount

    def _payDirectIncome(self, userId: int, referrerId: int) -> Decimal:
        referrer = self.session.get(User, referrerId)
        if not referrer:
            raise MemberNotFound(referrerId, f"referrer of user {userId}")

        if not referrer.isActive or referrer.isBlocked:
            logger.debug(
                f"Referrer {referrerId} of user {userId} not eligible for direct income "
                f"(active={referrer.isActive}, status={referrer.status})"
            )
            return Decimal("0")

        idempotencyKey = f"direct_income:{referrerId}:{userId}"
        if self.ledger.hasTransaction(idempotencyKey):
            logger.debug(f"Direct income {idempotencyKey} already paid")
            return Decimal("0")

        amount = direct_income_amount()
        try:
            self.ledger.credit(
                referrerId,
                IncomeCategory.DIRECT_INCOME,
                amount,
                reason=f"referral={userId}",
                transactionType=TransactionType.DIRECT_INCOME,
                sourceUserId=userId,
                idempotencyKey=idempotencyKey
            )
        except DuplicateTransaction:
            return Decimal("0")

        return amount

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def _guardedStep(
            self,
            stepName: str,
            userId: int,
            lockIds: Iterable[int],
            action: Callable,
            results: Dict
    ):
        """Run one step; record failures instead of raising (except InvalidAmount)."""
        try:
            return self._runStep(stepName, lockIds, action)

        except InvalidAmount as e:
            logger.error(f"Step {stepName} for user {userId} used invalid amount: {e}")
            raise

        except MemberNotFound as e:
            logger.warning(f"Step {stepName} for user {userId} skipped: {e}")
            results["errors"].append({"step": stepName, "error": str(e)})

        except Exception as e:
            logger.error(f"Step {stepName} failed for user {userId}: {e}", exc_info=True)
            results["errors"].append({"step": stepName, "error": str(e)})

        return None

    def _runStep(self, stepName: str, lockIds: Iterable[int], action: Callable):
        """
        Run action under member locks and commit.

        Conflicts are retried with exponential backoff. The open read
        transaction is ended before waiting on locks, so no thread ever
        holds the database while queueing for a member lock.
        """
        lockIds: List[int] = list(lockIds)
        maxRetries = Config.get(Config.LEDGER_MAX_RETRIES, 5)
        baseDelay = Config.get(Config.LEDGER_RETRY_BASE_DELAY, 0.05)

        for attempt in range(maxRetries + 1):
            self.session.commit()

            try:
                with self.locks.hold(lockIds):
                    result = action()
                    self.session.commit()
                return result

            except (ConcurrentModification, StaleDataError, OperationalError) as e:
                self.session.rollback()

                if attempt >= maxRetries:
                    logger.error(f"Step {stepName} gave up after {attempt + 1} attempts: {e}")
                    raise ConcurrentModification(
                        f"Step {stepName} failed after {attempt + 1} attempts"
                    ) from e

                delay = baseDelay * (2 ** attempt)
                logger.warning(
                    f"Step {stepName} conflict (attempt {attempt + 1}/{maxRetries + 1}): {e}, "
                    f"retrying in {delay:.2f}s"
                )
                time.sleep(delay)

            except Exception:
                self.session.rollback()
                raise
