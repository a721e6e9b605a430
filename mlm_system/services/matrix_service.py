# mlm_system/services/matrix_service.py
"""
Matrix service - per-level active counters and one-shot level completion.

On activation of member M:
    1. M's contribution (itself plus its already counted subtree) is added to
       the counters of its upline, exactly once (MatrixPropagation marker).
       Contribution passes an ancestor only if that ancestor has propagated
       itself; an inactive member hides its subtree from everyone above it.
    2. Every touched (ancestor, level) is checked against capacity. Reaching
       capacity flips `completed` with a conditional UPDATE and pays
       rewardTable[level] in the same savepoint. Already completed levels
       are skipped, which makes the payout exactly-once.
    3. M's own levels are re-checked (they may have filled while inactive).

Callers hold the member locks of M and its upline (see CommissionService).
"""
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

from models.user import User
from models.matrix_level import MatrixLevel, MatrixPropagation
from mlm_system.config.matrix import (
    get_matrix_capacity,
    get_matrix_rewards,
    get_max_depth,
)
from mlm_system.config.income import IncomeCategory, TransactionType
from mlm_system.services.ledger_service import LedgerService
from mlm_system.utils.referral_graph import ReferralGraph
from mlm_system.utils.time_machine import timeMachine
from mlm_system.exceptions import MemberNotFound, DuplicateTransaction

logger = logging.getLogger(__name__)


class MatrixService:
    """Service for matrix counters and level completion payouts."""

    def __init__(self, session: Session, ledger: Optional[LedgerService] = None):
        self.session = session
        self.ledger = ledger or LedgerService(session)
        self.graph = ReferralGraph(session)

    def processActivation(self, userId: int) -> Dict:
        """
        Propagate a newly active member into the upline and pay completed levels.

        Safe to call repeatedly: counters move once, each level pays once.

        Returns:
            Dict with propagated flag, ancestorsUpdated and payouts list
        """
        user = self.session.get(User, userId)
        if not user:
            raise MemberNotFound(userId, "matrix activation")

        results = {
            "userId": userId,
            "propagated": False,
            "ancestorsUpdated": 0,
            "payouts": []
        }

        maxDepth = get_max_depth()
        chain = self.graph.upline_chain(user, maxDepth)

        touched = self._propagate(user, chain, maxDepth)
        if touched is not None:
            results["propagated"] = True
            results["ancestorsUpdated"] = len({ancestorId for ancestorId, _ in touched})

        # Hop levels first (nearest ancestor first), then levels reached through the subtree
        candidates: List[Tuple[int, int]] = [
            (ancestor.userID, distance) for distance, ancestor in enumerate(chain, start=1)
        ]
        for key in touched or []:
            if key not in candidates:
                candidates.append(key)

        for ancestorId, level in candidates:
            try:
                payout = self.checkCompletion(ancestorId, level, sourceUserId=userId)
            except MemberNotFound as e:
                logger.warning(f"Skipping matrix hop for user {userId}: {e}")
                continue
            if payout:
                results["payouts"].append(payout)

        # Catch-up: levels of the member itself that filled while it was inactive
        for level in range(1, maxDepth + 1):
            payout = self.checkCompletion(userId, level)
            if payout:
                results["payouts"].append(payout)

        if results["payouts"]:
            logger.info(
                f"Matrix processing for user {userId}: "
                f"{len(results['payouts'])} level(s) completed"
            )

        return results

    def checkCompletion(
            self,
            userId: int,
            level: int,
            sourceUserId: Optional[int] = None
    ) -> Optional[Dict]:
        """
        Complete and pay a level if its counter reached capacity.

        The completed flag is claimed by a compare-and-set UPDATE; only the
        caller whose UPDATE hits one row pays.

        Returns:
            Payout dict or None if nothing was paid
        """
        capacity = get_matrix_capacity()[level]
        reward = get_matrix_rewards()[level]

        row = self.session.query(
            MatrixLevel.activeCount,
            MatrixLevel.completed
        ).filter_by(userID=userId, level=level).first()

        if row is None:
            raise MemberNotFound(userId, f"matrix level {level}")

        activeCount, completed = row
        if completed:
            logger.debug(f"Level {level} of user {userId} already completed, skipping")
            return None

        if activeCount < capacity:
            return None

        member = self.session.get(User, userId)
        if not member.isActive or member.isBlocked:
            logger.debug(
                f"User {userId} reached level {level} capacity but is not eligible "
                f"(active={member.isActive}, status={member.status})"
            )
            return None

        idempotencyKey = f"matrix_income:{userId}:L{level}"

        try:
            with self.session.begin_nested():
                if not self._claimLevel(userId, level):
                    logger.debug(f"Level {level} of user {userId} claimed concurrently, skipping")
                    return None

                transaction = self.ledger.credit(
                    userId,
                    IncomeCategory.MATRIX_INCOME,
                    reward,
                    reason=f"matrix_level={level}",
                    transactionType=TransactionType.MATRIX_INCOME,
                    level=level,
                    sourceUserId=sourceUserId,
                    idempotencyKey=idempotencyKey
                )

        except DuplicateTransaction:
            # Paid earlier but the flag was lost; restore the flag only
            logger.warning(f"{idempotencyKey} exists for an uncompleted level, marking completed")
            self._claimLevel(userId, level)
            return None

        logger.info(
            f"User {userId} completed matrix level {level} "
            f"({activeCount}/{capacity}), paid {reward}"
        )

        return {
            "userId": userId,
            "level": level,
            "amount": reward,
            "activeCount": activeCount,
            "transactionId": transaction.transactionID
        }

    def getMatrixStatus(self, userId: int) -> List[Dict]:
        """Per-level progress of a member."""
        capacity = get_matrix_capacity()
        rewards = get_matrix_rewards()

        levels = self.session.query(MatrixLevel).filter_by(
            userID=userId
        ).order_by(MatrixLevel.level).all()

        if not levels:
            raise MemberNotFound(userId, "matrix status")

        return [
            {
                "level": record.level,
                "activeCount": record.activeCount,
                "capacity": capacity.get(record.level),
                "reward": rewards.get(record.level, Decimal("0")),
                "completed": record.completed,
                "completedAt": record.completedAt
            }
            for record in levels
            if record.level in capacity
        ]

    def auditCounts(self, userId: int) -> Dict[int, Dict[str, int]]:
        """
        Compare stored counters with a recount from referral edges.

        Returns:
            {level: {"stored": n, "actual": m}} for mismatching levels only
        """
        mismatches = {}
        for level in range(1, get_max_depth() + 1):
            stored = self.graph.count_active_descendants_at_depth(userId, level)
            actual = self.graph.recount_active_descendants_at_depth(userId, level)
            if stored != actual:
                mismatches[level] = {"stored": stored, "actual": actual}

        if mismatches:
            logger.warning(f"Matrix counters of user {userId} out of sync: {mismatches}")
        return mismatches

    def rebuildCounts(self, userId: int) -> Dict[int, Dict[str, int]]:
        """Overwrite stored counters with recounted values. Completion flags stay as they are."""
        mismatches = self.auditCounts(userId)
        for level, counts in mismatches.items():
            self.session.execute(
                update(MatrixLevel)
                .where(MatrixLevel.userID == userId, MatrixLevel.level == level)
                .values(activeCount=counts["actual"])
            )
        if mismatches:
            logger.info(f"Rebuilt matrix counters of user {userId}: levels {sorted(mismatches)}")
        return mismatches

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _hasPropagated(self, userId: int) -> bool:
        return self.session.query(MatrixPropagation.propagationID).filter_by(
            userID=userId
        ).first() is not None

    def _levelCounts(self, userId: int) -> Dict[int, int]:
        rows = self.session.query(MatrixLevel.level, MatrixLevel.activeCount).filter_by(
            userID=userId
        ).all()
        return {level: count for level, count in rows}

    def _propagate(self, user: User, chain: List[User], maxDepth: int) -> Optional[List[Tuple[int, int]]]:
        """
        Add the member's contribution to upline counters.

        Returns:
            Touched (ancestorId, level) pairs, or None if nothing was propagated
        """
        if not user.isActive:
            logger.debug(f"User {user.userID} is not active, nothing to propagate")
            return None

        if self._hasPropagated(user.userID):
            return None

        # contribution[k] = active members k levels below the member, k=0 is itself
        counts = self._levelCounts(user.userID)
        contribution = [1] + [counts.get(k, 0) for k in range(1, maxDepth)]

        touched = []
        ancestorsUpdated = 0

        try:
            with self.session.begin_nested():
                for distance, ancestor in enumerate(chain, start=1):
                    for k, amount in enumerate(contribution):
                        level = distance + k
                        if level > maxDepth:
                            break
                        if amount == 0:
                            continue
                        self.session.execute(
                            update(MatrixLevel)
                            .where(MatrixLevel.userID == ancestor.userID, MatrixLevel.level == level)
                            .values(activeCount=MatrixLevel.activeCount + amount)
                        )
                        touched.append((ancestor.userID, level))

                    ancestorsUpdated += 1

                    # Not yet counted upwards itself: it will carry our contribution when it is
                    if not self._hasPropagated(ancestor.userID):
                        break

                self.session.add(MatrixPropagation(
                    userID=user.userID,
                    ancestorsUpdated=ancestorsUpdated
                ))
                self.session.flush()

        except IntegrityError:
            logger.debug(f"User {user.userID} propagated concurrently, skipping")
            return None

        logger.debug(
            f"Propagated user {user.userID} into {ancestorsUpdated} ancestor(s), "
            f"{len(touched)} counter(s) updated"
        )
        return touched

    def _claimLevel(self, userId: int, level: int) -> bool:
        """Atomic false -> true transition of the completed flag."""
        result = self.session.execute(
            update(MatrixLevel)
            .where(
                MatrixLevel.userID == userId,
                MatrixLevel.level == level,
                MatrixLevel.completed == False
            )
            .values(completed=True, completedAt=timeMachine.now)
        )
        return result.rowcount == 1
