# mlm_system/services/rank_service.py
"""
Rank management service for MLM system.

Rank is a function of the member's own direct active referrals only.
Every threshold reached pays its bonus once (RankAchievement is the record
of paid ranks); the rank itself is never downgraded. Inactive and blocked
members are not evaluated; reached ranks are awarded on the next evaluation
after they become eligible again.
"""
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

from models.user import User
from models.mlm.rank_achievement import RankAchievement
from mlm_system.config.ranks import RANK_CONFIG, Rank, compare_ranks, rank_index
from mlm_system.config.income import IncomeCategory, TransactionType
from mlm_system.services.ledger_service import LedgerService
from mlm_system.utils.referral_graph import ReferralGraph
from mlm_system.exceptions import MemberNotFound, DuplicateTransaction

logger = logging.getLogger(__name__)


class RankService:
    """Service for managing user ranks and qualifications."""

    def __init__(self, session: Session, ledger: Optional[LedgerService] = None):
        self.session = session
        self.ledger = ledger or LedgerService(session)
        self.graph = ReferralGraph(session)

    def evaluate(self, userId: int) -> List[Rank]:
        """
        Award every reached rank that has not been awarded yet.

        Thresholds are processed in ascending order, so a member who jumps
        several thresholds at once receives every intermediate bonus.

        Returns:
            Ranks awarded by this call, ascending
        """
        user = self.session.get(User, userId)
        if not user:
            raise MemberNotFound(userId, "rank evaluation")

        if not user.isActive or user.isBlocked:
            logger.debug(
                f"User {userId} not eligible for rank rewards "
                f"(active={user.isActive}, status={user.status})"
            )
            return []

        directActive = self.graph.count_direct_active_children(userId)
        achieved = self._achievedRanks(userId)
        awarded = []

        for rank, requirements in RANK_CONFIG().items():
            if directActive < requirements["membersRequired"]:
                continue

            if rank.value in achieved:
                continue

            if self._award(user, rank, requirements["reward"], directActive):
                awarded.append(rank)

        if awarded:
            logger.info(
                f"User {userId} achieved {[rank.value for rank in awarded]} "
                f"with {directActive} direct active referrals, rank now {user.rank}"
            )

        return awarded

    def getRankProgress(self, userId: int) -> Dict:
        """
        Current rank and distance to the next one.

        Returns:
            Dict with currentRank, directActiveReferrals, nextRank,
            nextRequired, remaining and achievedRanks
        """
        user = self.session.get(User, userId)
        if not user:
            raise MemberNotFound(userId, "rank progress")

        directActive = self.graph.count_direct_active_children(userId)

        nextRank = None
        nextRequired = None
        for rank, requirements in RANK_CONFIG().items():
            if compare_ranks(rank.value, user.rank) > 0:
                nextRank = rank
                nextRequired = requirements["membersRequired"]
                break

        return {
            "userId": userId,
            "currentRank": user.rank,
            "directActiveReferrals": directActive,
            "nextRank": nextRank.value if nextRank else None,
            "nextRequired": nextRequired,
            "remaining": max(nextRequired - directActive, 0) if nextRequired else 0,
            "achievedRanks": sorted(self._achievedRanks(userId), key=rank_index)
        }

    def _achievedRanks(self, userId: int) -> set:
        rows = self.session.query(RankAchievement.rank).filter_by(userID=userId).all()
        return {row[0] for row in rows}

    def _award(self, user: User, rank: Rank, reward: Decimal, directActive: int) -> bool:
        """Record achievement, pay bonus and raise rank in one savepoint."""
        previousRank = user.rank

        try:
            with self.session.begin_nested():
                transaction = None
                if reward > 0:
                    transaction = self.ledger.credit(
                        user.userID,
                        IncomeCategory.RANK_REWARDS,
                        reward,
                        reason=f"rank={rank.value}",
                        transactionType=TransactionType.RANK_REWARD,
                        idempotencyKey=f"rank_reward:{user.userID}:{rank.value}"
                    )

                self.session.add(RankAchievement(
                    userID=user.userID,
                    previousRank=previousRank,
                    rank=rank.value,
                    directActiveReferrals=directActive,
                    bonusAmount=reward,
                    transactionID=transaction.transactionID if transaction else None
                ))

                # Monotonic: never move below the current rank
                if compare_ranks(rank.value, user.rank) > 0:
                    user.rank = rank.value

                self.session.flush()

        except (DuplicateTransaction, IntegrityError):
            logger.debug(f"Rank {rank.value} of user {user.userID} already awarded, skipping")
            return False

        logger.info(f"User {user.userID} rank {previousRank} -> {user.rank}, bonus {reward}")
        return True
