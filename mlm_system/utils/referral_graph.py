# mlm_system/utils/referral_graph.py
"""
Read-only referral tree traversal.
Walks are iterative and bounded; descendant counts are read from the
incrementally maintained MatrixLevel counters.
"""
from typing import List, Optional, Set
from sqlalchemy import func
from sqlalchemy.orm import Session
import logging

from models.user import User
from models.matrix_level import MatrixLevel
from mlm_system.config.matrix import MATRIX_LEVELS

logger = logging.getLogger(__name__)


class ReferralGraph:
    """
    Safe helpers for walking the referral tree.
    Never loops forever: every walk is bounded by depth and guarded by a visited set.
    """

    # Max ids per IN (...) clause
    IN_CHUNK = 500

    def __init__(self, session: Session):
        self.session = session

    def upline_chain(self, user: User, max_depth: int = MATRIX_LEVELS) -> List[User]:
        """
        Get upline members, nearest first.

        Args:
            user: Starting member
            max_depth: Maximum number of hops

        Returns:
            List of users from immediate referrer upwards, at most max_depth long
        """
        chain = []
        visited = {user.userID}
        current_user = user

        while current_user.upline and len(chain) < max_depth:
            if current_user.upline in visited:
                logger.error(
                    f"Cycle detected in upline of user {user.userID} "
                    f"at user {current_user.userID}"
                )
                break

            upline_user = self.session.get(User, current_user.upline)

            if not upline_user:
                logger.warning(
                    f"Upline not found: userID={current_user.upline} "
                    f"for user {current_user.userID}"
                )
                break

            chain.append(upline_user)
            visited.add(upline_user.userID)
            current_user = upline_user

        return chain

    def upline_ids(self, user_id: int, max_depth: int = MATRIX_LEVELS) -> List[int]:
        """Same as upline_chain but by id; empty if the member does not exist."""
        user = self.session.get(User, user_id)
        if not user:
            return []
        return [upline_user.userID for upline_user in self.upline_chain(user, max_depth)]

    def direct_active_children(self, user_id: int) -> List[User]:
        """All members referred by user_id that are active."""
        return self.session.query(User).filter(
            User.upline == user_id,
            User.isActive == True
        ).order_by(User.userID).all()

    def count_direct_active_children(self, user_id: int) -> int:
        """Direct active referrals - the rank qualification metric."""
        return self.session.query(func.count(User.userID)).filter(
            User.upline == user_id,
            User.isActive == True
        ).scalar() or 0

    def count_active_descendants_at_depth(self, user_id: int, depth: int) -> int:
        """
        Active members exactly `depth` hops below user_id.

        Reads the counter maintained by MatrixService on every activation.
        Depth 0 is the member itself (1 if active, else 0). Depths below the
        matrix have no counter and are recounted from referral edges.
        """
        if depth < 0:
            raise ValueError(f"Depth must be non-negative, got {depth}")

        if depth == 0:
            user = self.session.get(User, user_id)
            return 1 if user and user.isActive else 0

        if depth > MATRIX_LEVELS:
            return self.recount_active_descendants_at_depth(user_id, depth)

        count = self.session.query(MatrixLevel.activeCount).filter_by(
            userID=user_id,
            level=depth
        ).scalar()
        return count or 0

    def recount_active_descendants_at_depth(self, user_id: int, depth: int) -> int:
        """
        Recompute the depth count from referral edges.

        Level by level: only active children are descended into, so an
        inactive member hides its whole subtree from its ancestors.
        Used for audits and counter rebuilds, never on the activation path.
        """
        if depth < 0:
            raise ValueError(f"Depth must be non-negative, got {depth}")

        if depth == 0:
            user = self.session.get(User, user_id)
            return 1 if user and user.isActive else 0

        frontier: List[int] = [user_id]
        visited: Set[int] = {user_id}

        for level in range(1, depth + 1):
            if not frontier:
                return 0

            children = []
            for start in range(0, len(frontier), self.IN_CHUNK):
                children.extend(
                    self.session.query(User.userID).filter(
                        User.upline.in_(frontier[start:start + self.IN_CHUNK]),
                        User.isActive == True
                    ).all()
                )

            next_frontier = []
            for (child_id,) in children:
                if child_id in visited:
                    logger.error(f"Cycle detected in downline of user {user_id} at user {child_id}")
                    continue
                visited.add(child_id)
                next_frontier.append(child_id)

            frontier = next_frontier

        return len(frontier)

    def get_referrer(self, user: User) -> Optional[User]:
        """Direct referrer or None."""
        if not user.upline:
            return None
        return self.session.get(User, user.upline)
