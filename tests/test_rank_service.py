# tests/test_rank_service.py
"""
Tests for RankService: thresholds on direct active referrals, one-time
bonuses, no downgrades.

Run:
    pytest tests/test_rank_service.py -v
"""
from decimal import Decimal

import pytest
from sqlalchemy import update

from config import Config
from models import User, RankAchievement
from mlm_system.config.ranks import Rank, reset_rank_config_cache
from mlm_system.services.rank_service import RankService
from mlm_system.services.ledger_service import LedgerService
from mlm_system.exceptions import MemberNotFound


@pytest.fixture
def small_ranks():
    """Thresholds reachable with a handful of members."""
    Config.set(Config.RANK_CONFIG, {
        "bronze": {"membersRequired": 2, "reward": "50"},
        "silver": {"membersRequired": 3, "reward": "100"},
        "gold": {"membersRequired": 10, "reward": "1000"},
    }, source="tests")
    reset_rank_config_cache()


def add_active_referrals(make_member, parent_id, count):
    return [make_member(referrer_id=parent_id, active=True) for _ in range(count)]


# =============================================================================
# TEST CLASS: evaluate
# =============================================================================

class TestEvaluate:
    """Tests for RankService.evaluate."""

    def test_below_threshold(self, session, small_ranks, make_member):
        sponsor = make_member(active=True)
        add_active_referrals(make_member, sponsor, 1)

        assert RankService(session).evaluate(sponsor) == []

    def test_jump_pays_every_intermediate_rank(self, session, small_ranks, make_member, journal):
        """
        TEST: reaching silver directly also pays bronze, in ascending order.
        """
        sponsor = make_member(active=True)
        add_active_referrals(make_member, sponsor, 3)

        awarded = RankService(session).evaluate(sponsor)
        session.commit()

        assert awarded == [Rank.BRONZE, Rank.SILVER]
        assert session.get(User, sponsor).rank == "silver"
        assert journal.count(sponsor, "rank_reward") == 2
        assert LedgerService(session).getWallet(sponsor).rankRewards == Decimal("150")

    def test_second_evaluation_pays_nothing(self, session, small_ranks, make_member, journal):
        sponsor = make_member(active=True)
        add_active_referrals(make_member, sponsor, 2)

        service = RankService(session)
        service.evaluate(sponsor)
        session.commit()

        assert service.evaluate(sponsor) == []
        session.commit()
        assert journal.count(sponsor, "rank_reward") == 1

    def test_inactive_referrals_do_not_count(self, session, small_ranks, make_member):
        sponsor = make_member(active=True)
        add_active_referrals(make_member, sponsor, 1)
        make_member(referrer_id=sponsor)
        make_member(referrer_id=sponsor)

        assert RankService(session).evaluate(sponsor) == []

    def test_rank_never_downgrades(self, session, small_ranks, make_member):
        """
        TEST: losing active referrals keeps the rank and pays nothing back.
        """
        sponsor = make_member(active=True)
        referrals = add_active_referrals(make_member, sponsor, 3)

        service = RankService(session)
        service.evaluate(sponsor)
        session.commit()

        session.execute(update(User).where(User.userID.in_(referrals)).values(isActive=False))
        session.commit()

        assert service.evaluate(sponsor) == []
        session.commit()
        assert session.get(User, sponsor).rank == "silver"

    @pytest.mark.parametrize("active, status", [(False, "active"), (True, "blocked")])
    def test_ineligible_member_is_not_awarded(self, session, small_ranks, make_member, journal, active, status):
        """
        TEST: inactive or blocked members receive no rank bonus until eligible again.
        """
        sponsor = make_member(active=active, status=status)
        add_active_referrals(make_member, sponsor, 2)

        service = RankService(session)
        assert service.evaluate(sponsor) == []
        session.commit()

        assert journal.count(sponsor, "rank_reward") == 0
        assert session.get(User, sponsor).rank == "newcomer"

        session.execute(
            update(User).where(User.userID == sponsor).values(isActive=True, status="active")
        )
        session.commit()

        assert service.evaluate(sponsor) == [Rank.BRONZE]
        session.commit()
        assert journal.count(sponsor, "rank_reward") == 1

    def test_achievements_recorded(self, session, small_ranks, make_member):
        sponsor = make_member(active=True)
        add_active_referrals(make_member, sponsor, 2)

        RankService(session).evaluate(sponsor)
        session.commit()

        achievement = session.query(RankAchievement).filter_by(userID=sponsor).one()
        assert achievement.rank == "bronze"
        assert achievement.previousRank == "newcomer"
        assert achievement.directActiveReferrals == 2
        assert achievement.transactionID is not None

    def test_unknown_member(self, session, small_ranks):
        with pytest.raises(MemberNotFound):
            RankService(session).evaluate(999999)


# =============================================================================
# TEST CLASS: progress
# =============================================================================

class TestRankProgress:
    """Tests for RankService.getRankProgress."""

    def test_progress_to_next_rank(self, session, small_ranks, make_member):
        sponsor = make_member(active=True)
        add_active_referrals(make_member, sponsor, 3)

        service = RankService(session)
        service.evaluate(sponsor)
        session.commit()

        progress = service.getRankProgress(sponsor)

        assert progress["currentRank"] == "silver"
        assert progress["directActiveReferrals"] == 3
        assert progress["nextRank"] == "gold"
        assert progress["nextRequired"] == 10
        assert progress["remaining"] == 7
        assert progress["achievedRanks"] == ["bronze", "silver"]

    def test_progress_at_top_rank(self, session, make_member):
        Config.set(Config.RANK_CONFIG, {"bronze": {"membersRequired": 1, "reward": "0"}})
        reset_rank_config_cache()

        sponsor = make_member(active=True)
        add_active_referrals(make_member, sponsor, 1)

        service = RankService(session)
        assert service.evaluate(sponsor) == [Rank.BRONZE]
        session.commit()

        progress = service.getRankProgress(sponsor)
        assert progress["nextRank"] is None
        assert progress["remaining"] == 0


# =============================================================================
# TEST CLASS: activation flow
# =============================================================================

class TestRankOnActivation:
    """Rank evaluation as the last activation step."""

    def test_referrer_ranks_up_on_activation(self, session, small_ranks, root, make_member, activate):
        first = make_member(referrer_id=root)
        assert activate(first)["ranksAchieved"] == []

        second = make_member(referrer_id=root)
        result = activate(second)
        assert result["ranksAchieved"] == ["bronze"]
        assert result["rankRewards"] == Decimal("50")
        # self 10 + direct 20 + bronze bonus 50
        assert result["totalDistributed"] == Decimal("80")

        # The activated member itself is not evaluated
        assert session.get(User, second).rank == "newcomer"
