# tests/test_referral_graph.py
"""
Tests for ReferralGraph: bounded upline walks and descendant counts.

Run:
    pytest tests/test_referral_graph.py -v
"""
import pytest
from sqlalchemy import update

from models import User
from mlm_system.utils.referral_graph import ReferralGraph


def build_chain(make_member, length, active=True):
    """Linear chain root -> ... -> leaf, returns ids top-down."""
    ids = [make_member(active=active)]
    for _ in range(length - 1):
        ids.append(make_member(referrer_id=ids[-1], active=active))
    return ids


# =============================================================================
# TEST CLASS: upline walks
# =============================================================================

class TestUplineChain:
    """Tests for upline_chain / upline_ids."""

    def test_nearest_first(self, session, make_member):
        ids = build_chain(make_member, 4)
        graph = ReferralGraph(session)

        assert graph.upline_ids(ids[-1]) == list(reversed(ids[:-1]))

    def test_bounded_by_max_depth(self, session, make_member):
        """
        TEST: walk stops after max_depth hops even on a deeper chain.
        """
        ids = build_chain(make_member, 10)
        graph = ReferralGraph(session)

        assert len(graph.upline_ids(ids[-1])) == 7
        assert graph.upline_ids(ids[-1], max_depth=2) == [ids[-2], ids[-3]]

    def test_root_and_unknown_member(self, session, make_member):
        root = make_member()
        graph = ReferralGraph(session)

        assert graph.upline_ids(root) == []
        assert graph.upline_ids(999999) == []

    def test_cycle_is_cut(self, session, make_member):
        """
        TEST: a corrupted edge pointing back down the tree does not loop forever.
        """
        a = make_member()
        b = make_member(referrer_id=a)
        c = make_member(referrer_id=b)

        session.execute(update(User).where(User.userID == a).values(upline=c))
        session.commit()

        chain = ReferralGraph(session).upline_ids(c)
        assert chain == [b, a]

    def test_get_referrer(self, session, make_member):
        a = make_member()
        b = make_member(referrer_id=a)
        graph = ReferralGraph(session)

        assert graph.get_referrer(session.get(User, b)).userID == a
        assert graph.get_referrer(session.get(User, a)) is None


# =============================================================================
# TEST CLASS: descendant counts
# =============================================================================

class TestDescendantCounts:
    """Tests for direct and depth counts."""

    def test_direct_active_children(self, session, make_member):
        root = make_member(active=True)
        active_ids = [make_member(referrer_id=root, active=True) for _ in range(3)]
        make_member(referrer_id=root)

        graph = ReferralGraph(session)

        assert graph.count_direct_active_children(root) == 3
        assert [u.userID for u in graph.direct_active_children(root)] == active_ids

    def test_stored_counts_match_recount(self, session, root, make_member, activate):
        """
        TEST: counters maintained on activation agree with a recount from edges.
        """
        children = []
        for _ in range(2):
            child = make_member(referrer_id=root)
            activate(child)
            children.append(child)

        for child in children:
            for _ in range(2):
                grandchild = make_member(referrer_id=child)
                activate(grandchild)

        graph = ReferralGraph(session)
        for depth in (1, 2, 3):
            assert graph.count_active_descendants_at_depth(root, depth) == \
                graph.recount_active_descendants_at_depth(root, depth)

        assert graph.count_active_descendants_at_depth(root, 1) == 2
        assert graph.count_active_descendants_at_depth(root, 2) == 4
        assert graph.count_active_descendants_at_depth(root, 0) == 1

    def test_inactive_member_hides_subtree(self, session, make_member):
        """
        TEST: active members below an inactive one are not counted for the upline.
        """
        root = make_member(active=True)
        gap = make_member(referrer_id=root)
        make_member(referrer_id=gap, active=True)
        make_member(referrer_id=gap, active=True)

        graph = ReferralGraph(session)

        assert graph.recount_active_descendants_at_depth(root, 1) == 0
        assert graph.recount_active_descendants_at_depth(root, 2) == 0
        assert graph.recount_active_descendants_at_depth(gap, 1) == 2

    def test_recount_chunks_wide_frontier(self, session, make_member, monkeypatch):
        root = make_member(active=True)
        for _ in range(5):
            child = make_member(referrer_id=root, active=True)
            make_member(referrer_id=child, active=True)

        monkeypatch.setattr(ReferralGraph, "IN_CHUNK", 2)

        assert ReferralGraph(session).recount_active_descendants_at_depth(root, 2) == 5

    def test_depth_below_matrix_is_recounted(self, session, make_member):
        """
        TEST: depths deeper than the matrix have no stored counter and are recounted.
        """
        ids = build_chain(make_member, 10)
        graph = ReferralGraph(session)

        assert graph.count_active_descendants_at_depth(ids[0], 8) == 1
        assert graph.count_active_descendants_at_depth(ids[0], 9) == 1
        assert graph.count_active_descendants_at_depth(ids[0], 10) == 0

    def test_negative_depth_raises(self, session, make_member):
        root = make_member(active=True)
        graph = ReferralGraph(session)

        with pytest.raises(ValueError):
            graph.count_active_descendants_at_depth(root, -1)
        with pytest.raises(ValueError):
            graph.recount_active_descendants_at_depth(root, -1)
