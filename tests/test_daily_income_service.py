# tests/test_daily_income_service.py
"""
Tests for DailyIncomeService: once-per-day batches.

Run:
    pytest tests/test_daily_income_service.py -v
"""
from decimal import Decimal

from sqlalchemy import update

from models import User
from mlm_system.services.daily_income_service import DailyIncomeService
from mlm_system.services.ledger_service import LedgerService


def add_children(make_member, activate, parent_id, count):
    for _ in range(count):
        activate(make_member(referrer_id=parent_id))


# =============================================================================
# TEST CLASS: daily income
# =============================================================================

class TestDailyIncome:
    """Tests for processDailyIncome."""

    def test_active_members_credited_once(self, session, locks, make_member, journal):
        """
        TEST: active, non-blocked members get the daily amount; others nothing.
        """
        first = make_member(active=True)
        second = make_member(active=True)
        blocked = make_member(active=True, status="blocked")
        inactive = make_member()

        stats = DailyIncomeService(session, locks).processDailyIncome()

        assert stats["date"] == "2025-03-10"
        assert stats["credited"] == 2
        assert stats["errors"] == 0
        assert stats["totalAmount"] == Decimal("10")

        assert journal.count(first, "daily_income") == 1
        assert journal.count(second, "daily_income") == 1
        assert journal.count(blocked, "daily_income") == 0
        assert journal.count(inactive, "daily_income") == 0
        assert LedgerService(session).getWallet(first).dailyIncome == Decimal("5")

    def test_rerun_same_day_pays_nothing(self, session, locks, make_member, journal):
        user_id = make_member(active=True)
        service = DailyIncomeService(session, locks)

        service.processDailyIncome()
        stats = service.processDailyIncome()

        assert stats["credited"] == 0
        assert journal.count(user_id, "daily_income") == 1

    def test_next_day_pays_again(self, session, locks, make_member, journal, frozen_time):
        user_id = make_member(active=True)
        service = DailyIncomeService(session, locks)

        service.processDailyIncome()
        frozen_time.advanceTime(days=1)
        stats = service.processDailyIncome()

        assert stats["date"] == "2025-03-11"
        assert stats["credited"] == 1
        assert journal.count(user_id, "daily_income") == 2

    def test_later_the_same_day_pays_nothing(self, session, locks, make_member, journal, frozen_time):
        user_id = make_member(active=True)
        service = DailyIncomeService(session, locks)

        service.processDailyIncome()
        frozen_time.advanceTime(hours=10)
        service.processDailyIncome()

        assert journal.count(user_id, "daily_income") == 1

    def test_lost_marker_does_not_double_pay(self, session, locks, make_member, journal):
        """
        TEST: marker reset after payment - idempotency key still holds.
        """
        user_id = make_member(active=True)
        service = DailyIncomeService(session, locks)
        service.processDailyIncome()

        session.execute(update(User).where(User.userID == user_id).values(lastDailyIncomeAt=None))
        session.commit()

        stats = service.processDailyIncome()

        assert stats["skipped"] == 1
        assert journal.count(user_id, "daily_income") == 1


# =============================================================================
# TEST CLASS: daily matrix income
# =============================================================================

class TestDailyMatrixIncome:
    """Tests for processDailyMatrixIncome."""

    def test_completed_levels_paid_daily(self, session, locks, small_matrix, root, make_member, activate, journal, frozen_time):
        add_children(make_member, activate, root, 2)
        service = DailyIncomeService(session, locks)

        stats = service.processDailyMatrixIncome()
        assert stats["credited"] == 1
        assert journal.count(root, "daily_matrix_income", level=1) == 1

        assert service.processDailyMatrixIncome()["credited"] == 0

        frozen_time.advanceTime(days=1)
        assert service.processDailyMatrixIncome()["credited"] == 1
        assert journal.count(root, "daily_matrix_income", level=1) == 2
        assert LedgerService(session).getWallet(root).dailyTeamIncome == Decimal("10")

    def test_levels_below_capacity_not_paid(self, session, locks, root, make_member, activate):
        add_children(make_member, activate, root, 4)

        stats = DailyIncomeService(session, locks).processDailyMatrixIncome()

        assert stats["processed"] == 0
        assert stats["credited"] == 0

    def test_daily_tick_runs_both(self, session, locks, small_matrix, root, make_member, activate):
        add_children(make_member, activate, root, 2)

        summary = DailyIncomeService(session, locks).processDailyTick()

        assert summary["dailyIncome"]["credited"] == 3
        assert summary["dailyMatrixIncome"]["credited"] == 1


# =============================================================================
# TEST CLASS: stats
# =============================================================================

class TestDailyIncomeStats:
    """Tests for getDailyIncomeStats."""

    def test_stats_before_and_after(self, session, locks, make_member):
        make_member(active=True)
        make_member(active=True)
        service = DailyIncomeService(session, locks)

        before = service.getDailyIncomeStats()
        assert before["activeMembers"] == 2
        assert before["pendingToday"] == 2
        assert before["amountToday"] == Decimal("0")

        service.processDailyIncome()
        after = service.getDailyIncomeStats()

        assert after["creditedToday"] == 2
        assert after["pendingToday"] == 0
        assert after["amountToday"] == Decimal("10")
        assert after["totalDailyIncome"] == Decimal("10")
