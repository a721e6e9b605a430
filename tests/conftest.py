# tests/conftest.py
"""
Pytest configuration and shared fixtures.

Every test gets a fresh file-backed SQLite database (threads need a real
file, not :memory:), default configuration and a frozen virtual clock.

Run:
    pytest -v
"""
import uuid
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import func, update
from sqlalchemy.orm import sessionmaker

from config import Config
from core.db import create_db_engine, configure_session_factory
from models import Base, User, WalletTransaction
from models.listeners import register_all_listeners
from mlm_system.config.ranks import reset_rank_config_cache
from mlm_system.events.event_bus import eventBus
from mlm_system.services.commission_service import CommissionService
from mlm_system.utils.member_locks import MemberLocks
from mlm_system.utils.time_machine import timeMachine

# =============================================================================
# INITIALIZE CONFIG
# =============================================================================

Config.initialize_from_env()

# =============================================================================
# CONSTANTS
# =============================================================================

TEST_NOW = datetime(2025, 3, 10, 9, 30)

SMALL_CAPACITY = {1: 2, 2: 4, 3: 8, 4: 16, 5: 32, 6: 64, 7: 128}


# =============================================================================
# GLOBAL STATE FIXTURES
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def setup_listeners():
    """Register listeners once at test session start."""
    register_all_listeners()


@pytest.fixture(autouse=True)
def fresh_config():
    """Default configuration for every test; tests may Config.set freely."""
    Config.initialize_from_env()
    Config.set(Config.LEDGER_RETRY_BASE_DELAY, 0.0, source="tests")
    reset_rank_config_cache()
    yield
    Config.initialize_from_env()
    reset_rank_config_cache()


@pytest.fixture(autouse=True)
def frozen_time():
    """Virtual clock fixed at TEST_NOW."""
    timeMachine.setTime(TEST_NOW)
    yield timeMachine
    timeMachine.resetToRealTime()


@pytest.fixture(autouse=True)
def clean_event_bus():
    eventBus.clear()
    yield
    eventBus.clear()


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture
def engine(tmp_path):
    """Fresh database per test, also bound to core.db session factory."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'mlm_test.db'}")
    Base.metadata.create_all(engine)
    configure_session_factory(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def session(session_factory):
    """Create database session for each test."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def locks():
    """Private lock registry so tests never share lock state."""
    return MemberLocks()


# =============================================================================
# MEMBER FIXTURES
# =============================================================================

@pytest.fixture
def make_member(session):
    """
    Factory: create a member directly (no commissions).

    Returns the new userID.
    """

    def _make(referrer_id=None, active=False, status="active", email=None):
        user = User(
            email=email or f"member_{uuid.uuid4().hex[:10]}@example.com",
            firstname="Test",
            upline=referrer_id,
            referralCode=uuid.uuid4().hex[:8].upper(),
            status=status,
            isActive=active,
            activatedAt=timeMachine.now if active else None
        )
        session.add(user)
        session.flush()
        user_id = user.userID
        session.commit()
        return user_id

    return _make


@pytest.fixture
def mark_active(session):
    """Flip isActive without running commissions (bulk/admin style activation)."""

    def _mark(*user_ids):
        session.execute(
            update(User)
            .where(User.userID.in_(user_ids))
            .values(isActive=True, activatedAt=timeMachine.now)
        )
        session.commit()

    return _mark


@pytest.fixture
def activate(session, locks, mark_active):
    """
    Activate a member the way the redemption flow does:
    mark active, commit, then distribute commissions.
    """

    def _activate(user_id):
        mark_active(user_id)
        return CommissionService(session, locks).onMemberActivated(user_id)

    return _activate


@pytest.fixture
def root(make_member, activate):
    """Active top-level member with no referrer."""
    user_id = make_member()
    activate(user_id)
    return user_id


# =============================================================================
# HELPER FIXTURES
# =============================================================================

@pytest.fixture
def small_matrix():
    """Capacity 2^L so deep levels can fill in a test."""
    Config.set(Config.MATRIX_CAPACITY, dict(SMALL_CAPACITY), source="tests")
    return SMALL_CAPACITY


@pytest.fixture
def journal(session):
    """
    Journal helpers.

    journal.count(user_id, type, level=None) -> number of rows
    journal.sum(user_id) -> SUM(amount)
    """

    class _Journal:
        def count(self, user_id, transaction_type, level=None):
            query = session.query(func.count(WalletTransaction.transactionID)).filter(
                WalletTransaction.userID == user_id,
                WalletTransaction.type == transaction_type
            )
            if level is not None:
                query = query.filter(WalletTransaction.level == level)
            return query.scalar()

        def sum(self, user_id):
            result = session.query(
                func.coalesce(func.sum(WalletTransaction.amount), 0)
            ).filter(WalletTransaction.userID == user_id).scalar()
            return Decimal(str(result)).quantize(Decimal("0.01"))

    return _Journal()
