# mlm_system/events/handlers.py
"""
Event handlers for MLM system.
Process events from the event bus.

Services are synchronous; handlers run them in a worker thread with their
own session so the event loop is never blocked.
"""
import asyncio
import logging
from typing import Dict, Any, Optional

from core.db import get_session
from models.user import User
from mlm_system.services.commission_service import CommissionService
from mlm_system.events.event_bus import eventBus, MLMEvents

logger = logging.getLogger(__name__)


def _distribute_commissions(user_id: int) -> Dict:
    session = get_session()
    try:
        return CommissionService(session).onMemberActivated(user_id)
    finally:
        session.close()


def _reject_withdrawal(user_id: int, amount, reason: Optional[str]):
    session = get_session()
    try:
        withdrawal = CommissionService(session).onWithdrawalRejected(user_id, amount, reason)
        return withdrawal.withdrawalID if withdrawal else None
    finally:
        session.close()


def _daily_tick() -> Dict:
    session = get_session()
    try:
        return CommissionService(session).onDailyTick()
    finally:
        session.close()


async def handle_member_activated(data: Dict[str, Any]):
    """
    Handle MEMBER_ACTIVATED event.

    Distributes self, direct, matrix income and evaluates the referrer's rank.
    Emits COMMISSIONS_DISTRIBUTED and one RANK_ACHIEVED per new rank.

    Args:
        data: Event data with 'userId' key
    """
    user_id = data.get("userId")

    if not user_id:
        logger.error("MEMBER_ACTIVATED event missing userId")
        return

    logger.info(f"Processing commissions for activated user {user_id}")

    try:
        result = await asyncio.to_thread(_distribute_commissions, user_id)
    except Exception as e:
        logger.error(f"Error processing commissions for user {user_id}: {e}", exc_info=True)
        return

    if result.get("success"):
        logger.info(
            f"✓ Commissions processed for user {user_id}: "
            f"total {result.get('totalDistributed', 0)}"
        )
    else:
        logger.error(
            f"✗ Commission processing incomplete for user {user_id}: "
            f"{result.get('errors') or result.get('error', 'Unknown error')}"
        )

    await eventBus.emit(MLMEvents.COMMISSIONS_DISTRIBUTED, result)

    referrer_id = None
    for rank in result.get("ranksAchieved", []):
        if referrer_id is None:
            referrer_id = await asyncio.to_thread(_get_referrer_id, user_id)
        await eventBus.emit(MLMEvents.RANK_ACHIEVED, {"userId": referrer_id, "rank": rank})


def _get_referrer_id(user_id: int) -> Optional[int]:
    session = get_session()
    try:
        user = session.get(User, user_id)
        return user.upline if user else None
    finally:
        session.close()


async def handle_withdrawal_rejected(data: Dict[str, Any]):
    """
    Handle WITHDRAWAL_REJECTED event.

    Args:
        data: Event data with 'userId', 'amount' and optional 'reason'
    """
    user_id = data.get("userId")
    amount = data.get("amount")

    if not user_id or amount is None:
        logger.error(f"WITHDRAWAL_REJECTED event incomplete: {data}")
        return

    withdrawal_id = await asyncio.to_thread(_reject_withdrawal, user_id, amount, data.get("reason"))

    if withdrawal_id:
        logger.info(f"✓ Withdrawal {withdrawal_id} of user {user_id} rejected and refunded")


async def handle_daily_tick(data: Dict[str, Any]):
    """Handle DAILY_TICK event (manual trigger of both daily batches)."""
    summary = await asyncio.to_thread(_daily_tick)
    logger.info(f"✓ Daily tick {summary['date']} processed")
