# mlm_system/events/setup.py
"""
Setup MLM event handlers.
Register all event handlers with the event bus.
"""
import logging

from mlm_system.events.event_bus import eventBus, MLMEvents
from mlm_system.events.handlers import (
    handle_member_activated,
    handle_withdrawal_rejected,
    handle_daily_tick,
)

logger = logging.getLogger(__name__)

_HANDLERS = (
    (MLMEvents.MEMBER_ACTIVATED, handle_member_activated),
    (MLMEvents.WITHDRAWAL_REJECTED, handle_withdrawal_rejected),
    (MLMEvents.DAILY_TICK, handle_daily_tick),
)


def setup_mlm_event_handlers():
    """
    Register all MLM event handlers with the event bus.

    This function should be called during application startup.
    """
    logger.info("Setting up MLM event handlers...")

    for event_name, handler in _HANDLERS:
        eventBus.subscribe(event_name, handler)
        logger.debug(f"Registered handler for {event_name}")

    logger.info("MLM event handlers registered successfully")


def teardown_mlm_event_handlers():
    """
    Unregister all MLM event handlers.
    Useful for testing or shutdown.
    """
    logger.info("Tearing down MLM event handlers...")

    for event_name, handler in _HANDLERS:
        eventBus.unsubscribe(event_name, handler)

    logger.info("MLM event handlers unregistered")
