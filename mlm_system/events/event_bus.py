# mlm_system/events/event_bus.py
"""
Event bus for decoupled communication between components.
Producers that activate members outside MemberService (imports, admin
tools) emit MEMBER_ACTIVATED; handlers distribute commissions.
"""
from typing import Dict, List, Callable, Any
import logging
import asyncio

logger = logging.getLogger(__name__)


class EventBus:
    """
    Simple in-process event bus.
    Handler errors are logged and never reach the emitter.
    """

    _instance = None
    _handlers: Dict[str, List[Callable]] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._handlers = {}
        return cls._instance

    def subscribe(self, eventName: str, handler: Callable):
        """Subscribe handler to event."""
        if eventName not in self._handlers:
            self._handlers[eventName] = []

        if handler not in self._handlers[eventName]:
            self._handlers[eventName].append(handler)
            logger.debug(f"Handler {handler.__name__} subscribed to {eventName}")

    def unsubscribe(self, eventName: str, handler: Callable):
        """Unsubscribe handler from event."""
        if handler in self._handlers.get(eventName, []):
            self._handlers[eventName].remove(handler)
            logger.debug(f"Handler {handler.__name__} unsubscribed from {eventName}")

    def handlers(self, eventName: str) -> List[Callable]:
        return list(self._handlers.get(eventName, []))

    async def emit(self, eventName: str, data: Dict[str, Any]):
        """Emit event to all subscribers."""
        if eventName not in self._handlers:
            return

        logger.debug(f"Emitting event {eventName} with data: {data}")

        for handler in list(self._handlers[eventName]):
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(data)
                else:
                    handler(data)
            except Exception as e:
                logger.error(f"Error in handler {handler.__name__} for event {eventName}: {e}", exc_info=True)

    def clear(self):
        """Clear all event handlers."""
        self._handlers.clear()


# Global event bus instance
eventBus = EventBus()


# Predefined events
class MLMEvents:
    """Standard MLM system events."""

    MEMBER_ACTIVATED = "member.activated"
    COMMISSIONS_DISTRIBUTED = "commissions.distributed"
    RANK_ACHIEVED = "rank.achieved"

    WITHDRAWAL_REJECTED = "withdrawal.rejected"

    DAILY_TICK = "daily.tick"
