# settlement_system/events/event_bus.py
"""
Post-commit notifications for collaborators (notifications, reporting).
The ledger is already committed when an event is emitted, so a failing
handler is recorded and logged but never undoes or blocks settlement.
"""
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List
import logging
import asyncio

from settlement_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


@dataclass
class HandlerFailure:
    eventName: str
    handlerName: str
    error: str
    failedAt: datetime


class EventBus:
    """In-process singleton bus with a record of handler failures."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._handlers = defaultdict(list)
            cls._instance._failures = []
        return cls._instance

    @property
    def failures(self) -> List[HandlerFailure]:
        return list(self._failures)

    def subscribe(self, eventName: str, handler: Callable):
        self._handlers[eventName].append(handler)
        logger.debug(f"Handler {handler.__name__} subscribed to {eventName}")

    async def emit(self, eventName: str, data: Dict[str, Any]) -> int:
        """Deliver data to every handler of eventName. Returns the number of handlers that failed."""
        handlers = self._handlers.get(eventName)
        if not handlers:
            return 0

        logger.debug(f"Emitting event {eventName} with data: {data}")

        failed = 0
        for handler in list(handlers):
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(data)
                else:
                    handler(data)
            except Exception as e:
                failed += 1
                self._failures.append(HandlerFailure(
                    eventName=eventName,
                    handlerName=getattr(handler, "__name__", repr(handler)),
                    error=f"{type(e).__name__}: {e}",
                    failedAt=timeMachine.now
                ))
                logger.error(f"Error in handler {handler.__name__} for event {eventName}: {e}", exc_info=True)

        return failed

    def clear(self):
        """Drop all handlers and the failure record."""
        self._handlers.clear()
        self._failures.clear()


eventBus = EventBus()


class SettlementEvents:
    """Events emitted by the settlement core after a successful commit."""

    SETTLEMENT_COMPLETED = "settlement.completed"
    DUPLICATES_MARKED = "settlement.duplicates_marked"

    BENEFIT_ACCRUED = "benefit.accrued"
    BENEFIT_COMPENSATED = "benefit.compensated"
    CYCLE_COMPLETED = "cycle.completed"
    FIRST_CYCLE_COMPLETED = "first_cycle.completed"

    COMMISSION_CREATED = "commission.created"
