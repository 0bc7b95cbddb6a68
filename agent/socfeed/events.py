from enum import Enum
from typing import Any, Callable, Dict, List

from .utils.logging import get_logger

logger = get_logger("dispatcher")

Handler = Callable[[Any], None]


class EventKind(str, Enum):
    THREAT = "threat"
    STATS = "stats"
    CONNECTION = "connection"
    VIEWS = "views"


class _Subscription:
    __slots__ = ("handler", "active")

    def __init__(self, handler: Handler):
        self.handler = handler
        self.active = True


class EventDispatcher:
    """
    Synchronous fan-out of events to subscribers, in subscription order.

    Dispatch walks a snapshot of the subscriber list, so handlers may
    subscribe or unsubscribe while a publish is running. A handler that
    raises is logged and the remaining handlers still run.
    """

    def __init__(self):
        self._subscribers: Dict[EventKind, List[_Subscription]] = {kind: [] for kind in EventKind}

    def subscribe(self, kind: EventKind, handler: Handler) -> Callable[[], None]:
        subscription = _Subscription(handler)
        self._subscribers[kind].append(subscription)

        def unsubscribe():
            if not subscription.active:
                return
            subscription.active = False
            self._subscribers[kind] = [s for s in self._subscribers[kind] if s is not subscription]

        return unsubscribe

    def publish(self, kind: EventKind, payload: Any) -> int:
        """Deliver payload to every active subscriber; returns the number of handler faults."""
        faults = 0
        for subscription in list(self._subscribers[kind]):
            # Unsubscribed earlier in this same publish
            if not subscription.active:
                continue
            try:
                subscription.handler(payload)
            except Exception:
                faults += 1
                logger.exception(f"Error in {kind.value} subscriber {subscription.handler!r}")
        return faults

    def subscriber_count(self, kind: EventKind) -> int:
        return len(self._subscribers[kind])
