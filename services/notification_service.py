"""
Decoupled Notification Service for escrow and loan change events

Services publish after their transaction commits. Delivery is fire-and-forget:
a failing subscriber is logged and skipped, never raised to the publisher.
"""

import itertools
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from config import Config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EscrowCreated:
    escrow_id: str
    buyer_id: str
    seller_id: str

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": "ESCROW_CREATED",
            "escrowId": self.escrow_id,
            "buyerId": self.buyer_id,
            "sellerId": self.seller_id,
        }


@dataclass(frozen=True)
class EscrowUpdated:
    escrow_id: str
    status: str

    def to_message(self) -> Dict[str, Any]:
        return {"type": "ESCROW_UPDATED", "escrowId": self.escrow_id, "status": self.status}


@dataclass(frozen=True)
class LoanUpdated:
    loan_id: str
    status: str

    def to_message(self) -> Dict[str, Any]:
        return {"type": "LOAN_UPDATED", "loanId": self.loan_id, "status": self.status}


NotificationEvent = Union[EscrowCreated, EscrowUpdated, LoanUpdated]
Subscriber = Callable[[NotificationEvent], None]


class NotificationHub:
    """
    In-process fan-out of change events to subscribers
    Thread-safe: publishers run on request threads and the scheduler thread
    """

    def __init__(self):
        self._subscribers: Dict[int, Subscriber] = {}
        self._lock = threading.Lock()
        self._tokens = itertools.count(1)

    def subscribe(self, callback: Subscriber) -> int:
        with self._lock:
            token = next(self._tokens)
            self._subscribers[token] = callback
        logger.debug(f"📡 SUBSCRIBED: token={token}")
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            removed = self._subscribers.pop(token, None) is not None
        if removed:
            logger.debug(f"📡 UNSUBSCRIBED: token={token}")
        return removed

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: NotificationEvent) -> int:
        """Deliver event to every subscriber; returns how many accepted it"""
        with self._lock:
            subscribers = list(self._subscribers.items())

        delivered = 0
        for token, callback in subscribers:
            try:
                callback(event)
                delivered += 1
            except Exception as e:
                logger.warning(
                    f"⚠️ NOTIFICATION_DELIVERY_FAILED: {type(event).__name__} to subscriber {token}: {e}"
                )

        logger.info(f"📣 EVENT_PUBLISHED: {event.to_message()} -> {delivered}/{len(subscribers)} subscribers")
        return delivered

    def publish_all(self, events: List[NotificationEvent]) -> None:
        for event in events:
            self.publish(event)


class QueueSubscriber:
    """Buffers events in a bounded queue; drops with a warning when the consumer falls behind"""

    def __init__(self, maxsize: Optional[int] = None):
        self.queue: "queue.Queue[NotificationEvent]" = queue.Queue(
            maxsize=maxsize if maxsize is not None else Config.NOTIFICATION_QUEUE_SIZE
        )
        self.dropped = 0

    def __call__(self, event: NotificationEvent) -> None:
        try:
            self.queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            logger.warning(f"⚠️ NOTIFICATION_QUEUE_FULL: dropped {type(event).__name__} (total dropped {self.dropped})")

    def get(self, timeout: Optional[float] = None) -> Optional[NotificationEvent]:
        """Next buffered event, or None if nothing arrived within timeout"""
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[NotificationEvent]:
        events = []
        while True:
            try:
                events.append(self.queue.get_nowait())
            except queue.Empty:
                return events


# Process-wide hub shared by services, jobs and the event stream
notification_hub = NotificationHub()
