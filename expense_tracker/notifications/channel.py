"""
Change Notification Channel

Owner-scoped publish/subscribe for live UI refresh.

The core publishes ChangeEvents; transports (the websocket endpoint, tests)
subscribe per owner and drain their own queue. The channel knows nothing
about connections.

Delivery is best-effort: publish never blocks and never raises. A
subscriber that stops reading has new events dropped once its queue is full.
"""

import asyncio
from typing import Optional

import structlog

from expense_tracker.models.events import ChangeEvent


_CLOSED = object()


class Subscription:
    """One listener's queue of events for a single owner."""

    def __init__(self, channel: "NotificationChannel", owner_id: str, max_size: int):
        self.owner_id = owner_id
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_size)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def deliver(self, event: ChangeEvent) -> bool:
        """Queue an event without waiting. Returns False if it was dropped."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            return False

    async def get(self) -> Optional[ChangeEvent]:
        """Wait for the next event. Returns None once the subscription is closed."""
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    def get_nowait(self) -> Optional[ChangeEvent]:
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        return None if item is _CLOSED else item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._channel._remove(self)
        # Wake up a reader blocked in get()
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class NotificationChannel:
    """
    Fan-out of change events to the owner's active subscriptions.

    Usage:
        channel = NotificationChannel()
        with channel.subscribe("uid-1") as sub:
            ...
            event = await sub.get()
    """

    def __init__(self, max_queue_size: int = 100):
        self._max_queue_size = max_queue_size
        self._subscribers: dict[str, set[Subscription]] = {}
        self._logger = structlog.get_logger(__name__)

    def subscribe(self, owner_id: str) -> Subscription:
        subscription = Subscription(self, owner_id, self._max_queue_size)
        self._subscribers.setdefault(owner_id, set()).add(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.owner_id)
        if not subscribers:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.owner_id]

    def subscriber_count(self, owner_id: str) -> int:
        return len(self._subscribers.get(owner_id, ()))

    def publish(self, event: ChangeEvent) -> int:
        """
        Deliver `event` to every subscription of `event.owner_id`.

        Returns the number of subscriptions that accepted it.
        """
        delivered = 0
        for subscription in list(self._subscribers.get(event.owner_id, ())):
            if subscription.deliver(event):
                delivered += 1
            else:
                self._logger.warning(
                    "notification_dropped",
                    owner_id=event.owner_id,
                    event_id=str(event.event_id),
                    kind=event.kind.value,
                )
        return delivered
