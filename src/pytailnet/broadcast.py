"""Fan-out delivery of topology change events.

Delivery is best-effort and at most once per publish: each subscriber owns a
bounded queue, events are never persisted or replayed, and a subscriber that
is gone simply misses what was published meanwhile. ``publish`` never
awaits, so a slow subscriber can not stall the store.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Final

from pytailnet.models import NetworkTopology, TailnetEnum
from pytailnet.state.events import TopologyEvent, TopologyReplacedEvent

_logger = logging.getLogger(__name__)


class OverflowPolicy(TailnetEnum):
    """What happens when a subscriber's queue is full."""

    DROP_OLDEST = "drop_oldest"
    """Discard the oldest pending event to make room."""
    DISCONNECT = "disconnect"
    """Drop the subscriber; its stream ends after the pending events."""


class _Closed:
    def __repr__(self) -> str:  # pragma: no cover
        return "<closed>"


_CLOSED: Final = _Closed()


class Subscription:
    """A single observer's event stream.

    Usage::

        subscription = broadcaster.subscribe(store.snapshot())
        async for event in subscription:
            ...
    """

    def __init__(self, subscription_id: int, *, maxsize: int, overflow: OverflowPolicy) -> None:
        self.id = subscription_id
        self._queue: asyncio.Queue[TopologyEvent | _Closed] = asyncio.Queue(maxsize=maxsize)
        self._overflow = overflow
        self._closed = False
        self.dropped_events = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _offer(self, event: TopologyEvent) -> bool:
        """Enqueue without waiting. Returns ``False`` when the subscriber must be dropped."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            pass

        if self._overflow == OverflowPolicy.DISCONNECT:
            return False

        self._queue.get_nowait()
        self.dropped_events += 1
        self._queue.put_nowait(event)
        return True

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # A reader can only be blocked on an empty queue; a full one drains
        # its pending events and then sees ``_closed``.
        if not self._queue.full():
            self._queue.put_nowait(_CLOSED)

    async def get(self) -> TopologyEvent | None:
        """Next event in publish order, or ``None`` once the stream has ended."""
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if isinstance(item, _Closed):
            return None
        return item

    def get_nowait(self) -> TopologyEvent | None:
        """Next pending event, or ``None`` when nothing is queued."""
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        if isinstance(item, _Closed):
            return None
        return item

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> TopologyEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ChangeBroadcaster:
    """Deliver each published event independently to every active subscriber."""

    def __init__(
        self,
        *,
        queue_size: int = 256,
        overflow: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
    ) -> None:
        self._queue_size = queue_size
        self._overflow = overflow
        self._subscriptions: dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, snapshot: NetworkTopology) -> Subscription:
        """Register an observer whose first event is a full snapshot.

        The snapshot is enqueued before this returns, so no later publish
        can overtake it.
        """
        subscription = Subscription(next(self._ids), maxsize=self._queue_size, overflow=self._overflow)
        subscription._offer(TopologyReplacedEvent(topology=snapshot))
        self._subscriptions[subscription.id] = subscription
        _logger.debug("Subscriber %d added, total=%d", subscription.id, len(self._subscriptions))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if self._subscriptions.pop(subscription.id, None) is not None:
            _logger.debug("Subscriber %d removed, total=%d", subscription.id, len(self._subscriptions))
        subscription._close()

    def publish(self, event: TopologyEvent) -> None:
        """Fan *event* out without blocking."""
        for subscription in list(self._subscriptions.values()):
            if not subscription._offer(event):
                _logger.warning("Dropping saturated subscriber %d", subscription.id)
                self.unsubscribe(subscription)

    def close(self) -> None:
        """End every subscription."""
        for subscription in list(self._subscriptions.values()):
            self.unsubscribe(subscription)
