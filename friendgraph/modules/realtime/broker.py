"""
In-process change event broker.

Committed store changes are fanned out to every live subscription of each
participant of the changed row. Publishing is thread-safe: request handlers
run in the threadpool while subscriptions are consumed on the event loop, so
delivery always hops onto the subscriber's loop.
"""
import asyncio
import logging
import threading
from typing import Dict, Optional, Set

from friendgraph.core.config import settings
from friendgraph.core.exceptions import ChannelClosed, ChannelError
from friendgraph.modules.realtime.events import ChangeEvent

logger = logging.getLogger(__name__)


class Subscription:
    """Handle for one user's change stream on one event loop."""

    def __init__(self, user_id: str, loop: asyncio.AbstractEventLoop, maxsize: int):
        self.user_id = user_id
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._error: Optional[Exception] = None
        self.active = True

    async def get(self) -> ChangeEvent:
        """Wait for the next event. Raises ChannelError or ChannelClosed once the stream ends."""
        if self._error is None or not self._queue.empty():
            item = await self._queue.get()
            if item is not None:
                return item
        raise self._error

    def drain(self) -> int:
        """Discard queued events and return how many there were"""
        drained = 0
        while not self._queue.empty():
            if self._queue.get_nowait() is None:
                # Keep the end-of-stream marker for the next get()
                self._requeue_end()
                break
            drained += 1
        return drained

    def pending(self) -> bool:
        return not self._queue.empty() and self._error is None

    # Loop-side delivery
    def _deliver(self, change: ChangeEvent) -> None:
        if not self.active:
            return
        try:
            self._queue.put_nowait(change)
        except asyncio.QueueFull:
            # Queued events already force a refetch that covers this one
            logger.debug(f"Change queue full for {self.user_id}, coalescing")

    def _end(self, error: Exception) -> None:
        if self._error is not None:
            return
        self.active = False
        self._error = error
        self._requeue_end()

    def _requeue_end(self) -> None:
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # Make room for the marker; the dropped event is superseded by the error
            self._queue.get_nowait()
            self._queue.put_nowait(None)

    def _call(self, fn, *args) -> bool:
        try:
            self._loop.call_soon_threadsafe(fn, *args)
            return True
        except RuntimeError:
            # Subscriber's loop is gone
            self.active = False
            return False


class ChangeEventBroker:
    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = queue_size or settings.REALTIME_QUEUE_SIZE
        self._subscriptions: Dict[str, Set[Subscription]] = {}
        self._lock = threading.Lock()
        self._closed = False

    def subscribe(self, user_id: str) -> Subscription:
        """Open a live subscription for ``user_id`` on the running event loop."""
        if self._closed:
            raise ChannelError("Change event broker is shut down")
        subscription = Subscription(user_id, asyncio.get_running_loop(), self.queue_size)
        with self._lock:
            self._subscriptions.setdefault(user_id, set()).add(subscription)
        logger.debug(f"Subscribed to changes for {user_id}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Release a subscription. Safe to call more than once."""
        with self._lock:
            subscriptions = self._subscriptions.get(subscription.user_id)
            if subscriptions is not None:
                subscriptions.discard(subscription)
                if not subscriptions:
                    del self._subscriptions[subscription.user_id]
        if subscription.active:
            subscription._call(subscription._end, ChannelClosed("Subscription released"))
            subscription.active = False
            logger.debug(f"Unsubscribed from changes for {subscription.user_id}")

    def publish(self, change: ChangeEvent) -> int:
        """Fan ``change`` out to every participant's subscriptions and return the delivery count"""
        delivered = 0
        for user_id in change.user_ids:
            with self._lock:
                subscriptions = list(self._subscriptions.get(user_id, ()))
            for subscription in subscriptions:
                if subscription._call(subscription._deliver, change):
                    delivered += 1
                else:
                    self.unsubscribe(subscription)
        return delivered

    def fail(self, user_id: str, reason: str = "Transport error") -> int:
        """Drop every subscription of ``user_id`` with a transport error."""
        with self._lock:
            subscriptions = self._subscriptions.pop(user_id, set())
        for subscription in subscriptions:
            subscription._call(subscription._end, ChannelError(reason))
        if subscriptions:
            logger.warning(f"Dropped {len(subscriptions)} subscriptions for {user_id}: {reason}")
        return len(subscriptions)

    def subscriber_count(self, user_id: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(user_id, ()))

    def close(self) -> None:
        """Shut the broker down, ending every subscription."""
        self._closed = True
        with self._lock:
            all_subscriptions = [s for subs in self._subscriptions.values() for s in subs]
            self._subscriptions.clear()
        for subscription in all_subscriptions:
            subscription._call(subscription._end, ChannelClosed("Change event broker is shut down"))
