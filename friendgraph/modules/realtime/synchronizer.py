"""
Per-session realtime synchronizer.

Keeps one user's relationship snapshot in step with the store. Every change
event is treated as an invalidation: the synchronizer refetches the full
snapshot instead of patching the cache, because events for the request and
friendship tables arrive in no guaranteed order. Events that pile up while a
refetch is running are coalesced into a single follow-up refetch.

State machine::

    disconnected -> subscribing -> subscribed <-> reconciling
                        ^              |
                        +--------------+  (transport error)

``close()`` returns to ``disconnected`` from any state.
"""
import asyncio
import enum
import logging
from typing import Awaitable, Callable, Optional

from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool

from friendgraph.core.config import settings
from friendgraph.core.exceptions import ChannelClosed, ChannelError, StoreError
from friendgraph.modules.friendships.services.friendship import get_relationship_snapshot
from friendgraph.modules.friendships.services.status import FriendStatus, RelationshipSnapshot
from friendgraph.modules.realtime.broker import ChangeEventBroker, Subscription

logger = logging.getLogger(__name__)

SnapshotFetcher = Callable[[str], Awaitable[RelationshipSnapshot]]
ChangeCallback = Callable[[RelationshipSnapshot], Awaitable[None]]


class SyncState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    SUBSCRIBING = "subscribing"
    SUBSCRIBED = "subscribed"
    RECONCILING = "reconciling"


def store_snapshot_fetcher(session_factory: sessionmaker) -> SnapshotFetcher:
    """Build a fetcher that reads snapshots through a fresh session in the threadpool"""

    def fetch(user_id: str) -> RelationshipSnapshot:
        db = session_factory()
        try:
            return get_relationship_snapshot(db, user_id)
        finally:
            db.close()

    async def fetch_async(user_id: str) -> RelationshipSnapshot:
        return await run_in_threadpool(fetch, user_id)

    return fetch_async


class RealtimeSynchronizer:
    def __init__(
        self,
        user_id: str,
        broker: ChangeEventBroker,
        fetch_snapshot: SnapshotFetcher,
        on_change: Optional[ChangeCallback] = None,
        resubscribe_attempts: Optional[int] = None,
        resubscribe_backoff: Optional[float] = None,
    ):
        self.user_id = user_id
        self.broker = broker
        self.fetch_snapshot = fetch_snapshot
        self.on_change = on_change
        self.resubscribe_attempts = resubscribe_attempts or settings.REALTIME_RESUBSCRIBE_ATTEMPTS
        self.resubscribe_backoff = (
            resubscribe_backoff if resubscribe_backoff is not None else settings.REALTIME_RESUBSCRIBE_BACKOFF
        )

        self.state = SyncState.DISCONNECTED
        self.snapshot = RelationshipSnapshot.empty(user_id)
        self.refetch_count = 0
        self._subscription: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    async def __aenter__(self) -> "RealtimeSynchronizer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Cached reads
    def get_status_for_user(self, target_id: str) -> FriendStatus:
        return self.snapshot.get_status_for_user(target_id)

    def get_received_request_id(self, sender_id: str) -> Optional[str]:
        return self.snapshot.get_received_request_id(sender_id)

    # Lifecycle
    async def start(self) -> None:
        if self._closed:
            raise ChannelClosed("Synchronizer was closed; start a new one")
        if self._task is not None:
            return
        await self._connect()
        self._task = asyncio.create_task(self._consume(), name=f"realtime-sync:{self.user_id}")

    async def close(self) -> None:
        """Tear the session down. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._release()
        self._set_state(SyncState.DISCONNECTED)

    async def refresh(self) -> bool:
        """Replace the cached snapshot with a fresh read. Keeps the old one on store errors."""
        self.refetch_count += 1
        try:
            snapshot = await self.fetch_snapshot(self.user_id)
        except StoreError as e:
            logger.error(f"Refetch failed for {self.user_id}, keeping cached state: {e}")
            return False
        self.snapshot = snapshot
        if self.on_change is not None:
            try:
                await self.on_change(snapshot)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Change callback failed for {self.user_id}: {e}")
        return True

    # Internals
    def _set_state(self, state: SyncState) -> None:
        if state != self.state:
            logger.debug(f"Realtime session {self.user_id}: {self.state.value} -> {state.value}")
            self.state = state

    def _release(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            self.broker.unsubscribe(subscription)

    async def _connect(self) -> None:
        self._set_state(SyncState.SUBSCRIBING)
        # Subscribe before seeding so changes made during the fetch are queued
        self._subscription = self.broker.subscribe(self.user_id)
        await self.refresh()
        self._set_state(SyncState.SUBSCRIBED)
        logger.info(f"Realtime session {self.user_id} subscribed")

    async def _consume(self) -> None:
        while not self._closed:
            try:
                change = await self._subscription.get()
            except ChannelClosed:
                logger.info(f"Change stream for {self.user_id} closed")
                self._set_state(SyncState.DISCONNECTED)
                return
            except ChannelError as e:
                logger.warning(f"Change stream for {self.user_id} dropped: {e.detail}")
                if not await self._resubscribe():
                    return
                continue
            logger.debug(f"Change for {self.user_id}: {change.table.value} {change.operation.value} {change.row_id}")
            await self._reconcile()

    async def _reconcile(self) -> None:
        self._set_state(SyncState.RECONCILING)
        while True:
            self._subscription.drain()
            await self.refresh()
            if not self._subscription.pending():
                break
        self._set_state(SyncState.SUBSCRIBED)

    async def _resubscribe(self) -> bool:
        self._set_state(SyncState.SUBSCRIBING)
        self._release()
        for attempt in range(1, self.resubscribe_attempts + 1):
            try:
                await self._connect()
                return True
            except ChannelError as e:
                delay = self.resubscribe_backoff * (2 ** (attempt - 1))
                logger.warning(
                    f"Resubscribe for {self.user_id} failed (attempt {attempt}/{self.resubscribe_attempts}): {e.detail}"
                )
                await asyncio.sleep(delay)
        logger.error(f"Giving up on realtime session {self.user_id}")
        self._set_state(SyncState.DISCONNECTED)
        return False
