"""
Tests for change event fan-out
"""

import asyncio
import threading

import pytest

from conftest import wait_until
from friendgraph.core.exceptions import ChannelClosed, ChannelError
from friendgraph.modules.friendships.services import friendship as service
from friendgraph.modules.realtime.broker import ChangeEventBroker
from friendgraph.modules.realtime.events import ChangeEvent, Operation, Table


def request_event(row_id="r1", users=("u1", "u2")):
    return ChangeEvent(Table.REQUESTS, Operation.INSERT, row_id, frozenset(users))


class TestChangeEventBroker:

    @pytest.mark.asyncio
    async def test_event_reaches_both_participants(self):
        broker = ChangeEventBroker()
        sender = broker.subscribe("u1")
        receiver = broker.subscribe("u2")
        bystander = broker.subscribe("u3")

        assert broker.publish(request_event()) == 2

        assert (await asyncio.wait_for(sender.get(), 1)).row_id == "r1"
        assert (await asyncio.wait_for(receiver.get(), 1)).row_id == "r1"
        await asyncio.sleep(0)
        assert not bystander.pending()

    @pytest.mark.asyncio
    async def test_publish_from_worker_thread(self):
        broker = ChangeEventBroker()
        subscription = broker.subscribe("u1")

        worker = threading.Thread(target=broker.publish, args=(request_event("r7"),))
        worker.start()
        worker.join()

        change = await asyncio.wait_for(subscription.get(), 1)
        assert change.row_id == "r7"

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self):
        broker = ChangeEventBroker()
        subscription = broker.subscribe("u1")

        broker.unsubscribe(subscription)
        broker.unsubscribe(subscription)

        assert broker.subscriber_count("u1") == 0
        assert broker.publish(request_event()) == 0
        with pytest.raises(ChannelClosed):
            await asyncio.wait_for(subscription.get(), 1)

    @pytest.mark.asyncio
    async def test_transport_failure_ends_stream_with_channel_error(self):
        broker = ChangeEventBroker()
        subscription = broker.subscribe("u1")

        assert broker.fail("u1", "socket reset") == 1
        with pytest.raises(ChannelError):
            await asyncio.wait_for(subscription.get(), 1)
        assert broker.subscriber_count("u1") == 0

    @pytest.mark.asyncio
    async def test_drain_coalesces_queued_events(self):
        broker = ChangeEventBroker()
        subscription = broker.subscribe("u1")
        for i in range(5):
            broker.publish(request_event(f"r{i}"))
        await wait_until(subscription.pending)

        assert subscription.drain() == 5
        assert not subscription.pending()

    @pytest.mark.asyncio
    async def test_full_queue_still_leaves_a_pending_event(self):
        broker = ChangeEventBroker(queue_size=2)
        subscription = broker.subscribe("u1")
        for i in range(10):
            broker.publish(request_event(f"r{i}"))
        await wait_until(subscription.pending)

        assert subscription.drain() == 2

    @pytest.mark.asyncio
    async def test_closed_broker_refuses_subscriptions(self):
        broker = ChangeEventBroker()
        subscription = broker.subscribe("u1")
        broker.close()

        with pytest.raises(ChannelClosed):
            await asyncio.wait_for(subscription.get(), 1)
        with pytest.raises(ChannelError):
            broker.subscribe("u1")


class TestCommittedChangesArePublished:

    @pytest.mark.asyncio
    async def test_send_and_accept_publish_after_commit(self, db, broker):
        receiver = broker.subscribe("u2")

        request = service.send_friend_request(db, "u1", "u2")
        inserted = await asyncio.wait_for(receiver.get(), 1)
        assert (inserted.table, inserted.operation, inserted.row_id) == (
            Table.REQUESTS, Operation.INSERT, request.id
        )

        service.accept_friend_request(db, request.id, "u2")
        changes = [await asyncio.wait_for(receiver.get(), 1) for _ in range(2)]
        assert {(c.table, c.operation) for c in changes} == {
            (Table.REQUESTS, Operation.UPDATE),
            (Table.FRIENDSHIPS, Operation.INSERT),
        }

    @pytest.mark.asyncio
    async def test_failed_operation_publishes_nothing(self, db, broker):
        watcher = broker.subscribe("u1")
        service.send_friend_request(db, "u1", "u2")
        await asyncio.wait_for(watcher.get(), 1)

        with pytest.raises(Exception):
            service.send_friend_request(db, "u1", "u2")
        await asyncio.sleep(0.05)
        assert not watcher.pending()

    @pytest.mark.asyncio
    async def test_idempotent_remove_publishes_nothing(self, db, broker):
        watcher = broker.subscribe("u1")
        assert service.remove_friend(db, "u1", "u2") is False
        await asyncio.sleep(0.05)
        assert not watcher.pending()
