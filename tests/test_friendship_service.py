"""
Tests for the friend request lifecycle and friendship operations
"""

import pytest

from friendgraph.core.exceptions import Conflict, NotFound, NotifierError, Unauthorized, ValidationError
from friendgraph.db.session import SessionLocal
from friendgraph.modules.friendships.models.friendship import Friendship, FriendRequest
from friendgraph.modules.friendships.services import friendship as service
from friendgraph.modules.friendships.services.materializer import materialize_friendship
from friendgraph.modules.friendships.services.status import FriendStatus
from friendgraph.modules.friendships.store import RelationshipStore
from friendgraph.modules.notifications.models.notification import Notification
from friendgraph.modules.notifications.services.notifier import DatabaseNotifier, Notifier


def status_between(db, viewer, target):
    return service.get_relationship_snapshot(db, viewer).get_status_for_user(target)


def pending_rows(db, user_a, user_b):
    return db.query(FriendRequest).filter(
        FriendRequest.sender_id.in_([user_a, user_b]),
        FriendRequest.receiver_id.in_([user_a, user_b]),
        FriendRequest.status == "pending",
    ).all()


class RecordingNotifier(Notifier):
    def __init__(self):
        self.calls = []

    def notify_accepted(self, receiver_id, sender_id):
        self.calls.append((receiver_id, sender_id))


class BrokenNotifier(Notifier):
    def notify_accepted(self, receiver_id, sender_id):
        raise NotifierError("mail server down")


class TestSendFriendRequest:

    def test_creates_pending_request(self, db):
        request = service.send_friend_request(db, "u1", "u2")
        assert request.status == "pending"
        assert request.sender_id == "u1"
        assert request.receiver_id == "u2"
        assert request.pair_key == "u1:u2"

    def test_rejects_self_request(self, db):
        with pytest.raises(ValidationError):
            service.send_friend_request(db, "u1", "u1")

    def test_rejects_blank_ids(self, db):
        with pytest.raises(ValidationError):
            service.send_friend_request(db, "u1", "")

    def test_duplicate_pending_request_conflicts(self, db):
        service.send_friend_request(db, "u1", "u2")
        with pytest.raises(Conflict):
            service.send_friend_request(db, "u1", "u2")
        assert len(pending_rows(db, "u1", "u2")) == 1

    def test_already_friends_conflicts_in_both_directions(self, db):
        request = service.send_friend_request(db, "u1", "u2")
        service.accept_friend_request(db, request.id, "u2")
        with pytest.raises(Conflict):
            service.send_friend_request(db, "u1", "u2")
        with pytest.raises(Conflict):
            service.send_friend_request(db, "u2", "u1")

    def test_mutual_requests_collapse_into_friendship(self, db):
        first = service.send_friend_request(db, "u1", "u2")
        result = service.send_friend_request(db, "u2", "u1")

        assert result.id == first.id
        assert result.status == "accepted"
        assert db.query(Friendship).count() == 1
        assert pending_rows(db, "u1", "u2") == []
        assert status_between(db, "u1", "u2") == FriendStatus.FRIEND
        assert status_between(db, "u2", "u1") == FriendStatus.FRIEND

    def test_send_interleaved_with_accept_leaves_no_pending_request(self, db, monkeypatch):
        request = service.send_friend_request(db, "u1", "u2")
        real_check = service.check_friendship

        def check_then_accept_elsewhere(session, user_id, friend_id):
            # The receiver accepts right after the sender's friendship check
            result = real_check(session, user_id, friend_id)
            other = SessionLocal()
            try:
                service.accept_friend_request(other, request.id, "u2")
            finally:
                other.close()
            return result

        monkeypatch.setattr(service, "check_friendship", check_then_accept_elsewhere)
        with pytest.raises(Conflict):
            service.send_friend_request(db, "u1", "u2")
        monkeypatch.undo()

        assert service.check_friendship(db, "u1", "u2")
        assert pending_rows(db, "u1", "u2") == []
        assert status_between(db, "u1", "u2") == FriendStatus.FRIEND


class TestAcceptFriendRequest:

    def test_accept_creates_canonical_friendship(self, db):
        request = service.send_friend_request(db, "u9", "u1")
        accepted = service.accept_friend_request(db, request.id, "u1")

        assert accepted.status == "accepted"
        friendship = db.query(Friendship).one()
        assert (friendship.user1_id, friendship.user2_id) == ("u1", "u9")
        assert pending_rows(db, "u1", "u9") == []

    def test_only_receiver_may_accept(self, db):
        request = service.send_friend_request(db, "u1", "u2")
        with pytest.raises(Unauthorized):
            service.accept_friend_request(db, request.id, "u1")
        with pytest.raises(Unauthorized):
            service.accept_friend_request(db, request.id, "u3")

    def test_missing_request(self, db):
        with pytest.raises(NotFound):
            service.accept_friend_request(db, "no-such-request", "u2")

    def test_second_accept_conflicts_and_changes_nothing(self, db):
        request = service.send_friend_request(db, "u1", "u2")
        service.accept_friend_request(db, request.id, "u2")
        before = (db.query(Friendship).count(), db.query(FriendRequest).count())

        other = SessionLocal()
        try:
            with pytest.raises(Conflict):
                service.accept_friend_request(other, request.id, "u2")
        finally:
            other.close()

        assert (db.query(Friendship).count(), db.query(FriendRequest).count()) == before

    def test_racing_accept_loses_on_compare_and_update(self, db):
        request = service.send_friend_request(db, "u1", "u2")
        other = SessionLocal()
        try:
            # Loaded while still pending, so only the conditional update can catch the race
            assert other.get(FriendRequest, request.id).status == "pending"
            service.accept_friend_request(db, request.id, "u2")
            with pytest.raises(Conflict):
                service.accept_friend_request(other, request.id, "u2")
        finally:
            other.close()
        assert db.query(Friendship).count() == 1

    def test_notifier_base_cannot_be_instantiated(self):
        with pytest.raises(TypeError):
            Notifier()

    def test_accept_notifies_sender(self, db):
        notifier = RecordingNotifier()
        request = service.send_friend_request(db, "u1", "u2")
        service.accept_friend_request(db, request.id, "u2", notifier=notifier)
        assert notifier.calls == [("u2", "u1")]

    def test_notifier_failure_does_not_revert_acceptance(self, db):
        request = service.send_friend_request(db, "u1", "u2")
        accepted = service.accept_friend_request(db, request.id, "u2", notifier=BrokenNotifier())
        assert accepted.status == "accepted"
        assert service.check_friendship(db, "u1", "u2")

    def test_database_notifier_stores_notification(self, db):
        request = service.send_friend_request(db, "u1", "u2")
        service.accept_friend_request(db, request.id, "u2", notifier=DatabaseNotifier())
        notification = db.query(Notification).one()
        assert notification.user_id == "u1"
        assert notification.actor_id == "u2"
        assert notification.type == "friend_accepted"


class TestRejectAndCancel:

    def test_reject_then_resend_creates_fresh_request(self, db):
        first = service.send_friend_request(db, "u1", "u2")
        rejected = service.reject_friend_request(db, first.id, "u2")
        assert rejected.status == "rejected"
        assert not service.check_friendship(db, "u1", "u2")

        second = service.send_friend_request(db, "u1", "u2")
        assert second.id != first.id
        assert second.status == "pending"
        assert db.get(FriendRequest, first.id).status == "rejected"

    def test_only_receiver_may_reject(self, db):
        request = service.send_friend_request(db, "u1", "u2")
        with pytest.raises(Unauthorized):
            service.reject_friend_request(db, request.id, "u1")

    def test_reject_after_accept_conflicts(self, db):
        request = service.send_friend_request(db, "u1", "u2")
        service.accept_friend_request(db, request.id, "u2")
        with pytest.raises(Conflict):
            service.reject_friend_request(db, request.id, "u2")

    def test_sender_cancels_pending_request(self, db):
        request = service.send_friend_request(db, "u1", "u2")
        cancelled = service.cancel_friend_request(db, request.id, "u1")

        assert cancelled.id == request.id
        assert db.get(FriendRequest, request.id) is None
        assert status_between(db, "u2", "u1") == FriendStatus.NONE

    def test_receiver_cannot_cancel(self, db):
        request = service.send_friend_request(db, "u1", "u2")
        with pytest.raises(Unauthorized):
            service.cancel_friend_request(db, request.id, "u2")


class TestRemoveFriend:

    @pytest.mark.parametrize("remover, other", [("u1", "u2"), ("u2", "u1")])
    def test_removal_is_symmetric(self, db, remover, other):
        request = service.send_friend_request(db, "u1", "u2")
        service.accept_friend_request(db, request.id, "u2")

        assert service.remove_friend(db, remover, other) is True
        assert status_between(db, "u1", "u2") == FriendStatus.NONE
        assert status_between(db, "u2", "u1") == FriendStatus.NONE

    def test_removing_missing_friendship_is_a_no_op(self, db):
        assert service.remove_friend(db, "u1", "u2") is False

    def test_self_removal_is_invalid(self, db):
        with pytest.raises(ValidationError):
            service.remove_friend(db, "u1", "u1")


class TestQueries:

    def test_concrete_scenario(self, db):
        r1 = service.send_friend_request(db, "u1", "u2")
        assert status_between(db, "u1", "u2") == FriendStatus.PENDING_SENT
        assert status_between(db, "u2", "u1") == FriendStatus.PENDING_RECEIVED
        assert service.get_status(db, "u2", "u1") == (FriendStatus.PENDING_RECEIVED, r1.id)

        service.accept_friend_request(db, r1.id, "u2")
        assert status_between(db, "u1", "u2") == FriendStatus.FRIEND
        assert status_between(db, "u2", "u1") == FriendStatus.FRIEND

        service.remove_friend(db, "u1", "u2")
        assert status_between(db, "u1", "u2") == FriendStatus.NONE
        assert status_between(db, "u2", "u1") == FriendStatus.NONE

    def test_request_listing_by_direction(self, db):
        service.send_friend_request(db, "u1", "u2")
        service.send_friend_request(db, "u3", "u1")

        assert [r.receiver_id for r in service.get_sent_friend_requests(db, "u1")] == ["u2"]
        assert [r.sender_id for r in service.get_received_friend_requests(db, "u1", "pending")] == ["u3"]
        assert service.get_received_friend_requests(db, "u1", "accepted") == []

    def test_invalid_direction(self, db):
        with pytest.raises(ValidationError):
            service.get_friend_requests(db, "u1", "sideways")

    def test_friend_ids_from_either_side(self, db):
        for sender, receiver in [("u5", "u1"), ("u1", "u7")]:
            request = service.send_friend_request(db, sender, receiver)
            service.accept_friend_request(db, request.id, receiver)
        assert service.get_friend_ids(db, "u1") == {"u5", "u7"}
        assert service.get_friend_ids(db, "u5") == {"u1"}

    def test_self_status(self, db):
        assert service.get_status(db, "u1", "u1") == (FriendStatus.SELF, None)


class TestMaterializer:

    def test_resolves_counter_direction_request(self, db):
        store = RelationshipStore(db)
        counter = store.insert_if_absent(
            FriendRequest,
            FriendRequest.id == "counter",
            id="counter",
            sender_id="u2",
            receiver_id="u1",
            pair_key="u1:u2",
            status="pending",
        )
        store.commit()

        materialize_friendship(store, "u1", "u2")
        store.commit()

        assert db.get(FriendRequest, counter.id).status == "accepted"
        assert db.query(Friendship).count() == 1

    def test_resolves_same_direction_request(self, db):
        store = RelationshipStore(db)
        store.insert_if_absent(
            FriendRequest,
            FriendRequest.id == "late",
            id="late",
            sender_id="u1",
            receiver_id="u2",
            pair_key="u1:u2",
            status="pending",
        )
        store.commit()

        materialize_friendship(store, "u1", "u2")
        store.commit()

        assert db.get(FriendRequest, "late").status == "accepted"
        assert pending_rows(db, "u1", "u2") == []

    def test_existing_friendship_is_reused(self, db):
        store = RelationshipStore(db)
        first = materialize_friendship(store, "u1", "u2")
        store.commit()
        again = materialize_friendship(store, "u2", "u1")
        store.commit()
        assert again.id == first.id
        assert db.query(Friendship).count() == 1
