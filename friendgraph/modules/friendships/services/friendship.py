from typing import List, Optional, Set, Tuple
import logging
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from friendgraph.core.exceptions import (
    Conflict,
    FriendGraphException,
    NotFound,
    Unauthorized,
    ValidationError,
)
from friendgraph.modules.friendships.models.friendship import (
    Friendship,
    FriendRequest,
    RequestStatus,
    canonical_pair,
    pair_key,
)
from friendgraph.modules.friendships.services.materializer import materialize_friendship
from friendgraph.modules.friendships.services.status import FriendStatus, RelationshipSnapshot
from friendgraph.modules.friendships.store import RelationshipStore, RowExists
from friendgraph.modules.notifications.services.notifier import Notifier, notify_accepted_safely

logger = logging.getLogger(__name__)

PENDING = RequestStatus.PENDING.value
ACCEPTED = RequestStatus.ACCEPTED.value
REJECTED = RequestStatus.REJECTED.value

def _require_pair(user_id: str, other_id: str) -> None:
    if not user_id or not other_id:
        raise ValidationError("User ID is required")
    if user_id == other_id:
        raise ValidationError("Cannot send friend request to yourself")

def _run_in_transaction(store: RelationshipStore, operation):
    """Run ``operation`` and commit, rolling back on any relationship error"""
    try:
        result = operation()
        store.commit()
    except FriendGraphException:
        store.rollback()
        raise
    return result

# Request operations
def get_friend_request_by_id(db: Session, request_id: str) -> Optional[FriendRequest]:
    """Get friend request by ID"""
    return RelationshipStore(db).get(FriendRequest, request_id)

def get_pending_friend_request(db: Session, sender_id: str, receiver_id: str) -> Optional[FriendRequest]:
    """Get the pending friend request from sender to receiver, if any"""
    return RelationshipStore(db).first(
        FriendRequest,
        FriendRequest.sender_id == sender_id,
        FriendRequest.receiver_id == receiver_id,
        FriendRequest.status == PENDING,
    )

def get_friend_requests(db: Session, user_id: str, direction: str = "received", status: Optional[str] = None) -> List[FriendRequest]:
    """Get friend requests for a user with specified direction and status"""
    if direction not in ["sent", "received"]:
        raise ValidationError(f"Invalid direction '{direction}'")
    if status is not None and status not in {s.value for s in RequestStatus}:
        raise ValidationError(f"Invalid status '{status}'")

    field = FriendRequest.receiver_id if direction == "received" else FriendRequest.sender_id
    criteria = [field == user_id]
    if status is not None:
        criteria.append(FriendRequest.status == status)
    return RelationshipStore(db).query(FriendRequest, *criteria, order_by=FriendRequest.created_at.desc())

def get_received_friend_requests(db: Session, user_id: str, status: Optional[str] = None) -> List[FriendRequest]:
    """Get received friend requests for a user"""
    return get_friend_requests(db, user_id, "received", status)

def get_sent_friend_requests(db: Session, user_id: str, status: Optional[str] = None) -> List[FriendRequest]:
    """Get sent friend requests by a user"""
    return get_friend_requests(db, user_id, "sent", status)

def send_friend_request(db: Session, sender_id: str, receiver_id: str) -> FriendRequest:
    """
    Send a friend request from sender to receiver.

    When the receiver already has a pending request to the sender, both intents
    collapse into an acceptance of that request and the returned row has status
    "accepted". Otherwise a new pending request is returned.
    """
    _require_pair(sender_id, receiver_id)
    store = RelationshipStore(db)

    if check_friendship(db, sender_id, receiver_id):
        raise Conflict("Already friends with this user")

    reverse_request = get_pending_friend_request(db, receiver_id, sender_id)
    if reverse_request:
        def collapse():
            accepted = store.compare_and_update(FriendRequest, reverse_request.id, PENDING, ACCEPTED)
            materialize_friendship(store, accepted.sender_id, accepted.receiver_id)
            return accepted

        accepted = _run_in_transaction(store, collapse)
        logger.info(f"Mutual friend requests collapsed into friendship: {sender_id} <-> {receiver_id}")
        return accepted

    def insert():
        try:
            friend_request = store.insert_if_absent(
                FriendRequest,
                and_(FriendRequest.pair_key == pair_key(sender_id, receiver_id), FriendRequest.status == PENDING),
                sender_id=sender_id,
                receiver_id=receiver_id,
                pair_key=pair_key(sender_id, receiver_id),
                status=PENDING,
            )
        except RowExists:
            raise Conflict("Friend request already sent")
        # An accept may have committed since the friendship check above
        if store.first(Friendship, get_pair_friendship_filter(sender_id, receiver_id)) is not None:
            raise Conflict("Already friends with this user")
        return friend_request

    friend_request = _run_in_transaction(store, insert)
    logger.info(f"Friend request {friend_request.id} sent: {sender_id} -> {receiver_id}")
    return friend_request

def _load_request_for(store: RelationshipStore, request_id: str, acting_user_id: str, party: str) -> FriendRequest:
    """Load a request and check the acting user is its sender or receiver"""
    friend_request = store.get(FriendRequest, request_id)
    if not friend_request:
        raise NotFound("Friend request not found")
    if getattr(friend_request, party) != acting_user_id:
        raise Unauthorized("Not enough permissions")
    if friend_request.status != PENDING:
        raise Conflict(f"Friend request already {friend_request.status}")
    return friend_request

def accept_friend_request(
    db: Session,
    request_id: str,
    acting_user_id: str,
    notifier: Optional[Notifier] = None,
) -> FriendRequest:
    """Accept a pending request addressed to the acting user and create the friendship"""
    store = RelationshipStore(db)
    friend_request = _load_request_for(store, request_id, acting_user_id, "receiver_id")
    sender_id, receiver_id = friend_request.sender_id, friend_request.receiver_id

    def accept():
        # A concurrent accept or reject loses here with Conflict
        accepted = store.compare_and_update(FriendRequest, request_id, PENDING, ACCEPTED)
        materialize_friendship(store, sender_id, receiver_id)
        return accepted

    accepted = _run_in_transaction(store, accept)
    logger.info(f"Friend request {request_id} accepted: {sender_id} <-> {receiver_id}")

    if notifier is not None:
        notify_accepted_safely(notifier, receiver_id, sender_id)
    return accepted

def reject_friend_request(db: Session, request_id: str, acting_user_id: str) -> FriendRequest:
    """Reject a pending request addressed to the acting user"""
    store = RelationshipStore(db)
    _load_request_for(store, request_id, acting_user_id, "receiver_id")

    rejected = _run_in_transaction(
        store, lambda: store.compare_and_update(FriendRequest, request_id, PENDING, REJECTED)
    )
    logger.info(f"Friend request {request_id} rejected by {acting_user_id}")
    return rejected

def cancel_friend_request(db: Session, request_id: str, acting_user_id: str) -> FriendRequest:
    """Withdraw a pending request sent by the acting user"""
    store = RelationshipStore(db)
    friend_request = _load_request_for(store, request_id, acting_user_id, "sender_id")
    # Keep the loaded copy readable after its row is gone
    db.expunge(friend_request)

    def cancel():
        deleted = store.delete(FriendRequest, FriendRequest.id == request_id, FriendRequest.status == PENDING)
        if deleted == 0:
            raise Conflict("Friend request is no longer pending")

    _run_in_transaction(store, cancel)
    logger.info(f"Friend request {request_id} cancelled by {acting_user_id}")
    return friend_request

# Friendship operations
def get_pair_friendship_filter(user_id: str, friend_id: str):
    """Create a filter matching the canonical friendship row of two users"""
    user1_id, user2_id = canonical_pair(user_id, friend_id)
    return and_(Friendship.user1_id == user1_id, Friendship.user2_id == user2_id)

def get_friendship(db: Session, user_id: str, friend_id: str) -> Optional[Friendship]:
    """Get a friendship between two users"""
    return RelationshipStore(db).first(Friendship, get_pair_friendship_filter(user_id, friend_id))

def check_friendship(db: Session, user_id: str, friend_id: str) -> bool:
    """Check if two users are friends"""
    return get_friendship(db, user_id, friend_id) is not None

def remove_friend(db: Session, user_id: str, friend_id: str) -> bool:
    """
    Remove the friendship between two users from either side.

    Removing a friendship that does not exist succeeds and returns False, so
    clients can retry after a lost response.
    """
    if not user_id or not friend_id:
        raise ValidationError("User ID is required")
    if user_id == friend_id:
        raise ValidationError("Cannot remove yourself as a friend")

    store = RelationshipStore(db)
    removed = _run_in_transaction(
        store, lambda: store.delete(Friendship, get_pair_friendship_filter(user_id, friend_id))
    )
    if removed:
        logger.info(f"Removed friendship: {user_id} <-> {friend_id}")
    else:
        logger.debug(f"No friendship to remove: {user_id} <-> {friend_id}")
    return bool(removed)

def get_friendships(db: Session, user_id: str) -> List[Friendship]:
    """Get every friendship row the user takes part in"""
    return RelationshipStore(db).query(
        Friendship,
        or_(Friendship.user1_id == user_id, Friendship.user2_id == user_id),
        order_by=Friendship.created_at.desc(),
    )

def get_friend_ids(db: Session, user_id: str) -> Set[str]:
    """Get the ids of a user's friends"""
    return {friendship.other(user_id) for friendship in get_friendships(db, user_id)}

# Snapshot and status
def get_relationship_snapshot(db: Session, user_id: str) -> RelationshipSnapshot:
    """Read the three relationship sets of a user from the store"""
    friend_ids = get_friend_ids(db, user_id)
    sent = get_sent_friend_requests(db, user_id, PENDING)
    received = get_received_friend_requests(db, user_id, PENDING)
    return RelationshipSnapshot(
        user_id=user_id,
        friends=frozenset(friend_ids),
        pending_sent={r.receiver_id: r.id for r in sent},
        pending_received={r.sender_id: r.id for r in received},
    )

def get_status(db: Session, user_id: str, target_id: str) -> Tuple[FriendStatus, Optional[str]]:
    """Derive the relationship status of target as seen by user, with the pending request id"""
    if user_id == target_id:
        return FriendStatus.SELF, None

    friends = {target_id} if check_friendship(db, user_id, target_id) else set()
    sent = get_pending_friend_request(db, user_id, target_id)
    received = get_pending_friend_request(db, target_id, user_id)
    snapshot = RelationshipSnapshot(
        user_id=user_id,
        friends=frozenset(friends),
        pending_sent={target_id: sent.id} if sent else {},
        pending_received={target_id: received.id} if received else {},
    )
    return snapshot.get_status_for_user(target_id), snapshot.request_id_for(target_id)
