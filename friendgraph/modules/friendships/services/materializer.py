import logging

from sqlalchemy import and_

from friendgraph.modules.friendships.models.friendship import (
    Friendship,
    FriendRequest,
    RequestStatus,
    canonical_pair,
    pair_key,
)
from friendgraph.modules.friendships.store import RelationshipStore, RowExists

logger = logging.getLogger(__name__)

def materialize_friendship(store: RelationshipStore, sender_id: str, receiver_id: str) -> Friendship:
    """
    Create the canonical friendship row for an accepted request.

    Runs inside the caller's transaction. An existing row for the pair is
    reused, so a racing mutual-request collapse does not fail the acceptance.
    Any request still pending between the pair, in either direction, is
    resolved as accepted, since a friendship and a pending request between the
    same users never coexist.
    """
    user1_id, user2_id = canonical_pair(sender_id, receiver_id)
    pair = and_(Friendship.user1_id == user1_id, Friendship.user2_id == user2_id)

    try:
        friendship = store.insert_if_absent(Friendship, pair, user1_id=user1_id, user2_id=user2_id)
        logger.info(f"Created friendship: {user1_id} <-> {user2_id}")
    except RowExists:
        friendship = store.first(Friendship, pair)
        logger.info(f"Friendship already existed: {user1_id} <-> {user2_id}")

    open_requests = store.query(
        FriendRequest,
        FriendRequest.pair_key == pair_key(sender_id, receiver_id),
        FriendRequest.status == RequestStatus.PENDING.value,
    )
    for open_request in open_requests:
        store.compare_and_update(
            FriendRequest, open_request.id, RequestStatus.PENDING.value, RequestStatus.ACCEPTED.value
        )
        logger.info(f"Resolved pending request {open_request.id} as accepted")

    return friendship
