import enum

from sqlalchemy import Column, String, DateTime, Index, UniqueConstraint, CheckConstraint, text
from sqlalchemy.sql import func

from friendgraph.db.session import Base


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


def canonical_pair(user_a: str, user_b: str) -> tuple:
    """Order two user ids so one row represents the pair regardless of direction."""
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


def pair_key(user_a: str, user_b: str) -> str:
    return ":".join(canonical_pair(user_a, user_b))


# One row per unordered pair, stored as user1_id < user2_id
class Friendship(Base):
    __tablename__ = "friendships"

    id = Column(String, primary_key=True, index=True)
    user1_id = Column(String, nullable=False, index=True)
    user2_id = Column(String, nullable=False, index=True)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint('user1_id', 'user2_id', name='unique_friendship'),
        CheckConstraint('user1_id < user2_id', name='canonical_friendship_order'),
    )

    def other(self, user_id: str) -> str:
        return self.user2_id if self.user1_id == user_id else self.user1_id


# Friend request model. Terminal rows are kept as history; a resend inserts a new row.
class FriendRequest(Base):
    __tablename__ = "friend_requests"

    id = Column(String, primary_key=True, index=True)
    sender_id = Column(String, nullable=False, index=True)
    receiver_id = Column(String, nullable=False, index=True)
    # Canonical "a:b" key of the unordered pair; at most one pending request per pair
    pair_key = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default=RequestStatus.PENDING.value, index=True)  # pending, accepted, rejected
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint('sender_id != receiver_id', name='no_self_friend_request'),
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected')", name='valid_friend_request_status'
        ),
        Index(
            "unique_pending_friend_request",
            "pair_key",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )
