"""
Relationship status derivation.

Change events reach a session in no particular order, so a cached snapshot can
briefly hold the same user in more than one set. The precedence below makes
the derived status deterministic in that window: a friend is never also shown
as pending.
"""
import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Container, FrozenSet, Mapping, Optional


class FriendStatus(str, enum.Enum):
    SELF = "self"
    FRIEND = "friend"
    PENDING_SENT = "pending_sent"
    PENDING_RECEIVED = "pending_received"
    NONE = "none"


def derive_status(
    self_id: str,
    target_id: str,
    friends: Container[str],
    pending_sent: Container[str],
    pending_received: Container[str],
) -> FriendStatus:
    """Status of ``target_id`` from ``self_id``'s point of view. First match wins."""
    if target_id == self_id:
        return FriendStatus.SELF
    if target_id in friends:
        return FriendStatus.FRIEND
    if target_id in pending_sent:
        return FriendStatus.PENDING_SENT
    if target_id in pending_received:
        return FriendStatus.PENDING_RECEIVED
    return FriendStatus.NONE


@dataclass(frozen=True)
class RelationshipSnapshot:
    """One user's relationship sets as read from the store in a single fetch.

    ``pending_sent`` maps receiver id to request id and ``pending_received``
    maps sender id to request id, so callers can act on a request without a
    second lookup. Both maps are wrapped read-only; they are left out of the
    hash, which is therefore built from ``user_id`` and ``friends`` only.
    """
    user_id: str
    friends: FrozenSet[str] = frozenset()
    pending_sent: Mapping[str, str] = field(default_factory=dict, hash=False)
    pending_received: Mapping[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "friends", frozenset(self.friends))
        object.__setattr__(self, "pending_sent", MappingProxyType(dict(self.pending_sent)))
        object.__setattr__(self, "pending_received", MappingProxyType(dict(self.pending_received)))

    @classmethod
    def empty(cls, user_id: str) -> "RelationshipSnapshot":
        return cls(user_id=user_id)

    def get_status_for_user(self, target_id: str) -> FriendStatus:
        return derive_status(
            self.user_id, target_id, self.friends, self.pending_sent, self.pending_received
        )

    def get_received_request_id(self, sender_id: str) -> Optional[str]:
        return self.pending_received.get(sender_id)

    def get_sent_request_id(self, receiver_id: str) -> Optional[str]:
        return self.pending_sent.get(receiver_id)

    def request_id_for(self, target_id: str) -> Optional[str]:
        """Pending request id matching the derived status of ``target_id``, if any."""
        status = self.get_status_for_user(target_id)
        if status == FriendStatus.PENDING_SENT:
            return self.get_sent_request_id(target_id)
        if status == FriendStatus.PENDING_RECEIVED:
            return self.get_received_request_id(target_id)
        return None

    def as_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "friends": sorted(self.friends),
            "pending_sent": sorted(self.pending_sent),
            "pending_received": sorted(self.pending_received),
        }
