from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, ConfigDict, field_validator

from friendgraph.modules.friendships.services.status import FriendStatus

class FriendRequestBase(BaseModel):
    receiver_id: str

class FriendRequestCreate(FriendRequestBase):

    @field_validator('receiver_id')
    @classmethod
    def validate_receiver_id(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Receiver ID is required")
        return v

class FriendRequestInDBBase(FriendRequestBase):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sender_id: str
    status: str
    created_at: datetime
    updated_at: datetime

class FriendRequest(FriendRequestInDBBase):
    """Friend request model returned to client"""
    pass

class Friendship(BaseModel):
    """Friendship as seen by one participant"""
    id: str
    friend_id: str
    created_at: Optional[datetime] = None

class FriendshipStatus(BaseModel):
    status: FriendStatus
    request_id: Optional[str] = None

class RelationshipSnapshot(BaseModel):
    """Cached relationship sets pushed to realtime clients"""
    user_id: str
    friends: List[str]
    pending_sent: List[str]
    pending_received: List[str]
