from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session
import logging

from friendgraph.db.session import get_db
from friendgraph.deps import get_current_user_id, get_notifier
from friendgraph.modules.friendships.models.friendship import RequestStatus
from friendgraph.modules.friendships.schemas.friendship import (
    FriendRequest as FriendRequestSchema,
    FriendRequestCreate,
    Friendship as FriendshipSchema,
    FriendshipStatus,
    RelationshipSnapshot as RelationshipSnapshotSchema,
)
from friendgraph.modules.friendships.services import friendship as friendship_service
from friendgraph.modules.notifications.services.notifier import Notifier, notify_accepted_safely

router = APIRouter()
logger = logging.getLogger(__name__)

@router.post("/request", response_model=FriendRequestSchema, status_code=status.HTTP_201_CREATED)
def send_friend_request(
    *,
    db: Session = Depends(get_db),
    request_in: FriendRequestCreate,
    background_tasks: BackgroundTasks,
    notifier: Notifier = Depends(get_notifier),
    current_user_id: str = Depends(get_current_user_id),
) -> Any:
    friend_request = friendship_service.send_friend_request(db, current_user_id, request_in.receiver_id)

    # The receiver had already asked us: sending accepted their request
    if friend_request.status == RequestStatus.ACCEPTED.value:
        background_tasks.add_task(
            notify_accepted_safely, notifier, current_user_id, friend_request.sender_id
        )
    return friend_request

@router.delete("/request/{request_id}", response_model=FriendRequestSchema)
def cancel_friend_request(
    *,
    db: Session = Depends(get_db),
    request_id: str,
    current_user_id: str = Depends(get_current_user_id),
) -> Any:
    return friendship_service.cancel_friend_request(db, request_id, current_user_id)

@router.post("/request/{request_id}/accept", response_model=FriendRequestSchema)
def accept_friend_request(
    *,
    db: Session = Depends(get_db),
    request_id: str,
    background_tasks: BackgroundTasks,
    notifier: Notifier = Depends(get_notifier),
    current_user_id: str = Depends(get_current_user_id),
) -> Any:
    accepted = friendship_service.accept_friend_request(db, request_id, current_user_id)

    # Notification runs after the response and never affects it
    background_tasks.add_task(notify_accepted_safely, notifier, current_user_id, accepted.sender_id)
    return accepted

@router.post("/request/{request_id}/reject", response_model=FriendRequestSchema)
def reject_friend_request(
    *,
    db: Session = Depends(get_db),
    request_id: str,
    current_user_id: str = Depends(get_current_user_id),
) -> Any:
    return friendship_service.reject_friend_request(db, request_id, current_user_id)

# "all" lists requests of every status
ALL_STATUSES = "all"

def _status_filter(status: Optional[str]) -> Optional[str]:
    return None if status in (None, ALL_STATUSES) else status

@router.get("/requests/received", response_model=List[FriendRequestSchema])
def get_my_received_friend_requests(
    *,
    db: Session = Depends(get_db),
    status: Optional[str] = RequestStatus.PENDING.value,
    current_user_id: str = Depends(get_current_user_id),
) -> Any:
    return friendship_service.get_received_friend_requests(db, current_user_id, _status_filter(status))

@router.get("/requests/sent", response_model=List[FriendRequestSchema])
def get_my_sent_friend_requests(
    *,
    db: Session = Depends(get_db),
    status: Optional[str] = RequestStatus.PENDING.value,
    current_user_id: str = Depends(get_current_user_id),
) -> Any:
    return friendship_service.get_sent_friend_requests(db, current_user_id, _status_filter(status))

@router.get("/", response_model=List[FriendshipSchema])
def get_my_friends(
    *,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
) -> Any:
    return [
        FriendshipSchema(id=f.id, friend_id=f.other(current_user_id), created_at=f.created_at)
        for f in friendship_service.get_friendships(db, current_user_id)
    ]

@router.get("/snapshot", response_model=RelationshipSnapshotSchema)
def get_my_relationship_snapshot(
    *,
    db: Session = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
) -> Any:
    return friendship_service.get_relationship_snapshot(db, current_user_id).as_dict()

@router.get("/status/{user_id}", response_model=FriendshipStatus)
def check_friendship_status(
    *,
    db: Session = Depends(get_db),
    user_id: str,
    current_user_id: str = Depends(get_current_user_id),
) -> Any:
    friend_status, request_id = friendship_service.get_status(db, current_user_id, user_id)
    return {"status": friend_status, "request_id": request_id}

@router.delete("/{friend_id}", response_model=Dict[str, str])
def remove_friend(
    *,
    db: Session = Depends(get_db),
    friend_id: str,
    current_user_id: str = Depends(get_current_user_id),
) -> Any:
    # Removing a non-friend succeeds so retries after a lost response are harmless
    removed = friendship_service.remove_friend(db, current_user_id, friend_id)
    if removed:
        return {"message": "Friend removed successfully"}
    return {"message": "Not friends with this user"}
