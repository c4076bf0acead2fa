from typing import Any, List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from friendgraph.db.session import get_db
from friendgraph.deps import get_current_user_id
from friendgraph.modules.notifications.schemas.notification import Notification as NotificationSchema
from friendgraph.modules.notifications.services.notification import get_user_notifications

router = APIRouter()

@router.get("/", response_model=List[NotificationSchema])
def read_notifications(
    db: Session = Depends(get_db),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=200),
    unread_only: bool = False,
    current_user_id: str = Depends(get_current_user_id),
) -> Any:
    """Get user's notifications with pagination and filter options"""
    return get_user_notifications(db, current_user_id, skip, limit, unread_only)
