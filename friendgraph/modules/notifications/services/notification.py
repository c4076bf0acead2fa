from typing import List
import uuid
from sqlalchemy.orm import Session

from friendgraph.modules.notifications.models.notification import Notification
from friendgraph.modules.notifications.schemas.notification import NotificationCreate

def get_user_notifications(db: Session, user_id: str, skip: int = 0, limit: int = 50, unread_only: bool = False) -> List[Notification]:
    """Get notifications for a user"""
    query = db.query(Notification).filter(Notification.user_id == user_id)

    if unread_only:
        query = query.filter(Notification.is_read.is_(False))

    return query.order_by(Notification.created_at.desc()).offset(skip).limit(limit).all()

def create_notification(db: Session, notification_in: NotificationCreate) -> Notification:
    """Create a new notification"""
    notification = Notification(
        id=str(uuid.uuid4()),
        **notification_in.model_dump(),
    )

    db.add(notification)
    db.commit()
    db.refresh(notification)

    return notification
