from sqlalchemy import Column, String, DateTime, Boolean
from sqlalchemy.sql import func

from friendgraph.db.session import Base

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    actor_id = Column(String, nullable=True)  # The user who triggered the notification
    type = Column(String, nullable=False)  # friend_accepted
    related_id = Column(String, nullable=True)  # ID of the related entity (friend request, friendship)
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=func.now())
