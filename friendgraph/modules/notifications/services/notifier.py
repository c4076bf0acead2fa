"""
Notifier used for best-effort side effects of relationship changes.

A notifier failure never changes the outcome of the operation that triggered
it: callers go through ``notify_accepted_safely``, which logs and swallows.
"""
from abc import ABC, abstractmethod
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from friendgraph.core.exceptions import NotifierError
from friendgraph.db.session import SessionLocal
from friendgraph.modules.notifications.schemas.notification import NotificationCreate
from friendgraph.modules.notifications.services.notification import create_notification

logger = logging.getLogger(__name__)


class Notifier(ABC):
    @abstractmethod
    def notify_accepted(self, receiver_id: str, sender_id: str) -> None:
        """Tell ``sender_id`` that ``receiver_id`` accepted their friend request."""


class DatabaseNotifier(Notifier):
    """Stores a friend_accepted notification for the original sender."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def notify_accepted(self, receiver_id: str, sender_id: str) -> None:
        db = self.session_factory()
        try:
            create_notification(
                db,
                NotificationCreate(user_id=sender_id, actor_id=receiver_id, type="friend_accepted"),
            )
        except SQLAlchemyError as e:
            db.rollback()
            raise NotifierError(f"Could not store acceptance notification: {e}") from e
        finally:
            db.close()
        logger.info(f"Created friend request accepted notification for user {sender_id} from user {receiver_id}")


def notify_accepted_safely(notifier: Notifier, receiver_id: str, sender_id: str) -> bool:
    """Run ``notifier.notify_accepted`` and report whether it succeeded"""
    try:
        notifier.notify_accepted(receiver_id, sender_id)
        return True
    except Exception as e:
        logger.error(f"Error creating acceptance notification: {e}")
        return False
