"""
Change events for the friend_requests and friendships tables.

The relationship store records one event per mutated row on the SQLAlchemy
session. Events are published to the broker only after the transaction
commits and are discarded on rollback, so subscribers never see a change that
did not happen.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Callable, FrozenSet, List

from sqlalchemy import event
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

_PENDING_KEY = "pending_change_events"


class Table(str, enum.Enum):
    REQUESTS = "friend_requests"
    FRIENDSHIPS = "friendships"


class Operation(str, enum.Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    table: Table
    operation: Operation
    row_id: str
    # Participants of the row; the broker fans the event out to each of them
    user_ids: FrozenSet[str]

    @classmethod
    def for_row(cls, operation: Operation, row) -> "ChangeEvent":
        table = Table(row.__tablename__)
        if table == Table.REQUESTS:
            users = frozenset((row.sender_id, row.receiver_id))
        else:
            users = frozenset((row.user1_id, row.user2_id))
        return cls(table=table, operation=operation, row_id=row.id, user_ids=users)

    def as_dict(self) -> dict:
        return {"table": self.table.value, "operation": self.operation.value, "row_id": self.row_id}


def record_change(db: Session, change: ChangeEvent) -> None:
    """Queue ``change`` for publication when ``db`` commits."""
    db.info.setdefault(_PENDING_KEY, []).append(change)


def pending_changes(db: Session) -> List[ChangeEvent]:
    return list(db.info.get(_PENDING_KEY, ()))


def bind_change_events(session_factory: sessionmaker, broker) -> Callable[[], None]:
    """Publish recorded changes of every session made by ``session_factory`` to ``broker``.

    Returns a callable that removes the listeners again.
    """

    def _publish(session):
        changes = session.info.pop(_PENDING_KEY, [])
        for change in changes:
            broker.publish(change)
        if changes:
            logger.debug(f"Published {len(changes)} change events")

    def _discard(session, previous_transaction):
        dropped = session.info.pop(_PENDING_KEY, None)
        if dropped:
            logger.debug(f"Discarded {len(dropped)} change events after rollback")

    event.listen(session_factory, "after_commit", _publish)
    event.listen(session_factory, "after_soft_rollback", _discard)

    def unbind() -> None:
        event.remove(session_factory, "after_commit", _publish)
        event.remove(session_factory, "after_soft_rollback", _discard)

    return unbind
