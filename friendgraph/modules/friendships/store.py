"""
Relationship store.

Thin layer over a SQLAlchemy session that exposes the primitives the lifecycle
services rely on for race safety: insert-if-absent, compare-and-update on the
status column, predicate queries and predicate deletes. Uniqueness is enforced
by the database (unique constraints and the partial index on pending
requests); a violation rolls back the whole transaction and surfaces as
``Conflict``.

Reads are retried with a bounded backoff on transient database errors.
Writes are never retried.
"""
import logging
import time
import uuid
from contextlib import contextmanager
from typing import Any, Callable, List, Optional, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from friendgraph.core.config import settings
from friendgraph.core.exceptions import Conflict, NotFound, StoreError
from friendgraph.modules.realtime.events import ChangeEvent, Operation, record_change

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RowExists(Conflict):
    """insert_if_absent found a matching row. The transaction is left intact."""


class RelationshipStore:
    def __init__(self, db: Session, read_retries: Optional[int] = None, retry_backoff: Optional[float] = None):
        self.db = db
        self.read_retries = read_retries if read_retries is not None else settings.STORE_READ_RETRIES
        self.retry_backoff = retry_backoff if retry_backoff is not None else settings.STORE_RETRY_BACKOFF
        # Set once the current transaction holds uncommitted writes
        self._writing = False

    @contextmanager
    def _translate_errors(self, action: str):
        try:
            yield
        except IntegrityError as e:
            self.rollback()
            logger.info(f"Constraint violation during {action}: {e.orig}")
            raise Conflict("Relationship changed concurrently, please retry") from e
        except (DBAPIError, SQLAlchemyError) as e:
            self.rollback()
            logger.error(f"Store error during {action}: {e}")
            raise StoreError(f"Relationship store unavailable during {action}") from e

    def _read(self, action: str, fn: Callable[[], T]) -> T:
        attempt = 0
        while True:
            attempt += 1
            writing = self._writing
            try:
                with self._translate_errors(action):
                    return fn()
            except StoreError:
                # The rollback already discarded this transaction's writes
                if writing:
                    raise
                if attempt >= self.read_retries:
                    logger.error(f"Giving up on {action} after {attempt} attempts")
                    raise
                delay = self.retry_backoff * (2 ** (attempt - 1))
                logger.warning(f"Retrying {action} in {delay:.2f}s (attempt {attempt}/{self.read_retries})")
                time.sleep(delay)

    # Reads
    def get(self, model, record_id: str):
        return self._read(f"get {model.__tablename__}", lambda: self.db.get(model, record_id))

    def query(self, model, *criteria, order_by=None) -> List[Any]:
        def run():
            q = self.db.query(model).filter(*criteria)
            if order_by is not None:
                q = q.order_by(order_by)
            return q.all()

        return self._read(f"query {model.__tablename__}", run)

    def first(self, model, *criteria):
        rows = self.query(model, *criteria)
        return rows[0] if rows else None

    # Writes
    def insert_if_absent(self, model, predicate, **values):
        """Insert a ``model`` row unless one matching ``predicate`` exists.

        The existence check is advisory; the database constraint behind
        ``predicate`` decides races at flush time.
        """
        action = f"insert {model.__tablename__}"
        self._writing = True
        with self._translate_errors(action):
            if self.db.query(model).filter(predicate).first() is not None:
                raise RowExists(f"{model.__tablename__} row already exists")
            record = model(id=values.pop("id", None) or str(uuid.uuid4()), **values)
            self.db.add(record)
            self.db.flush()
        record_change(self.db, ChangeEvent.for_row(Operation.INSERT, record))
        return record

    def compare_and_update(self, model, record_id: str, expected_status: str, new_status: str):
        """Set ``status`` to ``new_status`` only if it currently equals ``expected_status``."""
        action = f"update {model.__tablename__}"
        self._writing = True
        with self._translate_errors(action):
            result = self.db.execute(
                update(model)
                .where(model.id == record_id, model.status == expected_status)
                .values(status=new_status, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            record = self.db.get(model, record_id, populate_existing=True)
        if result.rowcount == 0:
            if record is None:
                raise NotFound(f"{model.__tablename__} {record_id} not found")
            raise Conflict(f"{model.__tablename__} {record_id} is already {record.status}")
        record_change(self.db, ChangeEvent.for_row(Operation.UPDATE, record))
        return record

    def delete(self, model, *criteria) -> int:
        action = f"delete {model.__tablename__}"
        self._writing = True
        with self._translate_errors(action):
            rows = self.db.query(model).filter(*criteria).all()
            changes = [ChangeEvent.for_row(Operation.DELETE, row) for row in rows]
            for row in rows:
                self.db.delete(row)
            self.db.flush()
        for change in changes:
            record_change(self.db, change)
        return len(changes)

    def commit(self) -> None:
        try:
            with self._translate_errors("commit"):
                self.db.commit()
        finally:
            self._writing = False

    def rollback(self) -> None:
        self.db.rollback()
        self._writing = False
