"""
Shared fixtures.

The test database is a throwaway SQLite file; DATABASE_URL must be set before
any friendgraph module is imported because the engine is built at import time.
"""
import asyncio
import os
import tempfile
import time

_db_dir = tempfile.mkdtemp(prefix="friendgraph-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_db_dir}/test.db"
os.environ["SECRET_KEY"] = "test_secret_key"

import pytest
from fastapi.testclient import TestClient

from friendgraph.core.security import create_access_token
from friendgraph.db.init_db import create_all_tables
from friendgraph.db.session import Base, SessionLocal, engine
from friendgraph.modules.realtime.broker import ChangeEventBroker
from friendgraph.modules.realtime.events import bind_change_events


@pytest.fixture(autouse=True)
def clean_tables():
    """Create the schema once and empty every table after each test"""
    create_all_tables(engine)
    yield
    with engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def broker():
    """A broker receiving every change committed through SessionLocal"""
    change_broker = ChangeEventBroker()
    unbind = bind_change_events(SessionLocal, change_broker)
    yield change_broker
    unbind()
    change_broker.close()


@pytest.fixture
def client():
    from friendgraph.main import app

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll ``predicate`` on the running loop until it holds or fail the test"""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            pytest.fail("Condition not reached in time")
        await asyncio.sleep(interval)
