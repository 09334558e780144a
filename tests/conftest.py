from datetime import datetime

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.billing import BillingEngine, RateTable
from app.database import build_engine, init_db
from app.engine import ParkingEngine
from app.notifications import NotificationDispatcher

T0 = datetime(2024, 3, 1, 8, 0, 0)


@pytest.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'parking.db'}", lock_timeout=2)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def rates():
    return RateTable({"car": 5, "bike": 3, "truck": 10}, default_rate=5)


@pytest.fixture
async def notifier():
    sent = []

    async def send(notification):
        sent.append(notification)

    dispatcher = NotificationDispatcher(send=send)
    dispatcher.sent = sent
    dispatcher.start()
    yield dispatcher
    await dispatcher.stop()


@pytest.fixture
def parking(rates, notifier):
    return ParkingEngine(BillingEngine(rates), notifier, retries=5, backoff=0.01)
