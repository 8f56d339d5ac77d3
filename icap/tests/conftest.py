"""
Centralized Test Configuration.
"""

import pytest
from datetime import date
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from icap.app.main import app
from icap.app.db.session import get_db, Base
from icap.app.models.order import Order
from icap.mobile.offline_queue import OfflineQueue
from icap.mobile.reliability import CircuitBreaker
from icap.mobile.errors import NetworkError
from icap.mobile.sampler import LocationSampler, Position
from icap.mobile.settings import TrackerSettings
from icap.mobile.state_machine import DeliveryStateMachine
from icap.mobile.store import LocalStore
from icap.mobile.transport import TransportClient

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)



@pytest.fixture(scope="session", autouse=True)
def apply_overrides():
    """Route every request to the in-memory database."""
    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield
    app.dependency_overrides = {}

@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session

@pytest.fixture
async def seeded_order(db_session):
    """The order used by the end-to-end scenarios, currently dispatched."""
    order = Order(
        order_id="CAP2505260002",
        status="Em Rota",
        work_location="Obra Curitiba Centro",
        delivery_date=date(2025, 5, 27),
        quantity=12,
        product_name="Concreto usinado FCK 30",
        supplier_name="Concreteira Paraná",
        user_name="Ana Souza",
    )
    db_session.add(order)
    await db_session.commit()
    await db_session.refresh(order)
    return order


class FakePositionProvider:
    """Position provider with scripted fixes and failures."""

    def __init__(self, latitude=-25.4284, longitude=-49.2733):
        self.latitude = latitude
        self.longitude = longitude
        self.calls = 0
        self.failures = []  # exceptions raised by the next calls, in order

    async def get_current_position(self, high_accuracy, timeout):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        # Move a little on every fix so samples are distinguishable
        self.latitude -= 0.0001
        return Position(latitude=self.latitude, longitude=self.longitude, accuracy=10.0, speed=8.3)


@pytest.fixture
def provider():
    return FakePositionProvider()

@pytest.fixture
def store(tmp_path):
    return LocalStore(tmp_path / "device.json")

@pytest.fixture
def tracker_settings():
    # Long interval: tests drive ticks themselves after the immediate one
    return TrackerSettings(update_interval=60000, max_sample_age=0, circuit_failure_threshold=100)

@pytest.fixture
async def transport(client):
    """Driver transport talking to the in-process API."""
    return TransportClient(
        "http://test",
        client=client,
        breaker=CircuitBreaker(failure_threshold=100, tracked=(NetworkError,)),
    )

@pytest.fixture
async def tracker(transport, provider, store, tracker_settings):
    """State machine wired to the in-process API; shut down after the test."""
    machine = DeliveryStateMachine(
        transport=transport,
        sampler=LocationSampler(provider, max_sample_age_ms=0),
        queue=OfflineQueue(store),
        store=store,
        settings=tracker_settings,
    )
    yield machine
    await machine.shutdown()


@pytest.fixture
def session_factory():
    """Fresh sessions for reading back what the API wrote."""
    return TestingSessionLocal
