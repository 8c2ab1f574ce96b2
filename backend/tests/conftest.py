import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from main import app
from database import Base, get_db
from dependencies import get_event_bus, get_transfer_executor, get_wallet
from ledger.events import PaymentEventBus
from ledger.reconciler import PaymentReconciler
from ledger.store import LedgerStore
from storage import MemoryKeyValueStore
from fakes import FakeTransferExecutor, FakeWallet

# Import rate limiters to override them
from utils.rate_limiter import (
    group_creation_rate_limiter,
    payment_link_rate_limiter,
    payment_submission_rate_limiter
)

# Setup in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def executor():
    return FakeTransferExecutor()


@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def events():
    return PaymentEventBus(echo_delay=0.01)


@pytest.fixture
def kv():
    """One storage partition."""
    return MemoryKeyValueStore()


@pytest.fixture
def ledger(kv):
    return LedgerStore(kv)


@pytest.fixture
def reconciler(ledger, executor, events):
    return PaymentReconciler(ledger, executor, events, confirmation_timeout=5)


@pytest.fixture(scope="function")
def client(db_session, executor, wallet, events):
    """Create a FastAPI TestClient with overridden database and chain dependencies."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_transfer_executor] = lambda: executor
    app.dependency_overrides[get_wallet] = lambda: wallet
    app.dependency_overrides[get_event_bus] = lambda: events
    with TestClient(app) as c:
        yield c
    for dependency in (get_db, get_transfer_executor, get_wallet, get_event_bus):
        app.dependency_overrides.pop(dependency, None)


@pytest.fixture(autouse=True)
def disable_rate_limits():
    """Disable all rate limits during testing using dependency overrides."""
    async def mock_rate_limit():
        return True

    limiters = [
        group_creation_rate_limiter,
        payment_link_rate_limiter,
        payment_submission_rate_limiter
    ]

    for limiter in limiters:
        app.dependency_overrides[limiter] = mock_rate_limit

    yield

    for limiter in limiters:
        app.dependency_overrides.pop(limiter, None)
