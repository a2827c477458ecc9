"""
Pytest configuration and fixtures
"""
import os

# Keep the application's own engine off the working directory during tests
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from decimal import Decimal  # noqa: E402
from typing import Any, Dict, List, Optional, Tuple  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.engine import Engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from attendance_engine.core.deps import get_db  # noqa: E402
from attendance_engine.core.security import create_access_token  # noqa: E402
from attendance_engine.db.base import Base  # noqa: E402
from attendance_engine.main import app  # noqa: E402
from attendance_engine.services.backoff import BackoffPolicy  # noqa: E402
from attendance_engine.services.sync_job_service import SyncJobOrchestrator  # noqa: E402

# Import all models to ensure they're registered with Base.metadata
from attendance_engine.models import (  # noqa: E402,F401
    AttendancePeriod,
    AttendanceRecord,
    AuditLog,
    PayrollPeriod,
    PayrollRecord,
    Staff,
    SyncJob,
)


# Use in-memory SQLite for testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Enable foreign keys for SQLite
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class RecordingNotifier:
    """Notifier that keeps every (channel, payload) it is handed"""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, Dict[str, Any]]] = []

    def send(self, channel: str, payload: Dict[str, Any]) -> None:
        self.sent.append((channel, payload))

    def on(self, channel: str) -> List[Dict[str, Any]]:
        return [payload for ch, payload in self.sent if ch == channel]


class FakeConnection:
    """
    In-memory DeviceConnection.

    ``fail_with`` makes every connect fail; ``connect_errors`` / ``fetch_errors``
    are raised once each, in order, before calls start succeeding. ``on_fetch``
    runs before rows are served.
    """

    def __init__(
        self,
        rows: Optional[List[Dict[str, Any]]] = None,
        fail_with: Optional[BaseException] = None,
        connect_errors: Optional[List[BaseException]] = None,
        fetch_errors: Optional[List[BaseException]] = None,
        on_fetch=None,
    ) -> None:
        self.rows = rows if rows is not None else []
        self.fail_with = fail_with
        self.connect_errors = list(connect_errors or [])
        self.fetch_errors = list(fetch_errors or [])
        self.on_fetch = on_fetch
        self.connects = 0
        self.fetches = 0
        self.disconnects = 0

    async def connect(self, ip: str, port: int, timeout_ms: int) -> None:
        self.connects += 1
        if self.fail_with is not None:
            raise self.fail_with
        if self.connect_errors:
            raise self.connect_errors.pop(0)

    async def fetch_punches(self, start_date, end_date):
        self.fetches += 1
        if self.fetch_errors:
            raise self.fetch_errors.pop(0)
        if self.on_fetch is not None:
            self.on_fetch()
        return self.rows

    async def disconnect(self) -> None:
        self.disconnects += 1


async def no_sleep(_seconds: float) -> None:
    return None


def make_staff(db, code: str, name: Optional[str] = None, hourly_rate: Optional[str] = "10.00",
               department: Optional[str] = "Operations", active: bool = True) -> Staff:
    """Create and commit a staff member enrolled on the terminals as ``code``"""
    staff = Staff(
        employee_code=code,
        name=name or f"Staff {code}",
        department=department,
        hourly_rate=Decimal(hourly_rate) if hourly_rate is not None else None,
        active=active,
    )
    db.add(staff)
    db.commit()
    db.refresh(staff)
    return staff


def device_dict(device_id: str = "T1", priority: int = 1, enabled: bool = True, **overrides) -> Dict[str, Any]:
    device = {
        "id": device_id,
        "name": f"Terminal {device_id}",
        "ip": "192.168.1.201",
        "port": 4370,
        "enabled": enabled,
        "priority": priority,
        "timeout_ms": 2000,
    }
    device.update(overrides)
    return device


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def connections() -> Dict[str, FakeConnection]:
    """FakeConnection per device id; tests pre-populate entries to script a terminal"""
    return {}


@pytest.fixture
def orchestrator(db, connections, notifier):
    """Orchestrator wired to the test database, fake terminals and no backoff sleeps"""
    def connection_factory(device):
        return connections.setdefault(device.id, FakeConnection())

    return SyncJobOrchestrator(
        session_factory=TestingSessionLocal,
        connection_factory=connection_factory,
        notifier=notifier,
        backoff_policy=BackoffPolicy(base_delay_ms=0, max_delay_ms=0, jitter_ratio=0),
        sleep=no_sleep,
    )


@pytest.fixture(scope="function")
def client(db, orchestrator, notifier):
    """Test client fixture with database and orchestrator overrides"""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    previous_orchestrator = app.state.orchestrator
    previous_notifier = app.state.notifier
    app.state.orchestrator = orchestrator
    app.state.notifier = notifier
    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.orchestrator = previous_orchestrator
    app.state.notifier = previous_notifier


@pytest.fixture
def auth_headers():
    """Bearer headers for requester 1"""
    token = create_access_token({"sub": 1})
    return {"Authorization": f"Bearer {token}"}
