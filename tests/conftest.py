"""
Test configuration and fixtures.

Provides:
- A throwaway SQLite database, schema rebuilt for every test
- Customer / appointment factories
- Recording and failing notification sinks
- HTTPX AsyncClient wired to the test session
"""
import os
import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, AsyncGenerator, Callable, Generator

# Point the app at a scratch database before any queuedesk import.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="queuedesk-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'queuedesk.db')}"
os.environ["ENV"] = "test"
os.environ["SENTRY_DSN"] = ""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.orm import Session

from queuedesk.main import app
from queuedesk.core.deps import get_db, get_notifier
from queuedesk.db.base import Base
from queuedesk.db.enums import AppointmentStatus, NotificationType
from queuedesk.db.models import Appointment, Customer
from queuedesk.db.session import engine, SessionLocal


@event.listens_for(engine, "connect")
def _sqlite_wal(dbapi_connection, connection_record):
    # Readers must not block the second writer session in concurrency tests.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


ORG_ID = uuid.UUID("00000000-0000-0000-0000-0000000000a1")
SERVICE_ID = uuid.UUID("00000000-0000-0000-0000-0000000000b1")
QUEUE_DATE = date(2026, 3, 2)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Fresh schema and session per test.

    Engine code commits, so isolation comes from rebuilding the tables
    rather than rolling back a wrapping transaction.
    """
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def other_db(db: Session) -> Generator[Session, None, None]:
    """A second, independent session (another operator's request)."""
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def make_customer(db: Session) -> Callable[..., Customer]:
    def _make(display_name: str = "Test Customer") -> Customer:
        customer = Customer(id=uuid.uuid4(), display_name=display_name)
        db.add(customer)
        db.commit()
        return customer

    return _make


@pytest.fixture(scope="function")
def make_appointment(db: Session, make_customer) -> Callable[..., Appointment]:
    """Create a BOOKED appointment (with its own customer) for the test queue key."""
    counter = {"n": 0}

    def _make(
        status: AppointmentStatus = AppointmentStatus.BOOKED,
        organization_id: uuid.UUID = ORG_ID,
        service_id: uuid.UUID = SERVICE_ID,
        appointment_date: date = QUEUE_DATE,
        with_customer: bool = True,
    ) -> Appointment:
        counter["n"] += 1
        customer = make_customer(f"Customer {counter['n']}") if with_customer else None
        appointment = Appointment(
            id=uuid.uuid4(),
            organization_id=organization_id,
            service_id=service_id,
            customer_id=customer.id if customer else None,
            customer_name=customer.display_name if customer else None,
            token_number=f"A{counter['n']:03d}",
            appointment_date=appointment_date,
            appointment_time="09:00",
            status=status.value,
        )
        db.add(appointment)
        db.commit()
        return appointment

    return _make


@pytest.fixture(scope="function")
def queue_key() -> dict[str, Any]:
    """Keyword arguments naming the test queue for check_in."""
    return {"org_id": ORG_ID, "service_id": SERVICE_ID, "queue_date": QUEUE_DATE}


@pytest.fixture(scope="function")
def reload(db: Session) -> Callable[[Any, uuid.UUID], Any]:
    """Read a row as it is in the database now."""
    def _reload(model, id_: uuid.UUID):
        db.expire_all()
        return db.get(model, id_)

    return _reload


# =============================================================================
# Notification Sinks
# =============================================================================

@dataclass
class RecordingSink:
    """Keeps every notification it is handed."""
    sent: list[tuple[uuid.UUID, uuid.UUID, NotificationType, dict[str, Any]]] = field(
        default_factory=list
    )

    def notify(self, user_id, org_id, kind, payload) -> None:
        self.sent.append((user_id, org_id, kind, payload))

    def kinds(self) -> list[NotificationType]:
        return [kind for _, _, kind, _ in self.sent]


class FailingSink:
    """A notification provider that is down."""

    def __init__(self):
        self.calls = 0

    def notify(self, user_id, org_id, kind, payload) -> None:
        self.calls += 1
        raise RuntimeError("notification provider unavailable")


@pytest.fixture(scope="function")
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture(scope="function")
def failing_sink() -> FailingSink:
    return FailingSink()


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session, sink: RecordingSink) -> AsyncGenerator[AsyncClient, None]:
    """
    AsyncClient bound to the test session; notifications go to `sink`.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: sink

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
