import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["FIELD_ENCRYPTION_KEY"] = "A" * 43 + "="
os.environ["BLIND_INDEX_KEY"] = "test-blind-index-key"
os.environ["MAIL_MOCK_MODE"] = "true"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["DEVELOPER_MODE"] = "false"

from datetime import datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from wellovis.db import session as db_session  # noqa: E402
from wellovis.db.base import Base  # noqa: E402
from wellovis.db.session import get_db  # noqa: E402
from wellovis.jobs import tasks  # noqa: E402
from wellovis.main import app, rate_limiter  # noqa: E402
from wellovis.models import BillingStatus, ScheduleSlot, SlotStatus, Tenant  # noqa: E402
from wellovis.services import provisioning_state  # noqa: E402
from wellovis.services.patients import (  # noqa: E402
    create_patient,
    create_practitioner,
    create_service,
)


class FakeRedis:
    """Just enough of the redis client for provisioning progress."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}

    def setex(self, key, ttl, value):
        self.store[key] = value

    def get(self, key):
        return self.store.get(key)

    def delete(self, key):
        self.store.pop(key, None)


@pytest.fixture
def engine(monkeypatch):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    monkeypatch.setattr(
        db_session,
        "SessionLocal",
        sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True),
    )
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = db_session.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    client = FakeRedis()
    monkeypatch.setattr(provisioning_state, "_get_client", lambda: client)
    return client


@pytest.fixture(autouse=True)
def queued_jobs(monkeypatch):
    """Record Celery tasks queued by the API instead of sending them to a broker."""

    queued = []
    monkeypatch.setattr(
        tasks.sync_calendar_task, "delay", lambda *args: queued.append(("sync_calendar", args))
    )
    monkeypatch.setattr(
        tasks.process_waitlist_task, "delay", lambda *args: queued.append(("process_waitlist", args))
    )
    monkeypatch.setattr(
        tasks.flag_no_show,
        "apply_async",
        lambda args, eta=None: queued.append(("flag_no_show", args, eta)),
    )
    return queued


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    rate_limiter.reset()
    yield
    rate_limiter.reset()


@pytest.fixture
def tenant(db):
    tenant = Tenant(
        company_name="Maple Physio",
        timezone="America/Toronto",
        admin_email="owner@maple.example",
        billing_status=BillingStatus.ACTIVE,
        number_of_seats=2,
        is_creation_complete=True,
    )
    db.add(tenant)
    db.commit()
    return tenant


@pytest.fixture
def client(db):
    def override_get_db():
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def headers(tenant):
    return {"X-Tenant-ID": str(tenant.id)}


@pytest.fixture
def practitioner(db, tenant):
    return create_practitioner(
        db, tenant, first_name="Alice", last_name="Tremblay", email="alice@maple.example"
    )


@pytest.fixture
def second_practitioner(db, tenant):
    return create_practitioner(
        db, tenant, first_name="Benoit", last_name="Gagnon", email="benoit@maple.example"
    )


@pytest.fixture
def service(db, tenant):
    return create_service(
        db, tenant, name="Physiotherapy Follow-up", duration_min=30, default_price=Decimal("85")
    )


@pytest.fixture
def patient(db, tenant):
    return create_patient(
        db,
        tenant,
        first_name="Maria",
        last_name="Silva",
        email="maria.silva@example.com",
        health_number="1234567890",
        phone_number="+1 (416) 555-0101",
    )


@pytest.fixture
def make_slot(db, tenant):
    def _make(practitioner, start, minutes=60, status=SlotStatus.FREE):
        slot = ScheduleSlot(
            tenant_id=tenant.id,
            practitioner_id=practitioner.id,
            start_time=start,
            end_time=start + timedelta(minutes=minutes),
            status=status,
        )
        db.add(slot)
        db.flush()
        return slot

    return _make


@pytest.fixture
def tomorrow_at():
    """UTC datetime on the next day at the given hour."""

    def _at(hour, minute=0):
        base = datetime.now(timezone.utc) + timedelta(days=1)
        return base.replace(hour=hour, minute=minute, second=0, microsecond=0)

    return _at
