from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select

from wellovis.core.exceptions import ConflictError, DomainError
from wellovis.models import AppointmentOrigin, AppointmentStatus, AuditLog, ServiceMode
from wellovis.services import google_calendar
from wellovis.services.google_calendar import (
    get_valid_access_token,
    store_google_integration,
    sync_appointment_to_calendar,
)
from wellovis.services.patients import create_service
from wellovis.services.scheduling import book_slot
from wellovis.services.video_sessions import join_video_session


@pytest.fixture
def virtual_service(db, tenant):
    return create_service(
        db,
        tenant,
        name="Telehealth Consult",
        duration_min=30,
        default_price=Decimal("60"),
        mode=ServiceMode.VIRTUAL,
    )


@pytest.fixture
def virtual_appointment(db, tenant, practitioner, patient, virtual_service, make_slot, tomorrow_at):
    return book_slot(
        db,
        tenant=tenant,
        practitioner=practitioner,
        patient=patient,
        service=virtual_service,
        slot=make_slot(practitioner, tomorrow_at(15)),
        origin=AppointmentOrigin.WEB,
    )


def test_join_video_session_logs_activity(db, tenant, virtual_appointment):
    result = join_video_session(
        db,
        virtual_appointment,
        "practitioner",
        name="Alice Tremblay",
        email="alice@maple.example",
        ip="10.0.0.5",
    )

    assert result["room_id"] == f"{tenant.id}-{virtual_appointment.id}"
    assert result["join_url"].endswith(f"/rooms/{result['room_id']}")
    assert result["action"] == "video_session_started"

    db.flush()
    entry = db.execute(select(AuditLog)).scalars().one()
    assert entry.actor == "alice@maple.example"
    assert entry.metadata_json["service_name"] == "Telehealth Consult"
    assert entry.metadata_json["appointment_mode"] == "VIRTUAL"


def test_video_session_rules(db, tenant, practitioner, patient, service, virtual_appointment, make_slot, tomorrow_at):
    with pytest.raises(DomainError, match="participant type"):
        join_video_session(db, virtual_appointment, "observer")

    in_person = book_slot(
        db,
        tenant=tenant,
        practitioner=practitioner,
        patient=patient,
        service=service,
        slot=make_slot(practitioner, tomorrow_at(18)),
        origin=AppointmentOrigin.WEB,
    )
    with pytest.raises(DomainError, match="not a virtual"):
        join_video_session(db, in_person, "patient")

    virtual_appointment.status = AppointmentStatus.COMPLETED
    with pytest.raises(ConflictError):
        join_video_session(db, virtual_appointment, "patient")


def test_video_endpoint(client, headers, virtual_appointment):
    response = client.post(
        f"/api/v1/appointments/{virtual_appointment.id}/video-session",
        json={"participant_type": "patient", "name": "Maria Silva"},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["action"] == "video_session_accessed"


def test_store_google_integration_replaces_tokens(db, tenant, practitioner):
    first = store_google_integration(
        db, tenant, practitioner, access_token="a1", refresh_token="r1", expires_in=3600
    )
    second = store_google_integration(db, tenant, practitioner, access_token="a2", refresh_token=None)

    assert second.id == first.id
    assert second.access_token == "a2"
    assert second.refresh_token == "r1"
    assert second.token_expires_at is None


def test_token_refresh_near_expiry(db, tenant, practitioner, monkeypatch):
    integration = store_google_integration(
        db, tenant, practitioner, access_token="stale", refresh_token="r1", expires_in=60
    )
    monkeypatch.setattr(
        google_calendar,
        "_refresh_access_token",
        lambda integration: {"access_token": "fresh", "expires_in": 1800},
    )

    assert get_valid_access_token(db, integration) == "fresh"
    assert integration.access_token == "fresh"
    assert integration.token_expires_at > datetime.now(timezone.utc) + timedelta(minutes=25)


def test_token_refresh_failure_returns_none(db, tenant, practitioner, monkeypatch):
    integration = store_google_integration(
        db, tenant, practitioner, access_token="stale", refresh_token="r1", expires_in=60
    )

    def fail(integration):
        raise httpx.ConnectError("offline")

    monkeypatch.setattr(google_calendar, "_refresh_access_token", fail)
    assert get_valid_access_token(db, integration) is None


def test_sync_appointment_to_calendar(db, tenant, practitioner, virtual_appointment, monkeypatch):
    store_google_integration(db, tenant, practitioner, access_token="token", refresh_token="r1")
    calls = []

    def fake_insert(token, calendar_id, body):
        calls.append((token, calendar_id, body))
        return "evt_123"

    monkeypatch.setattr(google_calendar, "_insert_event", fake_insert)

    assert sync_appointment_to_calendar(db, virtual_appointment) == ["evt_123"]
    token, calendar_id, body = calls[0]
    assert (token, calendar_id) == ("token", "primary")
    assert body["summary"] == "Telehealth Consult - Maria Silva"


def test_calendar_insert_failures_are_skipped(db, tenant, practitioner, virtual_appointment, monkeypatch):
    store_google_integration(db, tenant, practitioner, access_token="token")

    def fail(token, calendar_id, body):
        request = httpx.Request("POST", "https://www.googleapis.com")
        raise httpx.HTTPStatusError(
            "forbidden", request=request, response=httpx.Response(403, request=request)
        )

    monkeypatch.setattr(google_calendar, "_insert_event", fail)
    assert sync_appointment_to_calendar(db, virtual_appointment) == []


def test_google_calendar_endpoint(client, headers, practitioner):
    response = client.post(
        "/api/v1/integrations/google-calendar",
        json={
            "practitioner_id": str(practitioner.id),
            "access_token": "token",
            "refresh_token": "refresh",
            "expires_in": 3600,
        },
        headers=headers,
    )
    assert response.status_code == 201
    body = response.json()["integration"]
    assert body["provider"] == "GOOGLE_CALENDAR"
    assert body["calendar_id"] == "primary"
