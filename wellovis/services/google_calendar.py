"""Google Calendar integration for practitioners."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import quote

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from wellovis.core.config import settings
from wellovis.core.exceptions import DomainError
from wellovis.models import (
    Appointment,
    Integration,
    IntegrationProvider,
    Patient,
    Practitioner,
    Service,
    Tenant,
)
from wellovis.services.scheduling import appointment_practitioner_ids, ensure_utc

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/{calendar_id}/events"
REFRESH_MARGIN = timedelta(minutes=5)
_TIMEOUT = httpx.Timeout(connect=5.0, read=15.0, write=15.0, pool=5.0)


def store_google_integration(
    db: Session,
    tenant: Tenant,
    practitioner: Practitioner,
    *,
    access_token: str,
    refresh_token: str | None,
    expires_in: int | None = None,
    calendar_id: str = "primary",
) -> Integration:
    """Save (or replace) the OAuth tokens a practitioner granted."""

    if practitioner.tenant_id != tenant.id:
        raise DomainError("Practitioner belongs to another tenant")

    integration = db.execute(
        select(Integration).where(
            Integration.practitioner_id == practitioner.id,
            Integration.provider == IntegrationProvider.GOOGLE_CALENDAR,
        )
    ).scalars().first()
    if integration is None:
        integration = Integration(
            tenant_id=tenant.id,
            practitioner_id=practitioner.id,
            provider=IntegrationProvider.GOOGLE_CALENDAR,
        )
        db.add(integration)

    integration.access_token = access_token
    if refresh_token:
        integration.refresh_token = refresh_token
    integration.token_expires_at = (
        datetime.now(timezone.utc) + timedelta(seconds=expires_in) if expires_in else None
    )
    integration.calendar_id = calendar_id
    integration.is_active = True
    db.flush()
    return integration


def _refresh_access_token(integration: Integration) -> dict[str, Any]:
    data = {
        "client_id": settings.google_client_id,
        "client_secret": settings.google_client_secret,
        "refresh_token": integration.refresh_token,
        "grant_type": "refresh_token",
    }
    with httpx.Client(timeout=_TIMEOUT) as client:
        response = client.post(TOKEN_URL, data=data)
    response.raise_for_status()
    return response.json()


def get_valid_access_token(
    db: Session, integration: Integration, now: datetime | None = None
) -> str | None:
    """Return a usable access token, refreshing it when close to expiry."""

    now = now or datetime.now(timezone.utc)
    expires_at = integration.token_expires_at
    if expires_at is None or ensure_utc(expires_at) - now > REFRESH_MARGIN:
        return integration.access_token

    if not integration.refresh_token:
        logger.warning(
            "google token expired and no refresh token stored",
            extra={"integration_id": str(integration.id)},
        )
        return None

    try:
        payload = _refresh_access_token(integration)
    except httpx.HTTPError as exc:
        logger.error(
            "google token refresh failed",
            extra={"integration_id": str(integration.id), "error": str(exc)},
        )
        return None

    token = payload.get("access_token")
    if not token:
        logger.error(
            "google token refresh returned no access token",
            extra={"integration_id": str(integration.id)},
        )
        return None

    integration.access_token = token
    integration.token_expires_at = now + timedelta(seconds=int(payload.get("expires_in", 3600)))
    db.flush()
    return token


def _event_body(db: Session, appointment: Appointment) -> dict[str, Any]:
    service = db.get(Service, appointment.service_id) if appointment.service_id else None
    patient = db.get(Patient, appointment.patient_id)
    summary = service.name if service else "Appointment"
    if patient is not None:
        summary = f"{summary} - {patient.full_name}"
    start = ensure_utc(appointment.scheduled_start)
    end = ensure_utc(appointment.scheduled_end) if appointment.scheduled_end else start
    return {
        "summary": summary,
        "description": appointment.notes or "",
        "start": {"dateTime": start.isoformat(), "timeZone": "UTC"},
        "end": {"dateTime": end.isoformat(), "timeZone": "UTC"},
    }


def _insert_event(token: str, calendar_id: str, body: dict[str, Any]) -> str | None:
    url = EVENTS_URL.format(calendar_id=quote(calendar_id, safe=""))
    headers = {"Authorization": f"Bearer {token}"}
    with httpx.Client(timeout=_TIMEOUT) as client:
        response = client.post(url, headers=headers, json=body)
    response.raise_for_status()
    return response.json().get("id")


def sync_appointment_to_calendar(db: Session, appointment: Appointment) -> list[str]:
    """Insert the appointment in every connected practitioner calendar."""

    if appointment.scheduled_start is None:
        return []

    practitioner_ids = appointment_practitioner_ids(db, appointment.id)
    if not practitioner_ids:
        return []

    integrations = db.execute(
        select(Integration).where(
            Integration.practitioner_id.in_(practitioner_ids),
            Integration.provider == IntegrationProvider.GOOGLE_CALENDAR,
            Integration.is_active.is_(True),
        )
    ).scalars().all()

    body = _event_body(db, appointment)
    event_ids: list[str] = []
    for integration in integrations:
        token = get_valid_access_token(db, integration)
        if token is None:
            continue
        try:
            event_id = _insert_event(token, integration.calendar_id, body)
        except httpx.HTTPError as exc:
            logger.error(
                "google calendar event insert failed",
                extra={"integration_id": str(integration.id), "error": str(exc)},
            )
            continue
        if event_id:
            event_ids.append(event_id)

    logger.info(
        "appointment synced to calendars",
        extra={"appointment_id": str(appointment.id), "events": len(event_ids)},
    )
    return event_ids
