"""Offer freed appointment time to patients on the waiting list."""

from __future__ import annotations

import logging
import secrets
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy import and_, case, or_, select
from sqlalchemy.orm import Session

from wellovis.core.config import settings
from wellovis.core.exceptions import DomainError
from wellovis.models import (
    Appointment,
    AppointmentOrigin,
    AppointmentStatus,
    Patient,
    ScheduleSlot,
    Service,
    SlotStatus,
    Tenant,
    WaitlistEntry,
    WaitlistStatus,
)
from wellovis.services.notifications import notify
from wellovis.services.scheduling import (
    appointment_practitioner_ids,
    ensure_utc,
    link_practitioners,
    lock_slot_by_id,
    tenant_timezone,
)

logger = logging.getLogger(__name__)

DEFAULT_DURATION = timedelta(minutes=30)
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
TIME_SLOTS = ("morning", "afternoon", "evening")


def time_slot_for(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    return "evening"


def add_to_waitlist(
    db: Session,
    *,
    tenant: Tenant,
    patient: Patient,
    service: Service | None = None,
    preferred_day: str = "any",
    preferred_time: str = "any",
    original_requested_date: date | None = None,
) -> WaitlistEntry:
    preferred_day = preferred_day.lower()
    preferred_time = preferred_time.lower()
    if preferred_day != "any" and preferred_day not in WEEKDAYS:
        raise DomainError(f"Invalid preferred day: {preferred_day}")
    if preferred_time != "any" and preferred_time not in TIME_SLOTS:
        raise DomainError(f"Invalid preferred time: {preferred_time}")

    entry = WaitlistEntry(
        tenant_id=tenant.id,
        patient_id=patient.id,
        service_id=service.id if service else None,
        preferred_day=preferred_day,
        preferred_time=preferred_time,
        original_requested_date=original_requested_date,
        status=WaitlistStatus.WAITING,
    )
    db.add(entry)
    db.flush()
    return entry


def process_available_slot(db: Session, cancelled: Appointment) -> list[WaitlistEntry]:
    """Offer the time of ``cancelled`` to every matching waiting patient.

    Patients who asked for that exact date come first, then patients whose
    day and time-of-day preferences match, oldest request first.
    """

    if cancelled.scheduled_start is None:
        return []

    tenant = db.get(Tenant, cancelled.tenant_id)
    local_start = ensure_utc(cancelled.scheduled_start).astimezone(tenant_timezone(tenant))
    day_of_week = WEEKDAYS[local_start.weekday()]
    slot = time_slot_for(local_start.hour)
    slot_date = local_start.date()

    logger.info(
        "waitlist processing freed slot",
        extra={
            "appointment_id": str(cancelled.id),
            "day": day_of_week,
            "time_slot": slot,
            "local_datetime": local_start.isoformat(),
        },
    )

    exact_match = WaitlistEntry.original_requested_date == slot_date
    stmt = (
        select(WaitlistEntry)
        .where(
            WaitlistEntry.tenant_id == cancelled.tenant_id,
            WaitlistEntry.status == WaitlistStatus.WAITING,
            WaitlistEntry.offered_at.is_(None),
            or_(
                exact_match,
                and_(
                    WaitlistEntry.preferred_day.in_((day_of_week, "any")),
                    WaitlistEntry.preferred_time.in_((slot, "any")),
                ),
            ),
        )
        .order_by(case((exact_match, 1), else_=2), WaitlistEntry.created_at)
    )
    entries = list(db.execute(stmt).scalars().all())
    if not entries:
        logger.info("waitlist has no matching entries")
        return []

    service = db.get(Service, cancelled.service_id) if cancelled.service_id else None
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(hours=settings.waitlist_offer_hours)

    for entry in entries:
        entry.offered_at = now
        entry.expires_at = expires_at
        entry.acceptance_token = secrets.token_hex(16)
        entry.appointment_id = cancelled.id
        entry.status = WaitlistStatus.OFFERED
        db.flush()

        patient = db.get(Patient, entry.patient_id)
        if patient is None:
            continue
        notify(
            db,
            tenant_id=cancelled.tenant_id,
            to=patient.email,
            template="waitlist_slot_available",
            context={
                "service_name": service.name if service else "",
                "date": slot_date.isoformat(),
                "time": local_start.strftime("%H:%M"),
                "expires_at": expires_at.isoformat(),
                "confirm_url": f"/waitlist/offers/{entry.acceptance_token}",
            },
            appointment_id=cancelled.id,
        )

    logger.info("waitlist offers sent", extra={"count": len(entries)})
    return entries


def _is_expired(entry: WaitlistEntry, now: datetime) -> bool:
    return entry.expires_at is not None and ensure_utc(entry.expires_at) < now


def _slot_is_open(slot: ScheduleSlot, now: datetime) -> bool:
    if slot.status == SlotStatus.FREE:
        return True
    # a search hold that lapsed does not count
    return (
        slot.status == SlotStatus.HOLD
        and slot.hold_expires_at is not None
        and ensure_utc(slot.hold_expires_at) <= now
    )


def get_offer_details(db: Session, token: str) -> dict[str, Any]:
    entry = db.execute(
        select(WaitlistEntry).where(WaitlistEntry.acceptance_token == token)
    ).scalars().first()
    if entry is None:
        return {"success": False, "message": "Invalid link"}

    now = datetime.now(timezone.utc)
    if _is_expired(entry, now):
        return {"success": False, "message": "Expired"}

    original = db.get(Appointment, entry.appointment_id) if entry.appointment_id else None
    return {
        "success": True,
        "entry": entry,
        "original_appointment": original,
        "appointment_date": ensure_utc(original.scheduled_start)
        if original and original.scheduled_start
        else None,
        "expires_at": ensure_utc(entry.expires_at) if entry.expires_at else None,
    }


def confirm_slot_offer(db: Session, token: str) -> dict[str, Any]:
    """Book the offered time for the patient holding ``token``."""

    entry = db.execute(
        select(WaitlistEntry).where(WaitlistEntry.acceptance_token == token).with_for_update()
    ).scalars().first()
    if entry is None:
        return {"success": False, "message": "Invalid link"}

    if entry.status != WaitlistStatus.OFFERED:
        logger.info(
            "waitlist offer no longer available",
            extra={"entry_id": str(entry.id), "status": entry.status.value},
        )
        return {"success": False, "message": "No longer available"}

    now = datetime.now(timezone.utc)
    if _is_expired(entry, now):
        entry.status = WaitlistStatus.EXPIRED
        return {"success": False, "message": "Expired"}

    original = db.get(Appointment, entry.appointment_id) if entry.appointment_id else None
    if original is not None and original.scheduled_start is not None:
        start = ensure_utc(original.scheduled_start)
        duration = (
            ensure_utc(original.scheduled_end) - start
            if original.scheduled_end
            else DEFAULT_DURATION
        )
    else:
        start = ensure_utc(entry.offered_at or now)
        duration = DEFAULT_DURATION

    slot = None
    if original is not None and original.schedule_slot_id:
        slot = lock_slot_by_id(db, original.schedule_slot_id)
        if slot is None or not _slot_is_open(slot, now):
            entry.status = WaitlistStatus.TAKEN
            db.flush()
            logger.info(
                "waitlist slot was booked by someone else",
                extra={"entry_id": str(entry.id), "appointment_id": str(original.id)},
            )
            return {"success": False, "message": "No longer available"}
        slot.status = SlotStatus.BOOKED
        slot.hold_expires_at = None

    appointment = Appointment(
        tenant_id=entry.tenant_id,
        patient_id=entry.patient_id,
        service_id=original.service_id if original else entry.service_id,
        status=AppointmentStatus.CONFIRMED,
        origin=AppointmentOrigin.WAITING_LIST,
        scheduled_start=start,
        scheduled_end=start + duration,
        notes="From waiting list",
    )
    if slot is not None:
        appointment.schedule_slot_id = slot.id
    if original is not None:
        appointment.mode = original.mode
        appointment.parent_appointment_id = original.id
        appointment.root_appointment_id = original.root_appointment_id or original.id
    db.add(appointment)
    db.flush()
    if original is None:
        appointment.root_appointment_id = appointment.id

    if original is not None:
        practitioner_ids = appointment_practitioner_ids(db, original.id)
        if practitioner_ids:
            link_practitioners(db, appointment, practitioner_ids)

    competing: list[WaitlistEntry] = []
    if original is not None:
        competing = list(
            db.execute(
                select(WaitlistEntry).where(
                    WaitlistEntry.appointment_id == original.id,
                    WaitlistEntry.status == WaitlistStatus.OFFERED,
                    WaitlistEntry.id != entry.id,
                )
            ).scalars().all()
        )

    entry.status = WaitlistStatus.ACCEPTED
    entry.appointment_id = appointment.id
    db.flush()

    tz = tenant_timezone(db.get(Tenant, entry.tenant_id))
    local_start = start.astimezone(tz)
    for other in competing:
        other.status = WaitlistStatus.TAKEN
        patient = db.get(Patient, other.patient_id)
        if patient is not None:
            notify(
                db,
                tenant_id=other.tenant_id,
                to=patient.email,
                template="waitlist_slot_taken",
                context={
                    "date": local_start.date().isoformat(),
                    "time": local_start.strftime("%H:%M"),
                },
            )
    db.flush()

    logger.info(
        "waitlist offer confirmed",
        extra={"entry_id": str(entry.id), "appointment_id": str(appointment.id)},
    )
    return {
        "success": True,
        "message": "Appointment confirmed!",
        "appointment": appointment,
    }


def serialize_entry(entry: WaitlistEntry) -> dict[str, Any]:
    return {
        "id": str(entry.id),
        "patient_id": str(entry.patient_id),
        "service_id": str(entry.service_id) if entry.service_id else None,
        "preferred_day": entry.preferred_day,
        "preferred_time": entry.preferred_time,
        "original_requested_date": entry.original_requested_date.isoformat()
        if entry.original_requested_date
        else None,
        "status": entry.status.value,
        "offered_at": ensure_utc(entry.offered_at).isoformat() if entry.offered_at else None,
        "expires_at": ensure_utc(entry.expires_at).isoformat() if entry.expires_at else None,
    }


def expire_offers(db: Session, now: datetime | None = None) -> int:
    """Flip offers whose confirmation window elapsed to EXPIRED."""

    now = now or datetime.now(timezone.utc)
    entries = db.execute(
        select(WaitlistEntry).where(
            WaitlistEntry.status == WaitlistStatus.OFFERED,
            WaitlistEntry.expires_at.is_not(None),
            WaitlistEntry.expires_at < now,
        )
    ).scalars().all()
    for entry in entries:
        entry.status = WaitlistStatus.EXPIRED
    db.flush()
    return len(entries)
