"""Scheduling utilities for slot discovery, booking and appointment lifecycle."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from wellovis.core.config import settings
from wellovis.core.exceptions import ConflictError, DomainError
from wellovis.models import (
    Appointment,
    AppointmentOrigin,
    AppointmentPractitioner,
    AppointmentStatus,
    Patient,
    Practitioner,
    ScheduleSlot,
    Service,
    SlotStatus,
    Tenant,
)

logger = logging.getLogger(__name__)

HOLD_DURATION = timedelta(seconds=30)
SLOT_SEARCH_LIMIT = 6
DEFAULT_BUFFER_MINUTES = 10

RELEASE_STATUSES = frozenset(
    {
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
        AppointmentStatus.RESCHEDULED,
    }
)
TERMINAL_STATUSES = RELEASE_STATUSES | {AppointmentStatus.COMPLETED}


@dataclass
class SlotSummary:
    """Serialized view of a slot held for presentation."""

    slot_id: UUID
    practitioner_id: UUID
    service_id: UUID | None
    start_utc: datetime
    end_utc: datetime
    hold_expires_at: datetime | None
    status: SlotStatus

    def as_dict(self, tz: ZoneInfo) -> dict[str, str | None]:
        """Convert the slot summary into JSON-friendly values."""

        local_start = self.start_utc.astimezone(tz)
        local_end = self.end_utc.astimezone(tz)
        hold_value = (
            self.hold_expires_at.astimezone(tz).isoformat()
            if self.hold_expires_at
            else None
        )
        return {
            "slot_id": str(self.slot_id),
            "practitioner_id": str(self.practitioner_id),
            "service_id": str(self.service_id) if self.service_id else None,
            "start_ts": self.start_utc.isoformat(),
            "end_ts": self.end_utc.isoformat(),
            "start_local": local_start.isoformat(),
            "end_local": local_end.isoformat(),
            "hold_expires_at": hold_value,
            "status": self.status.value,
        }


def tenant_timezone(tenant: Tenant | None) -> ZoneInfo:
    """Return the tenant timezone, falling back to application default."""

    tz_name = (tenant.timezone if tenant else None) or settings.timezone
    try:
        return ZoneInfo(tz_name)
    except ZoneInfoNotFoundError:
        logger.warning("unknown timezone, using UTC", extra={"timezone": tz_name})
        return ZoneInfo("UTC")


def ensure_utc(value: datetime) -> datetime:
    """Coerce a datetime into UTC timezone-aware form."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_utc_from_tenant(value: datetime, tenant: Tenant) -> datetime:
    """Interpret naive datetimes in the tenant timezone and return UTC."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=tenant_timezone(tenant))
    return value.astimezone(timezone.utc)


def day_bounds(target_date: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    start = datetime.combine(target_date, time.min, tzinfo=tz)
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def release_expired_holds(db: Session, practitioner_id: UUID) -> int:
    """Release expired holds for the given practitioner."""

    now = datetime.now(timezone.utc)
    stmt = (
        update(ScheduleSlot)
        .where(
            ScheduleSlot.practitioner_id == practitioner_id,
            ScheduleSlot.status == SlotStatus.HOLD,
            ScheduleSlot.hold_expires_at.is_not(None),
            ScheduleSlot.hold_expires_at <= now,
        )
        .values(status=SlotStatus.FREE, hold_expires_at=None)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    return int(result.rowcount or 0)


def _blocking_slots(slots: Sequence[ScheduleSlot], now: datetime) -> list[ScheduleSlot]:
    blocked: list[ScheduleSlot] = []
    for slot in slots:
        if slot.status in (SlotStatus.BLOCKED, SlotStatus.BOOKED):
            blocked.append(slot)
        elif slot.status == SlotStatus.HOLD and slot.hold_expires_at:
            if ensure_utc(slot.hold_expires_at) <= now:
                slot.status = SlotStatus.FREE
                slot.hold_expires_at = None
            else:
                blocked.append(slot)
    return blocked


def _conflicts(
    start: datetime, end: datetime, busy: ScheduleSlot, buffer_minutes: int
) -> bool:
    busy_start = ensure_utc(busy.start_time)
    busy_end = ensure_utc(busy.end_time)
    if busy_end <= start:
        return (start - busy_end).total_seconds() / 60 < buffer_minutes
    if end <= busy_start:
        return (busy_start - end).total_seconds() / 60 < buffer_minutes
    return True


def offer_slots(
    db: Session,
    *,
    tenant: Tenant,
    practitioner: Practitioner,
    service: Service,
    target_date: date,
    limit: int = SLOT_SEARCH_LIMIT,
    buffer_minutes: int = DEFAULT_BUFFER_MINUTES,
) -> tuple[list[SlotSummary], ZoneInfo]:
    """Return up to ``limit`` slots held for the caller."""

    tz = tenant_timezone(tenant)
    start_utc, end_utc = day_bounds(target_date, tz)
    now = datetime.now(timezone.utc)

    release_expired_holds(db, practitioner.id)

    stmt = (
        select(ScheduleSlot)
        .where(
            ScheduleSlot.practitioner_id == practitioner.id,
            ScheduleSlot.start_time >= start_utc,
            ScheduleSlot.start_time < end_utc,
        )
        .order_by(ScheduleSlot.start_time)
    )
    slots = db.execute(stmt).scalars().all()

    blocking = _blocking_slots(slots, now)
    held: list[SlotSummary] = []
    hold_until = now + HOLD_DURATION

    for slot in slots:
        if slot.status != SlotStatus.FREE:
            continue

        start = ensure_utc(slot.start_time)
        end = ensure_utc(slot.end_time)
        if (end - start).total_seconds() / 60 < service.duration_min:
            continue

        if any(
            busy.id != slot.id and _conflicts(start, end, busy, buffer_minutes)
            for busy in blocking
        ):
            continue

        slot.status = SlotStatus.HOLD
        slot.hold_expires_at = hold_until
        blocking.append(slot)
        held.append(
            SlotSummary(
                slot_id=slot.id,
                practitioner_id=slot.practitioner_id,
                service_id=slot.service_id,
                start_utc=start,
                end_utc=end,
                hold_expires_at=hold_until,
                status=SlotStatus.HOLD,
            )
        )

        if len(held) >= limit:
            break

    db.flush()
    return held, tz


def get_slot_by_start(
    db: Session,
    *,
    practitioner_id: UUID,
    start_ts: datetime,
) -> ScheduleSlot | None:
    """Return the slot that starts at the provided timestamp, locking it."""

    statement = (
        select(ScheduleSlot)
        .where(
            ScheduleSlot.practitioner_id == practitioner_id,
            ScheduleSlot.start_time == ensure_utc(start_ts),
        )
        .with_for_update()
    )
    return db.execute(statement).scalars().first()


def lock_slot_by_id(db: Session, slot_id: UUID) -> ScheduleSlot | None:
    statement = select(ScheduleSlot).where(ScheduleSlot.id == slot_id).with_for_update()
    return db.execute(statement).scalars().first()


def link_practitioners(
    db: Session,
    appointment: Appointment,
    practitioner_ids: Sequence[UUID],
    *,
    primary_id: UUID | None = None,
) -> None:
    """Attach practitioners to an appointment, the first one primary by default."""

    primary_id = primary_id or (practitioner_ids[0] if practitioner_ids else None)
    seen: set[UUID] = set()
    for practitioner_id in practitioner_ids:
        if practitioner_id in seen:
            continue
        seen.add(practitioner_id)
        db.add(
            AppointmentPractitioner(
                appointment_id=appointment.id,
                practitioner_id=practitioner_id,
                is_primary=practitioner_id == primary_id,
            )
        )
    db.flush()


def book_slot(
    db: Session,
    *,
    tenant: Tenant,
    practitioner: Practitioner,
    patient: Patient,
    service: Service,
    slot: ScheduleSlot,
    origin: AppointmentOrigin,
    notes: str | None = None,
    parent: Appointment | None = None,
) -> Appointment:
    """Confirm a slot into an appointment."""

    now = datetime.now(timezone.utc)
    start = ensure_utc(slot.start_time)
    end = ensure_utc(slot.end_time)
    required_end = start + timedelta(minutes=service.duration_min)
    if required_end > end:
        raise ConflictError("Slot duration is shorter than the service duration")

    if slot.status == SlotStatus.HOLD:
        if not slot.hold_expires_at or ensure_utc(slot.hold_expires_at) <= now:
            slot.status = SlotStatus.FREE
            slot.hold_expires_at = None
            raise ConflictError("Slot hold expired")
    elif slot.status != SlotStatus.FREE:
        raise ConflictError("Slot unavailable")

    slot.status = SlotStatus.BOOKED
    slot.hold_expires_at = None
    slot.service_id = service.id

    appointment = Appointment(
        tenant_id=tenant.id,
        patient_id=patient.id,
        service_id=service.id,
        schedule_slot_id=slot.id,
        status=AppointmentStatus.CONFIRMED,
        mode=service.mode,
        scheduled_start=start,
        scheduled_end=required_end,
        notes=notes,
        origin=origin,
    )
    if parent is not None:
        appointment.parent_appointment_id = parent.id
        appointment.root_appointment_id = parent.root_appointment_id or parent.id
    db.add(appointment)
    db.flush()
    link_practitioners(db, appointment, [practitioner.id])
    return appointment


def appointment_practitioner_ids(db: Session, appointment_id: UUID) -> list[UUID]:
    """Return practitioner ids of an appointment, primary first."""

    stmt = (
        select(AppointmentPractitioner)
        .where(AppointmentPractitioner.appointment_id == appointment_id)
        .order_by(AppointmentPractitioner.is_primary.desc())
    )
    return [link.practitioner_id for link in db.execute(stmt).scalars().all()]


def primary_practitioner(db: Session, appointment: Appointment) -> Practitioner | None:
    stmt = (
        select(Practitioner)
        .join(
            AppointmentPractitioner,
            AppointmentPractitioner.practitioner_id == Practitioner.id,
        )
        .where(AppointmentPractitioner.appointment_id == appointment.id)
        .order_by(AppointmentPractitioner.is_primary.desc())
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def lock_appointment(db: Session, tenant: Tenant, appointment_id: UUID) -> Appointment | None:
    stmt = (
        select(Appointment)
        .where(Appointment.id == appointment_id, Appointment.tenant_id == tenant.id)
        .with_for_update()
    )
    return db.execute(stmt).scalars().first()


def update_appointment_status(
    db: Session,
    appointment: Appointment,
    new_status: AppointmentStatus,
    *,
    notes: str | None = None,
) -> Appointment:
    """Move an appointment to ``new_status``, freeing its slot when it no longer runs.

    Cancelled, no-show, rescheduled and completed appointments are final. Their
    slot may already belong to someone else, so they only accept notes.
    """

    previous = appointment.status
    if previous in TERMINAL_STATUSES and new_status != previous:
        raise ConflictError(
            f"Cannot change a {previous.value.lower()} appointment to {new_status.value.lower()}"
        )
    if notes is not None:
        appointment.notes = notes
    if new_status == previous:
        db.flush()
        return appointment

    appointment.status = new_status
    if new_status in RELEASE_STATUSES and appointment.schedule_slot_id:
        slot = db.get(ScheduleSlot, appointment.schedule_slot_id)
        if slot:
            slot.status = SlotStatus.FREE
            slot.hold_expires_at = None
    db.flush()

    logger.info(
        "appointment status changed",
        extra={
            "appointment_id": str(appointment.id),
            "from_status": previous.value,
            "to_status": new_status.value,
        },
    )
    return appointment


def reschedule_appointment(
    db: Session,
    *,
    tenant: Tenant,
    appointment: Appointment,
    new_slot: ScheduleSlot,
    notes: str | None = None,
) -> Appointment:
    """Book ``new_slot`` as a follow-up of ``appointment`` and retire the original."""

    if appointment.status in TERMINAL_STATUSES:
        raise DomainError(f"Cannot reschedule a {appointment.status.value.lower()} appointment")

    practitioner = db.get(Practitioner, new_slot.practitioner_id)
    patient = db.get(Patient, appointment.patient_id)
    service = db.get(Service, appointment.service_id) if appointment.service_id else None
    if practitioner is None or patient is None or service is None:
        raise DomainError("Appointment is missing its practitioner, patient or service")

    replacement = book_slot(
        db,
        tenant=tenant,
        practitioner=practitioner,
        patient=patient,
        service=service,
        slot=new_slot,
        origin=appointment.origin,
        notes=notes if notes is not None else appointment.notes,
        parent=appointment,
    )
    update_appointment_status(db, appointment, AppointmentStatus.RESCHEDULED)
    return replacement


def appointment_history(db: Session, appointment: Appointment) -> list[Appointment]:
    """Return every appointment sharing the same root, oldest first."""

    root_id = appointment.root_appointment_id or appointment.id
    stmt = (
        select(Appointment)
        .where(or_(Appointment.id == root_id, Appointment.root_appointment_id == root_id))
        .order_by(Appointment.scheduled_start, Appointment.created_at)
    )
    return list(db.execute(stmt).scalars().all())


def serialize_appointment(
    appointment: Appointment,
    *,
    tz: ZoneInfo,
    practitioner_ids: Sequence[UUID] = (),
) -> dict[str, str | list[str] | None]:
    """Return a JSON-friendly representation of an appointment."""

    start = ensure_utc(appointment.scheduled_start) if appointment.scheduled_start else None
    end = ensure_utc(appointment.scheduled_end) if appointment.scheduled_end else None
    return {
        "id": str(appointment.id),
        "status": appointment.status.value,
        "origin": appointment.origin.value,
        "mode": appointment.mode.value if appointment.mode else None,
        "scheduled_start": start.isoformat() if start else None,
        "scheduled_end": end.isoformat() if end else None,
        "scheduled_start_local": start.astimezone(tz).isoformat() if start else None,
        "scheduled_end_local": end.astimezone(tz).isoformat() if end else None,
        "patient_id": str(appointment.patient_id),
        "service_id": str(appointment.service_id) if appointment.service_id else None,
        "practitioner_ids": [str(value) for value in practitioner_ids],
        "parent_appointment_id": str(appointment.parent_appointment_id)
        if appointment.parent_appointment_id
        else None,
        "root_appointment_id": str(appointment.root_appointment_id)
        if appointment.root_appointment_id
        else None,
    }
