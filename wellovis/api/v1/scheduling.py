from __future__ import annotations

from datetime import date as date_type
from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from wellovis.api.deps import get_owned, require_active_billing
from wellovis.db.session import get_db
from wellovis.jobs.tasks import process_waitlist_task, queue_booking_jobs
from wellovis.models import (
    Appointment,
    AppointmentOrigin,
    AppointmentStatus,
    ConsentEntityType,
    Patient,
    Practitioner,
    ScheduleSlot,
    Service,
    Tenant,
)
from wellovis.services.consents import trigger_consents_with_fallback
from wellovis.services.scheduling import (
    appointment_history,
    appointment_practitioner_ids,
    book_slot,
    get_slot_by_start,
    link_practitioners,
    lock_appointment,
    lock_slot_by_id,
    offer_slots,
    primary_practitioner,
    reschedule_appointment,
    serialize_appointment,
    tenant_timezone,
    to_utc_from_tenant,
    update_appointment_status,
)

router = APIRouter(prefix="/api/v1", tags=["scheduling"])


class AppointmentCreate(BaseModel):
    patient_id: UUID
    practitioner_id: UUID
    service_id: UUID
    start_ts: datetime
    origin: AppointmentOrigin = AppointmentOrigin.WEB
    notes: str | None = None
    schedule_slot_id: UUID | None = None
    additional_practitioner_ids: list[UUID] = Field(default_factory=list)


class AppointmentUpdate(BaseModel):
    status: AppointmentStatus
    notes: str | None = None


class AppointmentReschedule(BaseModel):
    start_ts: datetime
    practitioner_id: UUID | None = None
    schedule_slot_id: UUID | None = None
    notes: str | None = None


def _resolve_slot(
    db: Session,
    tenant: Tenant,
    practitioner: Practitioner,
    start_ts: datetime,
    slot_id: UUID | None,
) -> ScheduleSlot:
    """Find the slot a booking refers to, by id or by start time."""

    if slot_id:
        slot = lock_slot_by_id(db, slot_id)
        if not slot:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Schedule slot not found",
            )
        if slot.practitioner_id != practitioner.id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Schedule slot belongs to another practitioner",
            )
        return slot

    start_utc = to_utc_from_tenant(start_ts, tenant)
    slot = get_slot_by_start(db, practitioner_id=practitioner.id, start_ts=start_utc)
    if not slot:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No slot available at the requested time",
        )
    return slot


@router.get("/slots/search")
def search_slots(
    practitioner_id: UUID,
    service_id: UUID,
    date: str,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Return available slots for a practitioner/service on a given date."""

    practitioner = get_owned(db, Practitioner, practitioner_id, tenant, "Practitioner")
    service = get_owned(db, Service, service_id, tenant, "Service")

    try:
        target_date = date_type.fromisoformat(date.strip())
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid date format. Use YYYY-MM-DD.",
        ) from exc

    held_slots, tz = offer_slots(
        db,
        tenant=tenant,
        practitioner=practitioner,
        service=service,
        target_date=target_date,
    )
    serialized = [slot.as_dict(tz) for slot in held_slots]
    for item in serialized:
        item["duration_min"] = service.duration_min
        item["default_price"] = str(service.default_price)

    return {
        "practitioner_id": str(practitioner_id),
        "service_id": str(service_id),
        "date": target_date.isoformat(),
        "timezone": getattr(tz, "key", str(tz)),
        "results": serialized,
    }


@router.get("/appointments")
def list_appointments(
    status_filter: AppointmentStatus | None = None,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    tz = tenant_timezone(tenant)
    stmt = select(Appointment).where(Appointment.tenant_id == tenant.id)
    if status_filter is not None:
        stmt = stmt.where(Appointment.status == status_filter)
    appointments = db.execute(stmt.order_by(Appointment.scheduled_start)).scalars().all()
    return {
        "tenant_id": str(tenant.id),
        "appointments": [
            serialize_appointment(
                appt, tz=tz, practitioner_ids=appointment_practitioner_ids(db, appt.id)
            )
            for appt in appointments
        ],
    }


@router.post("/appointments", status_code=status.HTTP_201_CREATED)
def create_appointment(
    payload: AppointmentCreate,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Create a new appointment using a held or free slot."""

    practitioner = get_owned(db, Practitioner, payload.practitioner_id, tenant, "Practitioner")
    patient = get_owned(db, Patient, payload.patient_id, tenant, "Patient")
    service = get_owned(db, Service, payload.service_id, tenant, "Service")

    extra_ids = [pid for pid in payload.additional_practitioner_ids if pid != practitioner.id]
    for extra_id in extra_ids:
        get_owned(db, Practitioner, extra_id, tenant, "Practitioner")

    slot = _resolve_slot(db, tenant, practitioner, payload.start_ts, payload.schedule_slot_id)
    appointment = book_slot(
        db,
        tenant=tenant,
        practitioner=practitioner,
        patient=patient,
        service=service,
        slot=slot,
        origin=payload.origin,
        notes=payload.notes,
    )
    if extra_ids:
        link_practitioners(db, appointment, extra_ids, primary_id=practitioner.id)
    trigger_consents_with_fallback(
        db,
        tenant,
        ConsentEntityType.PATIENT,
        "appointment_creation",
        patient.id,
        patient.email,
        fallback_event="creation",
    )
    db.commit()
    queue_booking_jobs(appointment)

    tz = tenant_timezone(tenant)
    return {
        "appointment": serialize_appointment(
            appointment, tz=tz, practitioner_ids=appointment_practitioner_ids(db, appointment.id)
        )
    }


@router.patch("/appointments/{appointment_id}")
def change_appointment_status(
    appointment_id: UUID,
    payload: AppointmentUpdate,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Update the status of an appointment."""

    appointment = lock_appointment(db, tenant, appointment_id)
    if not appointment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Appointment not found",
        )

    previous = appointment.status
    update_appointment_status(db, appointment, payload.status, notes=payload.notes)
    db.commit()
    if payload.status == AppointmentStatus.CANCELLED and previous != AppointmentStatus.CANCELLED:
        process_waitlist_task.delay(str(appointment.id))

    tz = tenant_timezone(tenant)
    return {"appointment": serialize_appointment(appointment, tz=tz)}


@router.post("/appointments/{appointment_id}/reschedule", status_code=status.HTTP_201_CREATED)
def reschedule(
    appointment_id: UUID,
    payload: AppointmentReschedule,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Move an appointment to another slot, keeping the history chain."""

    appointment = lock_appointment(db, tenant, appointment_id)
    if not appointment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Appointment not found",
        )

    if payload.practitioner_id:
        practitioner = get_owned(db, Practitioner, payload.practitioner_id, tenant, "Practitioner")
    else:
        practitioner = primary_practitioner(db, appointment)
        if practitioner is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Appointment has no practitioner",
            )

    slot = _resolve_slot(db, tenant, practitioner, payload.start_ts, payload.schedule_slot_id)
    replacement = reschedule_appointment(
        db,
        tenant=tenant,
        appointment=appointment,
        new_slot=slot,
        notes=payload.notes,
    )
    db.commit()
    queue_booking_jobs(replacement)
    tz = tenant_timezone(tenant)
    return {
        "appointment": serialize_appointment(
            replacement, tz=tz, practitioner_ids=appointment_practitioner_ids(db, replacement.id)
        ),
        "previous": serialize_appointment(appointment, tz=tz),
    }


@router.get("/appointments/{appointment_id}/history")
def get_appointment_history(
    appointment_id: UUID,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    appointment = get_owned(db, Appointment, appointment_id, tenant, "Appointment")
    tz = tenant_timezone(tenant)
    return {
        "appointment_id": str(appointment.id),
        "history": [serialize_appointment(item, tz=tz) for item in appointment_history(db, appointment)],
    }
