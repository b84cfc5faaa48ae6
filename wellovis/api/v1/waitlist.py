from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from wellovis.api.deps import get_owned, require_active_billing
from wellovis.db.session import get_db
from wellovis.jobs.tasks import queue_booking_jobs
from wellovis.models import Patient, Service, Tenant
from wellovis.services.scheduling import serialize_appointment, tenant_timezone
from wellovis.services.waitlist import (
    add_to_waitlist,
    confirm_slot_offer,
    get_offer_details,
    serialize_entry,
)

router = APIRouter(prefix="/api/v1/waitlist", tags=["waitlist"])

FAILURE_STATUS = {
    "Invalid link": status.HTTP_404_NOT_FOUND,
    "Expired": status.HTTP_410_GONE,
    "No longer available": status.HTTP_409_CONFLICT,
}


class WaitlistCreate(BaseModel):
    patient_id: UUID
    service_id: UUID | None = None
    preferred_day: str = "any"
    preferred_time: str = "any"
    original_requested_date: date | None = None


def _failure(result: dict[str, Any]) -> JSONResponse:
    return JSONResponse(
        status_code=FAILURE_STATUS.get(result["message"], status.HTTP_400_BAD_REQUEST),
        content={"success": False, "message": result["message"]},
    )


@router.post("", status_code=status.HTTP_201_CREATED)
def join_waitlist(
    payload: WaitlistCreate,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    patient = get_owned(db, Patient, payload.patient_id, tenant, "Patient")
    service = (
        get_owned(db, Service, payload.service_id, tenant, "Service") if payload.service_id else None
    )
    entry = add_to_waitlist(
        db,
        tenant=tenant,
        patient=patient,
        service=service,
        preferred_day=payload.preferred_day,
        preferred_time=payload.preferred_time,
        original_requested_date=payload.original_requested_date,
    )
    return {"entry": serialize_entry(entry)}


@router.get("/offers/{token}")
def offer_details(token: str, db: Session = Depends(get_db)):
    """Public view of an offer, reached from the link in the offer email."""

    result = get_offer_details(db, token)
    if not result["success"]:
        return _failure(result)
    return {
        "success": True,
        "entry": serialize_entry(result["entry"]),
        "appointment_date": result["appointment_date"].isoformat()
        if result["appointment_date"]
        else None,
        "expires_at": result["expires_at"].isoformat() if result["expires_at"] else None,
    }


@router.post("/offers/{token}/confirm")
def confirm_offer(token: str, db: Session = Depends(get_db)):
    result = confirm_slot_offer(db, token)
    if not result["success"]:
        return _failure(result)
    appointment = result["appointment"]
    db.commit()
    queue_booking_jobs(appointment)
    tz = tenant_timezone(db.get(Tenant, appointment.tenant_id))
    return {
        "success": True,
        "message": result["message"],
        "appointment": serialize_appointment(appointment, tz=tz),
    }
