from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from wellovis.api.deps import get_owned, require_active_billing
from wellovis.db.session import get_db
from wellovis.models import Appointment, Practitioner, Tenant
from wellovis.services.feedback import (
    can_edit_feedback,
    practitioner_stats,
    serialize_feedback,
    store_feedback,
)

router = APIRouter(prefix="/api/v1", tags=["feedback"])


class FeedbackSubmit(BaseModel):
    visit_rating: int = Field(ge=1, le=5)
    visit_led_by_id: UUID | None = None
    call_out_person_id: UUID | None = None
    additional_feedback: str | None = Field(default=None, max_length=2000)


@router.post("/appointments/{appointment_id}/feedback")
def submit_feedback(
    appointment_id: UUID,
    payload: FeedbackSubmit,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    appointment = get_owned(db, Appointment, appointment_id, tenant, "Appointment")
    feedback = store_feedback(db, appointment, appointment.patient_id, payload.model_dump())
    return {"feedback": serialize_feedback(feedback)}


@router.get("/appointments/{appointment_id}/feedback")
def get_feedback(
    appointment_id: UUID,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    appointment = get_owned(db, Appointment, appointment_id, tenant, "Appointment")
    return can_edit_feedback(db, appointment.id)


@router.get("/practitioners/{practitioner_id}/rating-stats")
def rating_stats(
    practitioner_id: UUID,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    practitioner = get_owned(db, Practitioner, practitioner_id, tenant, "Practitioner")
    return {"practitioner_id": str(practitioner.id), **practitioner_stats(db, practitioner.id)}
