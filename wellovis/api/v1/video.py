from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from wellovis.api.deps import get_owned, require_active_billing
from wellovis.db.session import get_db
from wellovis.models import Appointment, Tenant
from wellovis.services.video_sessions import join_video_session

router = APIRouter(prefix="/api/v1", tags=["video"])


class VideoJoin(BaseModel):
    participant_type: str = "patient"
    name: str | None = None
    email: str | None = None


@router.post("/appointments/{appointment_id}/video-session")
def join_session(
    appointment_id: UUID,
    payload: VideoJoin,
    request: Request,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    appointment = get_owned(db, Appointment, appointment_id, tenant, "Appointment")
    return join_video_session(
        db,
        appointment,
        payload.participant_type,
        name=payload.name,
        email=payload.email,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
