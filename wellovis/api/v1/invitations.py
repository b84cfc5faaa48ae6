from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from wellovis.api.deps import get_owned, require_active_billing
from wellovis.core.exceptions import ConflictError
from wellovis.db.session import get_db
from wellovis.models import Invitation, InvitationKind, Patient, Practitioner, Tenant
from wellovis.services.invitations import (
    accept_invitation,
    create_invitation,
    group_invitations_by_patient,
    resend_invitation,
    serialize_invitation,
)

router = APIRouter(prefix="/api/v1/invitations", tags=["invitations"])


class InvitationCreate(BaseModel):
    kind: InvitationKind
    email: str = Field(min_length=3, max_length=255)
    patient_id: UUID | None = None
    practitioner_id: UUID | None = None


@router.post("", status_code=status.HTTP_201_CREATED)
def invite(
    payload: InvitationCreate,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    patient = (
        get_owned(db, Patient, payload.patient_id, tenant, "Patient") if payload.patient_id else None
    )
    practitioner = (
        get_owned(db, Practitioner, payload.practitioner_id, tenant, "Practitioner")
        if payload.practitioner_id
        else None
    )
    invitation = create_invitation(
        db,
        tenant,
        payload.kind,
        payload.email,
        patient=patient,
        practitioner=practitioner,
    )
    return {"invitation": serialize_invitation(invitation)}


@router.post("/accept/{token}")
def accept(token: str, db: Session = Depends(get_db)) -> dict[str, Any]:
    if len(token) != 64:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invitation not found")
    try:
        invitation = accept_invitation(db, token)
    except ConflictError:
        # keep the EXPIRED flag set by accept_invitation
        db.commit()
        raise
    return {"invitation": serialize_invitation(invitation)}


@router.post("/{invitation_id}/resend")
def resend(
    invitation_id: UUID,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    invitation = get_owned(db, Invitation, invitation_id, tenant, "Invitation")
    resend_invitation(db, tenant, invitation)
    return {"invitation": serialize_invitation(invitation)}


@router.get("/grouped")
def grouped_invitations(
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Patient invitations grouped per patient, most recent activity first."""

    rows = db.execute(
        select(Invitation).where(
            Invitation.tenant_id == tenant.id,
            Invitation.kind == InvitationKind.PATIENT,
            Invitation.patient_id.is_not(None),
        )
    ).scalars().all()
    return {"groups": group_invitations_by_patient(rows)}


