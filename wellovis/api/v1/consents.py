from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from wellovis.api.deps import get_owned, require_active_billing
from wellovis.db.session import get_db
from wellovis.models import Consent, ConsentEntityType, Tenant
from wellovis.services.consents import (
    accept_consent,
    create_consent,
    pending_consents,
    serialize_acceptance,
    serialize_consent,
)

router = APIRouter(prefix="/api/v1/consents", tags=["consents"])


class ConsentCreate(BaseModel):
    key: str = Field(min_length=1, max_length=120)
    title: str = Field(min_length=1, max_length=255)
    entity_type: ConsentEntityType
    trigger_events: list[str] = Field(default_factory=list)
    body: str | None = None
    is_required: bool = True
    version: int = Field(default=1, ge=1)


class ConsentAccept(BaseModel):
    entity_type: ConsentEntityType
    entity_id: UUID


@router.post("", status_code=status.HTTP_201_CREATED)
def register_consent(
    payload: ConsentCreate,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    consent = create_consent(db, tenant, **payload.model_dump())
    return {"consent": serialize_consent(consent)}


@router.post("/{consent_id}/accept")
def accept(
    consent_id: UUID,
    payload: ConsentAccept,
    request: Request,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    consent = get_owned(db, Consent, consent_id, tenant, "Consent")
    ip_address = request.client.host if request.client else None
    acceptance = accept_consent(
        db, consent, payload.entity_type, payload.entity_id, ip_address=ip_address
    )
    return {"acceptance": serialize_acceptance(acceptance)}


@router.get("/pending")
def list_pending(
    entity_type: ConsentEntityType,
    entity_id: UUID,
    event: str = "creation",
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    pending = pending_consents(db, tenant, entity_type, event, entity_id)
    return {
        "entity_type": entity_type.value,
        "entity_id": str(entity_id),
        "event": event,
        "consents": [serialize_consent(consent) for consent in pending],
    }
