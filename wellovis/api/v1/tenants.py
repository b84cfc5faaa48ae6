from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from wellovis.api.deps import get_current_tenant
from wellovis.core.exceptions import DomainError
from wellovis.db.session import get_db
from wellovis.models import Tenant
from wellovis.services.scheduling import ensure_utc
from wellovis.services.tenants import (
    create_pending_registration,
    read_registration_payload,
    serialize_tenant,
    tenant_creation_status,
)

router = APIRouter(prefix="/api/v1", tags=["tenants"])


class RegistrationCreate(BaseModel):
    company_name: str = Field(min_length=1, max_length=255)
    admin_email: str = Field(min_length=3, max_length=255)
    domain: str | None = None
    plan: str | None = None
    seats: int = Field(default=1, ge=1)


@router.post("/registrations", status_code=status.HTTP_201_CREATED)
def create_registration(
    payload: RegistrationCreate,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Start a sign-up. The id is passed to checkout as ``client_reference_id``."""

    registration = create_pending_registration(
        db,
        company_name=payload.company_name,
        admin_email=payload.admin_email,
        domain=payload.domain,
        plan=payload.plan,
        seats=payload.seats,
    )
    data = read_registration_payload(registration) or {}
    return {
        "registration_id": str(registration.id),
        "tenant_id": data.get("tenant_id"),
        "expires_at": ensure_utc(registration.expires_at).isoformat(),
    }


@router.get("/tenant-creation/status")
def creation_status(
    tenant_id: str | None = None,
    registration_uuid: str | None = None,
    db: Session = Depends(get_db),
):
    """Polled by the sign-up page until the tenant is ready."""

    try:
        return tenant_creation_status(db, tenant_id=tenant_id, registration_uuid=registration_uuid)
    except DomainError as exc:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"is_complete": False, "tenant_id": None, "error": exc.detail},
        )


@router.get("/tenant")
def current_tenant(tenant: Tenant = Depends(get_current_tenant)) -> dict[str, Any]:
    return {"tenant": serialize_tenant(tenant)}
