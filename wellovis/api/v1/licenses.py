from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from wellovis.api.deps import get_owned, require_active_billing
from wellovis.db.session import get_db
from wellovis.models import License, Practitioner, Tenant
from wellovis.services.licenses import (
    attach_license,
    detach_license,
    license_summary,
    serialize_license,
)

router = APIRouter(prefix="/api/v1", tags=["licenses"])


class LicenseAttach(BaseModel):
    license_id: UUID | None = None


@router.get("/licenses")
def list_licenses(
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    licenses = db.execute(
        select(License).where(License.tenant_id == tenant.id).order_by(License.created_at)
    ).scalars().all()
    return {
        "summary": license_summary(db, tenant),
        "licenses": [serialize_license(item) for item in licenses],
    }


@router.post("/practitioners/{practitioner_id}/license")
def assign_license(
    practitioner_id: UUID,
    payload: LicenseAttach | None = None,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Give the practitioner a seat, the oldest available one unless named."""

    practitioner = get_owned(db, Practitioner, practitioner_id, tenant, "Practitioner")
    license_id = payload.license_id if payload else None
    license_ = attach_license(db, tenant, practitioner, license_id=license_id)
    return {"practitioner_id": str(practitioner.id), "license": serialize_license(license_)}


@router.delete("/practitioners/{practitioner_id}/license")
def release_license(
    practitioner_id: UUID,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    practitioner = get_owned(db, Practitioner, practitioner_id, tenant, "Practitioner")
    license_ = detach_license(db, tenant, practitioner)
    return {"practitioner_id": str(practitioner.id), "license": serialize_license(license_)}
