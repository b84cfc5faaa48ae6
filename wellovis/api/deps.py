"""Request dependencies shared by the v1 routers."""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from wellovis.db.session import get_db
from wellovis.logging_utils import set_tenant_context
from wellovis.models import Tenant
from wellovis.services.tenants import ensure_billing_access


def get_current_tenant(
    x_tenant_id: str | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> Tenant:
    """Resolve the tenant named by the ``X-Tenant-ID`` header."""

    if not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required",
        )
    try:
        tenant_id = UUID(x_tenant_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-Tenant-ID header",
        ) from exc

    tenant = db.get(Tenant, tenant_id)
    if not tenant:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    if not tenant.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant is inactive")

    set_tenant_context(tenant.id)
    return tenant


def require_active_billing(tenant: Tenant = Depends(get_current_tenant)) -> Tenant:
    """Tenant dependency that also enforces an active subscription."""

    ensure_billing_access(tenant)
    return tenant


def get_owned(db: Session, model, object_id: UUID, tenant: Tenant, label: str):
    """Load ``model`` by id, answering 404 when it belongs to another tenant."""

    instance = db.get(model, object_id)
    if instance is None or instance.tenant_id != tenant.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} not found")
    return instance
