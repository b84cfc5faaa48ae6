from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from wellovis.api.deps import get_owned, require_active_billing
from wellovis.db.session import get_db
from wellovis.models import Practitioner, Tenant
from wellovis.services.google_calendar import store_google_integration
from wellovis.services.scheduling import ensure_utc

router = APIRouter(prefix="/api/v1/integrations", tags=["integrations"])


class GoogleCalendarTokens(BaseModel):
    practitioner_id: UUID
    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expires_in: int | None = Field(default=None, gt=0)
    calendar_id: str = "primary"


@router.post("/google-calendar", status_code=status.HTTP_201_CREATED)
def connect_google_calendar(
    payload: GoogleCalendarTokens,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Store the tokens returned by the OAuth consent screen."""

    practitioner = get_owned(db, Practitioner, payload.practitioner_id, tenant, "Practitioner")
    integration = store_google_integration(
        db,
        tenant,
        practitioner,
        access_token=payload.access_token,
        refresh_token=payload.refresh_token,
        expires_in=payload.expires_in,
        calendar_id=payload.calendar_id,
    )
    return {
        "integration": {
            "id": str(integration.id),
            "practitioner_id": str(practitioner.id),
            "provider": integration.provider.value,
            "calendar_id": integration.calendar_id,
            "is_active": integration.is_active,
            "token_expires_at": ensure_utc(integration.token_expires_at).isoformat()
            if integration.token_expires_at
            else None,
        }
    }
