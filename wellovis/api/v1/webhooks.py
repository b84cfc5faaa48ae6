from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from wellovis.db.session import get_db
from wellovis.services.stripe_webhooks import handle_stripe_event, verify_stripe_signature

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

logger = logging.getLogger(__name__)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
):
    """Receive Stripe events. The signature is checked against the raw body."""

    payload = await request.body()
    event = verify_stripe_signature(payload, stripe_signature)

    try:
        return handle_stripe_event(db, event)
    except Exception:
        db.rollback()
        logger.exception(
            "stripe webhook processing failed",
            extra={"event_type": event.get("type"), "event_id": event.get("id")},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Processing failed"},
        )
