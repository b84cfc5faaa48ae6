"""Send notifications and keep a record of every attempt in ``message_logs``."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from wellovis.models import MessageLog
from wellovis.services.mail_client import send_email

logger = logging.getLogger(__name__)


def persist_message_log(
    db: Session,
    *,
    tenant_id: UUID,
    channel: str,
    template: str | None,
    recipient: str | None,
    payload: Any,
    metadata: dict[str, Any] | None,
    status: str,
    sent_at: datetime | None,
    appointment_id: UUID | None = None,
) -> MessageLog:
    """Persist a record in the message log table."""

    payload_value = (
        payload
        if isinstance(payload, str) or payload is None
        else json.dumps(payload, ensure_ascii=False, default=str)
    )
    log_entry = MessageLog(
        tenant_id=tenant_id,
        appointment_id=appointment_id,
        channel=channel,
        template=template,
        recipient=recipient,
        payload=payload_value,
        metadata_json=metadata,
        status=status,
        sent_at=sent_at,
    )
    db.add(log_entry)
    db.flush()
    return log_entry


def notify(
    db: Session,
    *,
    tenant_id: UUID,
    to: str | None,
    template: str,
    context: dict[str, Any],
    appointment_id: UUID | None = None,
) -> bool:
    """Email ``to`` and log the outcome. Delivery failures never propagate."""

    if not to:
        logger.info("notification skipped, no recipient", extra={"template": template})
        return False

    try:
        message_id, _response, payload = send_email(to, template, context)
    except (httpx.HTTPError, RuntimeError) as exc:
        logger.error(
            "notification failed",
            extra={"template": template, "recipient": to, "error": str(exc)},
        )
        persist_message_log(
            db,
            tenant_id=tenant_id,
            channel="email",
            template=template,
            recipient=to,
            payload=context,
            metadata={"error": str(exc)},
            status="failed",
            sent_at=None,
            appointment_id=appointment_id,
        )
        return False

    persist_message_log(
        db,
        tenant_id=tenant_id,
        channel="email",
        template=template,
        recipient=to,
        payload=payload,
        metadata={"message_id": message_id},
        status="sent",
        sent_at=datetime.now(timezone.utc),
        appointment_id=appointment_id,
    )
    return True
