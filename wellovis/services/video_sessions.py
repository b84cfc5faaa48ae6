"""Video session join bookkeeping.

Signalling and media are handled by the video provider. The API only checks
that the appointment can be joined, builds the room identifier and keeps an
activity trail.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wellovis.core.config import settings
from wellovis.core.exceptions import ConflictError, DomainError
from wellovis.models import Appointment, AppointmentStatus, AuditLog, Service, ServiceMode
from wellovis.services.scheduling import ensure_utc

logger = logging.getLogger(__name__)

JOINABLE_MODES = frozenset({ServiceMode.VIRTUAL, ServiceMode.HYBRID})
CLOSED_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED})
PARTICIPANT_TYPES = ("patient", "practitioner", "invited")


def room_id_for(appointment: Appointment) -> str:
    return f"{appointment.tenant_id}-{appointment.id}"


def _log_activity(
    db: Session,
    appointment: Appointment,
    action: str,
    actor: str | None,
    properties: dict[str, Any],
) -> None:
    """Record a video activity. Failures are logged and never interrupt the join."""

    try:
        service = db.get(Service, appointment.service_id) if appointment.service_id else None
        now = datetime.now(timezone.utc)
        db.add(
            AuditLog(
                tenant_id=appointment.tenant_id,
                actor=actor,
                action=action,
                resource=f"appointment:{appointment.id}",
                occurred_at=now,
                metadata_json={
                    **properties,
                    "appointment_id": str(appointment.id),
                    "session_type": "video_appointment",
                    "appointment_datetime": ensure_utc(appointment.scheduled_start).isoformat()
                    if appointment.scheduled_start
                    else None,
                    "appointment_mode": appointment.mode.value,
                    "service_name": service.name if service else None,
                    "timestamp": now.isoformat(),
                },
            )
        )
    except SQLAlchemyError as exc:
        logger.error(
            "failed to log video session activity",
            extra={"appointment_id": str(appointment.id), "action": action, "error": str(exc)},
        )


def join_video_session(
    db: Session,
    appointment: Appointment,
    participant_type: str,
    name: str | None = None,
    email: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
) -> dict[str, Any]:
    if participant_type not in PARTICIPANT_TYPES:
        raise DomainError(f"Unknown participant type: {participant_type}")
    if appointment.mode not in JOINABLE_MODES:
        raise DomainError("Appointment is not a virtual appointment")
    if appointment.status in CLOSED_STATUSES:
        raise ConflictError("Appointment is no longer active")

    room_id = room_id_for(appointment)
    action = (
        "video_session_started" if participant_type == "practitioner" else "video_session_accessed"
    )
    _log_activity(
        db,
        appointment,
        action,
        actor=email or name,
        properties={
            "participant_type": participant_type,
            "participant_name": name,
            "participant_email": email,
            "ip": ip,
            "user_agent": user_agent,
        },
    )
    logger.info(
        "video session joined",
        extra={"appointment_id": str(appointment.id), "participant_type": participant_type},
    )
    return {
        "room_id": room_id,
        "join_url": f"{settings.video_base_url.rstrip('/')}/rooms/{room_id}",
        "participant_type": participant_type,
        "action": action,
    }
