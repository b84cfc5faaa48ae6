"""Next-day appointment reminders for patients and practitioners."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from wellovis.logging_utils import tenant_context
from wellovis.models import Appointment, AppointmentStatus, Patient, Service, Tenant
from wellovis.services.notifications import notify
from wellovis.services.scheduling import (
    day_bounds,
    ensure_utc,
    primary_practitioner,
    tenant_timezone,
)

logger = logging.getLogger(__name__)


def _tomorrow_for(tenant: Tenant, now: datetime) -> date:
    return (now.astimezone(tenant_timezone(tenant)) + timedelta(days=1)).date()


def send_appointment_reminders(
    db: Session,
    *,
    dry_run: bool = False,
    target_date: date | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    """Email patient and practitioner about each confirmed appointment of the target day.

    The target day defaults to tomorrow in every tenant's own timezone. With
    ``dry_run`` nothing is sent but the appointments are still counted.
    """

    now = now or datetime.now(timezone.utc)
    stats = {"total": 0, "success": 0, "errors": 0}

    tenants = db.execute(select(Tenant).where(Tenant.is_active.is_(True))).scalars().all()
    for tenant in tenants:
        with tenant_context(tenant.id):
            _remind_tenant(db, tenant, target_date or _tomorrow_for(tenant, now), dry_run, stats)

    logger.info("appointment reminders processed", extra={**stats, "dry_run": dry_run})
    return stats


def _remind_tenant(
    db: Session, tenant: Tenant, day: date, dry_run: bool, stats: dict[str, int]
) -> None:
    tz = tenant_timezone(tenant)
    start_utc, end_utc = day_bounds(day, tz)
    appointments = db.execute(
        select(Appointment)
        .where(
            Appointment.tenant_id == tenant.id,
            Appointment.status == AppointmentStatus.CONFIRMED,
            Appointment.scheduled_start >= start_utc,
            Appointment.scheduled_start < end_utc,
        )
        .order_by(Appointment.scheduled_start)
    ).scalars().all()

    for appointment in appointments:
        practitioner = primary_practitioner(db, appointment)
        if practitioner is None:
            logger.warning(
                "reminder skipped, no primary practitioner",
                extra={"appointment_id": str(appointment.id)},
            )
            continue

        stats["total"] += 1
        if dry_run:
            stats["success"] += 1
        elif _remind(db, tenant, appointment, practitioner, tz):
            stats["success"] += 1
        else:
            stats["errors"] += 1


def _remind(db: Session, tenant: Tenant, appointment: Appointment, practitioner, tz) -> bool:
    patient = db.get(Patient, appointment.patient_id)
    service = db.get(Service, appointment.service_id) if appointment.service_id else None
    local_start = ensure_utc(appointment.scheduled_start).astimezone(tz)
    context: dict[str, Any] = {
        "patient_name": patient.full_name if patient else "",
        "practitioner_name": practitioner.full_name,
        "service_name": service.name if service else "appointment",
        "date": local_start.date().isoformat(),
        "time": local_start.strftime("%H:%M"),
        "clinic_name": tenant.company_name,
    }

    ok = True
    if patient is not None and patient.email:
        ok = notify(
            db,
            tenant_id=tenant.id,
            to=patient.email,
            template="appointment_reminder_patient",
            context=context,
            appointment_id=appointment.id,
        )
    else:
        logger.info(
            "patient reminder skipped, no email",
            extra={"appointment_id": str(appointment.id)},
        )

    ok = (
        notify(
            db,
            tenant_id=tenant.id,
            to=practitioner.email,
            template="appointment_reminder_practitioner",
            context=context,
            appointment_id=appointment.id,
        )
        and ok
    )
    return ok
