from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from celery.utils.log import get_task_logger

from wellovis.db.session import session_scope
from wellovis.jobs.celery_app import celery_app
from wellovis.models import Appointment, AppointmentStatus, Tenant
from wellovis.services.google_calendar import sync_appointment_to_calendar
from wellovis.services.invitations import expire_stale_invitations
from wellovis.services.licenses import sync_licenses_to_seats
from wellovis.services.reminders import send_appointment_reminders as run_reminders
from wellovis.services.scheduling import ensure_utc, update_appointment_status
from wellovis.services.tenants import provision_tenant
from wellovis.services.waitlist import expire_offers, process_available_slot

logger = get_task_logger(__name__)

NO_SHOW_GRACE = timedelta(minutes=30)


@celery_app.task(name="jobs.send_appointment_reminders")
def send_appointment_reminders(
    dry_run: bool = False, target_date: str | None = None
) -> dict[str, int]:
    """Remind patients and practitioners of tomorrow's appointments."""

    day = date.fromisoformat(target_date) if target_date else None
    with session_scope() as db:
        stats = run_reminders(db, dry_run=dry_run, target_date=day)
    logger.info("Reminders sent: %s", stats)
    return stats


@celery_app.task(
    name="jobs.provision_tenant",
    autoretry_for=(ConnectionError,),
    retry_backoff=True,
    max_retries=3,
)
def provision_tenant_task(
    registration_id: str,
    stripe_customer_id: str | None = None,
    stripe_subscription_id: str | None = None,
) -> dict[str, Any]:
    with session_scope() as db:
        tenant = provision_tenant(
            db,
            UUID(registration_id),
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
        )
        tenant_id = str(tenant.id)
    logger.info("Tenant %s provisioned from registration %s", tenant_id, registration_id)
    return {"registration_id": registration_id, "tenant_id": tenant_id}


@celery_app.task(name="jobs.process_waitlist")
def process_waitlist_task(appointment_id: str) -> dict[str, Any]:
    """Offer a cancelled appointment's time to the waiting list."""

    with session_scope() as db:
        appointment = db.get(Appointment, UUID(appointment_id))
        if appointment is None:
            logger.warning("Appointment %s not found for waitlist processing", appointment_id)
            return {"appointment_id": appointment_id, "offered": 0}
        offered = process_available_slot(db, appointment)
    return {"appointment_id": appointment_id, "offered": len(offered)}


@celery_app.task(name="jobs.sync_licenses")
def sync_licenses_task(tenant_id: str) -> dict[str, Any]:
    with session_scope() as db:
        tenant = db.get(Tenant, UUID(tenant_id))
        if tenant is None:
            logger.warning("Tenant %s not found for license sync", tenant_id)
            return {"tenant_id": tenant_id, "created": 0, "revoked": 0}
        result = sync_licenses_to_seats(db, tenant)
    return {"tenant_id": tenant_id, **result}


@celery_app.task(name="jobs.sync_calendar")
def sync_calendar_task(appointment_id: str) -> dict[str, Any]:
    with session_scope() as db:
        appointment = db.get(Appointment, UUID(appointment_id))
        if appointment is None:
            logger.warning("Appointment %s not found for calendar sync", appointment_id)
            return {"appointment_id": appointment_id, "events": []}
        events = sync_appointment_to_calendar(db, appointment)
    return {"appointment_id": appointment_id, "events": events}


@celery_app.task(name="jobs.flag_no_show")
def flag_no_show(appointment_id: str) -> dict[str, Any]:
    """Mark a confirmed appointment whose time has passed as a no-show."""

    now = datetime.now(timezone.utc)
    with session_scope() as db:
        appointment = db.get(Appointment, UUID(appointment_id))
        if appointment is None:
            logger.warning("Appointment %s not found for no-show check", appointment_id)
            return {"appointment_id": appointment_id, "flagged": False}

        ends_at = appointment.scheduled_end or appointment.scheduled_start
        if (
            appointment.status != AppointmentStatus.CONFIRMED
            or ends_at is None
            or ensure_utc(ends_at) > now
        ):
            return {"appointment_id": appointment_id, "flagged": False}

        update_appointment_status(db, appointment, AppointmentStatus.NO_SHOW)
    logger.warning("Flagging appointment %s as no-show", appointment_id)
    return {"appointment_id": appointment_id, "flagged": True}


@celery_app.task(name="jobs.expire_invitations")
def expire_invitations_task() -> dict[str, int]:
    with session_scope() as db:
        expired = expire_stale_invitations(db)
    return {"expired": expired}


@celery_app.task(name="jobs.expire_waitlist_offers")
def expire_waitlist_offers_task() -> dict[str, int]:
    with session_scope() as db:
        expired = expire_offers(db)
    if expired:
        logger.info("Expired %s waitlist offers", expired)
    return {"expired": expired}


def queue_booking_jobs(appointment: Appointment) -> None:
    """Queue calendar sync and the later no-show check of a new booking.

    Call after the booking is committed; workers read it from the database.
    """

    appointment_id = str(appointment.id)
    sync_calendar_task.delay(appointment_id)
    ends_at = appointment.scheduled_end or appointment.scheduled_start
    if ends_at is not None:
        flag_no_show.apply_async((appointment_id,), eta=ensure_utc(ends_at) + NO_SHOW_GRACE)
