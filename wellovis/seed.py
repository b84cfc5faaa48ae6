from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from wellovis.core.config import settings
from wellovis.core.crypto import blind_index
from wellovis.db.session import session_scope
from wellovis.logging_utils import configure_logging, tenant_context
from wellovis.models import (
    BillingStatus,
    Consent,
    ConsentEntityType,
    Patient,
    Practitioner,
    ScheduleSlot,
    Service,
    ServiceMode,
    SlotStatus,
    Tenant,
)
from wellovis.services.consents import create_consent
from wellovis.services.licenses import sync_licenses_to_seats
from wellovis.services.patients import (
    EMAIL_INDEX_CONTEXT,
    create_patient,
    create_practitioner,
    create_service,
)
from wellovis.services.wallet import get_system_wallet

logger = logging.getLogger(__name__)

DEMO_TENANT = "Wellovis Demo Clinic"

SERVICE_CATALOG: list[tuple[str, int, Decimal, ServiceMode]] = [
    ("Initial Physiotherapy Assessment", 60, Decimal("120.00"), ServiceMode.IN_PERSON),
    ("Physiotherapy Follow-up", 30, Decimal("85.00"), ServiceMode.HYBRID),
    ("Virtual Counselling Session", 50, Decimal("140.00"), ServiceMode.VIRTUAL),
]

PRACTITIONERS: list[tuple[str, str, str, str]] = [
    ("Alice", "Tremblay", "alice.tremblay@example.com", "PT"),
    ("Benoit", "Gagnon", "benoit.gagnon@example.com", "RP"),
]

PATIENTS: list[tuple[str, str, str, str]] = [
    ("Maria", "Silva", "maria.silva@example.com", "+14165550101"),
    ("John", "Pereira", "john.pereira@example.com", "+14165550102"),
]

CONSENTS: list[tuple[str, str, list[str]]] = [
    ("privacy", "Privacy Policy", ["creation"]),
    ("cancellation", "Cancellation Policy", ["appointment_creation"]),
]


def ensure_tenant(session: Session) -> Tenant:
    tenant = session.execute(
        select(Tenant).where(Tenant.company_name == DEMO_TENANT)
    ).scalar_one_or_none()
    if tenant:
        logger.info("demo tenant already present", extra={"demo_tenant": str(tenant.id)})
        return tenant

    tenant = Tenant(
        company_name=DEMO_TENANT,
        timezone=settings.timezone,
        admin_email="admin@example.com",
        billing_status=BillingStatus.ACTIVE,
        number_of_seats=len(PRACTITIONERS),
        is_creation_complete=True,
    )
    session.add(tenant)
    session.flush()
    get_system_wallet(session, tenant.id)
    sync_licenses_to_seats(session, tenant)
    logger.info("demo tenant created", extra={"demo_tenant": str(tenant.id)})
    return tenant


def ensure_services(session: Session, tenant: Tenant) -> list[Service]:
    created = 0
    services: list[Service] = []
    for name, duration, price, mode in SERVICE_CATALOG:
        service = session.execute(
            select(Service).where(Service.tenant_id == tenant.id, Service.name == name)
        ).scalar_one_or_none()
        if not service:
            service = create_service(
                session,
                tenant,
                name=name,
                duration_min=duration,
                default_price=price,
                mode=mode,
            )
            created += 1
        services.append(service)

    logger.info(
        "ensured services",
        extra={"created": created, "total": len(services)},
    )
    return services


def ensure_practitioners(session: Session, tenant: Tenant) -> list[Practitioner]:
    created = 0
    practitioners: list[Practitioner] = []
    for first_name, last_name, email, credentials in PRACTITIONERS:
        practitioner = session.execute(
            select(Practitioner).where(
                Practitioner.tenant_id == tenant.id,
                Practitioner.email == email,
            )
        ).scalar_one_or_none()
        if not practitioner:
            practitioner = create_practitioner(
                session,
                tenant,
                first_name=first_name,
                last_name=last_name,
                email=email,
                credentials=credentials,
            )
            created += 1
        practitioners.append(practitioner)

    logger.info(
        "ensured practitioners",
        extra={"created": created, "total": len(practitioners)},
    )
    return practitioners


def ensure_patients(session: Session, tenant: Tenant) -> list[Patient]:
    created = 0
    patients: list[Patient] = []
    for first_name, last_name, email, phone in PATIENTS:
        patient = session.execute(
            select(Patient).where(
                Patient.tenant_id == tenant.id,
                Patient.email_index == blind_index(email, context=EMAIL_INDEX_CONTEXT),
            )
        ).scalars().first()
        if not patient:
            patient = create_patient(
                session,
                tenant,
                first_name=first_name,
                last_name=last_name,
                email=email,
                phone_number=phone,
            )
            created += 1
        patients.append(patient)

    logger.info(
        "ensured patients",
        extra={"created": created, "total": len(patients)},
    )
    return patients


def ensure_consents(session: Session, tenant: Tenant) -> int:
    created = 0
    for key, title, events in CONSENTS:
        exists = session.execute(
            select(Consent.id).where(Consent.tenant_id == tenant.id, Consent.key == key)
        ).first()
        if exists:
            continue
        create_consent(
            session,
            tenant,
            key=key,
            title=title,
            entity_type=ConsentEntityType.PATIENT,
            trigger_events=events,
        )
        created += 1
    return created


def ensure_slots(
    session: Session, tenant: Tenant, practitioners: Iterable[Practitioner], days: int = 7
) -> int:
    """Hourly slots from 9:00 to 17:00 on the coming weekdays, in clinic time."""

    tz = ZoneInfo(tenant.timezone or settings.timezone)
    today = datetime.now(tz).date()
    created = 0

    for practitioner in practitioners:
        for offset in range(days):
            day = today + timedelta(days=offset)
            if day.weekday() >= 5:
                continue
            for start_hour in range(9, 17):
                start_utc = datetime.combine(day, time(hour=start_hour), tzinfo=tz).astimezone(
                    timezone.utc
                )
                taken = session.execute(
                    select(ScheduleSlot.id).where(
                        ScheduleSlot.practitioner_id == practitioner.id,
                        ScheduleSlot.start_time == start_utc,
                    )
                ).first()
                if taken:
                    continue
                session.add(
                    ScheduleSlot(
                        tenant_id=tenant.id,
                        practitioner_id=practitioner.id,
                        start_time=start_utc,
                        end_time=start_utc + timedelta(minutes=60),
                        status=SlotStatus.FREE,
                    )
                )
                created += 1
    return created


def seed() -> dict[str, Any]:
    """Load the demo clinic. Running it again only fills what is missing."""

    with session_scope() as session:
        tenant = ensure_tenant(session)
        with tenant_context(tenant.id):
            services = ensure_services(session, tenant)
            practitioners = ensure_practitioners(session, tenant)
            patients = ensure_patients(session, tenant)
            consents = ensure_consents(session, tenant)
            slots = ensure_slots(session, tenant, practitioners)
            summary = {
                "tenant_id": str(tenant.id),
                "services": len(services),
                "practitioners": len(practitioners),
                "patients": len(patients),
                "consents_created": consents,
                "slots_created": slots,
            }
            logger.info("seed complete", extra=summary)
    return summary


if __name__ == "__main__":  # pragma: no cover - script entrypoint
    configure_logging()
    seed()
