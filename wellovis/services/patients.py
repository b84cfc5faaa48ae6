"""Patient, practitioner and service records."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from wellovis.core.crypto import blind_index
from wellovis.core.exceptions import ConflictError, DomainError
from wellovis.models import Patient, Practitioner, PractitionerService, Service, ServiceMode, Tenant
from wellovis.services.masking import masked_patient
from wellovis.services.wallet import quantize, to_decimal

logger = logging.getLogger(__name__)

EMAIL_INDEX_CONTEXT = "patient_email"
HEALTH_NUMBER_INDEX_CONTEXT = "patient_health_number"


def create_patient(
    db: Session,
    tenant: Tenant,
    *,
    first_name: str,
    last_name: str,
    email: str | None = None,
    preferred_name: str | None = None,
    health_number: str | None = None,
    phone_number: str | None = None,
    date_of_birth: date | None = None,
    gender_pronouns: str | None = None,
    emergency_contact_name: str | None = None,
    emergency_contact_phone: str | None = None,
    insurance_provider: str | None = None,
    referral_source: str | None = None,
) -> Patient:
    """Create a patient and compute the blind indexes used for search."""

    if not first_name.strip() or not last_name.strip():
        raise DomainError("First and last name are required")

    patient = Patient(
        tenant_id=tenant.id,
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        preferred_name=preferred_name,
        email=email.strip() if email else None,
        email_index=blind_index(email, context=EMAIL_INDEX_CONTEXT),
        health_number=health_number.strip() if health_number else None,
        health_number_index=blind_index(health_number, context=HEALTH_NUMBER_INDEX_CONTEXT),
        phone_number=phone_number,
        date_of_birth=date_of_birth,
        gender_pronouns=gender_pronouns,
        emergency_contact_name=emergency_contact_name,
        emergency_contact_phone=emergency_contact_phone,
        insurance_provider=insurance_provider,
        referral_source=referral_source,
    )
    db.add(patient)
    db.flush()
    logger.info("patient created", extra={"patient_id": str(patient.id)})
    return patient


def find_patients(
    db: Session,
    tenant: Tenant,
    *,
    email: str | None = None,
    health_number: str | None = None,
) -> list[dict[str, Any]]:
    """Exact-match search over the blind indexes. Results are masked."""

    criteria = []
    email_index = blind_index(email, context=EMAIL_INDEX_CONTEXT)
    if email_index:
        criteria.append(Patient.email_index == email_index)
    health_index = blind_index(health_number, context=HEALTH_NUMBER_INDEX_CONTEXT)
    if health_index:
        criteria.append(Patient.health_number_index == health_index)
    if not criteria:
        raise DomainError("Provide an email or a health number to search")

    patients = db.execute(
        select(Patient).where(Patient.tenant_id == tenant.id, *criteria).order_by(Patient.created_at)
    ).scalars().all()
    return [masked_patient(patient) for patient in patients]


def create_practitioner(
    db: Session,
    tenant: Tenant,
    *,
    first_name: str,
    last_name: str,
    email: str,
    credentials: str | None = None,
    user_id: str | None = None,
) -> Practitioner:
    email = email.strip().lower()
    existing = db.execute(
        select(Practitioner.id).where(
            Practitioner.tenant_id == tenant.id, Practitioner.email == email
        )
    ).first()
    if existing:
        raise ConflictError("A practitioner with this email already exists")

    practitioner = Practitioner(
        tenant_id=tenant.id,
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        email=email,
        credentials=credentials,
        user_id=user_id,
    )
    db.add(practitioner)
    db.flush()
    return practitioner


def create_service(
    db: Session,
    tenant: Tenant,
    *,
    name: str,
    duration_min: int = 30,
    default_price: Decimal | float | str = 0,
    mode: ServiceMode = ServiceMode.IN_PERSON,
    description: str | None = None,
) -> Service:
    if duration_min <= 0:
        raise DomainError("Service duration must be positive")
    price = to_decimal(default_price)
    if price < 0:
        raise DomainError("Service price cannot be negative")

    service = Service(
        tenant_id=tenant.id,
        name=name.strip(),
        description=description,
        duration_min=duration_min,
        default_price=quantize(price),
        mode=mode,
    )
    db.add(service)
    db.flush()
    return service


def set_practitioner_price(
    db: Session,
    practitioner: Practitioner,
    service: Service,
    *,
    custom_price: Decimal | float | str | None,
    is_offered: bool = True,
) -> PractitionerService:
    """Create or update what a practitioner charges for a service."""

    if practitioner.tenant_id != service.tenant_id:
        raise DomainError("Practitioner and service belong to different tenants")

    price = None if custom_price is None else quantize(to_decimal(custom_price))
    if price is not None and price < 0:
        raise DomainError("Custom price cannot be negative")

    link = db.execute(
        select(PractitionerService).where(
            PractitionerService.practitioner_id == practitioner.id,
            PractitionerService.service_id == service.id,
        )
    ).scalars().first()
    if link is None:
        link = PractitionerService(practitioner_id=practitioner.id, service_id=service.id)
        db.add(link)
    link.custom_price = price
    link.is_offered = is_offered
    try:
        db.flush()
    except IntegrityError as exc:
        raise ConflictError("Practitioner price was updated concurrently") from exc
    return link


def serialize_practitioner(practitioner: Practitioner) -> dict[str, Any]:
    return {
        "id": str(practitioner.id),
        "first_name": practitioner.first_name,
        "last_name": practitioner.last_name,
        "full_name": practitioner.full_name,
        "email": practitioner.email,
        "credentials": practitioner.credentials,
        "is_active": practitioner.is_active,
    }


def serialize_service(service: Service) -> dict[str, Any]:
    return {
        "id": str(service.id),
        "name": service.name,
        "description": service.description,
        "duration_min": service.duration_min,
        "default_price": str(quantize(to_decimal(service.default_price), Decimal("0.01"))),
        "mode": service.mode.value,
        "is_active": service.is_active,
    }
