from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from wellovis.api.deps import get_owned, require_active_billing
from wellovis.db.session import get_db
from wellovis.models import MedicalRecordKind, Patient, Practitioner, Service, ServiceMode, Tenant
from wellovis.services.masking import masked_patient
from wellovis.services.medical_records import (
    add_medical_record,
    list_medical_records,
    serialize_medical_record,
)
from wellovis.services.patients import (
    create_patient,
    create_practitioner,
    create_service,
    find_patients,
    serialize_practitioner,
    serialize_service,
    set_practitioner_price,
)
from wellovis.services.wallet import to_decimal

router = APIRouter(prefix="/api/v1", tags=["patients"])


class PatientCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=120)
    last_name: str = Field(min_length=1, max_length=120)
    email: str | None = None
    preferred_name: str | None = None
    health_number: str | None = None
    phone_number: str | None = None
    date_of_birth: date | None = None
    gender_pronouns: str | None = None
    emergency_contact_name: str | None = None
    emergency_contact_phone: str | None = None
    insurance_provider: str | None = None
    referral_source: str | None = None


class MedicalRecordCreate(BaseModel):
    kind: MedicalRecordKind
    title: str | None = None
    body: str | None = None
    appointment_id: UUID | None = None


class PractitionerCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=120)
    last_name: str = Field(min_length=1, max_length=120)
    email: str = Field(min_length=3, max_length=255)
    credentials: str | None = None
    user_id: str | None = None


class ServiceCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    duration_min: int = Field(default=30, gt=0)
    default_price: Decimal = Decimal("0")
    mode: ServiceMode = ServiceMode.IN_PERSON


class PriceUpdate(BaseModel):
    custom_price: Decimal | None = None
    is_offered: bool = True


@router.post("/patients", status_code=status.HTTP_201_CREATED)
def register_patient(
    payload: PatientCreate,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    patient = create_patient(db, tenant, **payload.model_dump())
    return {"patient": masked_patient(patient)}


@router.get("/patients/search")
def search_patients(
    email: str | None = None,
    health_number: str | None = None,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Exact-match lookup by email or health number. Results are masked."""

    results = find_patients(db, tenant, email=email, health_number=health_number)
    return {"results": results, "count": len(results)}


@router.post("/patients/{patient_id}/medical-records", status_code=status.HTTP_201_CREATED)
def create_medical_record(
    patient_id: UUID,
    payload: MedicalRecordCreate,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    patient = get_owned(db, Patient, patient_id, tenant, "Patient")
    record = add_medical_record(
        db,
        tenant,
        patient,
        kind=payload.kind,
        title=payload.title,
        body=payload.body,
        appointment_id=payload.appointment_id,
    )
    return {"medical_record": serialize_medical_record(record)}


@router.get("/patients/{patient_id}/medical-records")
def get_medical_records(
    patient_id: UUID,
    kind: MedicalRecordKind | None = None,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    patient = get_owned(db, Patient, patient_id, tenant, "Patient")
    records = list_medical_records(db, tenant, patient, kind=kind)
    return {
        "patient_id": str(patient.id),
        "medical_records": [serialize_medical_record(record) for record in records],
    }


@router.post("/practitioners", status_code=status.HTTP_201_CREATED)
def register_practitioner(
    payload: PractitionerCreate,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    practitioner = create_practitioner(db, tenant, **payload.model_dump())
    return {"practitioner": serialize_practitioner(practitioner)}


@router.put("/practitioners/{practitioner_id}/services/{service_id}/price")
def update_practitioner_price(
    practitioner_id: UUID,
    service_id: UUID,
    payload: PriceUpdate,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    practitioner = get_owned(db, Practitioner, practitioner_id, tenant, "Practitioner")
    service = get_owned(db, Service, service_id, tenant, "Service")
    link = set_practitioner_price(
        db,
        practitioner,
        service,
        custom_price=payload.custom_price,
        is_offered=payload.is_offered,
    )
    return {
        "practitioner_id": str(practitioner.id),
        "service_id": str(service.id),
        "custom_price": str(to_decimal(link.custom_price)) if link.custom_price is not None else None,
        "is_offered": link.is_offered,
    }


@router.post("/services", status_code=status.HTTP_201_CREATED)
def register_service(
    payload: ServiceCreate,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    service = create_service(db, tenant, **payload.model_dump())
    return {"service": serialize_service(service)}
