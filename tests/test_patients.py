from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import Text, insert, select, type_coerce

from wellovis.core.exceptions import ConflictError, DomainError
from wellovis.models import MedicalRecord, MedicalRecordKind, PractitionerService
from wellovis.services.medical_records import (
    add_medical_record,
    encrypt_medical_records,
    list_medical_records,
)
from wellovis.services.patients import create_practitioner, set_practitioner_price


def _raw(db, column, record_id):
    table = MedicalRecord.__table__
    return db.execute(
        select(type_coerce(table.c[column], Text)).where(table.c.id == record_id)
    ).scalar_one()


def _insert_plaintext(db, tenant, patient, kind, title, body):
    record_id = uuid4()
    db.execute(
        insert(MedicalRecord.__table__).values(
            id=record_id,
            tenant_id=tenant.id,
            patient_id=patient.id,
            kind=kind,
            title=type_coerce(title, Text),
            body=type_coerce(body, Text) if body is not None else None,
        )
    )
    return record_id


def test_duplicate_practitioner_email(db, tenant, practitioner):
    with pytest.raises(ConflictError):
        create_practitioner(
            db, tenant, first_name="Alice", last_name="T", email=" ALICE@maple.example "
        )


def test_practitioner_price(db, practitioner, service):
    link = set_practitioner_price(db, practitioner, service, custom_price="92.5")
    assert link.custom_price == Decimal("92.5")

    updated = set_practitioner_price(db, practitioner, service, custom_price=None, is_offered=False)
    assert updated.id == link.id
    assert updated.is_offered is False
    assert len(db.execute(select(PractitionerService)).scalars().all()) == 1

    with pytest.raises(DomainError, match="negative"):
        set_practitioner_price(db, practitioner, service, custom_price="-1")


def test_medical_records_are_encrypted(db, tenant, patient):
    record = add_medical_record(
        db, tenant, patient, kind=MedicalRecordKind.ALLERGY, title="Penicillin", body="Rash"
    )

    assert _raw(db, "title", record.id).startswith("gAAAAA")
    db.expire_all()
    records = list_medical_records(db, tenant, patient, kind=MedicalRecordKind.ALLERGY)
    assert [(item.title, item.body) for item in records] == [("Penicillin", "Rash")]
    assert list_medical_records(db, tenant, patient, kind=MedicalRecordKind.PRESCRIPTION) == []


def test_encrypt_medical_records_command(db, tenant, patient):
    plain_id = _insert_plaintext(
        db, tenant, patient, MedicalRecordKind.ENCOUNTER_NOTE, "Initial visit", "Lower back pain"
    )
    add_medical_record(db, tenant, patient, kind=MedicalRecordKind.ENCOUNTER_NOTE, title="Follow-up")
    _insert_plaintext(db, tenant, patient, MedicalRecordKind.PRESCRIPTION, "Ibuprofen", None)
    assert _raw(db, "title", plain_id) == "Initial visit"

    result = encrypt_medical_records(db, kinds=[MedicalRecordKind.ENCOUNTER_NOTE], batch_size=1)

    assert result[str(tenant.id)] == {"ENCOUNTER_NOTE": 1}
    assert _raw(db, "title", plain_id).startswith("gAAAAA")
    assert _raw(db, "body", plain_id).startswith("gAAAAA")

    db.expire_all()
    assert db.get(MedicalRecord, plain_id).body == "Lower back pain"

    again = encrypt_medical_records(db)
    assert again[str(tenant.id)]["ENCOUNTER_NOTE"] == 0
    assert again[str(tenant.id)]["PRESCRIPTION"] == 1


def test_patient_endpoints(client, headers):
    created = client.post(
        "/api/v1/patients",
        json={
            "first_name": "Joana",
            "last_name": "Pereira",
            "email": "joana.pereira@example.com",
            "health_number": "9876543210",
            "date_of_birth": "1985-02-11",
        },
        headers=headers,
    )
    assert created.status_code == 201
    patient = created.json()["patient"]
    assert patient["first_name"] == "J***a"
    assert patient["date_of_birth"] == "1985-**-**"

    found = client.get(
        "/api/v1/patients/search", params={"health_number": " 9876543210 "}, headers=headers
    ).json()
    assert found["count"] == 1
    assert found["results"][0]["id"] == patient["id"]

    empty = client.get("/api/v1/patients/search", headers=headers)
    assert empty.status_code == 400

    record = client.post(
        f"/api/v1/patients/{patient['id']}/medical-records",
        json={"kind": "MEDICAL_HISTORY", "title": "Asthma"},
        headers=headers,
    )
    assert record.status_code == 201
    listing = client.get(f"/api/v1/patients/{patient['id']}/medical-records", headers=headers)
    assert [item["title"] for item in listing.json()["medical_records"]] == ["Asthma"]


def test_practitioner_and_service_endpoints(client, headers):
    practitioner = client.post(
        "/api/v1/practitioners",
        json={"first_name": "Dana", "last_name": "Li", "email": "dana@maple.example"},
        headers=headers,
    )
    assert practitioner.status_code == 201
    practitioner_id = practitioner.json()["practitioner"]["id"]

    duplicate = client.post(
        "/api/v1/practitioners",
        json={"first_name": "Dana", "last_name": "Li", "email": "dana@maple.example"},
        headers=headers,
    )
    assert duplicate.status_code == 409

    service = client.post(
        "/api/v1/services",
        json={"name": "Massage", "duration_min": 60, "default_price": "120", "mode": "IN_PERSON"},
        headers=headers,
    )
    assert service.status_code == 201
    service_id = service.json()["service"]["id"]

    price = client.put(
        f"/api/v1/practitioners/{practitioner_id}/services/{service_id}/price",
        json={"custom_price": "110"},
        headers=headers,
    )
    assert price.status_code == 200
    assert Decimal(price.json()["custom_price"]) == Decimal("110")


def test_records_of_other_tenants_are_hidden(client, headers, db):
    response = client.get(f"/api/v1/patients/{uuid4()}/medical-records", headers=headers)
    assert response.status_code == 404
    assert response.json() == {"detail": "Patient not found"}
