from datetime import date

import pytest
from sqlalchemy import Text, select, type_coerce

from wellovis.core.crypto import FieldCipher, blind_index, field_cipher, is_configured
from wellovis.models import Patient
from wellovis.services.masking import (
    mask_date,
    mask_email,
    mask_health_number,
    mask_phone_number,
    mask_string,
)
from wellovis.services.patients import find_patients


def test_cipher_round_trip_and_prefix():
    token = field_cipher.encrypt("allergic to penicillin")
    assert field_cipher.is_encrypted(token)
    assert field_cipher.decrypt(token) == "allergic to penicillin"
    assert is_configured()


def test_prefix_alone_is_not_encrypted(db, patient):
    lookalike = "gAAAAA-not-a-token"
    assert not field_cipher.is_encrypted(lookalike)
    assert not FieldCipher("B" * 43 + "=").is_encrypted(field_cipher.encrypt("x"))

    patient.first_name = lookalike
    db.commit()
    raw = db.execute(
        select(type_coerce(Patient.__table__.c.first_name, Text)).where(Patient.id == patient.id)
    ).scalar_one()
    assert raw != lookalike
    assert field_cipher.decrypt(raw) == lookalike

    db.expire_all()
    assert db.get(Patient, patient.id).first_name == lookalike


def test_key_rotation_decrypts_with_old_key():
    old = FieldCipher("B" * 43 + "=")
    token = old.encrypt("secret")
    rotated = FieldCipher("C" * 43 + "=," + "B" * 43 + "=")
    assert rotated.decrypt(token) == "secret"
    assert rotated.decrypt(rotated.rotate(token)) == "secret"


def test_blind_index_normalizes_input():
    first = blind_index("Maria.Silva@Example.com ", context="patient_email")
    second = blind_index("maria.silva@example.com", context="patient_email")
    assert first == second
    assert len(first) == 64
    assert blind_index("maria.silva@example.com", context="other") != first
    assert blind_index("   ", context="patient_email") is None


def test_patient_columns_are_encrypted_at_rest(db, patient):
    db.commit()
    raw = db.execute(
        select(type_coerce(Patient.__table__.c.email, Text)).where(Patient.id == patient.id)
    ).scalar_one()
    assert raw != "maria.silva@example.com"
    assert field_cipher.is_encrypted(raw)

    db.expire_all()
    assert db.get(Patient, patient.id).email == "maria.silva@example.com"


def test_find_patients_by_blind_index(db, tenant, patient):
    results = find_patients(db, tenant, email="MARIA.SILVA@example.com")
    assert [item["id"] for item in results] == [str(patient.id)]
    assert results[0]["email"] == "mar********@example.com"
    assert results[0]["health_number"] == "1234******"


def test_find_patients_requires_a_criterion(db, tenant):
    with pytest.raises(ValueError):
        find_patients(db, tenant)


def test_masking_helpers():
    assert mask_string("Maria") == "M***a"
    assert mask_string("Al") == "**"
    assert mask_string(None) == "N/A"
    assert mask_email("jo@example.com") == "**@example.com"
    assert mask_health_number("1234") == "****"
    assert mask_phone_number("+1 (416) 555-0101") == "*******0101"
    assert mask_date(date(1990, 5, 17)) == "1990-**-**"
