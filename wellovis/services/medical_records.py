"""Medical record storage and the batch encryption command."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any
from uuid import UUID

from sqlalchemy import Text, select, type_coerce, update
from sqlalchemy.orm import Session

from wellovis.core.crypto import field_cipher, is_configured
from wellovis.core.exceptions import NotFoundError
from wellovis.logging_utils import tenant_context
from wellovis.models import MedicalRecord, MedicalRecordKind, Patient, Tenant
from wellovis.services.scheduling import ensure_utc

logger = logging.getLogger(__name__)

ENCRYPTED_COLUMNS = ("title", "body")
DEFAULT_BATCH_SIZE = 200


def add_medical_record(
    db: Session,
    tenant: Tenant,
    patient: Patient,
    *,
    kind: MedicalRecordKind,
    title: str | None = None,
    body: str | None = None,
    appointment_id: UUID | None = None,
) -> MedicalRecord:
    if patient.tenant_id != tenant.id:
        raise NotFoundError("Patient not found")

    record = MedicalRecord(
        tenant_id=tenant.id,
        patient_id=patient.id,
        appointment_id=appointment_id,
        kind=kind,
        title=title,
        body=body,
    )
    db.add(record)
    db.flush()
    logger.info(
        "medical record added",
        extra={"record_id": str(record.id), "kind": kind.value},
    )
    return record


def list_medical_records(
    db: Session,
    tenant: Tenant,
    patient: Patient,
    kind: MedicalRecordKind | None = None,
) -> list[MedicalRecord]:
    stmt = select(MedicalRecord).where(
        MedicalRecord.tenant_id == tenant.id, MedicalRecord.patient_id == patient.id
    )
    if kind is not None:
        stmt = stmt.where(MedicalRecord.kind == kind)
    return list(db.execute(stmt.order_by(MedicalRecord.created_at.desc())).scalars().all())


def serialize_medical_record(record: MedicalRecord) -> dict[str, Any]:
    return {
        "id": str(record.id),
        "patient_id": str(record.patient_id),
        "appointment_id": str(record.appointment_id) if record.appointment_id else None,
        "kind": record.kind.value,
        "title": record.title,
        "body": record.body,
        "created_at": ensure_utc(record.created_at).isoformat() if record.created_at else None,
    }


def _encrypt_kind(
    db: Session,
    tenant_id: UUID,
    kind: MedicalRecordKind,
    batch_size: int,
) -> int:
    table = MedicalRecord.__table__
    # type_coerce to Text so the encrypted column type does not decrypt on read
    raw_columns = [type_coerce(table.c[name], Text).label(name) for name in ENCRYPTED_COLUMNS]
    encrypted = 0
    last_id: UUID | None = None

    while True:
        stmt = (
            select(table.c.id, *raw_columns)
            .where(table.c.tenant_id == tenant_id, table.c.kind == kind)
            .order_by(table.c.id)
            .limit(batch_size)
        )
        if last_id is not None:
            stmt = stmt.where(table.c.id > last_id)
        rows = db.execute(stmt).all()
        if not rows:
            break

        for row in rows:
            values = {}
            for name in ENCRYPTED_COLUMNS:
                raw = getattr(row, name)
                if raw is not None and not field_cipher.is_encrypted(raw):
                    values[name] = field_cipher.encrypt(raw)
            if values:
                db.execute(update(table).where(table.c.id == row.id).values(**values))
                encrypted += 1
        db.flush()
        last_id = rows[-1].id

    return encrypted


def encrypt_medical_records(
    db: Session,
    tenant_ids: Iterable[UUID] | None = None,
    kinds: Iterable[MedicalRecordKind] | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> dict[str, dict[str, int]]:
    """Encrypt plaintext medical record columns in place.

    Rows whose columns already hold Fernet tokens are left alone, so running
    the command twice encrypts nothing the second time. Returns the number of
    rows rewritten per tenant and kind.
    """

    if not is_configured():
        raise RuntimeError("FIELD_ENCRYPTION_KEY is not configured")
    if tenant_ids is None:
        tenant_ids = db.execute(select(Tenant.id).order_by(Tenant.created_at)).scalars().all()
    selected_kinds = list(kinds) if kinds else list(MedicalRecordKind)
    batch_size = max(1, batch_size)

    results: dict[str, dict[str, int]] = {}
    for tenant_id in tenant_ids:
        with tenant_context(tenant_id):
            counts = {
                kind.value: _encrypt_kind(db, tenant_id, kind, batch_size)
                for kind in selected_kinds
            }
            logger.info("medical records encrypted for tenant", extra={"counts": counts})
        results[str(tenant_id)] = counts
    return results
