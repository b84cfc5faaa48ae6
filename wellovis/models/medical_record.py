from __future__ import annotations

import enum
import uuid

from sqlalchemy import Enum, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from wellovis.core.crypto import EncryptedText
from wellovis.models.base import Base, TimestampMixin


class MedicalRecordKind(str, enum.Enum):
    ENCOUNTER_NOTE = "ENCOUNTER_NOTE"
    ALLERGY = "ALLERGY"
    FAMILY_HISTORY = "FAMILY_HISTORY"
    PRESCRIPTION = "PRESCRIPTION"
    MEDICAL_HISTORY = "MEDICAL_HISTORY"


class MedicalRecord(Base, TimestampMixin):
    """Clinical record entry. Title and body are stored encrypted."""

    __tablename__ = "medical_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), index=True
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="CASCADE"), index=True
    )
    appointment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True
    )
    kind: Mapped[MedicalRecordKind] = mapped_column(
        Enum(MedicalRecordKind, name="medical_record_kind"), nullable=False
    )
    title: Mapped[str | None] = mapped_column(EncryptedText, nullable=True)
    body: Mapped[str | None] = mapped_column(EncryptedText, nullable=True)
