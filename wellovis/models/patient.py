from __future__ import annotations

import uuid
from datetime import date

from sqlalchemy import Date, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from wellovis.core.crypto import EncryptedText
from wellovis.models.base import Base, TimestampMixin


class Patient(Base, TimestampMixin):
    """Patient entity scoped by tenant. Identifying fields are encrypted."""

    __tablename__ = "patients"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), index=True
    )
    first_name: Mapped[str] = mapped_column(EncryptedText, nullable=False)
    last_name: Mapped[str] = mapped_column(EncryptedText, nullable=False)
    preferred_name: Mapped[str | None] = mapped_column(EncryptedText, nullable=True)
    email: Mapped[str | None] = mapped_column(EncryptedText, nullable=True)
    email_index: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    health_number: Mapped[str | None] = mapped_column(EncryptedText, nullable=True)
    health_number_index: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True
    )
    phone_number: Mapped[str | None] = mapped_column(EncryptedText, nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    gender_pronouns: Mapped[str | None] = mapped_column(String(64), nullable=True)
    emergency_contact_name: Mapped[str | None] = mapped_column(EncryptedText, nullable=True)
    emergency_contact_phone: Mapped[str | None] = mapped_column(EncryptedText, nullable=True)
    insurance_provider: Mapped[str | None] = mapped_column(String(255), nullable=True)
    referral_source: Mapped[str | None] = mapped_column(String(255), nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
