from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from wellovis.models.base import Base, JSONType, TimestampMixin, utcnow


class ConsentEntityType(str, enum.Enum):
    PATIENT = "PATIENT"
    PRACTITIONER = "PRACTITIONER"
    USER = "USER"


class Consent(Base, TimestampMixin):
    """Consent document that entities must accept on given events."""

    __tablename__ = "consents"
    __table_args__ = (UniqueConstraint("tenant_id", "key"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), index=True
    )
    key: Mapped[str] = mapped_column(String(128), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    entity_type: Mapped[ConsentEntityType] = mapped_column(
        Enum(ConsentEntityType, name="consent_entity_type"), nullable=False
    )
    trigger_events: Mapped[list] = mapped_column(JSONType, default=list)
    is_required: Mapped[bool] = mapped_column(Boolean, default=True)
    version: Mapped[int] = mapped_column(Integer, default=1)


class EntityConsent(Base):
    """Acceptance of a consent version by a patient, practitioner or user."""

    __tablename__ = "entity_consents"
    __table_args__ = (
        UniqueConstraint("consent_id", "entity_type", "entity_id", "consent_version"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    consent_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("consents.id", ondelete="CASCADE"), index=True
    )
    entity_type: Mapped[ConsentEntityType] = mapped_column(
        Enum(ConsentEntityType, name="consent_entity_type"), nullable=False
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    consent_version: Mapped[int] = mapped_column(Integer, nullable=False)
    accepted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
