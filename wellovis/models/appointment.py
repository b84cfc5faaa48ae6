from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from wellovis.models.base import Base, TimestampMixin
from wellovis.models.service import ServiceMode


class AppointmentStatus(str, enum.Enum):
    """Possible statuses for an appointment lifecycle."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    RESCHEDULED = "RESCHEDULED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    COMPLETED = "COMPLETED"


class AppointmentOrigin(str, enum.Enum):
    """Origin of an appointment booking."""

    WEB = "WEB"
    STAFF = "STAFF"
    PATIENT_PORTAL = "PATIENT_PORTAL"
    WAITING_LIST = "WAITING_LIST"


class Appointment(Base, TimestampMixin):
    """Appointment between a patient and one or more practitioners."""

    __tablename__ = "appointments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), index=True
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="CASCADE"), index=True
    )
    service_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("services.id", ondelete="SET NULL"), nullable=True
    )
    schedule_slot_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("schedule_slots.id", ondelete="SET NULL"), nullable=True
    )
    parent_appointment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True
    )
    root_appointment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True, index=True
    )
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, name="appointment_status"),
        default=AppointmentStatus.CONFIRMED,
        nullable=False,
    )
    mode: Mapped[ServiceMode] = mapped_column(
        Enum(ServiceMode, name="service_mode"), default=ServiceMode.IN_PERSON
    )
    scheduled_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    scheduled_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    origin: Mapped[AppointmentOrigin] = mapped_column(
        Enum(AppointmentOrigin, name="appointment_origin"),
        default=AppointmentOrigin.WEB,
        nullable=False,
    )


class AppointmentPractitioner(Base):
    """Practitioners attending an appointment; one of them is primary."""

    __tablename__ = "appointment_practitioners"
    __table_args__ = (UniqueConstraint("appointment_id", "practitioner_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), index=True
    )
    practitioner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("practitioners.id", ondelete="CASCADE"), index=True
    )
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)
