from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from wellovis.models.base import Base, TimestampMixin


class AppointmentFeedback(Base, TimestampMixin):
    """Patient feedback for a completed appointment."""

    __tablename__ = "appointment_feedback"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), unique=True
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="CASCADE"), index=True
    )
    visit_rating: Mapped[int] = mapped_column(Integer, nullable=False)
    visit_led_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    call_out_person_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    additional_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_edited_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class PractitionerRating(Base, TimestampMixin):
    """Share of an appointment rating attributed to one practitioner."""

    __tablename__ = "practitioner_ratings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), index=True
    )
    practitioner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("practitioners.id", ondelete="CASCADE"), index=True
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="CASCADE")
    )
    rating_points: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    rating_percentage: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    is_lead_practitioner: Mapped[bool] = mapped_column(Boolean, default=False)
    is_called_out: Mapped[bool] = mapped_column(Boolean, default=False)
