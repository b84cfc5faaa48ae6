from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from wellovis.models.base import Base, TimestampMixin, utcnow


class LicenseStatus(str, enum.Enum):
    """Lifecycle of a practitioner seat license."""

    AVAILABLE = "AVAILABLE"
    ASSIGNED = "ASSIGNED"
    REVOKED = "REVOKED"


class License(Base, TimestampMixin):
    """Seat license purchased through the tenant subscription."""

    __tablename__ = "licenses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), index=True
    )
    license_key: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    status: Mapped[LicenseStatus] = mapped_column(
        Enum(LicenseStatus, name="license_status"),
        default=LicenseStatus.AVAILABLE,
        nullable=False,
    )
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class PractitionerLicense(Base):
    """Attachment of a license to a practitioner."""

    __tablename__ = "practitioner_licenses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    practitioner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("practitioners.id", ondelete="CASCADE"), unique=True
    )
    license_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("licenses.id", ondelete="CASCADE"), unique=True
    )
    attached_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
