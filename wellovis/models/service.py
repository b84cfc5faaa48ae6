from __future__ import annotations

import enum
import uuid
from decimal import Decimal

from sqlalchemy import Boolean, Enum, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from wellovis.models.base import Base, Money, TimestampMixin


class ServiceMode(str, enum.Enum):
    """Delivery mode of a service or appointment."""

    IN_PERSON = "IN_PERSON"
    VIRTUAL = "VIRTUAL"
    HYBRID = "HYBRID"


class Service(Base, TimestampMixin):
    """Clinical service offering."""

    __tablename__ = "services"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_min: Mapped[int] = mapped_column(Integer, default=30)
    default_price: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    mode: Mapped[ServiceMode] = mapped_column(
        Enum(ServiceMode, name="service_mode"), default=ServiceMode.IN_PERSON
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
