from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from wellovis.models.base import Base, JSONType, Money, TimestampMixin


class WalletOwnerType(str, enum.Enum):
    SYSTEM = "SYSTEM"
    PATIENT = "PATIENT"
    PRACTITIONER = "PRACTITIONER"
    USER = "USER"


class InvoiceableType(str, enum.Enum):
    APPOINTMENT = "APPOINTMENT"
    PRACTITIONER = "PRACTITIONER"
    SYSTEM = "SYSTEM"


class InvoiceStatus(str, enum.Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    PAID_MANUAL = "PAID_MANUAL"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class TransactionType(str, enum.Enum):
    INVOICE_PAYMENT = "INVOICE_PAYMENT"
    PAYOUT = "PAYOUT"
    REFUND = "REFUND"
    ADJUSTMENT = "ADJUSTMENT"


class DirectionSource(str, enum.Enum):
    INTERNAL_WALLET = "INTERNAL_WALLET"
    EXTERNAL_GATEWAY = "EXTERNAL_GATEWAY"
    EXTERNAL_POS = "EXTERNAL_POS"
    EXTERNAL_CASH = "EXTERNAL_CASH"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Wallet(Base, TimestampMixin):
    """Balance holder. Each tenant has exactly one SYSTEM (clinic) wallet."""

    __tablename__ = "wallets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), index=True
    )
    owner_type: Mapped[WalletOwnerType] = mapped_column(
        Enum(WalletOwnerType, name="wallet_owner_type"), nullable=False
    )
    owner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    # "{tenant_id}:system" for the clinic wallet, null otherwise
    singleton_key: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    balance: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="CAD")


class Invoice(Base, TimestampMixin):
    __tablename__ = "invoices"
    __table_args__ = (UniqueConstraint("tenant_id", "invoice_number"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), index=True
    )
    invoice_number: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    invoiceable_type: Mapped[InvoiceableType] = mapped_column(
        Enum(InvoiceableType, name="invoiceable_type"), nullable=False
    )
    invoiceable_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    reference_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reference_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    customer_wallet_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("wallets.id", ondelete="SET NULL"), nullable=True
    )
    subtotal: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    tax_total: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    price: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus, name="invoice_status"),
        default=InvoiceStatus.PENDING,
        nullable=False,
    )
    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    meta: Mapped[dict | None] = mapped_column(JSONType, nullable=True)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), index=True
    )
    from_wallet_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("wallets.id", ondelete="SET NULL"), nullable=True, index=True
    )
    to_wallet_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("wallets.id", ondelete="SET NULL"), nullable=True, index=True
    )
    invoice_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, name="transaction_type"), nullable=False
    )
    direction_source: Mapped[DirectionSource] = mapped_column(
        Enum(DirectionSource, name="direction_source"), nullable=False
    )
    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    provider_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_proof_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus, name="transaction_status"),
        default=TransactionStatus.PENDING,
        nullable=False,
    )
    idempotency_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    meta: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
