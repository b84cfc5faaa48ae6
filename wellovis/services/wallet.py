"""Wallet balances and the transactions that move money between them."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from wellovis.core.config import settings
from wellovis.core.exceptions import DomainError, InsufficientFundsError
from wellovis.models import (
    DirectionSource,
    Invoice,
    InvoiceableType,
    InvoiceStatus,
    Practitioner,
    Tenant,
    Transaction,
    TransactionStatus,
    TransactionType,
    Wallet,
    WalletOwnerType,
)
from wellovis.models.base import ZERO

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
FOUR_PLACES = Decimal("0.0001")
PAID_TOLERANCE = Decimal("0.01")
EXTERNAL_SOURCES = frozenset(
    {
        DirectionSource.EXTERNAL_GATEWAY,
        DirectionSource.EXTERNAL_POS,
        DirectionSource.EXTERNAL_CASH,
    }
)
MANUAL_METHODS = {
    "pos": DirectionSource.EXTERNAL_POS,
    "cash": DirectionSource.EXTERNAL_CASH,
}


def to_decimal(value: Decimal | float | int | str | None) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize(value: Decimal, places: Decimal = FOUR_PLACES) -> Decimal:
    return value.quantize(places, rounding=ROUND_HALF_UP)


def _system_singleton_key(tenant_id: UUID) -> str:
    return f"{tenant_id}:system"


def get_system_wallet(db: Session, tenant_id: UUID, *, lock: bool = False) -> Wallet:
    """Return the clinic wallet of a tenant, creating it on first use."""

    stmt = select(Wallet).where(Wallet.singleton_key == _system_singleton_key(tenant_id))
    if lock:
        stmt = stmt.with_for_update()
    wallet = db.execute(stmt).scalars().first()
    if wallet is not None:
        return wallet

    wallet = Wallet(
        tenant_id=tenant_id,
        owner_type=WalletOwnerType.SYSTEM,
        owner_id=None,
        singleton_key=_system_singleton_key(tenant_id),
        balance=ZERO,
        currency=settings.default_currency,
    )
    db.add(wallet)
    db.flush()
    return wallet


def get_or_create_wallet(
    db: Session, tenant_id: UUID, owner_type: WalletOwnerType, owner_id: UUID
) -> Wallet:
    if owner_type == WalletOwnerType.SYSTEM:
        return get_system_wallet(db, tenant_id)

    wallet = db.execute(
        select(Wallet).where(
            Wallet.tenant_id == tenant_id,
            Wallet.owner_type == owner_type,
            Wallet.owner_id == owner_id,
        )
    ).scalars().first()
    if wallet is None:
        wallet = Wallet(
            tenant_id=tenant_id,
            owner_type=owner_type,
            owner_id=owner_id,
            balance=ZERO,
            currency=settings.default_currency,
        )
        db.add(wallet)
        db.flush()
    return wallet


def generate_idempotency_key(
    provider_ref: str | None = None,
    invoice_id: UUID | str | None = None,
    wallet_id: UUID | str | None = None,
    attempt_id: str | None = None,
) -> str:
    if provider_ref:
        return f"provider:{provider_ref}"
    if invoice_id and wallet_id and attempt_id:
        return f"inv:{invoice_id}|payer:{wallet_id}|attempt:{attempt_id}"
    return f"txn:{uuid.uuid4().hex}"


def validate_transaction_rules(txn: Transaction) -> None:
    """Reject transactions that break the ledger rules."""

    if to_decimal(txn.amount) <= ZERO:
        raise DomainError("Transaction amount must be positive")

    if txn.direction_source == DirectionSource.INTERNAL_WALLET:
        if not txn.from_wallet_id or not txn.to_wallet_id:
            raise DomainError(
                "Internal transfers require both from_wallet_id and to_wallet_id"
            )
        if txn.from_wallet_id == txn.to_wallet_id:
            raise DomainError("Internal transfers require different from and to wallets")

    if txn.direction_source in EXTERNAL_SOURCES and not txn.invoice_id:
        raise DomainError("External transfers should reference an invoice_id")

    if not txn.invoice_id and txn.type != TransactionType.ADJUSTMENT:
        logger.warning(
            "transaction created without invoice_id",
            extra={"transaction_type": txn.type.value},
        )


def _existing_transaction(db: Session, idempotency_key: str) -> Transaction | None:
    return db.execute(
        select(Transaction).where(Transaction.idempotency_key == idempotency_key)
    ).scalars().first()


def record_transaction(db: Session, tenant_id: UUID, **values: Any) -> Transaction:
    txn = Transaction(tenant_id=tenant_id, **values)
    validate_transaction_rules(txn)
    db.add(txn)
    db.flush()
    return txn


def _completed_sum(db: Session, invoice: Invoice, txn_type: TransactionType) -> Decimal:
    value = db.execute(
        select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.invoice_id == invoice.id,
            Transaction.type == txn_type,
            Transaction.status == TransactionStatus.COMPLETED,
        )
    ).scalar_one()
    return to_decimal(value)


def total_paid(db: Session, invoice: Invoice) -> Decimal:
    return _completed_sum(db, invoice, TransactionType.INVOICE_PAYMENT)


def total_refunded(db: Session, invoice: Invoice) -> Decimal:
    return _completed_sum(db, invoice, TransactionType.REFUND)


def is_fully_paid(db: Session, invoice: Invoice) -> bool:
    return to_decimal(invoice.price) - total_paid(db, invoice) <= PAID_TOLERANCE


def _lock_wallet(db: Session, wallet_id: UUID) -> Wallet | None:
    return db.execute(
        select(Wallet).where(Wallet.id == wallet_id).with_for_update()
    ).scalars().first()


def _apply_invoice_payment(
    db: Session,
    invoice: Invoice,
    *,
    amount: Decimal,
    direction_source: DirectionSource,
    payment_method: str,
    idempotency_key: str,
    paid_status: InvoiceStatus,
    provider_ref: str | None = None,
    payment_proof_url: str | None = None,
) -> Transaction | None:
    if not invoice.customer_wallet_id:
        raise DomainError("Invoice must have a customer_wallet_id")

    existing = _existing_transaction(db, idempotency_key)
    if existing is not None:
        logger.info(
            "duplicate payment attempt blocked by idempotency key",
            extra={
                "idempotency_key": idempotency_key,
                "existing_transaction_id": str(existing.id),
            },
        )
        return None

    system_wallet = get_system_wallet(db, invoice.tenant_id, lock=True)
    txn = record_transaction(
        db,
        invoice.tenant_id,
        from_wallet_id=None,
        to_wallet_id=system_wallet.id,
        invoice_id=invoice.id,
        amount=amount,
        type=TransactionType.INVOICE_PAYMENT,
        direction_source=direction_source,
        payment_method=payment_method,
        provider_ref=provider_ref,
        payment_proof_url=payment_proof_url,
        status=TransactionStatus.COMPLETED,
        idempotency_key=idempotency_key,
    )

    if invoice.invoiceable_type == InvoiceableType.PRACTITIONER:
        practitioner_wallet = _lock_wallet(db, invoice.customer_wallet_id)
        if practitioner_wallet is None or to_decimal(system_wallet.balance) < amount:
            raise InsufficientFundsError(
                "Insufficient clinic wallet balance for practitioner payment."
            )
        system_wallet.balance = to_decimal(system_wallet.balance) - amount
        practitioner_wallet.balance = to_decimal(practitioner_wallet.balance) + amount
    else:
        system_wallet.balance = to_decimal(system_wallet.balance) + amount
    db.flush()

    if is_fully_paid(db, invoice):
        invoice.status = paid_status
        invoice.payment_method = payment_method
        invoice.paid_at = datetime.now(timezone.utc)
    elif invoice.status == InvoiceStatus.PENDING:
        invoice.status = InvoiceStatus.PARTIAL
    db.flush()

    logger.info(
        "invoice payment recorded",
        extra={
            "invoice_id": str(invoice.id),
            "transaction_id": str(txn.id),
            "amount": str(amount),
            "invoice_status": invoice.status.value,
        },
    )
    return txn


def mark_paid_by_gateway(
    db: Session,
    invoice: Invoice,
    provider_ref: str,
    amount: Decimal | float | None = None,
) -> Transaction | None:
    """Record a card payment confirmed by the payment gateway."""

    payment = quantize(to_decimal(amount if amount is not None else invoice.price))
    return _apply_invoice_payment(
        db,
        invoice,
        amount=payment,
        direction_source=DirectionSource.EXTERNAL_GATEWAY,
        payment_method="gateway",
        idempotency_key=generate_idempotency_key(provider_ref),
        paid_status=InvoiceStatus.PAID,
        provider_ref=provider_ref,
    )


def mark_paid_manually(
    db: Session,
    invoice: Invoice,
    *,
    method: str = "pos",
    receipt_url: str | None = None,
    amount: Decimal | float | None = None,
    attempt_id: str | None = None,
) -> Transaction | None:
    """Record a POS or cash payment taken at the front desk."""

    try:
        source = MANUAL_METHODS[method]
    except KeyError as exc:
        raise DomainError(f"Unsupported manual payment method: {method}") from exc

    payment = quantize(to_decimal(amount if amount is not None else invoice.price))
    key = generate_idempotency_key(
        None,
        invoice.id,
        invoice.customer_wallet_id,
        attempt_id,
    )
    return _apply_invoice_payment(
        db,
        invoice,
        amount=payment,
        direction_source=source,
        payment_method=method,
        idempotency_key=key,
        paid_status=InvoiceStatus.PAID_MANUAL,
        payment_proof_url=receipt_url,
    )


def payout_to_practitioner(
    db: Session,
    tenant: Tenant,
    practitioner: Practitioner,
    amount: Decimal | float,
    *,
    invoice_id: UUID | None = None,
    attempt_id: str | None = None,
) -> Transaction | None:
    """Transfer ``amount`` from the clinic wallet to the practitioner wallet."""

    amount = quantize(to_decimal(amount))
    if amount <= ZERO:
        raise DomainError("Payout amount must be positive")

    system_wallet = get_system_wallet(db, tenant.id, lock=True)
    practitioner_wallet = get_or_create_wallet(
        db, tenant.id, WalletOwnerType.PRACTITIONER, practitioner.id
    )
    key = (
        generate_idempotency_key(None, invoice_id, system_wallet.id, f"payout:{attempt_id}")
        if attempt_id
        else generate_idempotency_key()
    )
    if _existing_transaction(db, key) is not None:
        logger.info("duplicate payout blocked", extra={"idempotency_key": key})
        return None

    if to_decimal(system_wallet.balance) < amount:
        raise InsufficientFundsError("Insufficient system wallet balance.")

    system_wallet.balance = to_decimal(system_wallet.balance) - amount
    practitioner_wallet.balance = to_decimal(practitioner_wallet.balance) + amount
    return record_transaction(
        db,
        tenant.id,
        from_wallet_id=system_wallet.id,
        to_wallet_id=practitioner_wallet.id,
        invoice_id=invoice_id,
        amount=amount,
        type=TransactionType.PAYOUT,
        direction_source=DirectionSource.INTERNAL_WALLET,
        payment_method="internal",
        status=TransactionStatus.COMPLETED,
        idempotency_key=key,
    )


def _has_transaction(db: Session, invoice: Invoice, txn_type: TransactionType) -> bool:
    return (
        db.execute(
            select(Transaction.id).where(
                Transaction.invoice_id == invoice.id,
                Transaction.type == txn_type,
                Transaction.status == TransactionStatus.COMPLETED,
            )
        ).first()
        is not None
    )


def create_invoice_payout(
    db: Session,
    invoice: Invoice,
    practitioner_wallet: Wallet | None,
    commission_percentage: float | None = None,
) -> Transaction:
    """Pay the primary practitioner their share of a paid invoice."""

    if commission_percentage is None:
        commission_percentage = settings.clinic_commission_percentage
    if not _has_transaction(db, invoice, TransactionType.INVOICE_PAYMENT):
        raise DomainError("Invoice must be paid before creating a payout.")
    if _has_transaction(db, invoice, TransactionType.PAYOUT):
        raise DomainError("Payout already exists for this invoice.")
    if practitioner_wallet is None:
        raise DomainError("No primary practitioner found for this invoice.")

    invoice_amount = to_decimal(invoice.price)
    pct = to_decimal(commission_percentage)
    commission = quantize(invoice_amount * pct / Decimal(100), CENT)
    payout = quantize(invoice_amount - commission, CENT)

    clinic_wallet = get_system_wallet(db, invoice.tenant_id, lock=True)
    if to_decimal(clinic_wallet.balance) < payout:
        raise InsufficientFundsError("Insufficient clinic balance for payout.")

    clinic_wallet.balance = to_decimal(clinic_wallet.balance) - payout
    practitioner_wallet.balance = to_decimal(practitioner_wallet.balance) + payout
    return record_transaction(
        db,
        invoice.tenant_id,
        from_wallet_id=clinic_wallet.id,
        to_wallet_id=practitioner_wallet.id,
        invoice_id=invoice.id,
        amount=payout,
        type=TransactionType.PAYOUT,
        direction_source=DirectionSource.INTERNAL_WALLET,
        payment_method="internal",
        status=TransactionStatus.COMPLETED,
        idempotency_key=generate_idempotency_key(),
        meta={
            "invoice_amount": str(invoice_amount),
            "commission_amount": str(commission),
            "commission_percentage": float(pct),
            "payout_amount": str(payout),
        },
    )


def process_refund(
    db: Session,
    invoice: Invoice,
    amount: Decimal | float,
    *,
    reason: str = "",
    attempt_id: str | None = None,
) -> Transaction | None:
    """Refund part or all of what was paid on ``invoice``."""

    if not invoice.customer_wallet_id:
        raise DomainError("Invoice must have a customer_wallet_id for refunds")
    amount = quantize(to_decimal(amount))
    if amount <= ZERO:
        raise DomainError("Refund amount must be positive")
    system_wallet = get_system_wallet(db, invoice.tenant_id, lock=True)
    key = (
        generate_idempotency_key(None, invoice.id, system_wallet.id, f"refund:{attempt_id}")
        if attempt_id
        else generate_idempotency_key()
    )
    if _existing_transaction(db, key) is not None:
        logger.info("duplicate refund blocked", extra={"idempotency_key": key})
        return None

    paid = total_paid(db, invoice)
    refunded = total_refunded(db, invoice)
    if amount > paid - refunded:
        raise DomainError("Refund amount cannot exceed total paid amount")
    if to_decimal(system_wallet.balance) < amount:
        raise InsufficientFundsError("Insufficient system wallet balance for refund")

    txn = Transaction(
        tenant_id=invoice.tenant_id,
        from_wallet_id=system_wallet.id,
        to_wallet_id=None,
        invoice_id=invoice.id,
        amount=amount,
        type=TransactionType.REFUND,
        direction_source=DirectionSource.EXTERNAL_GATEWAY,
        payment_method=invoice.payment_method or "gateway",
        status=TransactionStatus.COMPLETED,
        idempotency_key=key,
        meta={"reason": reason, "refunded_at": datetime.now(timezone.utc).isoformat()},
    )
    db.add(txn)
    system_wallet.balance = to_decimal(system_wallet.balance) - amount
    db.flush()

    if refunded + amount >= paid:
        invoice.status = InvoiceStatus.REFUNDED
    db.flush()
    return txn


def serialize_transaction(txn: Transaction) -> dict[str, Any]:
    return {
        "id": str(txn.id),
        "from_wallet_id": str(txn.from_wallet_id) if txn.from_wallet_id else None,
        "to_wallet_id": str(txn.to_wallet_id) if txn.to_wallet_id else None,
        "invoice_id": str(txn.invoice_id) if txn.invoice_id else None,
        "amount": str(quantize(to_decimal(txn.amount), CENT)),
        "type": txn.type.value,
        "direction_source": txn.direction_source.value,
        "payment_method": txn.payment_method,
        "status": txn.status.value,
        "idempotency_key": txn.idempotency_key,
        "meta": txn.meta,
    }
