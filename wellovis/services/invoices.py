"""Invoice numbering and generation from appointments."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from wellovis.core.config import settings
from wellovis.models import (
    Appointment,
    Invoice,
    InvoiceableType,
    InvoiceStatus,
    Patient,
    PractitionerService,
    Service,
    Tenant,
    WalletOwnerType,
)
from wellovis.models.base import ZERO
from wellovis.services.notifications import notify
from wellovis.services.scheduling import ensure_utc, primary_practitioner
from wellovis.services.wallet import (
    CENT,
    get_or_create_wallet,
    quantize,
    to_decimal,
)

logger = logging.getLogger(__name__)


def next_invoice_number(db: Session, tenant: Tenant, prefix: str | None = None) -> str:
    """Return ``PREFIX-NNN`` following the highest number issued so far.

    The tenant row stays locked until the caller's transaction ends, so
    concurrent invoices of one tenant are numbered one after the other.
    """

    prefix = prefix or settings.invoice_prefix
    db.execute(select(Tenant.id).where(Tenant.id == tenant.id).with_for_update())
    numbers = db.execute(
        select(Invoice.invoice_number).where(Invoice.tenant_id == tenant.id)
    ).scalars().all()
    last = 0
    for number in numbers:
        tail = number.rsplit("-", 1)[-1]
        if tail.isdigit():
            last = max(last, int(tail))
    return f"{prefix}-{last + 1:03d}"


def practitioner_service_price(
    db: Session, practitioner_id, service: Service
) -> Decimal | None:
    """Return the practitioner's custom price for ``service`` when one is set."""

    link = db.execute(
        select(PractitionerService).where(
            PractitionerService.practitioner_id == practitioner_id,
            PractitionerService.service_id == service.id,
            PractitionerService.is_offered.is_(True),
        )
    ).scalars().first()
    if link is None or link.custom_price is None:
        return None
    price = to_decimal(link.custom_price)
    return price if price > ZERO else None


def invoice_for_appointment(db: Session, appointment: Appointment) -> Invoice | None:
    return db.execute(
        select(Invoice).where(
            Invoice.tenant_id == appointment.tenant_id,
            Invoice.invoiceable_type == InvoiceableType.APPOINTMENT,
            Invoice.invoiceable_id == appointment.id,
        )
    ).scalars().first()


def generate_invoice_for_appointment(
    db: Session,
    tenant: Tenant,
    appointment: Appointment,
    *,
    tax_enabled: bool = False,
    tax_rate: Decimal | float = 0,
) -> Invoice | None:
    """Create the patient invoice for an appointment, once."""

    existing = invoice_for_appointment(db, appointment)
    if existing is not None:
        logger.info(
            "invoice already exists for appointment",
            extra={"appointment_id": str(appointment.id), "invoice_id": str(existing.id)},
        )
        return existing

    service = db.get(Service, appointment.service_id) if appointment.service_id else None
    if service is None:
        logger.warning(
            "cannot create invoice, appointment has no service",
            extra={"appointment_id": str(appointment.id)},
        )
        return None

    patient_wallet = get_or_create_wallet(
        db, tenant.id, WalletOwnerType.PATIENT, appointment.patient_id
    )

    practitioner = primary_practitioner(db, appointment)
    practitioner_name = practitioner.full_name if practitioner else "Practitioner"
    custom_price = (
        practitioner_service_price(db, practitioner.id, service) if practitioner else None
    )
    base_price = custom_price if custom_price is not None else to_decimal(service.default_price)

    rate = to_decimal(tax_rate) if tax_enabled else ZERO
    subtotal = quantize(base_price)
    tax_amount = quantize(subtotal * rate / Decimal(100)) if tax_enabled else ZERO
    total = quantize(subtotal + tax_amount)

    invoice = Invoice(
        tenant_id=tenant.id,
        invoice_number=next_invoice_number(db, tenant),
        invoiceable_type=InvoiceableType.APPOINTMENT,
        invoiceable_id=appointment.id,
        reference_type="appointment",
        reference_id=appointment.id,
        customer_wallet_id=patient_wallet.id,
        subtotal=subtotal,
        tax_total=tax_amount,
        price=total,
        status=InvoiceStatus.PENDING,
        meta={
            "appointment_id": str(appointment.id),
            "lines": [
                {
                    "desc": f"Appointment with {practitioner_name}",
                    "qty": 1,
                    "unit_price": str(base_price),
                    "tax_rate": str(rate),
                    "tax_amount": str(tax_amount),
                    "line_subtotal": str(base_price),
                }
            ],
        },
    )
    db.add(invoice)
    db.flush()

    logger.info(
        "invoice created for appointment",
        extra={
            "appointment_id": str(appointment.id),
            "invoice_id": str(invoice.id),
            "subtotal": str(subtotal),
            "tax_amount": str(tax_amount),
            "total": str(total),
            "custom_price_used": custom_price is not None,
        },
    )

    patient = db.get(Patient, appointment.patient_id)
    notify(
        db,
        tenant_id=tenant.id,
        to=patient.email if patient else None,
        template="invoice_created",
        context={
            "invoice_number": invoice.invoice_number,
            "amount": str(quantize(total, CENT)),
            "currency": patient_wallet.currency,
        },
        appointment_id=appointment.id,
    )
    return invoice


def serialize_invoice(invoice: Invoice) -> dict[str, Any]:
    return {
        "id": str(invoice.id),
        "invoice_number": invoice.invoice_number,
        "invoiceable_type": invoice.invoiceable_type.value,
        "invoiceable_id": str(invoice.invoiceable_id) if invoice.invoiceable_id else None,
        "customer_wallet_id": str(invoice.customer_wallet_id)
        if invoice.customer_wallet_id
        else None,
        "subtotal": str(quantize(to_decimal(invoice.subtotal), CENT)),
        "tax_total": str(quantize(to_decimal(invoice.tax_total), CENT)),
        "price": str(quantize(to_decimal(invoice.price), CENT)),
        "status": invoice.status.value,
        "payment_method": invoice.payment_method,
        "paid_at": ensure_utc(invoice.paid_at).isoformat() if invoice.paid_at else None,
        "meta": invoice.meta,
    }
