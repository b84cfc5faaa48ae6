from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from wellovis.api.deps import get_owned, require_active_billing
from wellovis.db.session import get_db
from wellovis.models import (
    Appointment,
    Invoice,
    InvoiceableType,
    Tenant,
    TransactionStatus,
    TransactionType,
    WalletOwnerType,
)
from wellovis.services.invoices import generate_invoice_for_appointment, serialize_invoice
from wellovis.services.ledger import ledger_view
from wellovis.services.scheduling import primary_practitioner
from wellovis.services.wallet import (
    create_invoice_payout,
    get_or_create_wallet,
    mark_paid_manually,
    process_refund,
    serialize_transaction,
)

router = APIRouter(prefix="/api/v1", tags=["accounting"])


class InvoiceCreate(BaseModel):
    tax_enabled: bool = False
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)


class ManualPayment(BaseModel):
    method: str = Field(default="pos", pattern="^(pos|cash)$")
    receipt_url: str | None = None
    amount: Decimal | None = Field(default=None, gt=0)
    attempt_id: str | None = None


class PayoutCreate(BaseModel):
    commission_percentage: float | None = Field(default=None, ge=0, le=100)


class RefundCreate(BaseModel):
    amount: Decimal = Field(gt=0)
    reason: str = ""
    attempt_id: str | None = None


@router.post("/appointments/{appointment_id}/invoice", status_code=status.HTTP_201_CREATED)
def create_appointment_invoice(
    appointment_id: UUID,
    payload: InvoiceCreate | None = None,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    payload = payload or InvoiceCreate()
    appointment = get_owned(db, Appointment, appointment_id, tenant, "Appointment")
    invoice = generate_invoice_for_appointment(
        db,
        tenant,
        appointment,
        tax_enabled=payload.tax_enabled,
        tax_rate=payload.tax_rate,
    )
    if invoice is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Appointment has no service to invoice",
        )
    return {"invoice": serialize_invoice(invoice)}


@router.post("/invoices/{invoice_id}/payments")
def record_manual_payment(
    invoice_id: UUID,
    payload: ManualPayment,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Record a POS or cash payment. Replays of the same attempt are ignored."""

    invoice = get_owned(db, Invoice, invoice_id, tenant, "Invoice")
    txn = mark_paid_manually(
        db,
        invoice,
        method=payload.method,
        receipt_url=payload.receipt_url,
        amount=payload.amount,
        attempt_id=payload.attempt_id,
    )
    return {
        "duplicate": txn is None,
        "transaction": serialize_transaction(txn) if txn else None,
        "invoice": serialize_invoice(invoice),
    }


@router.post("/invoices/{invoice_id}/payout", status_code=status.HTTP_201_CREATED)
def create_payout(
    invoice_id: UUID,
    payload: PayoutCreate | None = None,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    invoice = get_owned(db, Invoice, invoice_id, tenant, "Invoice")

    practitioner_wallet = None
    if invoice.invoiceable_type == InvoiceableType.APPOINTMENT and invoice.invoiceable_id:
        appointment = db.get(Appointment, invoice.invoiceable_id)
        practitioner = primary_practitioner(db, appointment) if appointment else None
        if practitioner is not None:
            practitioner_wallet = get_or_create_wallet(
                db, tenant.id, WalletOwnerType.PRACTITIONER, practitioner.id
            )

    txn = create_invoice_payout(
        db,
        invoice,
        practitioner_wallet,
        commission_percentage=payload.commission_percentage if payload else None,
    )
    return {"transaction": serialize_transaction(txn)}


@router.post("/invoices/{invoice_id}/refunds", status_code=status.HTTP_201_CREATED)
def refund_invoice(
    invoice_id: UUID,
    payload: RefundCreate,
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    invoice = get_owned(db, Invoice, invoice_id, tenant, "Invoice")
    txn = process_refund(
        db,
        invoice,
        payload.amount,
        reason=payload.reason,
        attempt_id=payload.attempt_id,
    )
    return {
        "duplicate": txn is None,
        "transaction": serialize_transaction(txn) if txn else None,
        "invoice": serialize_invoice(invoice),
    }


@router.get("/ledger")
def get_ledger(
    txn_type: TransactionType | None = Query(default=None, alias="type"),
    txn_status: TransactionStatus | None = Query(default=None, alias="status"),
    wallet_id: UUID | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=50, ge=1, le=200),
    tenant: Tenant = Depends(require_active_billing),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return ledger_view(
        db,
        tenant,
        type=txn_type,
        status=txn_status,
        wallet_id=wallet_id,
        date_from=date_from,
        date_to=date_to,
        page=page,
        per_page=per_page,
    )
