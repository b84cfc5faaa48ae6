"""Double-entry view over wallet transactions."""

from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from wellovis.models import (
    Invoice,
    Tenant,
    Transaction,
    TransactionStatus,
    TransactionType,
    Wallet,
    WalletOwnerType,
)
from wellovis.models.base import ZERO
from wellovis.services.scheduling import ensure_utc
from wellovis.services.wallet import CENT, quantize, to_decimal

DEFAULT_PER_PAGE = 50

TRANSACTION_TYPES = [
    {"label": "Invoice Payment", "value": TransactionType.INVOICE_PAYMENT.value},
    {"label": "Payout", "value": TransactionType.PAYOUT.value},
    {"label": "Refund", "value": TransactionType.REFUND.value},
    {"label": "Adjustment", "value": TransactionType.ADJUSTMENT.value},
]


def wallet_label(wallet: Wallet) -> str:
    if wallet.owner_type == WalletOwnerType.SYSTEM:
        return "Clinic Wallet"
    return f"{wallet.owner_type.value.title()} Wallet #{wallet.id}"


def _wallet_summary(wallet: Wallet | None) -> dict[str, Any] | None:
    if wallet is None:
        return None
    return {
        "id": str(wallet.id),
        "owner_type": wallet.owner_type.value,
        "owner_id": str(wallet.owner_id) if wallet.owner_id else None,
        "label": wallet_label(wallet),
    }


def _money(value: Decimal) -> str:
    return str(quantize(to_decimal(value), CENT))


def _sum_completed(db: Session, *criteria) -> Decimal:
    value = db.execute(
        select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.status == TransactionStatus.COMPLETED, *criteria
        )
    ).scalar_one()
    return to_decimal(value)


def ledger_view(
    db: Session,
    tenant: Tenant,
    *,
    type: TransactionType | None = None,
    status: TransactionStatus | None = None,
    wallet_id: UUID | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    per_page: int = DEFAULT_PER_PAGE,
) -> dict[str, Any]:
    """Return filtered transactions with credit/debit columns and clinic totals.

    A transfer credits the wallet the money leaves and debits the wallet it
    enters; a row with no receiving wallet is an unbalanced external outflow.
    """

    page = max(1, page)
    per_page = max(1, per_page)
    criteria = [Transaction.tenant_id == tenant.id]
    if type is not None:
        criteria.append(Transaction.type == type)
    if status is not None:
        criteria.append(Transaction.status == status)
    if wallet_id is not None:
        criteria.append(
            or_(Transaction.from_wallet_id == wallet_id, Transaction.to_wallet_id == wallet_id)
        )
    if date_from is not None:
        criteria.append(
            Transaction.created_at >= datetime.combine(date_from, time.min, tzinfo=timezone.utc)
        )
    if date_to is not None:
        upper = datetime.combine(date_to, time.min, tzinfo=timezone.utc) + timedelta(days=1)
        criteria.append(Transaction.created_at < upper)

    total = db.execute(select(func.count(Transaction.id)).where(*criteria)).scalar_one()
    rows = db.execute(
        select(Transaction)
        .where(*criteria)
        .order_by(Transaction.created_at.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    ).scalars().all()

    wallets = db.execute(
        select(Wallet).where(Wallet.tenant_id == tenant.id).order_by(Wallet.created_at)
    ).scalars().all()
    wallets_by_id = {wallet.id: wallet for wallet in wallets}

    transactions = []
    for txn in rows:
        from_wallet = _wallet_summary(wallets_by_id.get(txn.from_wallet_id))
        to_wallet = _wallet_summary(wallets_by_id.get(txn.to_wallet_id))
        transactions.append(
            {
                "id": str(txn.id),
                "invoice_id": str(txn.invoice_id) if txn.invoice_id else None,
                "amount": _money(txn.amount),
                "type": txn.type.value,
                "direction_source": txn.direction_source.value,
                "payment_method": txn.payment_method,
                "provider_ref": txn.provider_ref,
                "status": txn.status.value,
                "from_wallet": from_wallet,
                "to_wallet": to_wallet,
                "credit_wallet": from_wallet,
                "debit_wallet": to_wallet,
                "is_balanced": to_wallet is not None,
                "created_at": ensure_utc(txn.created_at).isoformat(),
            }
        )

    clinic_wallet = next(
        (wallet for wallet in wallets if wallet.owner_type == WalletOwnerType.SYSTEM), None
    )
    total_incoming = total_outgoing = ZERO
    if clinic_wallet is not None:
        total_incoming = _sum_completed(
            db, Transaction.tenant_id == tenant.id, Transaction.to_wallet_id == clinic_wallet.id
        )
        total_outgoing = _sum_completed(
            db, Transaction.tenant_id == tenant.id, Transaction.from_wallet_id == clinic_wallet.id
        )

    payouts = db.execute(
        select(Transaction.amount, Invoice.price)
        .join(Invoice, Invoice.id == Transaction.invoice_id)
        .where(
            Transaction.tenant_id == tenant.id,
            Transaction.type == TransactionType.PAYOUT,
            Transaction.status == TransactionStatus.COMPLETED,
        )
    ).all()
    total_commission = sum(
        (to_decimal(price) - to_decimal(amount) for amount, price in payouts), ZERO
    )

    return {
        "transactions": transactions,
        "wallets": [
            {
                "id": str(wallet.id),
                "owner_type": wallet.owner_type.value,
                "owner_id": str(wallet.owner_id) if wallet.owner_id else None,
                "label": wallet_label(wallet),
                "balance": _money(wallet.balance),
            }
            for wallet in wallets
        ],
        "summary": {
            "clinic_balance": _money(clinic_wallet.balance if clinic_wallet else ZERO),
            "total_incoming": _money(total_incoming),
            "total_outgoing": _money(total_outgoing),
            "total_commission": _money(total_commission),
            "net_position": _money(total_incoming - total_outgoing),
        },
        "meta": {
            "page": page,
            "per_page": per_page,
            "total": int(total),
            "last_page": max(1, math.ceil(total / per_page)),
        },
        "transaction_types": TRANSACTION_TYPES,
    }
