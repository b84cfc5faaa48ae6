"""Stripe webhook verification and event handling.

Stripe stays the source of truth for subscriptions. These handlers only mirror
the subscription state onto the tenant and start provisioning after checkout.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.orm import Session

from wellovis.core.config import settings
from wellovis.core.exceptions import InvalidSignatureError
from wellovis.models import BillingStatus, Invoice, PendingRegistration, Tenant
from wellovis.services.licenses import sync_licenses_to_seats
from wellovis.services.provisioning_state import ProvisioningStep
from wellovis.services.tenants import (
    provision_tenant,
    record_progress,
    read_registration_payload,
    tenant_by_stripe_customer,
)
from wellovis.services.wallet import mark_paid_by_gateway, to_decimal

logger = logging.getLogger(__name__)

STATUS_MAP = {
    "trialing": BillingStatus.TRIALING,
    "active": BillingStatus.ACTIVE,
    "past_due": BillingStatus.PAST_DUE,
    "unpaid": BillingStatus.PAST_DUE,
    "canceled": BillingStatus.CANCELED,
}


def _parse_signature_header(header: str) -> tuple[int, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as exc:
                raise InvalidSignatureError("Invalid signature timestamp") from exc
        elif key == "v1" and value:
            signatures.append(value)
    if timestamp is None or not signatures:
        raise InvalidSignatureError("Malformed Stripe-Signature header")
    return timestamp, signatures


def verify_stripe_signature(
    payload: bytes,
    header: str | None,
    secret: str | None = None,
    tolerance: int | None = None,
    now: float | None = None,
) -> dict[str, Any]:
    """Check the ``Stripe-Signature`` header and return the decoded event."""

    secret = secret if secret is not None else settings.stripe_webhook_secret
    tolerance = tolerance if tolerance is not None else settings.stripe_webhook_tolerance_seconds
    if not secret:
        raise InvalidSignatureError("Stripe webhook secret is not configured")
    if not header:
        raise InvalidSignatureError("Missing Stripe-Signature header")

    timestamp, signatures = _parse_signature_header(header)
    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    expected = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise InvalidSignatureError("Signature mismatch")

    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance:
        raise InvalidSignatureError("Signature timestamp outside tolerance")

    try:
        event = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise InvalidSignatureError("Payload is not valid JSON") from exc
    if not isinstance(event, dict):
        raise InvalidSignatureError("Payload is not an event object")
    return event


def _seat_count(subscription: dict[str, Any]) -> int:
    items = (subscription.get("items") or {}).get("data") or []
    total = sum(int(item.get("quantity") or 0) for item in items)
    return total or 1


def _from_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _queue_provisioning(
    db: Session,
    registration_id: UUID,
    customer_id: str | None,
    subscription_id: str | None,
    eager: bool,
) -> None:
    if eager:
        provision_tenant(db, registration_id, customer_id, subscription_id)
        return
    from wellovis.jobs.tasks import provision_tenant_task

    record_progress(registration_id, ProvisioningStep.QUEUED)
    provision_tenant_task.delay(str(registration_id), customer_id, subscription_id)


def _handle_checkout_completed(db: Session, session: dict[str, Any], eager: bool) -> None:
    raw_id = session.get("client_reference_id") or (session.get("metadata") or {}).get(
        "registration_uuid"
    )
    if not raw_id:
        logger.warning("checkout session without registration reference")
        return
    try:
        registration_id = UUID(str(raw_id))
    except ValueError:
        logger.warning("checkout session has malformed registration reference")
        return

    registration = db.get(PendingRegistration, registration_id)
    if registration is None or read_registration_payload(registration) is None:
        logger.warning(
            "checkout session for unknown or expired registration",
            extra={"registration_id": str(registration_id)},
        )
        return

    _queue_provisioning(
        db,
        registration_id,
        session.get("customer"),
        session.get("subscription"),
        eager,
    )
    logger.info(
        "tenant provisioning queued",
        extra={"registration_id": str(registration_id), "eager": eager},
    )


def _tenant_for(db: Session, obj: dict[str, Any], event_type: str) -> Tenant | None:
    tenant = tenant_by_stripe_customer(db, obj.get("customer"))
    if tenant is None:
        logger.warning(
            "no tenant for stripe customer",
            extra={"event_type": event_type, "customer": obj.get("customer")},
        )
    return tenant


def _handle_subscription_changed(db: Session, subscription: dict[str, Any], event_type: str) -> None:
    tenant = _tenant_for(db, subscription, event_type)
    if tenant is None:
        return
    status = STATUS_MAP.get(subscription.get("status", ""))
    if status is not None:
        tenant.billing_status = status
    if subscription.get("id"):
        tenant.stripe_subscription_id = subscription["id"]
    trial_end = _from_timestamp(subscription.get("trial_end"))
    if trial_end is not None:
        tenant.trial_ends_at = trial_end
    tenant.number_of_seats = _seat_count(subscription)
    db.flush()
    result = sync_licenses_to_seats(db, tenant)
    logger.info(
        "subscription synced",
        extra={
            "event_type": event_type,
            "billing_status": tenant.billing_status.value,
            "seats": tenant.number_of_seats,
            **result,
        },
    )


def _handle_subscription_deleted(db: Session, subscription: dict[str, Any], event_type: str) -> None:
    tenant = _tenant_for(db, subscription, event_type)
    if tenant is None:
        return
    tenant.billing_status = BillingStatus.CANCELED
    tenant.subscription_ends_at = _from_timestamp(subscription.get("ended_at")) or datetime.now(
        timezone.utc
    )
    db.flush()


def _handle_invoice_status(
    db: Session, invoice: dict[str, Any], event_type: str, status: BillingStatus
) -> None:
    tenant = _tenant_for(db, invoice, event_type)
    if tenant is None:
        return
    tenant.billing_status = status
    db.flush()


def _handle_payment_intent_succeeded(db: Session, intent: dict[str, Any]) -> None:
    invoice_ref = (intent.get("metadata") or {}).get("invoice_id")
    if not invoice_ref:
        logger.info("payment intent without invoice reference ignored")
        return
    try:
        invoice = db.get(Invoice, UUID(str(invoice_ref)))
    except ValueError:
        invoice = None
    if invoice is None:
        logger.warning("payment intent references unknown invoice", extra={"invoice_id": invoice_ref})
        return
    amount = intent.get("amount_received", intent.get("amount"))
    mark_paid_by_gateway(
        db,
        invoice,
        intent["id"],
        amount=to_decimal(amount) / 100 if amount is not None else None,
    )


def handle_stripe_event(db: Session, event: dict[str, Any], *, eager: bool = False) -> dict[str, Any]:
    """Dispatch a verified Stripe event and return the webhook response body."""

    event_type = event.get("type", "")
    obj = (event.get("data") or {}).get("object") or {}
    logger.info("stripe event received", extra={"event_type": event_type, "event_id": event.get("id")})

    handlers: dict[str, Callable[[], None]] = {
        "checkout.session.completed": lambda: _handle_checkout_completed(db, obj, eager),
        "customer.subscription.created": lambda: _handle_subscription_changed(db, obj, event_type),
        "customer.subscription.updated": lambda: _handle_subscription_changed(db, obj, event_type),
        "customer.subscription.deleted": lambda: _handle_subscription_deleted(db, obj, event_type),
        "invoice.payment_failed": lambda: _handle_invoice_status(
            db, obj, event_type, BillingStatus.PAST_DUE
        ),
        "invoice.payment_succeeded": lambda: _handle_invoice_status(
            db, obj, event_type, BillingStatus.ACTIVE
        ),
        "payment_intent.succeeded": lambda: _handle_payment_intent_succeeded(db, obj),
    }
    handler = handlers.get(event_type)
    if handler is None:
        logger.info("unhandled stripe event", extra={"event_type": event_type})
    else:
        handler()
    return {"status": "success", "type": event_type}
