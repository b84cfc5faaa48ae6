import hashlib
import hmac
import json
import time
from decimal import Decimal

import pytest
from sqlalchemy import select

from wellovis.core.exceptions import InvalidSignatureError
from wellovis.jobs import tasks
from wellovis.models import (
    AppointmentOrigin,
    BillingStatus,
    InvoiceStatus,
    License,
    LicenseStatus,
    Tenant,
)
from wellovis.services.invoices import generate_invoice_for_appointment
from wellovis.services.scheduling import book_slot
from wellovis.services.stripe_webhooks import handle_stripe_event, verify_stripe_signature
from wellovis.services.tenants import create_pending_registration, tenant_creation_status
from wellovis.services.wallet import get_system_wallet, total_paid

SECRET = "whsec_test"


def sign(payload: bytes, secret: str = SECRET, timestamp: int | None = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.".encode("utf-8") + payload, hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={digest}"


def event(event_type: str, obj: dict) -> dict:
    return {"id": "evt_1", "type": event_type, "data": {"object": obj}}


@pytest.fixture
def stripe_tenant(db, tenant):
    tenant.stripe_customer_id = "cus_maple"
    db.flush()
    return tenant


def test_verify_signature_accepts_valid_payload():
    payload = json.dumps(event("invoice.payment_succeeded", {})).encode()
    assert verify_stripe_signature(payload, sign(payload), secret=SECRET)["type"] == (
        "invoice.payment_succeeded"
    )


def test_verify_signature_accepts_any_matching_v1():
    payload = b'{"type": "ping"}'
    header = sign(payload) + ",v1=deadbeef"
    assert verify_stripe_signature(payload, header, secret=SECRET) == {"type": "ping"}


@pytest.mark.parametrize(
    "header, message",
    [
        (None, "Missing"),
        ("garbage", "Malformed"),
        ("t=abc,v1=00", "timestamp"),
        ("t=1,v1=00", "mismatch"),
    ],
)
def test_verify_signature_rejects_bad_headers(header, message):
    with pytest.raises(InvalidSignatureError, match=message):
        verify_stripe_signature(b"{}", header, secret=SECRET)


def test_verify_signature_enforces_tolerance():
    payload = b"{}"
    old = int(time.time()) - 3600
    with pytest.raises(InvalidSignatureError, match="tolerance"):
        verify_stripe_signature(payload, sign(payload, timestamp=old), secret=SECRET)


def test_verify_signature_with_wrong_secret():
    payload = b"{}"
    with pytest.raises(InvalidSignatureError, match="mismatch"):
        verify_stripe_signature(payload, sign(payload, secret="whsec_other"), secret=SECRET)


def test_checkout_completed_queues_provisioning(db, monkeypatch, fake_redis):
    registration = create_pending_registration(
        db, company_name="Harbour Wellness", admin_email="admin@harbour.example"
    )
    queued = []
    monkeypatch.setattr(tasks.provision_tenant_task, "delay", lambda *args: queued.append(args))

    result = handle_stripe_event(
        db,
        event(
            "checkout.session.completed",
            {
                "client_reference_id": str(registration.id),
                "customer": "cus_new",
                "subscription": "sub_new",
            },
        ),
    )

    assert result == {"status": "success", "type": "checkout.session.completed"}
    assert queued == [(str(registration.id), "cus_new", "sub_new")]
    progress = json.loads(fake_redis.get(f"wellovis:provisioning:{registration.id}"))
    assert progress["step"] == "queued"

    status = tenant_creation_status(db, registration_uuid=registration.id)
    assert status["step"] == "queued"
    assert status["is_complete"] is False


def test_checkout_completed_eager_provisions(db):
    registration = create_pending_registration(
        db, company_name="Harbour Wellness", admin_email="admin@harbour.example", seats=2
    )

    handle_stripe_event(
        db,
        event(
            "checkout.session.completed",
            {"metadata": {"registration_uuid": str(registration.id)}, "customer": "cus_new"},
        ),
        eager=True,
    )

    tenant = db.execute(select(Tenant)).scalars().one()
    assert tenant.stripe_customer_id == "cus_new"
    assert tenant.is_creation_complete is True


def test_checkout_with_unknown_registration_is_ignored(db, monkeypatch):
    monkeypatch.setattr(
        tasks.provision_tenant_task, "delay", lambda *args: pytest.fail("should not queue")
    )
    handle_stripe_event(
        db, event("checkout.session.completed", {"client_reference_id": "not-a-uuid"})
    )


def test_subscription_updated_syncs_seats(db, stripe_tenant):
    handle_stripe_event(
        db,
        event(
            "customer.subscription.updated",
            {
                "id": "sub_maple",
                "customer": "cus_maple",
                "status": "past_due",
                "items": {"data": [{"quantity": 3}, {"quantity": 1}]},
            },
        ),
    )

    assert stripe_tenant.billing_status == BillingStatus.PAST_DUE
    assert stripe_tenant.stripe_subscription_id == "sub_maple"
    assert stripe_tenant.number_of_seats == 4
    live = db.execute(
        select(License).where(License.status == LicenseStatus.AVAILABLE)
    ).scalars().all()
    assert len(live) == 4


def test_subscription_deleted_cancels_tenant(db, stripe_tenant):
    handle_stripe_event(
        db,
        event("customer.subscription.deleted", {"customer": "cus_maple", "ended_at": 1760000000}),
    )
    assert stripe_tenant.billing_status == BillingStatus.CANCELED
    assert stripe_tenant.subscription_ends_at is not None


def test_invoice_events_toggle_billing_status(db, stripe_tenant):
    handle_stripe_event(db, event("invoice.payment_failed", {"customer": "cus_maple"}))
    assert stripe_tenant.billing_status == BillingStatus.PAST_DUE

    handle_stripe_event(db, event("invoice.payment_succeeded", {"customer": "cus_maple"}))
    assert stripe_tenant.billing_status == BillingStatus.ACTIVE


def test_payment_intent_marks_invoice_paid(
    db, tenant, practitioner, patient, service, make_slot, tomorrow_at
):
    appointment = book_slot(
        db,
        tenant=tenant,
        practitioner=practitioner,
        patient=patient,
        service=service,
        slot=make_slot(practitioner, tomorrow_at(15)),
        origin=AppointmentOrigin.WEB,
    )
    invoice = generate_invoice_for_appointment(db, tenant, appointment)
    intent = {"id": "pi_card", "amount_received": 8500, "metadata": {"invoice_id": str(invoice.id)}}

    handle_stripe_event(db, event("payment_intent.succeeded", intent))
    handle_stripe_event(db, event("payment_intent.succeeded", intent))

    assert invoice.status == InvoiceStatus.PAID
    assert invoice.payment_method == "gateway"
    assert total_paid(db, invoice) == Decimal("85")
    assert get_system_wallet(db, tenant.id).balance == Decimal("85")


def test_unhandled_event_type(db):
    assert handle_stripe_event(db, event("charge.refunded", {})) == {
        "status": "success",
        "type": "charge.refunded",
    }


def test_webhook_endpoint(client, db, stripe_tenant):
    payload = json.dumps(event("invoice.payment_failed", {"customer": "cus_maple"})).encode()

    response = client.post(
        "/api/v1/webhooks/stripe",
        content=payload,
        headers={"Stripe-Signature": sign(payload), "Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "success", "type": "invoice.payment_failed"}
    db.refresh(stripe_tenant)
    assert stripe_tenant.billing_status == BillingStatus.PAST_DUE


def test_webhook_rejects_bad_signature(client):
    response = client.post(
        "/api/v1/webhooks/stripe",
        content=b"{}",
        headers={"Stripe-Signature": "t=1,v1=00"},
    )
    assert response.status_code == 400
    assert response.json() == {"detail": "Signature mismatch"}


def test_webhook_processing_failure_returns_500(client, monkeypatch):
    def explode(db, event):
        raise RuntimeError("boom")

    monkeypatch.setattr("wellovis.api.v1.webhooks.handle_stripe_event", explode)
    payload = b'{"type": "invoice.payment_failed"}'

    response = client.post(
        "/api/v1/webhooks/stripe", content=payload, headers={"Stripe-Signature": sign(payload)}
    )

    assert response.status_code == 500
    assert response.json() == {"error": "Processing failed"}
