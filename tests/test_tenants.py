import json
from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest
from sqlalchemy import select

from wellovis.core.exceptions import ConflictError, DomainError, PaymentRequiredError
from wellovis.models import (
    BillingStatus,
    License,
    LicenseStatus,
    MessageLog,
    PendingRegistration,
    Tenant,
    Wallet,
)
from wellovis.services.tenants import (
    create_pending_registration,
    ensure_billing_access,
    has_subscription_ended,
    provision_tenant,
    read_registration_payload,
    tenant_creation_status,
)


@pytest.fixture
def registration(db):
    return create_pending_registration(
        db,
        company_name="Harbour Wellness",
        admin_email="Admin@Harbour.example",
        domain="harbour",
        plan="pro",
        seats=3,
    )


def test_registration_payload_is_encrypted(db, registration):
    assert registration.encrypted_token.startswith("gAAAAA")
    payload = read_registration_payload(registration)
    assert payload["company_name"] == "Harbour Wellness"
    assert payload["admin_email"] == "admin@harbour.example"
    assert payload["seats"] == 3

    later = datetime.now(timezone.utc) + timedelta(days=2)
    assert read_registration_payload(registration, now=later) is None


def test_registration_rejects_taken_company_name(db, tenant):
    with pytest.raises(ConflictError):
        create_pending_registration(db, company_name="Maple Physio", admin_email="x@example.com")
    with pytest.raises(DomainError, match="seat"):
        create_pending_registration(db, company_name="New Clinic", admin_email="x@example.com", seats=0)


def test_registration_rejects_name_of_pending_sign_up(db, registration):
    assert registration.company_key is not None
    assert "Harbour" not in registration.company_key

    with pytest.raises(ConflictError, match="already registered"):
        create_pending_registration(
            db, company_name=" harbour wellness ", admin_email="other@harbour.example"
        )

    registration.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    db.flush()
    retry = create_pending_registration(
        db, company_name="Harbour Wellness", admin_email="other@harbour.example"
    )
    assert retry.company_key == registration.company_key


def test_provision_with_taken_name_fails_cleanly(db, registration, fake_redis):
    db.add(Tenant(company_name="Harbour Wellness", billing_status=BillingStatus.ACTIVE))
    db.flush()

    with pytest.raises(ConflictError, match="already registered"):
        provision_tenant(db, registration.id)
    progress = json.loads(fake_redis.get(f"wellovis:provisioning:{registration.id}"))
    assert progress == {
        "step": "failed",
        "updated_at": progress["updated_at"],
        "error": "Company name is already registered",
    }


def test_provision_tenant(db, registration, fake_redis):
    tenant = provision_tenant(db, registration.id, "cus_123", "sub_123")

    assert tenant.company_name == "Harbour Wellness"
    assert tenant.billing_status == BillingStatus.TRIALING
    assert tenant.trial_ends_at > datetime.now(timezone.utc) + timedelta(days=13)
    assert tenant.stripe_customer_id == "cus_123"
    assert tenant.is_creation_complete is True
    assert str(tenant.id) == read_registration_payload(registration)["tenant_id"]
    assert registration.tenant_id == tenant.id

    licenses = db.execute(select(License).where(License.tenant_id == tenant.id)).scalars().all()
    assert [item.status for item in licenses] == [LicenseStatus.AVAILABLE] * 3
    wallet = db.execute(select(Wallet).where(Wallet.tenant_id == tenant.id)).scalars().one()
    assert wallet.singleton_key == f"{tenant.id}:system"

    progress = json.loads(fake_redis.get(f"wellovis:provisioning:{registration.id}"))
    assert progress["step"] == "complete"
    welcome = db.execute(select(MessageLog)).scalars().one()
    assert welcome.template == "tenant_welcome"
    assert welcome.recipient == "admin@harbour.example"


def test_provision_tenant_is_idempotent(db, registration):
    first = provision_tenant(db, registration.id)
    second = provision_tenant(db, registration.id)

    assert first.id == second.id
    assert db.execute(select(Tenant)).scalars().all() == [first]


def test_provision_expired_registration_fails(db, registration, fake_redis):
    registration.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)

    with pytest.raises(DomainError, match="expired"):
        provision_tenant(db, registration.id)
    progress = json.loads(fake_redis.get(f"wellovis:provisioning:{registration.id}"))
    assert progress["step"] == "failed"


def test_creation_status(db, registration, fake_redis):
    pending = tenant_creation_status(db, registration_uuid=str(registration.id))
    assert pending["is_complete"] is False
    assert pending["error"] == "Tenant does not exist yet"

    tenant = provision_tenant(db, registration.id)
    by_registration = tenant_creation_status(db, registration_uuid=str(registration.id))
    assert by_registration == {"is_complete": True, "tenant_id": str(tenant.id), "step": "complete"}
    assert fake_redis.get(f"wellovis:provisioning:{registration.id}") is None
    assert tenant_creation_status(db, tenant_id=str(tenant.id))["is_complete"] is True

    with pytest.raises(DomainError):
        tenant_creation_status(db)
    assert tenant_creation_status(db, registration_uuid="not-a-uuid")["error"] == "Tenant not found"


@pytest.mark.parametrize(
    "status, trial_delta, ends_delta, ended",
    [
        (BillingStatus.ACTIVE, None, None, False),
        (BillingStatus.PAST_DUE, None, None, False),
        (BillingStatus.PENDING, None, None, True),
        (BillingStatus.TRIALING, timedelta(days=3), None, False),
        (BillingStatus.TRIALING, timedelta(days=-1), None, True),
        (BillingStatus.CANCELED, None, timedelta(days=5), False),
        (BillingStatus.CANCELED, None, timedelta(days=-5), True),
        (BillingStatus.CANCELED, None, None, True),
    ],
)
def test_has_subscription_ended(status, trial_delta, ends_delta, ended):
    now = datetime.now(timezone.utc)
    tenant = Tenant(
        company_name="Probe",
        billing_status=status,
        trial_ends_at=now + trial_delta if trial_delta else None,
        subscription_ends_at=now + ends_delta if ends_delta else None,
    )
    assert has_subscription_ended(tenant, now) is ended


def test_ensure_billing_access_honours_developer_mode(monkeypatch):
    from wellovis.core.config import settings

    tenant = Tenant(company_name="Probe", billing_status=BillingStatus.PENDING)
    with pytest.raises(PaymentRequiredError):
        ensure_billing_access(tenant)

    monkeypatch.setattr(settings, "developer_mode", True)
    ensure_billing_access(tenant)


def test_ended_subscription_blocks_api(client, db, tenant, headers):
    tenant.billing_status = BillingStatus.CANCELED
    tenant.subscription_ends_at = datetime.now(timezone.utc) - timedelta(days=1)
    db.commit()

    blocked = client.get("/api/v1/appointments", headers=headers)
    assert blocked.status_code == 402
    assert blocked.json() == {"detail": "Subscription has ended"}

    profile = client.get("/api/v1/tenant", headers=headers)
    assert profile.status_code == 200
    assert profile.json()["tenant"]["billing_status"] == "CANCELED"


def test_inactive_tenant_is_rejected(client, db, tenant, headers):
    tenant.is_active = False
    db.commit()
    assert client.get("/api/v1/tenant", headers=headers).status_code == 403


def test_registration_endpoints(client, db):
    created = client.post(
        "/api/v1/registrations",
        json={"company_name": "Harbour Wellness", "admin_email": "admin@harbour.example", "seats": 2},
    )
    assert created.status_code == 201
    body = created.json()
    assert db.get(PendingRegistration, UUID(body["registration_id"])) is not None

    status = client.get(
        "/api/v1/tenant-creation/status", params={"registration_uuid": body["registration_id"]}
    )
    assert status.json()["tenant_id"] == body["tenant_id"]
    assert status.json()["is_complete"] is False

    missing = client.get("/api/v1/tenant-creation/status")
    assert missing.status_code == 400
    assert missing.json()["error"] == "Missing tenant_id or registration_uuid"
