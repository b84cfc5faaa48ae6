"""Clinic registration, provisioning and subscription access."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

import redis
from cryptography.fernet import InvalidToken
from sqlalchemy import select
from sqlalchemy.orm import Session

from wellovis.core.config import settings
from wellovis.core.crypto import blind_index, field_cipher
from wellovis.core.exceptions import ConflictError, DomainError, NotFoundError, PaymentRequiredError
from wellovis.models import BillingStatus, PendingRegistration, Tenant
from wellovis.services import provisioning_state
from wellovis.services.licenses import sync_licenses_to_seats
from wellovis.services.notifications import notify
from wellovis.services.provisioning_state import ProvisioningStep
from wellovis.services.scheduling import ensure_utc
from wellovis.services.wallet import get_system_wallet

logger = logging.getLogger(__name__)

REGISTRATION_TTL = timedelta(hours=24)
COMPANY_NAME_CONTEXT = "company_name"


def create_pending_registration(
    db: Session,
    *,
    company_name: str,
    admin_email: str,
    domain: str | None = None,
    plan: str | None = None,
    seats: int = 1,
) -> PendingRegistration:
    """Capture a clinic sign-up ahead of checkout.

    The tenant id is allocated now so the checkout session and the status page
    can refer to it before the tenant exists.
    """

    company_name = company_name.strip()
    if not company_name:
        raise DomainError("Company name is required")
    if seats < 1:
        raise DomainError("At least one seat is required")
    company_key = blind_index(company_name, context=COMPANY_NAME_CONTEXT)
    taken = db.execute(select(Tenant.id).where(Tenant.company_name == company_name)).first()
    pending = db.execute(
        select(PendingRegistration.id).where(
            PendingRegistration.company_key == company_key,
            PendingRegistration.tenant_id.is_(None),
            PendingRegistration.expires_at > datetime.now(timezone.utc),
        )
    ).first()
    if taken or pending:
        raise ConflictError("Company name is already registered")

    payload = {
        "tenant_id": str(uuid.uuid4()),
        "company_name": company_name,
        "admin_email": admin_email.strip().lower(),
        "domain": domain,
        "plan": plan,
        "seats": seats,
    }
    registration = PendingRegistration(
        encrypted_token=field_cipher.encrypt(json.dumps(payload)),
        company_key=company_key,
        expires_at=datetime.now(timezone.utc) + REGISTRATION_TTL,
    )
    db.add(registration)
    db.flush()
    logger.info(
        "pending registration created",
        extra={"registration_id": str(registration.id), "seats": seats},
    )
    return registration


def read_registration_payload(
    registration: PendingRegistration, now: datetime | None = None
) -> dict[str, Any] | None:
    """Decrypt a registration payload, or ``None`` if it is invalid or expired."""

    now = now or datetime.now(timezone.utc)
    if ensure_utc(registration.expires_at) < now:
        return None
    try:
        raw = field_cipher.decrypt(registration.encrypted_token)
    except InvalidToken:
        logger.warning(
            "registration token could not be decrypted",
            extra={"registration_id": str(registration.id)},
        )
        return None
    return json.loads(raw)


def record_progress(
    registration_id: UUID,
    step: ProvisioningStep,
    *,
    tenant_id: UUID | None = None,
    error: str | None = None,
) -> None:
    try:
        provisioning_state.set_progress(registration_id, step, tenant_id=tenant_id, error=error)
    except redis.RedisError as exc:
        logger.warning(
            "unable to record provisioning progress",
            extra={"registration_id": str(registration_id), "step": step.value, "error": str(exc)},
        )


def provision_tenant(
    db: Session,
    registration_id: UUID,
    stripe_customer_id: str | None = None,
    stripe_subscription_id: str | None = None,
) -> Tenant:
    """Create the tenant for a paid registration, resuming if interrupted.

    Steps are recorded as ``queued -> tenant -> wallet -> licenses -> complete``.
    A tenant whose creation already completed is returned unchanged.
    """

    registration = db.get(PendingRegistration, registration_id)
    if registration is None:
        raise NotFoundError("Registration not found")

    if registration.tenant_id is not None:
        existing = db.get(Tenant, registration.tenant_id)
        if existing is not None and existing.is_creation_complete:
            logger.info(
                "tenant already provisioned",
                extra={"registration_id": str(registration_id), "target_tenant": str(existing.id)},
            )
            return existing

    payload = read_registration_payload(registration)
    if payload is None:
        record_progress(registration_id, ProvisioningStep.FAILED, error="Registration expired")
        raise DomainError("Registration is expired or invalid")

    tenant_id = UUID(payload["tenant_id"])
    tenant = db.get(Tenant, tenant_id)
    if tenant is not None and tenant.is_creation_complete:
        return tenant

    now = datetime.now(timezone.utc)
    if tenant is None:
        clash = db.execute(
            select(Tenant.id).where(Tenant.company_name == payload["company_name"])
        ).first()
        if clash:
            record_progress(
                registration_id, ProvisioningStep.FAILED, error="Company name is already registered"
            )
            raise ConflictError("Company name is already registered")
        tenant = Tenant(
            id=tenant_id,
            company_name=payload["company_name"],
            domain=payload.get("domain"),
            admin_email=payload.get("admin_email"),
            timezone=settings.timezone,
            number_of_seats=int(payload.get("seats") or 0),
            billing_status=BillingStatus.TRIALING,
            trial_ends_at=now + timedelta(days=settings.trial_days),
        )
        db.add(tenant)
    tenant.stripe_customer_id = stripe_customer_id or tenant.stripe_customer_id
    tenant.stripe_subscription_id = stripe_subscription_id or tenant.stripe_subscription_id
    registration.tenant_id = tenant_id
    db.flush()
    record_progress(registration_id, ProvisioningStep.TENANT, tenant_id=tenant_id)

    get_system_wallet(db, tenant.id)
    record_progress(registration_id, ProvisioningStep.WALLET, tenant_id=tenant_id)

    sync_licenses_to_seats(db, tenant)
    record_progress(registration_id, ProvisioningStep.LICENSES, tenant_id=tenant_id)

    tenant.is_creation_complete = True
    db.flush()
    record_progress(registration_id, ProvisioningStep.COMPLETE, tenant_id=tenant_id)

    logger.info(
        "tenant provisioned",
        extra={
            "registration_id": str(registration_id),
            "target_tenant": str(tenant.id),
            "seats": tenant.number_of_seats,
        },
    )
    notify(
        db,
        tenant_id=tenant.id,
        to=tenant.admin_email,
        template="tenant_welcome",
        context={
            "clinic_name": tenant.company_name,
            "trial_ends_at": ensure_utc(tenant.trial_ends_at).date().isoformat()
            if tenant.trial_ends_at
            else "",
        },
    )
    return tenant


def _parse_uuid(value: str | UUID | None) -> UUID | None:
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def tenant_creation_status(
    db: Session,
    tenant_id: str | UUID | None = None,
    registration_uuid: str | UUID | None = None,
) -> dict[str, Any]:
    """Answer the sign-up status page while provisioning runs."""

    if not tenant_id and not registration_uuid:
        raise DomainError("Missing tenant_id or registration_uuid")

    resolved = _parse_uuid(tenant_id)
    registration_id = _parse_uuid(registration_uuid)
    if resolved is None and registration_id is not None:
        registration = db.get(PendingRegistration, registration_id)
        if registration is not None:
            if registration.tenant_id is not None:
                resolved = registration.tenant_id
            else:
                payload = read_registration_payload(registration)
                if payload:
                    resolved = _parse_uuid(payload.get("tenant_id"))

    if resolved is None:
        logger.warning(
            "tenant id not found for status request",
            extra={"registration_id": str(registration_uuid)},
        )
        return {"is_complete": False, "tenant_id": None, "error": "Tenant not found"}

    result: dict[str, Any] = {"is_complete": False, "tenant_id": str(resolved)}
    if registration_id is not None:
        try:
            progress = provisioning_state.get_progress(registration_id)
        except redis.RedisError as exc:
            logger.warning("provisioning progress unavailable", extra={"error": str(exc)})
            progress = None
        if progress:
            result["step"] = progress.get("step")

    tenant = db.get(Tenant, resolved)
    if tenant is None:
        result["error"] = "Tenant does not exist yet"
        return result

    result["is_complete"] = bool(tenant.is_creation_complete)
    if result["is_complete"] and registration_id is not None:
        # The tenant row is authoritative from here on.
        result["step"] = provisioning_state.ProvisioningStep.COMPLETE.value
        try:
            provisioning_state.clear_progress(registration_id)
        except redis.RedisError as exc:
            logger.warning("provisioning progress not cleared", extra={"error": str(exc)})
    return result


def has_subscription_ended(tenant: Tenant, now: datetime | None = None) -> bool:
    now = now or datetime.now(timezone.utc)
    status = tenant.billing_status
    if status == BillingStatus.PENDING:
        return True
    if status == BillingStatus.CANCELED:
        return tenant.subscription_ends_at is None or ensure_utc(tenant.subscription_ends_at) <= now
    if status == BillingStatus.TRIALING:
        return tenant.trial_ends_at is not None and ensure_utc(tenant.trial_ends_at) <= now
    return False


def ensure_billing_access(tenant: Tenant, now: datetime | None = None) -> None:
    """Raise ``PaymentRequiredError`` when the tenant may no longer use the app."""

    if settings.developer_mode:
        return
    if has_subscription_ended(tenant, now):
        logger.info(
            "billing access blocked",
            extra={"billing_status": tenant.billing_status.value},
        )
        raise PaymentRequiredError("Subscription has ended")


def tenant_by_stripe_customer(db: Session, customer_id: str | None) -> Tenant | None:
    if not customer_id:
        return None
    return db.execute(
        select(Tenant).where(Tenant.stripe_customer_id == customer_id)
    ).scalars().first()


def serialize_tenant(tenant: Tenant) -> dict[str, Any]:
    return {
        "id": str(tenant.id),
        "company_name": tenant.company_name,
        "domain": tenant.domain,
        "timezone": tenant.timezone,
        "billing_status": tenant.billing_status.value,
        "number_of_seats": tenant.number_of_seats,
        "is_creation_complete": tenant.is_creation_complete,
        "trial_ends_at": ensure_utc(tenant.trial_ends_at).isoformat()
        if tenant.trial_ends_at
        else None,
        "subscription_ends_at": ensure_utc(tenant.subscription_ends_at).isoformat()
        if tenant.subscription_ends_at
        else None,
    }
