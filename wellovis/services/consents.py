"""Consent documents and their acceptance by patients, practitioners and users."""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from wellovis.core.exceptions import ConflictError, DomainError
from wellovis.models import Consent, ConsentEntityType, EntityConsent, Tenant
from wellovis.services.notifications import notify
from wellovis.services.scheduling import ensure_utc

logger = logging.getLogger(__name__)

TRIGGER_EVENTS = ("creation", "appointment_creation")


def create_consent(
    db: Session,
    tenant: Tenant,
    *,
    key: str,
    title: str,
    entity_type: ConsentEntityType,
    trigger_events: list[str],
    body: str | None = None,
    is_required: bool = True,
    version: int = 1,
) -> Consent:
    unknown = [event for event in trigger_events if event not in TRIGGER_EVENTS]
    if unknown:
        raise DomainError(f"Unknown trigger events: {', '.join(unknown)}")
    existing = db.execute(
        select(Consent.id).where(Consent.tenant_id == tenant.id, Consent.key == key)
    ).first()
    if existing:
        raise ConflictError("A consent with this key already exists")

    consent = Consent(
        tenant_id=tenant.id,
        key=key,
        title=title,
        body=body,
        entity_type=entity_type,
        trigger_events=list(trigger_events),
        is_required=is_required,
        version=version,
    )
    db.add(consent)
    db.flush()
    return consent


def triggered_consents(
    db: Session, tenant: Tenant, entity_type: ConsentEntityType, event: str
) -> list[Consent]:
    consents = db.execute(
        select(Consent)
        .where(Consent.tenant_id == tenant.id, Consent.entity_type == entity_type)
        .order_by(Consent.created_at)
    ).scalars().all()
    return [consent for consent in consents if event in (consent.trigger_events or [])]


def has_accepted(
    db: Session, consent: Consent, entity_type: ConsentEntityType, entity_id: UUID
) -> bool:
    """Return whether the entity accepted the current version of ``consent``."""

    row = db.execute(
        select(EntityConsent.id).where(
            EntityConsent.consent_id == consent.id,
            EntityConsent.entity_type == entity_type,
            EntityConsent.entity_id == entity_id,
            EntityConsent.consent_version == consent.version,
        )
    ).first()
    return row is not None


def pending_consents(
    db: Session,
    tenant: Tenant,
    entity_type: ConsentEntityType,
    event: str,
    entity_id: UUID,
) -> list[Consent]:
    return [
        consent
        for consent in triggered_consents(db, tenant, entity_type, event)
        if not has_accepted(db, consent, entity_type, entity_id)
    ]


def _send_batch(
    db: Session,
    tenant: Tenant,
    consents: list[Consent],
    email: str | None,
    event: str,
) -> None:
    notify(
        db,
        tenant_id=tenant.id,
        to=email,
        template="consent_batch",
        context={
            "count": len(consents),
            "consent_titles": ", ".join(consent.title for consent in consents),
            "event": event,
        },
    )


def trigger_consents_for_entity(
    db: Session,
    tenant: Tenant,
    entity_type: ConsentEntityType,
    event: str,
    entity_id: UUID,
    email: str | None,
) -> list[str]:
    """Email the consents the entity still has to accept for ``event``."""

    pending = pending_consents(db, tenant, entity_type, event, entity_id)
    logger.info(
        "consents triggered",
        extra={
            "entity_type": entity_type.value,
            "event": event,
            "pending_keys": [consent.key for consent in pending],
        },
    )
    if pending:
        _send_batch(db, tenant, pending, email, event)
    return [consent.key for consent in pending]


def trigger_consents_with_fallback(
    db: Session,
    tenant: Tenant,
    entity_type: ConsentEntityType,
    event: str,
    entity_id: UUID,
    email: str | None,
    fallback_event: str | None = None,
) -> list[str]:
    """Like ``trigger_consents_for_entity`` but also sends ``fallback_event`` consents.

    A patient booking their first appointment has usually not accepted the
    creation consents yet; those are bundled into the same email.
    """

    pending = pending_consents(db, tenant, entity_type, event, entity_id)

    if fallback_event:
        fallback = triggered_consents(db, tenant, entity_type, fallback_event)
        all_required_accepted = all(
            has_accepted(db, consent, entity_type, entity_id)
            for consent in fallback
            if consent.is_required
        )
        if not all_required_accepted:
            seen = {consent.id for consent in pending}
            for consent in fallback:
                if consent.id in seen or has_accepted(db, consent, entity_type, entity_id):
                    continue
                pending.append(consent)
                seen.add(consent.id)

    logger.info(
        "consents triggered with fallback",
        extra={
            "entity_type": entity_type.value,
            "event": event,
            "fallback_event": fallback_event,
            "pending_keys": [consent.key for consent in pending],
        },
    )
    if pending:
        _send_batch(db, tenant, pending, email, event)
    return [consent.key for consent in pending]


def accept_consent(
    db: Session,
    consent: Consent,
    entity_type: ConsentEntityType,
    entity_id: UUID,
    ip_address: str | None = None,
) -> EntityConsent:
    if consent.entity_type != entity_type:
        raise DomainError("Consent does not apply to this entity type")

    existing = db.execute(
        select(EntityConsent).where(
            EntityConsent.consent_id == consent.id,
            EntityConsent.entity_type == entity_type,
            EntityConsent.entity_id == entity_id,
            EntityConsent.consent_version == consent.version,
        )
    ).scalars().first()
    if existing is not None:
        return existing

    acceptance = EntityConsent(
        consent_id=consent.id,
        entity_type=entity_type,
        entity_id=entity_id,
        consent_version=consent.version,
        ip_address=ip_address,
    )
    db.add(acceptance)
    db.flush()
    return acceptance


def serialize_consent(consent: Consent) -> dict[str, Any]:
    return {
        "id": str(consent.id),
        "key": consent.key,
        "title": consent.title,
        "body": consent.body,
        "entity_type": consent.entity_type.value,
        "trigger_events": consent.trigger_events or [],
        "is_required": consent.is_required,
        "version": consent.version,
    }


def serialize_acceptance(acceptance: EntityConsent) -> dict[str, Any]:
    return {
        "id": str(acceptance.id),
        "consent_id": str(acceptance.consent_id),
        "entity_type": acceptance.entity_type.value,
        "entity_id": str(acceptance.entity_id),
        "consent_version": acceptance.consent_version,
        "accepted_at": ensure_utc(acceptance.accepted_at).isoformat(),
        "ip_address": acceptance.ip_address,
    }
