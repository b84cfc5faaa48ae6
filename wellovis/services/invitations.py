"""Portal invitations for patients and practitioners."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from wellovis.core.config import settings
from wellovis.core.exceptions import ConflictError, DomainError, NotFoundError
from wellovis.models import (
    ConsentEntityType,
    Invitation,
    InvitationKind,
    InvitationStatus,
    Patient,
    Practitioner,
    Tenant,
)
from wellovis.services.consents import trigger_consents_for_entity
from wellovis.services.notifications import notify
from wellovis.services.scheduling import ensure_utc

logger = logging.getLogger(__name__)

REACTIVATION_WINDOW = timedelta(days=1)
TEMPLATES = {
    InvitationKind.PATIENT: "patient_invitation",
    InvitationKind.PRACTITIONER: "practitioner_invitation",
}


def _new_token() -> str:
    return secrets.token_hex(32)


def _send(db: Session, tenant: Tenant, invitation: Invitation) -> None:
    notify(
        db,
        tenant_id=tenant.id,
        to=invitation.email,
        template=TEMPLATES[invitation.kind],
        context={
            "clinic_name": tenant.company_name,
            "expires_at": ensure_utc(invitation.expires_at).date().isoformat(),
            "accept_url": f"/invitations/accept/{invitation.token}",
        },
    )


def _refresh(invitation: Invitation, now: datetime) -> None:
    invitation.status = InvitationStatus.PENDING
    invitation.token = _new_token()
    invitation.expires_at = now + timedelta(days=settings.invitation_ttl_days)
    invitation.sent_at = now


def create_invitation(
    db: Session,
    tenant: Tenant,
    kind: InvitationKind,
    email: str,
    patient: Patient | None = None,
    practitioner: Practitioner | None = None,
) -> Invitation:
    """Invite a patient or practitioner by email.

    A pending invitation that lapsed less than a day ago is sent again with a
    new token instead of creating a second row.
    """

    email = email.strip().lower()
    if not email:
        raise DomainError("Email is required")
    if kind == InvitationKind.PATIENT and patient is None:
        raise DomainError("Patient invitations need a patient")
    if kind == InvitationKind.PRACTITIONER and practitioner is None:
        raise DomainError("Practitioner invitations need a practitioner")

    now = datetime.now(timezone.utc)
    pending = db.execute(
        select(Invitation)
        .where(
            Invitation.tenant_id == tenant.id,
            Invitation.email == email,
            Invitation.kind == kind,
            Invitation.status == InvitationStatus.PENDING,
        )
        .order_by(Invitation.created_at.desc())
    ).scalars().first()

    if pending is not None:
        expires_at = ensure_utc(pending.expires_at)
        if expires_at > now:
            raise ConflictError("An invitation is already pending for this email")
        if now - expires_at <= REACTIVATION_WINDOW:
            _refresh(pending, now)
            db.flush()
            logger.info("invitation reactivated", extra={"invitation_id": str(pending.id)})
            _send(db, tenant, pending)
            return pending
        pending.status = InvitationStatus.EXPIRED

    invitation = Invitation(
        tenant_id=tenant.id,
        kind=kind,
        patient_id=patient.id if patient else None,
        practitioner_id=practitioner.id if practitioner else None,
        email=email,
        token=_new_token(),
        status=InvitationStatus.PENDING,
        sent_at=now,
        expires_at=now + timedelta(days=settings.invitation_ttl_days),
    )
    db.add(invitation)
    db.flush()
    logger.info(
        "invitation created",
        extra={"invitation_id": str(invitation.id), "kind": kind.value},
    )
    _send(db, tenant, invitation)
    return invitation


def resend_invitation(db: Session, tenant: Tenant, invitation: Invitation) -> Invitation:
    if invitation.status == InvitationStatus.ACCEPTED:
        raise ConflictError("Invitation has already been accepted")
    _refresh(invitation, datetime.now(timezone.utc))
    db.flush()
    _send(db, tenant, invitation)
    return invitation


def accept_invitation(db: Session, token: str, now: datetime | None = None) -> Invitation:
    """Accept an invitation and send the consents due on account creation.

    An overdue invitation is marked EXPIRED before the conflict is raised;
    callers commit that change.
    """

    now = now or datetime.now(timezone.utc)
    invitation = db.execute(
        select(Invitation).where(Invitation.token == token).with_for_update()
    ).scalars().first()
    if invitation is None:
        raise NotFoundError("Invitation not found")
    if invitation.status == InvitationStatus.ACCEPTED:
        raise ConflictError("Invitation has already been accepted")
    if invitation.status == InvitationStatus.EXPIRED or ensure_utc(invitation.expires_at) < now:
        invitation.status = InvitationStatus.EXPIRED
        db.flush()
        raise ConflictError("Invitation expired")

    invitation.status = InvitationStatus.ACCEPTED
    invitation.accepted_at = now
    db.flush()

    tenant = db.get(Tenant, invitation.tenant_id)
    if invitation.kind == InvitationKind.PATIENT and invitation.patient_id:
        trigger_consents_for_entity(
            db,
            tenant,
            ConsentEntityType.PATIENT,
            "creation",
            invitation.patient_id,
            invitation.email,
        )
    elif invitation.kind == InvitationKind.PRACTITIONER and invitation.practitioner_id:
        trigger_consents_for_entity(
            db,
            tenant,
            ConsentEntityType.PRACTITIONER,
            "creation",
            invitation.practitioner_id,
            invitation.email,
        )
    logger.info("invitation accepted", extra={"invitation_id": str(invitation.id)})
    return invitation


def expire_stale_invitations(db: Session, now: datetime | None = None) -> int:
    now = now or datetime.now(timezone.utc)
    stale = db.execute(
        select(Invitation).where(
            Invitation.status == InvitationStatus.PENDING,
            Invitation.expires_at < now,
        )
    ).scalars().all()
    for invitation in stale:
        invitation.status = InvitationStatus.EXPIRED
    db.flush()
    if stale:
        logger.info("stale invitations expired", extra={"count": len(stale)})
    return len(stale)


def _is_expired(invitation: Invitation, now: datetime) -> bool:
    return ensure_utc(invitation.expires_at) < now


def _sent_at(invitation: Invitation) -> datetime:
    return ensure_utc(invitation.sent_at or invitation.created_at)


def serialize_invitation(invitation: Invitation, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    return {
        "id": str(invitation.id),
        "kind": invitation.kind.value,
        "patient_id": str(invitation.patient_id) if invitation.patient_id else None,
        "practitioner_id": str(invitation.practitioner_id)
        if invitation.practitioner_id
        else None,
        "email": invitation.email,
        "status": invitation.status.value,
        "is_expired": _is_expired(invitation, now),
        "sent_at": _sent_at(invitation).isoformat(),
        "expires_at": ensure_utc(invitation.expires_at).isoformat(),
        "accepted_at": ensure_utc(invitation.accepted_at).isoformat()
        if invitation.accepted_at
        else None,
    }


def group_invitations_by_patient(
    rows: Iterable[Invitation], now: datetime | None = None
) -> list[dict[str, Any]]:
    """Group invitations per patient for the invitations table."""

    now = now or datetime.now(timezone.utc)
    groups: dict[str, dict[str, Any]] = {}
    latest: dict[str, datetime] = {}

    for invitation in rows:
        key = str(invitation.patient_id)
        expired = _is_expired(invitation, now)
        sent_at = _sent_at(invitation)
        group = groups.get(key)
        if group is None:
            group = groups[key] = {
                "patient_id": key,
                "email": invitation.email,
                "total_invitations": 0,
                "pending_count": 0,
                "accepted_count": 0,
                "expired_count": 0,
                "latest_invitation_date": None,
                "latest_status": None,
                "invitations": [],
            }

        group["invitations"].append(serialize_invitation(invitation, now))
        group["total_invitations"] += 1
        if invitation.status == InvitationStatus.PENDING and not expired:
            group["pending_count"] += 1
        elif invitation.status == InvitationStatus.ACCEPTED:
            group["accepted_count"] += 1
        elif invitation.status == InvitationStatus.EXPIRED or expired:
            group["expired_count"] += 1

        if key not in latest or sent_at > latest[key]:
            latest[key] = sent_at
            group["latest_invitation_date"] = sent_at.isoformat()
            group["latest_status"] = (
                InvitationStatus.EXPIRED.value if expired else invitation.status.value
            )

    for group in groups.values():
        group["invitations"].sort(key=lambda item: item["sent_at"], reverse=True)
    return sorted(groups.values(), key=lambda item: latest[item["patient_id"]], reverse=True)
