from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from wellovis.core.exceptions import ConflictError, DomainError, NotFoundError
from wellovis.models import Invitation, InvitationKind, InvitationStatus, MessageLog
from wellovis.services.invitations import (
    accept_invitation,
    create_invitation,
    expire_stale_invitations,
    group_invitations_by_patient,
    resend_invitation,
)
from wellovis.services.patients import create_patient


def _invite(db, tenant, patient, email="maria.silva@example.com"):
    return create_invitation(db, tenant, InvitationKind.PATIENT, email, patient=patient)


def test_create_invitation_sends_email(db, tenant, patient):
    invitation = _invite(db, tenant, patient, email="  Maria.Silva@Example.com ")

    assert invitation.email == "maria.silva@example.com"
    assert invitation.status == InvitationStatus.PENDING
    assert len(invitation.token) == 64
    log = db.execute(select(MessageLog)).scalars().one()
    assert log.template == "patient_invitation"
    assert log.status == "sent"


def test_pending_invitation_blocks_duplicates(db, tenant, patient):
    _invite(db, tenant, patient)
    with pytest.raises(ConflictError, match="already pending"):
        _invite(db, tenant, patient)


def test_invitation_requires_target(db, tenant):
    with pytest.raises(DomainError, match="need a practitioner"):
        create_invitation(db, tenant, InvitationKind.PRACTITIONER, "x@example.com")


def test_recently_lapsed_invitation_is_reactivated(db, tenant, patient):
    invitation = _invite(db, tenant, patient)
    old_token = invitation.token
    invitation.expires_at = datetime.now(timezone.utc) - timedelta(hours=2)
    db.flush()

    again = _invite(db, tenant, patient)

    assert again.id == invitation.id
    assert again.token != old_token
    assert again.expires_at > datetime.now(timezone.utc)


def test_long_lapsed_invitation_is_replaced(db, tenant, patient):
    invitation = _invite(db, tenant, patient)
    invitation.expires_at = datetime.now(timezone.utc) - timedelta(days=2)
    db.flush()

    replacement = _invite(db, tenant, patient)

    assert replacement.id != invitation.id
    assert invitation.status == InvitationStatus.EXPIRED


def test_accept_invitation(db, tenant, patient):
    invitation = _invite(db, tenant, patient)

    accepted = accept_invitation(db, invitation.token)
    assert accepted.status == InvitationStatus.ACCEPTED
    assert accepted.accepted_at is not None

    with pytest.raises(ConflictError, match="already been accepted"):
        accept_invitation(db, invitation.token)
    with pytest.raises(ConflictError, match="already been accepted"):
        resend_invitation(db, tenant, invitation)


def test_accepting_overdue_invitation_marks_it_expired(db, tenant, patient):
    invitation = _invite(db, tenant, patient)
    later = datetime.now(timezone.utc) + timedelta(days=8)

    with pytest.raises(ConflictError, match="expired"):
        accept_invitation(db, invitation.token, now=later)
    assert invitation.status == InvitationStatus.EXPIRED


def test_accept_unknown_token(db):
    with pytest.raises(NotFoundError):
        accept_invitation(db, "0" * 64)


def test_expire_stale_invitations(db, tenant, patient):
    _invite(db, tenant, patient)
    assert expire_stale_invitations(db) == 0
    assert expire_stale_invitations(db, now=datetime.now(timezone.utc) + timedelta(days=8)) == 1


def test_group_invitations_by_patient(db, tenant, patient):
    other = create_patient(db, tenant, first_name="Jon", last_name="Park", email="jon@example.com")
    first = _invite(db, tenant, patient)
    accept_invitation(db, first.token)
    _invite(db, tenant, patient)
    _invite(db, tenant, other, email="jon@example.com")

    rows = db.execute(select(Invitation)).scalars().all()
    groups = {group["patient_id"]: group for group in group_invitations_by_patient(rows)}

    maria = groups[str(patient.id)]
    assert maria["total_invitations"] == 2
    assert maria["accepted_count"] == 1
    assert maria["pending_count"] == 1
    assert groups[str(other.id)]["latest_status"] == "PENDING"


def test_invitation_endpoints(client, headers, db, patient):
    created = client.post(
        "/api/v1/invitations",
        json={"kind": "PATIENT", "email": patient.email, "patient_id": str(patient.id)},
        headers=headers,
    )
    assert created.status_code == 201

    duplicate = client.post(
        "/api/v1/invitations",
        json={"kind": "PATIENT", "email": patient.email, "patient_id": str(patient.id)},
        headers=headers,
    )
    assert duplicate.status_code == 409

    grouped = client.get("/api/v1/invitations/grouped", headers=headers).json()
    assert grouped["groups"][0]["pending_count"] == 1

    invitation = db.execute(select(Invitation)).scalars().one()
    accepted = client.post(f"/api/v1/invitations/accept/{invitation.token}")
    assert accepted.status_code == 200
    assert accepted.json()["invitation"]["status"] == "ACCEPTED"

    assert client.post("/api/v1/invitations/accept/short").status_code == 404


def test_expired_acceptance_is_persisted(client, headers, db, patient, tenant):
    invitation = _invite(db, tenant, patient)
    invitation.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    db.commit()

    response = client.post(f"/api/v1/invitations/accept/{invitation.token}")

    assert response.status_code == 409
    assert response.json() == {"detail": "Invitation expired"}
    db.refresh(invitation)
    assert invitation.status == InvitationStatus.EXPIRED
