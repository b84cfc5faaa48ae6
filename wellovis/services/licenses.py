"""Keep practitioner seat licenses in line with the tenant subscription."""

from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import case, delete, func, select
from sqlalchemy.orm import Session

from wellovis.core.exceptions import ConflictError, NotFoundError
from wellovis.models import License, LicenseStatus, Practitioner, PractitionerLicense, Tenant

logger = logging.getLogger(__name__)

_KEY_ALPHABET = string.ascii_uppercase + string.digits
LIVE_STATUSES = (LicenseStatus.AVAILABLE, LicenseStatus.ASSIGNED)


def generate_license_key() -> str:
    """Return a key shaped like ``LIC-XXXX-XXXX-XXXX``."""

    groups = ("".join(secrets.choice(_KEY_ALPHABET) for _ in range(4)) for _ in range(3))
    return "LIC-" + "-".join(groups)


def _unique_license_key(db: Session) -> str:
    while True:
        key = generate_license_key()
        exists = db.execute(select(License.id).where(License.license_key == key)).first()
        if not exists:
            return key


def _revoke(db: Session, licenses: list[License], now: datetime) -> None:
    ids = [item.id for item in licenses]
    if ids:
        db.execute(delete(PractitionerLicense).where(PractitionerLicense.license_id.in_(ids)))
    for item in licenses:
        item.status = LicenseStatus.REVOKED
        item.revoked_at = now
        item.assigned_at = None


def sync_licenses_to_seats(db: Session, tenant: Tenant) -> dict[str, int]:
    """Create or revoke licenses until the live count equals the seat count.

    When seats shrink, unassigned licenses are revoked before assigned ones,
    oldest first.
    """

    target = tenant.number_of_seats or 0
    now = datetime.now(timezone.utc)
    live = list(
        db.execute(
            select(License)
            .where(License.tenant_id == tenant.id, License.status.in_(LIVE_STATUSES))
            .order_by(
                case((License.status == LicenseStatus.AVAILABLE, 0), else_=1),
                License.created_at,
            )
        ).scalars().all()
    )
    existing = len(live)

    if target <= 0:
        _revoke(db, live, now)
        db.flush()
        logger.info(
            "all licenses revoked, tenant has no seats",
            extra={"licenses_revoked": existing},
        )
        return {"created": 0, "revoked": existing}

    if existing == target:
        return {"created": 0, "revoked": 0}

    if existing < target:
        to_create = target - existing
        for _ in range(to_create):
            db.add(
                License(
                    tenant_id=tenant.id,
                    license_key=_unique_license_key(db),
                    status=LicenseStatus.AVAILABLE,
                )
            )
            db.flush()
        logger.info(
            "licenses created for tenant seats",
            extra={"target_seats": target, "existing_count": existing, "created": to_create},
        )
        return {"created": to_create, "revoked": 0}

    excess = existing - target
    _revoke(db, live[:excess], now)
    db.flush()
    logger.info(
        "excess licenses revoked",
        extra={"target_seats": target, "existing_count": existing, "revoked": excess},
    )
    return {"created": 0, "revoked": excess}


def license_for_practitioner(db: Session, practitioner_id: UUID) -> License | None:
    stmt = (
        select(License)
        .join(PractitionerLicense, PractitionerLicense.license_id == License.id)
        .where(PractitionerLicense.practitioner_id == practitioner_id)
    )
    return db.execute(stmt).scalars().first()


def attach_license(
    db: Session,
    tenant: Tenant,
    practitioner: Practitioner,
    license_id: UUID | None = None,
) -> License:
    if license_for_practitioner(db, practitioner.id) is not None:
        raise ConflictError("Practitioner already holds a license")

    if license_id is not None:
        license_ = db.execute(
            select(License)
            .where(License.id == license_id, License.tenant_id == tenant.id)
            .with_for_update()
        ).scalars().first()
        if license_ is None:
            raise NotFoundError("License not found")
        if license_.status == LicenseStatus.REVOKED:
            raise ConflictError("License has been revoked")
        if license_.status == LicenseStatus.ASSIGNED:
            raise ConflictError("License is already assigned")
    else:
        license_ = db.execute(
            select(License)
            .where(License.tenant_id == tenant.id, License.status == LicenseStatus.AVAILABLE)
            .order_by(License.created_at)
            .limit(1)
            .with_for_update()
        ).scalars().first()
        if license_ is None:
            raise ConflictError("No available license")

    license_.status = LicenseStatus.ASSIGNED
    license_.assigned_at = datetime.now(timezone.utc)
    db.add(PractitionerLicense(practitioner_id=practitioner.id, license_id=license_.id))
    db.flush()
    logger.info(
        "license attached",
        extra={"license_id": str(license_.id), "practitioner_id": str(practitioner.id)},
    )
    return license_


def detach_license(db: Session, tenant: Tenant, practitioner: Practitioner) -> License:
    license_ = license_for_practitioner(db, practitioner.id)
    if license_ is None or license_.tenant_id != tenant.id:
        raise NotFoundError("Practitioner has no license")

    db.execute(
        delete(PractitionerLicense).where(PractitionerLicense.practitioner_id == practitioner.id)
    )
    license_.status = LicenseStatus.AVAILABLE
    license_.assigned_at = None
    db.flush()
    return license_


def license_summary(db: Session, tenant: Tenant) -> dict[str, Any]:
    rows = db.execute(
        select(License.status, func.count(License.id))
        .where(License.tenant_id == tenant.id)
        .group_by(License.status)
    ).all()
    counts = {status.value.lower(): 0 for status in LicenseStatus}
    for status, count in rows:
        counts[status.value.lower()] = int(count)
    return {"seats": tenant.number_of_seats, **counts}


def serialize_license(license_: License) -> dict[str, Any]:
    return {
        "id": str(license_.id),
        "license_key": license_.license_key,
        "status": license_.status.value,
        "assigned_at": license_.assigned_at.isoformat() if license_.assigned_at else None,
        "revoked_at": license_.revoked_at.isoformat() if license_.revoked_at else None,
    }
