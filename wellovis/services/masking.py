"""Privacy masking for patient search results."""

from __future__ import annotations

import re
from datetime import date
from typing import Any

from wellovis.models import Patient

NOT_AVAILABLE = "N/A"


def mask_string(value: str | None, first: int = 1, last: int = 1) -> str:
    if not value:
        return NOT_AVAILABLE
    length = len(value)
    if length <= first + last:
        return "*" * length
    return value[:first] + "*" * max(1, length - first - last) + value[length - last :]


def mask_email(email: str | None) -> str:
    if not email:
        return NOT_AVAILABLE
    local, sep, domain = email.partition("@")
    if not sep:
        return mask_string(email)
    if len(local) <= 3:
        return "*" * len(local) + "@" + domain
    return local[:3] + "*" * (len(local) - 3) + "@" + domain


def mask_health_number(value: str | None) -> str:
    if not value:
        return NOT_AVAILABLE
    if len(value) <= 4:
        return "*" * len(value)
    return value[:4] + "*" * (len(value) - 4)


def mask_phone_number(value: str | None) -> str:
    if not value:
        return NOT_AVAILABLE
    digits = re.sub(r"\D", "", value)
    if len(digits) <= 4:
        return "*" * len(digits)
    return "*" * (len(digits) - 4) + digits[-4:]


def mask_date(value: date | str | None) -> str:
    """Show the year only, e.g. ``1990-**-**``."""

    if not value:
        return NOT_AVAILABLE
    year = value.strftime("%Y") if isinstance(value, date) else str(value)[:4]
    return f"{year}-**-**"


def masked_patient(patient: Patient) -> dict[str, Any]:
    first = mask_string(patient.first_name)
    last = mask_string(patient.last_name)
    preferred = mask_string(patient.preferred_name) if patient.preferred_name else None
    return {
        "id": str(patient.id),
        "first_name": first,
        "last_name": last,
        "preferred_name": preferred,
        "display_name": preferred or f"{first} {last}",
        "email": mask_email(patient.email),
        "health_number": mask_health_number(patient.health_number),
        "phone_number": mask_phone_number(patient.phone_number),
        "date_of_birth": mask_date(patient.date_of_birth) if patient.date_of_birth else None,
        "gender_pronouns": patient.gender_pronouns,
    }
