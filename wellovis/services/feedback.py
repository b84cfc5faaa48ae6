"""Appointment feedback and how a visit rating is shared between practitioners."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from wellovis.core.exceptions import ConflictError, DomainError
from wellovis.models import Appointment, AppointmentFeedback, Practitioner, PractitionerRating
from wellovis.services.scheduling import appointment_practitioner_ids, ensure_utc

logger = logging.getLogger(__name__)

EDIT_WINDOW = timedelta(days=7)
LEAD_BONUS = Decimal("0.20")
CALLED_OUT_BONUS = Decimal("0.10")
_TWO_PLACES = Decimal("0.01")


def _round2(value: Decimal) -> Decimal:
    return value.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def distribute_rating(
    total: int,
    practitioners: Sequence[Practitioner],
    lead_id: UUID | None = None,
    called_out_id: UUID | None = None,
) -> list[dict[str, Any]]:
    """Split ``total`` stars between the practitioners of a visit.

    Everyone starts with an equal share. The practitioner who led the visit
    gets 20% of the total on top and the one the patient called out gets 10%
    (not both). Shares are then scaled back so they add up to ``total``.
    """

    if not practitioners:
        return []

    total_points = Decimal(total)
    base = total_points / len(practitioners)
    distribution: dict[UUID, dict[str, Any]] = {}
    for practitioner in practitioners:
        distribution[practitioner.id] = {
            "practitioner_id": practitioner.id,
            "practitioner_name": practitioner.full_name,
            "rating_points": base,
            "is_lead_practitioner": False,
            "is_called_out": False,
        }

    if lead_id is not None and lead_id in distribution:
        distribution[lead_id]["rating_points"] += total_points * LEAD_BONUS
        distribution[lead_id]["is_lead_practitioner"] = True
    if called_out_id is not None and called_out_id != lead_id and called_out_id in distribution:
        distribution[called_out_id]["rating_points"] += total_points * CALLED_OUT_BONUS
        distribution[called_out_id]["is_called_out"] = True

    current = sum(item["rating_points"] for item in distribution.values())
    factor = total_points / current if current else Decimal(0)
    for item in distribution.values():
        item["rating_points"] = _round2(item["rating_points"] * factor)
        item["rating_percentage"] = (
            _round2(item["rating_points"] / total_points * 100) if total_points else Decimal("0.00")
        )
    return list(distribution.values())


def _can_edit(feedback: AppointmentFeedback, now: datetime) -> bool:
    return now - ensure_utc(feedback.submitted_at) <= EDIT_WINDOW


def store_feedback(
    db: Session,
    appointment: Appointment,
    patient_id: UUID,
    data: dict[str, Any],
) -> AppointmentFeedback:
    """Save the patient's feedback and replace the per-practitioner ratings."""

    visit_rating = int(data["visit_rating"])
    if not 1 <= visit_rating <= 5:
        raise DomainError("Visit rating must be between 1 and 5")

    practitioner_ids = appointment_practitioner_ids(db, appointment.id)
    if not practitioner_ids:
        raise DomainError("No practitioners found for this appointment")

    now = datetime.now(timezone.utc)
    feedback = db.execute(
        select(AppointmentFeedback).where(AppointmentFeedback.appointment_id == appointment.id)
    ).scalars().first()
    if feedback is None:
        feedback = AppointmentFeedback(appointment_id=appointment.id, submitted_at=now)
        db.add(feedback)
    elif not _can_edit(feedback, now):
        raise ConflictError("Feedback can no longer be edited")
    else:
        feedback.last_edited_at = now

    lead_id = data.get("visit_led_by_id")
    called_out_id = data.get("call_out_person_id")
    feedback.patient_id = patient_id
    feedback.visit_rating = visit_rating
    feedback.visit_led_by_id = lead_id
    feedback.call_out_person_id = called_out_id
    feedback.additional_feedback = data.get("additional_feedback")
    db.flush()

    db.execute(delete(PractitionerRating).where(PractitionerRating.appointment_id == appointment.id))

    practitioners = db.execute(
        select(Practitioner).where(Practitioner.id.in_(practitioner_ids))
    ).scalars().all()
    by_id = {practitioner.id: practitioner for practitioner in practitioners}
    ordered = [by_id[pid] for pid in practitioner_ids if pid in by_id]

    for item in distribute_rating(visit_rating, ordered, lead_id, called_out_id):
        db.add(
            PractitionerRating(
                appointment_id=appointment.id,
                practitioner_id=item["practitioner_id"],
                patient_id=patient_id,
                rating_points=item["rating_points"],
                rating_percentage=item["rating_percentage"],
                is_lead_practitioner=item["is_lead_practitioner"],
                is_called_out=item["is_called_out"],
            )
        )
    db.flush()
    logger.info(
        "appointment feedback stored",
        extra={"appointment_id": str(appointment.id), "visit_rating": visit_rating},
    )
    return feedback


def practitioner_stats(db: Session, practitioner_id: UUID) -> dict[str, Any]:
    ratings = db.execute(
        select(PractitionerRating).where(PractitionerRating.practitioner_id == practitioner_id)
    ).scalars().all()
    distribution = {star: 0 for star in range(1, 6)}
    if not ratings:
        return {
            "average_rating": 0.0,
            "total_ratings": 0,
            "rating_distribution": distribution,
            "lead_count": 0,
            "called_out_count": 0,
            "total_appointments": 0,
        }

    points = [Decimal(rating.rating_points) for rating in ratings]
    for value in points:
        star = int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        if star in distribution:
            distribution[star] += 1
    return {
        "average_rating": float(_round2(sum(points) / len(points))),
        "total_ratings": len(ratings),
        "rating_distribution": distribution,
        "lead_count": sum(1 for rating in ratings if rating.is_lead_practitioner),
        "called_out_count": sum(1 for rating in ratings if rating.is_called_out),
        "total_appointments": len({rating.appointment_id for rating in ratings}),
    }


def serialize_feedback(feedback: AppointmentFeedback) -> dict[str, Any]:
    return {
        "id": str(feedback.id),
        "appointment_id": str(feedback.appointment_id),
        "patient_id": str(feedback.patient_id),
        "visit_rating": feedback.visit_rating,
        "visit_led_by_id": str(feedback.visit_led_by_id) if feedback.visit_led_by_id else None,
        "call_out_person_id": str(feedback.call_out_person_id)
        if feedback.call_out_person_id
        else None,
        "additional_feedback": feedback.additional_feedback,
        "submitted_at": ensure_utc(feedback.submitted_at).isoformat(),
        "last_edited_at": ensure_utc(feedback.last_edited_at).isoformat()
        if feedback.last_edited_at
        else None,
    }


def can_edit_feedback(db: Session, appointment_id: UUID) -> dict[str, Any]:
    feedback = db.execute(
        select(AppointmentFeedback).where(AppointmentFeedback.appointment_id == appointment_id)
    ).scalars().first()
    if feedback is None:
        return {"exists": False, "can_edit": True, "feedback": None}
    return {
        "exists": True,
        "can_edit": _can_edit(feedback, datetime.now(timezone.utc)),
        "feedback": serialize_feedback(feedback),
    }
