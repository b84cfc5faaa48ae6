from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from wellovis.core.exceptions import ConflictError
from wellovis.models import AppointmentOrigin, PractitionerRating
from wellovis.services.feedback import (
    can_edit_feedback,
    distribute_rating,
    practitioner_stats,
    store_feedback,
)
from wellovis.services.patients import create_practitioner
from wellovis.services.scheduling import book_slot, link_practitioners


@pytest.fixture
def shared_appointment(
    db, tenant, practitioner, second_practitioner, patient, service, make_slot, tomorrow_at
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
    link_practitioners(db, appointment, [second_practitioner.id], primary_id=practitioner.id)
    return appointment


def _points(distribution):
    return {item["practitioner_id"]: item["rating_points"] for item in distribution}


def test_lead_practitioner_gets_larger_share(db, tenant, practitioner, second_practitioner):
    third = create_practitioner(
        db, tenant, first_name="Chloe", last_name="Roy", email="chloe@maple.example"
    )
    team = [practitioner, second_practitioner, third]

    result = distribute_rating(5, team, lead_id=practitioner.id)

    points = _points(result)
    assert points[practitioner.id] == Decimal("2.22")
    assert points[second_practitioner.id] == Decimal("1.39")
    assert points[third.id] == Decimal("1.39")
    lead = next(item for item in result if item["is_lead_practitioner"])
    assert lead["rating_percentage"] == Decimal("44.40")


def test_lead_and_called_out_bonuses(practitioner, second_practitioner):
    result = distribute_rating(
        4,
        [practitioner, second_practitioner],
        lead_id=practitioner.id,
        called_out_id=second_practitioner.id,
    )
    points = _points(result)
    assert points[practitioner.id] == Decimal("2.15")
    assert points[second_practitioner.id] == Decimal("1.85")


def test_called_out_lead_only_gets_lead_bonus(practitioner, second_practitioner):
    result = distribute_rating(
        5,
        [practitioner, second_practitioner],
        lead_id=practitioner.id,
        called_out_id=practitioner.id,
    )
    assert [item["is_called_out"] for item in result] == [False, False]
    assert _points(result)[practitioner.id] == Decimal("2.92")


def test_distribute_rating_without_practitioners():
    assert distribute_rating(5, []) == []


def test_store_feedback_writes_ratings(db, shared_appointment, patient, practitioner):
    feedback = store_feedback(
        db,
        shared_appointment,
        patient.id,
        {"visit_rating": 5, "visit_led_by_id": practitioner.id, "additional_feedback": "Great"},
    )

    assert feedback.visit_rating == 5
    ratings = db.execute(select(PractitionerRating)).scalars().all()
    assert len(ratings) == 2
    assert sum(rating.rating_points for rating in ratings) == Decimal("5.00")

    store_feedback(db, shared_appointment, patient.id, {"visit_rating": 3})
    assert feedback.last_edited_at is not None
    ratings = db.execute(select(PractitionerRating)).scalars().all()
    assert len(ratings) == 2
    assert {rating.rating_points for rating in ratings} == {Decimal("1.50")}


def test_feedback_edit_window(db, shared_appointment, patient):
    feedback = store_feedback(db, shared_appointment, patient.id, {"visit_rating": 4})
    feedback.submitted_at = datetime.now(timezone.utc) - timedelta(days=8)
    db.flush()

    assert can_edit_feedback(db, shared_appointment.id)["can_edit"] is False
    with pytest.raises(ConflictError, match="no longer be edited"):
        store_feedback(db, shared_appointment, patient.id, {"visit_rating": 2})


def test_practitioner_stats(db, shared_appointment, patient, practitioner):
    assert practitioner_stats(db, practitioner.id)["total_ratings"] == 0

    store_feedback(db, shared_appointment, patient.id, {"visit_rating": 5})
    stats = practitioner_stats(db, practitioner.id)

    assert stats["average_rating"] == 2.5
    assert stats["rating_distribution"][3] == 1
    assert stats["total_appointments"] == 1
    assert stats["lead_count"] == 0


def test_feedback_endpoints(client, headers, shared_appointment, practitioner, second_practitioner):
    before = client.get(f"/api/v1/appointments/{shared_appointment.id}/feedback", headers=headers)
    assert before.json() == {"exists": False, "can_edit": True, "feedback": None}

    submitted = client.post(
        f"/api/v1/appointments/{shared_appointment.id}/feedback",
        json={"visit_rating": 4, "call_out_person_id": str(second_practitioner.id)},
        headers=headers,
    )
    assert submitted.status_code == 200
    assert submitted.json()["feedback"]["visit_rating"] == 4

    invalid = client.post(
        f"/api/v1/appointments/{shared_appointment.id}/feedback",
        json={"visit_rating": 6},
        headers=headers,
    )
    assert invalid.status_code == 422

    stats = client.get(
        f"/api/v1/practitioners/{second_practitioner.id}/rating-stats", headers=headers
    ).json()
    assert stats["called_out_count"] == 1
