from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import select

from wellovis.core.exceptions import ConflictError, DomainError
from wellovis.jobs import tasks
from wellovis.models import (
    Appointment,
    AppointmentOrigin,
    AppointmentStatus,
    MessageLog,
    ScheduleSlot,
    SlotStatus,
    WaitlistEntry,
    WaitlistStatus,
)
from wellovis.services.patients import create_patient
from wellovis.services.scheduling import (
    appointment_practitioner_ids,
    book_slot,
    update_appointment_status,
)
from wellovis.services.waitlist import (
    add_to_waitlist,
    confirm_slot_offer,
    expire_offers,
    get_offer_details,
    process_available_slot,
    time_slot_for,
)


@pytest.fixture
def appointment(db, tenant, practitioner, patient, service, make_slot, tomorrow_at):
    return book_slot(
        db,
        tenant=tenant,
        practitioner=practitioner,
        patient=patient,
        service=service,
        slot=make_slot(practitioner, tomorrow_at(15)),
        origin=AppointmentOrigin.WEB,
    )


@pytest.fixture
def waiting_patients(db, tenant):
    return [
        create_patient(
            db, tenant, first_name=name, last_name="Waiting", email=f"{name.lower()}@example.com"
        )
        for name in ("Ana", "Bruno", "Carla")
    ]


def _local_date(appointment):
    return appointment.scheduled_start.astimezone(ZoneInfo("America/Toronto")).date()


def test_time_slot_for():
    assert time_slot_for(9) == "morning"
    assert time_slot_for(12) == "afternoon"
    assert time_slot_for(18) == "evening"
    assert time_slot_for(3) == "evening"


def test_add_to_waitlist_validates_preferences(db, tenant, patient):
    entry = add_to_waitlist(db, tenant=tenant, patient=patient, preferred_day="Monday")
    assert entry.preferred_day == "monday"
    assert entry.status == WaitlistStatus.WAITING

    with pytest.raises(DomainError, match="preferred day"):
        add_to_waitlist(db, tenant=tenant, patient=patient, preferred_day="someday")
    with pytest.raises(DomainError, match="preferred time"):
        add_to_waitlist(db, tenant=tenant, patient=patient, preferred_time="night")


def test_freed_slot_is_offered_exact_date_first(db, tenant, service, appointment, waiting_patients):
    ana, bruno, carla = waiting_patients
    by_preference = add_to_waitlist(
        db, tenant=tenant, patient=ana, service=service, preferred_time="morning"
    )
    by_date = add_to_waitlist(
        db, tenant=tenant, patient=bruno, original_requested_date=_local_date(appointment)
    )
    unmatched = add_to_waitlist(db, tenant=tenant, patient=carla, preferred_time="evening")

    offered = process_available_slot(db, appointment)

    assert [entry.id for entry in offered] == [by_date.id, by_preference.id]
    assert unmatched.status == WaitlistStatus.WAITING
    for entry in offered:
        assert entry.status == WaitlistStatus.OFFERED
        assert len(entry.acceptance_token) == 32
        assert entry.appointment_id == appointment.id
    logs = db.execute(
        select(MessageLog).where(MessageLog.template == "waitlist_slot_available")
    ).scalars().all()
    assert {log.recipient for log in logs} == {"ana@example.com", "bruno@example.com"}


def test_cancellation_queues_waitlist_processing(
    client, headers, db, tenant, appointment, waiting_patients, queued_jobs
):
    entry = add_to_waitlist(db, tenant=tenant, patient=waiting_patients[0])
    db.commit()

    cancelled = client.patch(
        f"/api/v1/appointments/{appointment.id}", json={"status": "CANCELLED"}, headers=headers
    )

    assert cancelled.status_code == 200
    assert queued_jobs == [("process_waitlist", (str(appointment.id),))]
    assert entry.status == WaitlistStatus.WAITING

    assert tasks.process_waitlist_task(str(appointment.id)) == {
        "appointment_id": str(appointment.id),
        "offered": 1,
    }
    db.expire_all()
    assert entry.status == WaitlistStatus.OFFERED


def test_confirm_offer_books_and_marks_competitors_taken(
    db, tenant, practitioner, appointment, waiting_patients
):
    first = add_to_waitlist(db, tenant=tenant, patient=waiting_patients[0])
    second = add_to_waitlist(db, tenant=tenant, patient=waiting_patients[1])
    update_appointment_status(db, appointment, AppointmentStatus.CANCELLED)
    process_available_slot(db, appointment)

    details = get_offer_details(db, first.acceptance_token)
    assert details["success"] is True
    assert details["original_appointment"].id == appointment.id

    result = confirm_slot_offer(db, first.acceptance_token)

    assert result["message"] == "Appointment confirmed!"
    booked = result["appointment"]
    assert booked.origin == AppointmentOrigin.WAITING_LIST
    assert booked.patient_id == waiting_patients[0].id
    assert booked.parent_appointment_id == appointment.id
    assert booked.scheduled_start == appointment.scheduled_start
    assert appointment_practitioner_ids(db, booked.id) == [practitioner.id]
    assert first.status == WaitlistStatus.ACCEPTED
    assert second.status == WaitlistStatus.TAKEN

    taken = db.execute(
        select(MessageLog).where(MessageLog.template == "waitlist_slot_taken")
    ).scalars().one()
    assert taken.recipient == "bruno@example.com"

    assert confirm_slot_offer(db, second.acceptance_token) == {
        "success": False,
        "message": "No longer available",
    }


def test_invalid_and_expired_offers(db, tenant, appointment, waiting_patients):
    entry = add_to_waitlist(db, tenant=tenant, patient=waiting_patients[0])
    process_available_slot(db, appointment)

    assert get_offer_details(db, "missing")["message"] == "Invalid link"
    assert confirm_slot_offer(db, "missing")["message"] == "Invalid link"

    entry.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    db.flush()
    assert get_offer_details(db, entry.acceptance_token)["message"] == "Expired"
    assert confirm_slot_offer(db, entry.acceptance_token)["message"] == "Expired"
    assert entry.status == WaitlistStatus.EXPIRED


def test_expire_offers(db, tenant, appointment, waiting_patients):
    add_to_waitlist(db, tenant=tenant, patient=waiting_patients[0])
    process_available_slot(db, appointment)

    assert expire_offers(db) == 0
    assert expire_offers(db, now=datetime.now(timezone.utc) + timedelta(days=2)) == 1
    statuses = db.execute(select(WaitlistEntry.status)).scalars().all()
    assert statuses == [WaitlistStatus.EXPIRED]


def test_waitlist_endpoints(client, headers, db, appointment, waiting_patients, queued_jobs):
    joined = client.post(
        "/api/v1/waitlist",
        json={"patient_id": str(waiting_patients[0].id), "preferred_time": "morning"},
        headers=headers,
    )
    assert joined.status_code == 201

    cancelled = client.patch(
        f"/api/v1/appointments/{appointment.id}", json={"status": "CANCELLED"}, headers=headers
    )
    assert cancelled.status_code == 200
    tasks.process_waitlist_task(str(appointment.id))
    db.expire_all()

    entry = db.execute(select(WaitlistEntry)).scalars().one()
    details = client.get(f"/api/v1/waitlist/offers/{entry.acceptance_token}")
    assert details.status_code == 200
    assert details.json()["entry"]["status"] == "OFFERED"

    confirmed = client.post(f"/api/v1/waitlist/offers/{entry.acceptance_token}/confirm")
    assert confirmed.status_code == 200
    assert confirmed.json()["appointment"]["origin"] == "WAITING_LIST"
    booked_id = confirmed.json()["appointment"]["id"]
    assert [job[:2] for job in queued_jobs[1:]] == [
        ("sync_calendar", (booked_id,)),
        ("flag_no_show", (booked_id,)),
    ]

    again = client.post(f"/api/v1/waitlist/offers/{entry.acceptance_token}/confirm")
    assert again.status_code == 409
    assert again.json() == {"success": False, "message": "No longer available"}

    assert client.get("/api/v1/waitlist/offers/unknown").status_code == 404


def test_confirmed_offer_takes_the_freed_slot(
    db, tenant, practitioner, service, appointment, waiting_patients
):
    entry = add_to_waitlist(db, tenant=tenant, patient=waiting_patients[0])
    update_appointment_status(db, appointment, AppointmentStatus.CANCELLED)
    process_available_slot(db, appointment)
    slot = db.get(ScheduleSlot, appointment.schedule_slot_id)
    assert slot.status == SlotStatus.FREE

    booked = confirm_slot_offer(db, entry.acceptance_token)["appointment"]

    assert booked.schedule_slot_id == slot.id
    assert slot.status == SlotStatus.BOOKED
    with pytest.raises(ConflictError, match="unavailable"):
        book_slot(
            db,
            tenant=tenant,
            practitioner=practitioner,
            patient=waiting_patients[2],
            service=service,
            slot=slot,
            origin=AppointmentOrigin.WEB,
        )


def test_offer_fails_once_the_slot_is_rebooked(
    db, tenant, practitioner, service, appointment, waiting_patients
):
    entry = add_to_waitlist(db, tenant=tenant, patient=waiting_patients[0])
    update_appointment_status(db, appointment, AppointmentStatus.CANCELLED)
    process_available_slot(db, appointment)
    slot = db.get(ScheduleSlot, appointment.schedule_slot_id)
    rebooked = book_slot(
        db,
        tenant=tenant,
        practitioner=practitioner,
        patient=waiting_patients[2],
        service=service,
        slot=slot,
        origin=AppointmentOrigin.WEB,
    )

    assert confirm_slot_offer(db, entry.acceptance_token) == {
        "success": False,
        "message": "No longer available",
    }
    assert entry.status == WaitlistStatus.TAKEN
    live = db.execute(
        select(Appointment).where(
            Appointment.status == AppointmentStatus.CONFIRMED,
            Appointment.scheduled_start == appointment.scheduled_start,
        )
    ).scalars().all()
    assert live == [rebooked]
