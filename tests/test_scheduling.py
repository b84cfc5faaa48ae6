from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from wellovis.core.exceptions import ConflictError, DomainError
from wellovis.models import AppointmentOrigin, AppointmentStatus, ScheduleSlot, SlotStatus
from wellovis.services.scheduling import (
    appointment_history,
    appointment_practitioner_ids,
    book_slot,
    offer_slots,
    reschedule_appointment,
    update_appointment_status,
)

TORONTO = ZoneInfo("America/Toronto")


def _local_date(value):
    return value.astimezone(TORONTO).date()


def test_offer_slots_holds_free_slots_outside_buffer(
    db, tenant, practitioner, service, make_slot, tomorrow_at
):
    make_slot(practitioner, tomorrow_at(14), status=SlotStatus.BOOKED)
    adjacent = make_slot(practitioner, tomorrow_at(15))
    later = make_slot(practitioner, tomorrow_at(16, 30))

    held, tz = offer_slots(
        db,
        tenant=tenant,
        practitioner=practitioner,
        service=service,
        target_date=_local_date(tomorrow_at(14)),
    )

    assert [item.slot_id for item in held] == [later.id]
    assert later.status == SlotStatus.HOLD
    assert later.hold_expires_at is not None
    assert adjacent.status == SlotStatus.FREE
    assert tz.key == "America/Toronto"


def test_offer_slots_skips_slots_shorter_than_service(
    db, tenant, practitioner, service, make_slot, tomorrow_at
):
    make_slot(practitioner, tomorrow_at(15), minutes=20)

    held, _ = offer_slots(
        db,
        tenant=tenant,
        practitioner=practitioner,
        service=service,
        target_date=_local_date(tomorrow_at(15)),
    )
    assert held == []


def test_offer_slots_respects_limit(db, tenant, practitioner, service, make_slot, tomorrow_at):
    for hour in (13, 15, 17):
        make_slot(practitioner, tomorrow_at(hour))

    held, _ = offer_slots(
        db,
        tenant=tenant,
        practitioner=practitioner,
        service=service,
        target_date=_local_date(tomorrow_at(13)),
        limit=2,
    )
    assert len(held) == 2


def test_book_slot_rejects_expired_hold(
    db, tenant, practitioner, patient, service, make_slot, tomorrow_at
):
    slot = make_slot(practitioner, tomorrow_at(15), status=SlotStatus.HOLD)
    slot.hold_expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)

    with pytest.raises(ConflictError, match="hold expired"):
        book_slot(
            db,
            tenant=tenant,
            practitioner=practitioner,
            patient=patient,
            service=service,
            slot=slot,
            origin=AppointmentOrigin.WEB,
        )
    assert slot.status == SlotStatus.FREE


def test_book_slot_rejects_booked_slot(
    db, tenant, practitioner, patient, service, make_slot, tomorrow_at
):
    slot = make_slot(practitioner, tomorrow_at(15), status=SlotStatus.BOOKED)

    with pytest.raises(ConflictError, match="unavailable"):
        book_slot(
            db,
            tenant=tenant,
            practitioner=practitioner,
            patient=patient,
            service=service,
            slot=slot,
            origin=AppointmentOrigin.WEB,
        )


def test_book_and_cancel_releases_slot(
    db, tenant, practitioner, patient, service, make_slot, tomorrow_at
):
    slot = make_slot(practitioner, tomorrow_at(15))
    appointment = book_slot(
        db,
        tenant=tenant,
        practitioner=practitioner,
        patient=patient,
        service=service,
        slot=slot,
        origin=AppointmentOrigin.STAFF,
    )

    assert slot.status == SlotStatus.BOOKED
    assert appointment.status == AppointmentStatus.CONFIRMED
    assert appointment.scheduled_end - appointment.scheduled_start == timedelta(minutes=30)
    assert appointment_practitioner_ids(db, appointment.id) == [practitioner.id]

    update_appointment_status(db, appointment, AppointmentStatus.CANCELLED)
    assert db.get(ScheduleSlot, slot.id).status == SlotStatus.FREE


def test_reschedule_builds_history_chain(
    db, tenant, practitioner, patient, service, make_slot, tomorrow_at
):
    first_slot = make_slot(practitioner, tomorrow_at(15))
    second_slot = make_slot(practitioner, tomorrow_at(17))
    third_slot = make_slot(practitioner, tomorrow_at(19))
    original = book_slot(
        db,
        tenant=tenant,
        practitioner=practitioner,
        patient=patient,
        service=service,
        slot=first_slot,
        origin=AppointmentOrigin.WEB,
        notes="first visit",
    )

    moved = reschedule_appointment(db, tenant=tenant, appointment=original, new_slot=second_slot)
    moved_again = reschedule_appointment(
        db, tenant=tenant, appointment=moved, new_slot=third_slot, notes="evening"
    )

    assert original.status == AppointmentStatus.RESCHEDULED
    assert first_slot.status == SlotStatus.FREE
    assert moved.parent_appointment_id == original.id
    assert moved.root_appointment_id == original.id
    assert moved.notes == "first visit"
    assert moved_again.parent_appointment_id == moved.id
    assert moved_again.root_appointment_id == original.id
    assert moved_again.notes == "evening"
    assert [item.id for item in appointment_history(db, moved_again)] == [
        original.id,
        moved.id,
        moved_again.id,
    ]


def test_cannot_reschedule_cancelled_appointment(
    db, tenant, practitioner, patient, service, make_slot, tomorrow_at
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
    update_appointment_status(db, appointment, AppointmentStatus.CANCELLED)

    with pytest.raises(DomainError, match="cancelled"):
        reschedule_appointment(
            db,
            tenant=tenant,
            appointment=appointment,
            new_slot=make_slot(practitioner, tomorrow_at(17)),
        )


def test_appointment_api_flow(
    client, headers, db, practitioner, second_practitioner, patient, service, make_slot, tomorrow_at
):
    slot = make_slot(practitioner, tomorrow_at(15))
    target = make_slot(practitioner, tomorrow_at(18))

    search = client.get(
        "/api/v1/slots/search",
        params={
            "practitioner_id": str(practitioner.id),
            "service_id": str(service.id),
            "date": _local_date(tomorrow_at(15)).isoformat(),
        },
        headers=headers,
    )
    assert search.status_code == 200
    assert {item["slot_id"] for item in search.json()["results"]} == {str(slot.id), str(target.id)}

    created = client.post(
        "/api/v1/appointments",
        json={
            "patient_id": str(patient.id),
            "practitioner_id": str(practitioner.id),
            "service_id": str(service.id),
            "start_ts": tomorrow_at(15).isoformat(),
            "schedule_slot_id": str(slot.id),
            "additional_practitioner_ids": [str(second_practitioner.id)],
        },
        headers=headers,
    )
    assert created.status_code == 201
    appointment = created.json()["appointment"]
    assert appointment["status"] == "CONFIRMED"
    assert appointment["practitioner_ids"] == [str(practitioner.id), str(second_practitioner.id)]

    moved = client.post(
        f"/api/v1/appointments/{appointment['id']}/reschedule",
        json={"start_ts": tomorrow_at(18).isoformat()},
        headers=headers,
    )
    assert moved.status_code == 201
    body = moved.json()
    assert body["previous"]["status"] == "RESCHEDULED"
    assert body["appointment"]["root_appointment_id"] == appointment["id"]

    history = client.get(f"/api/v1/appointments/{appointment['id']}/history", headers=headers)
    assert len(history.json()["history"]) == 2

    cancelled = client.patch(
        f"/api/v1/appointments/{body['appointment']['id']}",
        json={"status": "CANCELLED"},
        headers=headers,
    )
    assert cancelled.status_code == 200
    assert cancelled.json()["appointment"]["status"] == "CANCELLED"

    listed = client.get(
        "/api/v1/appointments", params={"status_filter": "CANCELLED"}, headers=headers
    )
    assert [item["id"] for item in listed.json()["appointments"]] == [body["appointment"]["id"]]


def test_booking_unknown_slot_returns_404(client, headers, practitioner, patient, service, tomorrow_at):
    response = client.post(
        "/api/v1/appointments",
        json={
            "patient_id": str(patient.id),
            "practitioner_id": str(practitioner.id),
            "service_id": str(service.id),
            "start_ts": tomorrow_at(15).isoformat(),
        },
        headers=headers,
    )
    assert response.status_code == 404


def test_booking_a_booked_slot_conflicts(
    client, headers, practitioner, patient, service, make_slot, tomorrow_at
):
    slot = make_slot(practitioner, tomorrow_at(15), status=SlotStatus.BOOKED)
    response = client.post(
        "/api/v1/appointments",
        json={
            "patient_id": str(patient.id),
            "practitioner_id": str(practitioner.id),
            "service_id": str(service.id),
            "start_ts": tomorrow_at(15).isoformat(),
            "schedule_slot_id": str(slot.id),
        },
        headers=headers,
    )
    assert response.status_code == 409
    assert response.json() == {"detail": "Slot unavailable"}


def test_booking_queues_calendar_sync_and_no_show_check(
    client, headers, practitioner, patient, service, make_slot, tomorrow_at, queued_jobs
):
    slot = make_slot(practitioner, tomorrow_at(15))
    created = client.post(
        "/api/v1/appointments",
        json={
            "patient_id": str(patient.id),
            "practitioner_id": str(practitioner.id),
            "service_id": str(service.id),
            "start_ts": tomorrow_at(15).isoformat(),
            "schedule_slot_id": str(slot.id),
        },
        headers=headers,
    )

    assert created.status_code == 201
    appointment_id = created.json()["appointment"]["id"]
    assert queued_jobs == [
        ("sync_calendar", (appointment_id,)),
        # 30 minute service plus the grace period
        ("flag_no_show", (appointment_id,), tomorrow_at(16)),
    ]


def test_final_statuses_cannot_be_reopened(
    client, headers, db, tenant, practitioner, patient, service, make_slot, tomorrow_at, queued_jobs
):
    slot = make_slot(practitioner, tomorrow_at(15))
    appointment = book_slot(
        db,
        tenant=tenant,
        practitioner=practitioner,
        patient=patient,
        service=service,
        slot=slot,
        origin=AppointmentOrigin.STAFF,
    )
    db.commit()
    url = f"/api/v1/appointments/{appointment.id}"

    assert client.patch(url, json={"status": "NO_SHOW"}, headers=headers).status_code == 200
    reopened = client.patch(url, json={"status": "CONFIRMED"}, headers=headers)
    assert reopened.status_code == 409
    assert reopened.json() == {"detail": "Cannot change a no_show appointment to confirmed"}

    noted = client.patch(url, json={"status": "NO_SHOW", "notes": "Called twice"}, headers=headers)
    assert noted.status_code == 200
    db.expire_all()
    assert db.get(ScheduleSlot, slot.id).status == SlotStatus.FREE
    assert queued_jobs == []


def test_completed_appointment_cannot_be_cancelled(
    db, tenant, practitioner, patient, service, make_slot, tomorrow_at
):
    slot = make_slot(practitioner, tomorrow_at(15))
    appointment = book_slot(
        db,
        tenant=tenant,
        practitioner=practitioner,
        patient=patient,
        service=service,
        slot=slot,
        origin=AppointmentOrigin.STAFF,
    )
    update_appointment_status(db, appointment, AppointmentStatus.COMPLETED)

    with pytest.raises(ConflictError, match="completed"):
        update_appointment_status(db, appointment, AppointmentStatus.CANCELLED)
    assert appointment.status == AppointmentStatus.COMPLETED
    assert slot.status == SlotStatus.BOOKED
