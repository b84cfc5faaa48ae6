from datetime import timedelta

import pytest
from sqlalchemy import select

from wellovis.models import AppointmentOrigin, AppointmentStatus, MessageLog
from wellovis.services.reminders import send_appointment_reminders
from wellovis.services.scheduling import book_slot, ensure_utc, update_appointment_status

REMINDER_TEMPLATES = ("appointment_reminder_patient", "appointment_reminder_practitioner")


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


def _reminders(db):
    return db.execute(
        select(MessageLog).where(MessageLog.template.in_(REMINDER_TEMPLATES))
    ).scalars().all()


def _day_before(appointment):
    return ensure_utc(appointment.scheduled_start) - timedelta(days=1)


def test_reminders_go_to_patient_and_practitioner(db, appointment):
    stats = send_appointment_reminders(db, now=_day_before(appointment))

    assert stats == {"total": 1, "success": 1, "errors": 0}
    sent = {log.template: log.recipient for log in _reminders(db)}
    assert sent == {
        "appointment_reminder_patient": "maria.silva@example.com",
        "appointment_reminder_practitioner": "alice@maple.example",
    }
    patient_log = next(
        log for log in _reminders(db) if log.template == "appointment_reminder_patient"
    )
    assert "Physiotherapy Follow-up appointment with Alice Tremblay" in patient_log.payload


def test_dry_run_counts_without_sending(db, appointment):
    stats = send_appointment_reminders(db, dry_run=True, now=_day_before(appointment))

    assert stats == {"total": 1, "success": 1, "errors": 0}
    assert _reminders(db) == []


def test_only_confirmed_appointments_are_reminded(db, appointment):
    update_appointment_status(db, appointment, AppointmentStatus.CANCELLED)
    db.flush()

    assert send_appointment_reminders(db, now=_day_before(appointment))["total"] == 0


def test_other_days_are_ignored(db, appointment):
    stats = send_appointment_reminders(db, now=ensure_utc(appointment.scheduled_start))
    assert stats["total"] == 0
