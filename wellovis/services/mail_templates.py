"""Transactional email templates rendered with ``str.format_map``."""

from __future__ import annotations

from typing import Any

EMAIL_TEMPLATES: dict[str, dict[str, str]] = {
    "appointment_reminder_patient": {
        "subject": "Reminder: your appointment on {date}",
        "body": (
            "Hello {patient_name},\n\nThis is a reminder of your {service_name} "
            "appointment with {practitioner_name} on {date} at {time} ({clinic_name})."
        ),
    },
    "appointment_reminder_practitioner": {
        "subject": "Tomorrow: {patient_name} at {time}",
        "body": (
            "Hello {practitioner_name},\n\nYou have a {service_name} appointment "
            "with {patient_name} on {date} at {time}."
        ),
    },
    "patient_invitation": {
        "subject": "You have been invited to {clinic_name}",
        "body": "Accept your invitation before {expires_at}: {accept_url}",
    },
    "practitioner_invitation": {
        "subject": "Join {clinic_name} on Wellovis",
        "body": "Accept your invitation before {expires_at}: {accept_url}",
    },
    "consent_batch": {
        "subject": "Please review {count} consent document(s)",
        "body": "The following documents need your acceptance: {consent_titles}",
    },
    "invoice_created": {
        "subject": "Invoice {invoice_number}",
        "body": "A new invoice of {amount} {currency} is available.",
    },
    "waitlist_slot_available": {
        "subject": "An earlier appointment is available",
        "body": (
            "A {service_name} appointment opened on {date} at {time}. "
            "Confirm before {expires_at}: {confirm_url}"
        ),
    },
    "waitlist_slot_taken": {
        "subject": "The appointment has been taken",
        "body": "The slot on {date} at {time} was booked by another patient.",
    },
    "tenant_welcome": {
        "subject": "Welcome to Wellovis, {clinic_name}",
        "body": "Your clinic workspace is ready. Your trial ends on {trial_ends_at}.",
    },
}


class _Missing(dict):
    def __missing__(self, key: str) -> str:
        return ""


def render_template(template_name: str, context: dict[str, Any]) -> tuple[str, str]:
    """Return the rendered ``(subject, body)`` for a template."""

    try:
        template = EMAIL_TEMPLATES[template_name]
    except KeyError as exc:
        raise ValueError(f"Unknown email template: {template_name}") from exc
    values = _Missing({key: "" if value is None else value for key, value in context.items()})
    return (
        template["subject"].format_map(values),
        template["body"].format_map(values),
    )


__all__ = ["EMAIL_TEMPLATES", "render_template"]
