"""Thin wrapper around the transactional mail HTTP API."""

from __future__ import annotations

import logging
import uuid
from typing import Any

import httpx

from wellovis.core.config import settings
from wellovis.services.mail_templates import render_template

logger = logging.getLogger(__name__)

_TIMEOUT = httpx.Timeout(connect=5.0, read=15.0, write=15.0, pool=5.0)


def _mock_send(payload: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    message_id = f"mocked-{uuid.uuid4()}"
    logger.debug("Mocking email send to %s", payload.get("to"))
    return message_id, {"id": message_id, "mocked": True, "payload": payload}


def _dispatch(payload: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    if settings.mail_mock_mode:
        return _mock_send(payload)

    api_key = settings.mail_api_key
    if not api_key:
        raise RuntimeError("MAIL_API_KEY is not configured")

    url = f"{settings.mail_api_base_url.rstrip('/')}/v1/messages"
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }

    with httpx.Client(timeout=_TIMEOUT) as client:
        response = client.post(url, headers=headers, json=payload)
    response.raise_for_status()
    data = response.json()
    message_id = data.get("id") or data.get("message_id")
    if not message_id:
        raise RuntimeError("Mail API response did not include a message identifier")
    return message_id, data


def send_email(
    to: str, template_name: str, context: dict[str, Any]
) -> tuple[str, dict[str, Any], dict[str, Any]]:
    """Render and send a templated email. Returns ``(message_id, response, payload)``."""

    subject, body = render_template(template_name, context)
    payload = {
        "from": settings.mail_from_address,
        "to": to,
        "subject": subject,
        "text": body,
        "tags": [template_name],
    }
    message_id, response = _dispatch(payload)
    return message_id, response, payload
