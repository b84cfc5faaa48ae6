"""Tenant provisioning progress backed by Redis."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Final
from uuid import UUID

import redis

from wellovis.core.config import settings

_PROGRESS_KEY_TEMPLATE: Final[str] = "wellovis:provisioning:{registration_id}"
_PROGRESS_TTL_SECONDS: Final[int] = 60 * 60 * 24  # one day


class ProvisioningStep(str, Enum):
    """Ordered steps of tenant provisioning."""

    QUEUED = "queued"
    TENANT = "tenant"
    WALLET = "wallet"
    LICENSES = "licenses"
    COMPLETE = "complete"
    FAILED = "failed"


def _get_client() -> redis.Redis:
    """Return a Redis client configured via application settings."""

    return redis.Redis.from_url(settings.redis_url, decode_responses=True)


def set_progress(
    registration_id: UUID | str,
    step: ProvisioningStep,
    *,
    tenant_id: UUID | str | None = None,
    error: str | None = None,
) -> None:
    """Persist the latest provisioning step for a registration."""

    payload: dict[str, Any] = {
        "step": step.value,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    if tenant_id is not None:
        payload["tenant_id"] = str(tenant_id)
    if error:
        payload["error"] = error

    client = _get_client()
    client.setex(
        _PROGRESS_KEY_TEMPLATE.format(registration_id=registration_id),
        _PROGRESS_TTL_SECONDS,
        json.dumps(payload),
    )


def get_progress(registration_id: UUID | str) -> dict[str, Any] | None:
    """Return the stored progress, or ``None`` when nothing was recorded."""

    client = _get_client()
    raw = client.get(_PROGRESS_KEY_TEMPLATE.format(registration_id=registration_id))
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def clear_progress(registration_id: UUID | str) -> None:
    client = _get_client()
    client.delete(_PROGRESS_KEY_TEMPLATE.format(registration_id=registration_id))
