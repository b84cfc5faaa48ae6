"""Service layer utilities for the Wellovis API."""

from wellovis.services.mail_client import send_email
from wellovis.services.provisioning_state import (
    ProvisioningStep,
    clear_progress,
    get_progress,
    set_progress,
)

__all__ = [
    "ProvisioningStep",
    "clear_progress",
    "get_progress",
    "send_email",
    "set_progress",
]
