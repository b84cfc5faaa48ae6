"""SQLAlchemy models for the Wellovis API."""

from wellovis.models.accounting import (
    DirectionSource,
    Invoice,
    InvoiceableType,
    InvoiceStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
    Wallet,
    WalletOwnerType,
)
from wellovis.models.appointment import (
    Appointment,
    AppointmentOrigin,
    AppointmentPractitioner,
    AppointmentStatus,
)
from wellovis.models.audit_log import AuditLog
from wellovis.models.consent import Consent, ConsentEntityType, EntityConsent
from wellovis.models.feedback import AppointmentFeedback, PractitionerRating
from wellovis.models.integration import Integration, IntegrationProvider
from wellovis.models.invitation import Invitation, InvitationKind, InvitationStatus
from wellovis.models.license import License, LicenseStatus, PractitionerLicense
from wellovis.models.medical_record import MedicalRecord, MedicalRecordKind
from wellovis.models.message_log import MessageLog
from wellovis.models.patient import Patient
from wellovis.models.practitioner import Practitioner, PractitionerService
from wellovis.models.schedule_slot import ScheduleSlot, SlotStatus
from wellovis.models.service import Service, ServiceMode
from wellovis.models.tenant import BillingStatus, PendingRegistration, Tenant
from wellovis.models.waitlist import WaitlistEntry, WaitlistStatus

__all__ = [
    "Appointment",
    "AppointmentFeedback",
    "AppointmentOrigin",
    "AppointmentPractitioner",
    "AppointmentStatus",
    "AuditLog",
    "BillingStatus",
    "Consent",
    "ConsentEntityType",
    "DirectionSource",
    "EntityConsent",
    "Integration",
    "IntegrationProvider",
    "Invitation",
    "InvitationKind",
    "InvitationStatus",
    "Invoice",
    "InvoiceStatus",
    "InvoiceableType",
    "License",
    "LicenseStatus",
    "MedicalRecord",
    "MedicalRecordKind",
    "MessageLog",
    "Patient",
    "PendingRegistration",
    "Practitioner",
    "PractitionerLicense",
    "PractitionerRating",
    "PractitionerService",
    "ScheduleSlot",
    "Service",
    "ServiceMode",
    "SlotStatus",
    "Tenant",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "WaitlistEntry",
    "WaitlistStatus",
    "Wallet",
    "WalletOwnerType",
]
