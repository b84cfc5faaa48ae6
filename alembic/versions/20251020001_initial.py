"""Initial Wellovis schema."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "20251020001"
down_revision = None
branch_labels = None
depends_on = None

UUID = postgresql.UUID(as_uuid=True)
MONEY = sa.Numeric(18, 4)

ENUMS = {
    "tenant_billing_status": ("PENDING", "TRIALING", "ACTIVE", "PAST_DUE", "CANCELED"),
    "service_mode": ("IN_PERSON", "VIRTUAL", "HYBRID"),
    "schedule_slot_status": ("FREE", "HOLD", "BOOKED", "BLOCKED"),
    "appointment_status": (
        "PENDING",
        "CONFIRMED",
        "RESCHEDULED",
        "CANCELLED",
        "NO_SHOW",
        "COMPLETED",
    ),
    "appointment_origin": ("WEB", "STAFF", "PATIENT_PORTAL", "WAITING_LIST"),
    "license_status": ("AVAILABLE", "ASSIGNED", "REVOKED"),
    "wallet_owner_type": ("SYSTEM", "PATIENT", "PRACTITIONER", "USER"),
    "invoiceable_type": ("APPOINTMENT", "PRACTITIONER", "SYSTEM"),
    "invoice_status": ("PENDING", "PARTIAL", "PAID", "PAID_MANUAL", "FAILED", "REFUNDED"),
    "transaction_type": ("INVOICE_PAYMENT", "PAYOUT", "REFUND", "ADJUSTMENT"),
    "direction_source": (
        "INTERNAL_WALLET",
        "EXTERNAL_GATEWAY",
        "EXTERNAL_POS",
        "EXTERNAL_CASH",
    ),
    "transaction_status": ("PENDING", "COMPLETED", "FAILED"),
    "invitation_kind": ("PATIENT", "PRACTITIONER"),
    "invitation_status": ("PENDING", "ACCEPTED", "EXPIRED"),
    "consent_entity_type": ("PATIENT", "PRACTITIONER", "USER"),
    "medical_record_kind": (
        "ENCOUNTER_NOTE",
        "ALLERGY",
        "FAMILY_HISTORY",
        "PRESCRIPTION",
        "MEDICAL_HISTORY",
    ),
    "waitlist_status": ("WAITING", "OFFERED", "ACCEPTED", "TAKEN", "EXPIRED"),
    "integration_provider": ("GOOGLE_CALENDAR",),
}


def enum_type(name: str) -> postgresql.ENUM:
    # types are created once up front; several tables share them
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "tenants",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("company_name", sa.String(length=255), nullable=False),
        sa.Column("domain", sa.String(length=255), nullable=True),
        sa.Column(
            "timezone",
            sa.String(length=64),
            nullable=False,
            server_default=sa.text("'America/Toronto'"),
        ),
        sa.Column("admin_email", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "billing_status",
            enum_type("tenant_billing_status"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("number_of_seats", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stripe_customer_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(length=255), nullable=True),
        sa.Column("trial_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "is_creation_complete", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.PrimaryKeyConstraint("id", name="pk_tenants"),
        sa.UniqueConstraint("company_name", name="uq_tenants_company_name"),
        sa.UniqueConstraint("domain", name="uq_tenants_domain"),
    )
    op.create_index(
        "ix_tenants_stripe_customer_id", "tenants", ["stripe_customer_id"], unique=False
    )

    op.create_table(
        "pending_registrations",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("encrypted_token", sa.Text(), nullable=False),
        sa.Column("company_key", sa.String(length=64), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("tenant_id", UUID, nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_pending_registrations"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "ix_pending_registrations_company_key", "pending_registrations", ["company_key"], unique=False
    )

    op.create_table(
        "patients",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("tenant_id", UUID, nullable=False),
        # encrypted at the application layer
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("last_name", sa.Text(), nullable=False),
        sa.Column("preferred_name", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("email_index", sa.String(length=64), nullable=True),
        sa.Column("health_number", sa.Text(), nullable=True),
        sa.Column("health_number_index", sa.String(length=64), nullable=True),
        sa.Column("phone_number", sa.Text(), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("gender_pronouns", sa.String(length=64), nullable=True),
        sa.Column("emergency_contact_name", sa.Text(), nullable=True),
        sa.Column("emergency_contact_phone", sa.Text(), nullable=True),
        sa.Column("insurance_provider", sa.String(length=255), nullable=True),
        sa.Column("referral_source", sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_patients"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_patients_tenant_id", "patients", ["tenant_id"], unique=False)
    op.create_index("ix_patients_email_index", "patients", ["email_index"], unique=False)
    op.create_index(
        "ix_patients_health_number_index", "patients", ["health_number_index"], unique=False
    )

    op.create_table(
        "practitioners",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=True),
        sa.Column("first_name", sa.String(length=255), nullable=False),
        sa.Column("last_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("credentials", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.PrimaryKeyConstraint("id", name="pk_practitioners"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("tenant_id", "email", name="uq_practitioners_tenant_id"),
    )
    op.create_index("ix_practitioners_tenant_id", "practitioners", ["tenant_id"], unique=False)

    op.create_table(
        "services",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("duration_min", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("default_price", MONEY, nullable=False, server_default="0"),
        sa.Column("mode", enum_type("service_mode"), nullable=False, server_default="IN_PERSON"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.PrimaryKeyConstraint("id", name="pk_services"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_services_tenant_id", "services", ["tenant_id"], unique=False)

    op.create_table(
        "practitioner_services",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("practitioner_id", UUID, nullable=False),
        sa.Column("service_id", UUID, nullable=False),
        sa.Column("custom_price", MONEY, nullable=True),
        sa.Column("is_offered", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.PrimaryKeyConstraint("id", name="pk_practitioner_services"),
        sa.ForeignKeyConstraint(["practitioner_id"], ["practitioners.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "practitioner_id", "service_id", name="uq_practitioner_services_practitioner_id"
        ),
    )
    op.create_index(
        "ix_practitioner_services_practitioner_id",
        "practitioner_services",
        ["practitioner_id"],
        unique=False,
    )
    op.create_index(
        "ix_practitioner_services_service_id", "practitioner_services", ["service_id"], unique=False
    )

    op.create_table(
        "schedule_slots",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("practitioner_id", UUID, nullable=False),
        sa.Column("service_id", UUID, nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "status", enum_type("schedule_slot_status"), nullable=False, server_default="FREE"
        ),
        sa.Column("hold_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_schedule_slots"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["practitioner_id"], ["practitioners.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_schedule_slots_tenant_id", "schedule_slots", ["tenant_id"], unique=False)
    op.create_index(
        "ix_schedule_slots_practitioner_id", "schedule_slots", ["practitioner_id"], unique=False
    )

    op.create_table(
        "appointments",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("patient_id", UUID, nullable=False),
        sa.Column("service_id", UUID, nullable=True),
        sa.Column("schedule_slot_id", UUID, nullable=True),
        sa.Column("parent_appointment_id", UUID, nullable=True),
        sa.Column("root_appointment_id", UUID, nullable=True),
        sa.Column(
            "status", enum_type("appointment_status"), nullable=False, server_default="CONFIRMED"
        ),
        sa.Column("mode", enum_type("service_mode"), nullable=False, server_default="IN_PERSON"),
        sa.Column("scheduled_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "origin", enum_type("appointment_origin"), nullable=False, server_default="WEB"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_appointments"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["schedule_slot_id"], ["schedule_slots.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(
            ["parent_appointment_id"], ["appointments.id"], ondelete="SET NULL"
        ),
        sa.ForeignKeyConstraint(["root_appointment_id"], ["appointments.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_appointments_tenant_id", "appointments", ["tenant_id"], unique=False)
    op.create_index("ix_appointments_patient_id", "appointments", ["patient_id"], unique=False)
    op.create_index(
        "ix_appointments_root_appointment_id", "appointments", ["root_appointment_id"], unique=False
    )

    op.create_table(
        "appointment_practitioners",
        sa.Column("id", UUID, nullable=False),
        sa.Column("appointment_id", UUID, nullable=False),
        sa.Column("practitioner_id", UUID, nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.PrimaryKeyConstraint("id", name="pk_appointment_practitioners"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["practitioner_id"], ["practitioners.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "appointment_id",
            "practitioner_id",
            name="uq_appointment_practitioners_appointment_id",
        ),
    )
    op.create_index(
        "ix_appointment_practitioners_appointment_id",
        "appointment_practitioners",
        ["appointment_id"],
        unique=False,
    )
    op.create_index(
        "ix_appointment_practitioners_practitioner_id",
        "appointment_practitioners",
        ["practitioner_id"],
        unique=False,
    )

    op.create_table(
        "licenses",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("license_key", sa.String(length=32), nullable=False),
        sa.Column("status", enum_type("license_status"), nullable=False, server_default="AVAILABLE"),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_licenses"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("license_key", name="uq_licenses_license_key"),
    )
    op.create_index("ix_licenses_tenant_id", "licenses", ["tenant_id"], unique=False)

    op.create_table(
        "practitioner_licenses",
        sa.Column("id", UUID, nullable=False),
        sa.Column("practitioner_id", UUID, nullable=False),
        sa.Column("license_id", UUID, nullable=False),
        sa.Column(
            "attached_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
        sa.PrimaryKeyConstraint("id", name="pk_practitioner_licenses"),
        sa.ForeignKeyConstraint(["practitioner_id"], ["practitioners.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["license_id"], ["licenses.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("practitioner_id", name="uq_practitioner_licenses_practitioner_id"),
        sa.UniqueConstraint("license_id", name="uq_practitioner_licenses_license_id"),
    )

    op.create_table(
        "wallets",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("owner_type", enum_type("wallet_owner_type"), nullable=False),
        sa.Column("owner_id", UUID, nullable=True),
        sa.Column("singleton_key", sa.String(length=64), nullable=True),
        sa.Column("balance", MONEY, nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="CAD"),
        sa.PrimaryKeyConstraint("id", name="pk_wallets"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("singleton_key", name="uq_wallets_singleton_key"),
    )
    op.create_index("ix_wallets_tenant_id", "wallets", ["tenant_id"], unique=False)
    op.create_index("ix_wallets_owner_id", "wallets", ["owner_id"], unique=False)

    op.create_table(
        "invoices",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("invoice_number", sa.String(length=32), nullable=False),
        sa.Column("invoiceable_type", enum_type("invoiceable_type"), nullable=False),
        sa.Column("invoiceable_id", UUID, nullable=True),
        sa.Column("reference_type", sa.String(length=64), nullable=True),
        sa.Column("reference_id", UUID, nullable=True),
        sa.Column("customer_wallet_id", UUID, nullable=True),
        sa.Column("subtotal", MONEY, nullable=False, server_default="0"),
        sa.Column("tax_total", MONEY, nullable=False, server_default="0"),
        sa.Column("price", MONEY, nullable=False, server_default="0"),
        sa.Column("status", enum_type("invoice_status"), nullable=False, server_default="PENDING"),
        sa.Column("payment_method", sa.String(length=32), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("meta", postgresql.JSONB(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_invoices"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["customer_wallet_id"], ["wallets.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "invoice_number", name="uq_invoices_tenant_id"),
    )
    op.create_index("ix_invoices_tenant_id", "invoices", ["tenant_id"], unique=False)
    op.create_index("ix_invoices_invoice_number", "invoices", ["invoice_number"], unique=False)
    op.create_index("ix_invoices_invoiceable_id", "invoices", ["invoiceable_id"], unique=False)

    op.create_table(
        "transactions",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("from_wallet_id", UUID, nullable=True),
        sa.Column("to_wallet_id", UUID, nullable=True),
        sa.Column("invoice_id", UUID, nullable=True),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("type", enum_type("transaction_type"), nullable=False),
        sa.Column("direction_source", enum_type("direction_source"), nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=True),
        sa.Column("provider_ref", sa.String(length=255), nullable=True),
        sa.Column("payment_proof_url", sa.String(length=1024), nullable=True),
        sa.Column(
            "status", enum_type("transaction_status"), nullable=False, server_default="PENDING"
        ),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("meta", postgresql.JSONB(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_transactions"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["from_wallet_id"], ["wallets.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["to_wallet_id"], ["wallets.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("idempotency_key", name="uq_transactions_idempotency_key"),
    )
    op.create_index("ix_transactions_tenant_id", "transactions", ["tenant_id"], unique=False)
    op.create_index(
        "ix_transactions_from_wallet_id", "transactions", ["from_wallet_id"], unique=False
    )
    op.create_index("ix_transactions_to_wallet_id", "transactions", ["to_wallet_id"], unique=False)
    op.create_index("ix_transactions_invoice_id", "transactions", ["invoice_id"], unique=False)

    op.create_table(
        "invitations",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("kind", enum_type("invitation_kind"), nullable=False),
        sa.Column("patient_id", UUID, nullable=True),
        sa.Column("practitioner_id", UUID, nullable=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("token", sa.String(length=64), nullable=False),
        sa.Column(
            "status", enum_type("invitation_status"), nullable=False, server_default="PENDING"
        ),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_invitations"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["practitioner_id"], ["practitioners.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("token", name="uq_invitations_token"),
    )
    op.create_index("ix_invitations_tenant_id", "invitations", ["tenant_id"], unique=False)
    op.create_index("ix_invitations_patient_id", "invitations", ["patient_id"], unique=False)

    op.create_table(
        "consents",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("entity_type", enum_type("consent_entity_type"), nullable=False),
        sa.Column(
            "trigger_events", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'")
        ),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id", name="pk_consents"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("tenant_id", "key", name="uq_consents_tenant_id"),
    )
    op.create_index("ix_consents_tenant_id", "consents", ["tenant_id"], unique=False)

    op.create_table(
        "entity_consents",
        sa.Column("id", UUID, nullable=False),
        sa.Column("consent_id", UUID, nullable=False),
        sa.Column("entity_type", enum_type("consent_entity_type"), nullable=False),
        sa.Column("entity_id", UUID, nullable=False),
        sa.Column("consent_version", sa.Integer(), nullable=False),
        sa.Column(
            "accepted_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_entity_consents"),
        sa.ForeignKeyConstraint(["consent_id"], ["consents.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "consent_id",
            "entity_type",
            "entity_id",
            "consent_version",
            name="uq_entity_consents_consent_id",
        ),
    )
    op.create_index(
        "ix_entity_consents_consent_id", "entity_consents", ["consent_id"], unique=False
    )
    op.create_index("ix_entity_consents_entity_id", "entity_consents", ["entity_id"], unique=False)

    op.create_table(
        "medical_records",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("patient_id", UUID, nullable=False),
        sa.Column("appointment_id", UUID, nullable=True),
        sa.Column("kind", enum_type("medical_record_kind"), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_medical_records"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_medical_records_tenant_id", "medical_records", ["tenant_id"], unique=False)
    op.create_index(
        "ix_medical_records_patient_id", "medical_records", ["patient_id"], unique=False
    )

    op.create_table(
        "appointment_feedback",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("appointment_id", UUID, nullable=False),
        sa.Column("patient_id", UUID, nullable=False),
        sa.Column("visit_rating", sa.Integer(), nullable=False),
        sa.Column("visit_led_by_id", UUID, nullable=True),
        sa.Column("call_out_person_id", UUID, nullable=True),
        sa.Column("additional_feedback", sa.Text(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_edited_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_appointment_feedback"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("appointment_id", name="uq_appointment_feedback_appointment_id"),
    )
    op.create_index(
        "ix_appointment_feedback_patient_id", "appointment_feedback", ["patient_id"], unique=False
    )

    op.create_table(
        "practitioner_ratings",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("appointment_id", UUID, nullable=False),
        sa.Column("practitioner_id", UUID, nullable=False),
        sa.Column("patient_id", UUID, nullable=False),
        sa.Column("rating_points", sa.Numeric(6, 2), nullable=False),
        sa.Column("rating_percentage", sa.Numeric(6, 2), nullable=False),
        sa.Column(
            "is_lead_practitioner", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column("is_called_out", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.PrimaryKeyConstraint("id", name="pk_practitioner_ratings"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["practitioner_id"], ["practitioners.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_practitioner_ratings_appointment_id",
        "practitioner_ratings",
        ["appointment_id"],
        unique=False,
    )
    op.create_index(
        "ix_practitioner_ratings_practitioner_id",
        "practitioner_ratings",
        ["practitioner_id"],
        unique=False,
    )

    op.create_table(
        "waitlist_entries",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("patient_id", UUID, nullable=False),
        sa.Column("service_id", UUID, nullable=True),
        sa.Column("preferred_day", sa.String(length=16), nullable=False, server_default="any"),
        sa.Column("preferred_time", sa.String(length=16), nullable=False, server_default="any"),
        sa.Column("original_requested_date", sa.Date(), nullable=True),
        sa.Column("status", enum_type("waitlist_status"), nullable=False, server_default="WAITING"),
        sa.Column("offered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acceptance_token", sa.String(length=64), nullable=True),
        sa.Column("appointment_id", UUID, nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_waitlist_entries"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("acceptance_token", name="uq_waitlist_entries_acceptance_token"),
    )
    op.create_index(
        "ix_waitlist_entries_tenant_id", "waitlist_entries", ["tenant_id"], unique=False
    )
    op.create_index(
        "ix_waitlist_entries_patient_id", "waitlist_entries", ["patient_id"], unique=False
    )

    op.create_table(
        "integrations",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("practitioner_id", UUID, nullable=False),
        sa.Column("provider", enum_type("integration_provider"), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("calendar_id", sa.String(length=255), nullable=False, server_default="primary"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.PrimaryKeyConstraint("id", name="pk_integrations"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["practitioner_id"], ["practitioners.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_integrations_tenant_id", "integrations", ["tenant_id"], unique=False)
    op.create_index(
        "ix_integrations_practitioner_id", "integrations", ["practitioner_id"], unique=False
    )

    op.create_table(
        "message_logs",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("appointment_id", UUID, nullable=True),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("template", sa.String(length=64), nullable=True),
        sa.Column("recipient", sa.String(length=255), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_message_logs"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_message_logs_tenant_id", "message_logs", ["tenant_id"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", UUID, nullable=False),
        *timestamps(),
        sa.Column("tenant_id", UUID, nullable=False),
        sa.Column("actor", sa.String(length=255), nullable=True),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("resource", sa.String(length=255), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_audit_logs"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"], unique=False)
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)


def downgrade() -> None:
    for table in (
        "audit_logs",
        "message_logs",
        "integrations",
        "waitlist_entries",
        "practitioner_ratings",
        "appointment_feedback",
        "medical_records",
        "entity_consents",
        "consents",
        "invitations",
        "transactions",
        "invoices",
        "wallets",
        "practitioner_licenses",
        "licenses",
        "appointment_practitioners",
        "appointments",
        "schedule_slots",
        "practitioner_services",
        "services",
        "practitioners",
        "patients",
        "pending_registrations",
        "tenants",
    ):
        # indexes go with their table
        op.drop_table(table)

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
