"""Operator commands: ``python -m wellovis.cli <command>``."""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date
from uuid import UUID

from sqlalchemy import select

from wellovis.core.crypto import is_configured
from wellovis.db.session import session_scope
from wellovis.logging_utils import configure_logging, tenant_context
from wellovis.models import MedicalRecordKind, Tenant
from wellovis.seed import seed
from wellovis.services.invitations import expire_stale_invitations
from wellovis.services.licenses import sync_licenses_to_seats
from wellovis.services.medical_records import encrypt_medical_records
from wellovis.services.reminders import send_appointment_reminders


def _print(payload: object) -> None:
    print(json.dumps(payload, indent=2, default=str))


def cmd_encrypt_medical_records(args: argparse.Namespace) -> int:
    if not is_configured():
        print("FIELD_ENCRYPTION_KEY is not configured.", file=sys.stderr)
        return 1

    kinds = [MedicalRecordKind(value.upper()) for value in args.models] if args.models else None
    with session_scope() as db:
        result = encrypt_medical_records(db, tenant_ids=args.tenants or None, kinds=kinds)

    total = sum(count for per_kind in result.values() for count in per_kind.values())
    _print({"encrypted": total, "tenants": result})
    return 0


def cmd_send_appointment_reminders(args: argparse.Namespace) -> int:
    with session_scope() as db:
        stats = send_appointment_reminders(db, dry_run=args.dry_run, target_date=args.date)
    _print(stats)
    return 0 if stats["errors"] == 0 else 1


def cmd_sync_licenses(args: argparse.Namespace) -> int:
    results: dict[str, dict[str, int]] = {}
    with session_scope() as db:
        stmt = select(Tenant).where(Tenant.is_active.is_(True))
        if args.tenants:
            stmt = stmt.where(Tenant.id.in_(args.tenants))
        for tenant in db.execute(stmt).scalars().all():
            with tenant_context(tenant.id):
                results[str(tenant.id)] = sync_licenses_to_seats(db, tenant)
    _print(results)
    return 0


def cmd_expire_invitations(args: argparse.Namespace) -> int:
    with session_scope() as db:
        expired = expire_stale_invitations(db)
    _print({"expired": expired})
    return 0


def cmd_seed(args: argparse.Namespace) -> int:
    _print(seed())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wellovis", description="Wellovis operator commands")
    sub = parser.add_subparsers(dest="command", required=True)

    p_encrypt = sub.add_parser(
        "encrypt-medical-records", help="Encrypt medical records still stored in plaintext"
    )
    p_encrypt.add_argument("--tenants", nargs="*", type=UUID, default=None)
    p_encrypt.add_argument(
        "--models",
        nargs="*",
        choices=[kind.value.lower() for kind in MedicalRecordKind]
        + [kind.value for kind in MedicalRecordKind],
        default=None,
        help="Record kinds to process (all by default)",
    )
    p_encrypt.set_defaults(func=cmd_encrypt_medical_records)

    p_remind = sub.add_parser("send-appointment-reminders", help="Email next-day reminders")
    p_remind.add_argument("--dry-run", action="store_true")
    p_remind.add_argument("--date", type=date.fromisoformat, default=None, help="YYYY-MM-DD")
    p_remind.set_defaults(func=cmd_send_appointment_reminders)

    p_sync = sub.add_parser("sync-licenses", help="Match license counts to subscribed seats")
    p_sync.add_argument("--tenants", nargs="*", type=UUID, default=None)
    p_sync.set_defaults(func=cmd_sync_licenses)

    p_expire = sub.add_parser("expire-invitations", help="Expire overdue pending invitations")
    p_expire.set_defaults(func=cmd_expire_invitations)

    p_seed = sub.add_parser("seed", help="Load demo data")
    p_seed.set_defaults(func=cmd_seed)

    return parser


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover - script entrypoint
    sys.exit(main())
