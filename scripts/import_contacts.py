#!/usr/bin/env python3
"""
Import contacts (and their companies as accounts) from a CSV or Excel file into one tenant.

Usage:
    python scripts/import_contacts.py contacts.xlsx --tenant default
    python scripts/import_contacts.py contacts.csv --tenant default --dry-run

Recognized headers (case-insensitive): first_name, last_name, email, phone, mobile,
title, company, city, state, postal_code, notes.

Idempotent: contacts are matched by email; accounts by exact name.
"""
from __future__ import annotations

import argparse
import csv
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy.orm import Session

_HEADER_ALIASES = {
    "first name": "first_name",
    "firstname": "first_name",
    "last name": "last_name",
    "lastname": "last_name",
    "e-mail": "email",
    "email address": "email",
    "phone number": "phone",
    "cell": "mobile",
    "job title": "title",
    "company name": "company",
    "organization": "company",
    "zip": "postal_code",
    "postal code": "postal_code",
    "description": "notes",
}


def _normalize_header(h) -> str:
    key = str(h or "").strip().lower()
    return _HEADER_ALIASES.get(key, key.replace(" ", "_"))


def _cell(val) -> str | None:
    if val is None:
        return None
    s = str(val).strip()
    return s or None


def read_rows(path: Path) -> list[dict]:
    """Rows as dicts keyed by normalized header. Supports .csv and .xlsx."""
    if path.suffix.lower() in (".xlsx", ".xlsm"):
        from openpyxl import load_workbook

        wb = load_workbook(path, read_only=True, data_only=True)
        ws = wb.active
        it = ws.iter_rows(values_only=True)
        try:
            headers = [_normalize_header(h) for h in next(it)]
        except StopIteration:
            return []
        rows = [{h: _cell(v) for h, v in zip(headers, values) if h} for values in it]
        wb.close()
    else:
        with path.open("r", encoding="utf-8-sig", newline="") as f:
            reader = csv.DictReader(f)
            rows = [{_normalize_header(k): _cell(v) for k, v in r.items() if k} for r in reader]
    return [r for r in rows if any(r.values())]


def import_rows(s: Session, rows: list[dict]) -> dict:
    from app.crm.modules.accounts.models import Account
    from app.crm.modules.accounts.service import create_account
    from app.crm.modules.contacts.models import Contact
    from app.crm.modules.contacts.service import create_contact, link_contact_to_account, validate_contact_payload
    from app.crm.tenancy import tenant_id_of

    tid = tenant_id_of(s)
    stats = {"rows": len(rows), "contacts_created": 0, "contacts_skipped": 0, "accounts_created": 0, "errors": []}
    accounts: dict[str, Account] = {}

    for idx, row in enumerate(rows, start=2):
        payload = {
            "first_name": row.get("first_name"),
            "last_name": row.get("last_name"),
            "email": (row.get("email") or "").lower() or None,
            "phone": row.get("phone"),
            "mobile": row.get("mobile"),
            "title": row.get("title"),
            "mailing_city": row.get("city"),
            "mailing_state": row.get("state"),
            "mailing_postal_code": row.get("postal_code"),
            "description": row.get("notes"),
        }
        errors = validate_contact_payload(payload)
        if errors:
            stats["errors"].append({"row": idx, "errors": errors})
            continue

        if payload["email"]:
            existing = (
                s.query(Contact).filter(Contact.tenant_id == tid, Contact.email == payload["email"]).one_or_none()
            )
            if existing:
                stats["contacts_skipped"] += 1
                continue

        contact = create_contact(s, payload, None)
        stats["contacts_created"] += 1

        company = row.get("company")
        if company:
            account = accounts.get(company)
            if account is None:
                account = s.query(Account).filter(Account.tenant_id == tid, Account.name == company).first()
            if account is None:
                account = create_account(s, {"name": company, "account_type": "company"}, None)
                stats["accounts_created"] += 1
            accounts[company] = account
            link_contact_to_account(s, contact, account.id, None, is_primary=True, audit=False)

    return stats


def main() -> None:
    parser = argparse.ArgumentParser(description="Import contacts from CSV/XLSX into a tenant.")
    parser.add_argument("path", type=Path)
    parser.add_argument("--tenant", required=True, help="App tenant id")
    parser.add_argument("--dry-run", action="store_true", help="Validate and report without committing")
    args = parser.parse_args()

    if not args.path.exists():
        print(f"ERROR: file not found: {args.path}", flush=True)
        sys.exit(1)

    rows = read_rows(args.path)
    print(f"Read {len(rows)} rows from {args.path.name}", flush=True)

    from app.crm import create_app
    from app.crm.tenancy import data_sources

    app = create_app()
    with app.app_context():
        s = data_sources(app).open_session(args.tenant)
        try:
            stats = import_rows(s, rows)
            if args.dry_run:
                s.rollback()
            else:
                s.commit()
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()

    mode = "DRY RUN" if args.dry_run else "Committed"
    print(
        f"{mode}: {stats['contacts_created']} contacts created, {stats['contacts_skipped']} skipped (existing email), "
        f"{stats['accounts_created']} accounts created, {len(stats['errors'])} rows rejected",
        flush=True,
    )
    for err in stats["errors"][:20]:
        print(f"  row {err['row']}: {'; '.join(err['errors'])}", flush=True)


if __name__ == "__main__":
    main()
