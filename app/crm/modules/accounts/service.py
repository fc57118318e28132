from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING

from app.crm.audit import record_event
from app.crm.tenancy import tenant_id_of
from app.crm.utils import clean, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.crm.models import User
    from app.crm.modules.accounts.models import Account


VALID_TYPES = ("individual", "company")
VALID_STATUSES = ("active", "inactive")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_TEXT_FIELDS = (
    "industry",
    "email",
    "phone",
    "website",
    "billing_address_line1",
    "billing_address_line2",
    "billing_city",
    "billing_state",
    "billing_postal_code",
    "billing_country",
    "description",
)


def validate_account_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "name" in payload:
        if not clean(payload.get("name")):
            errors.append("Name is required.")
    account_type = clean(payload.get("account_type"))
    if account_type and account_type not in VALID_TYPES:
        errors.append(f"Invalid account_type. Must be one of: {', '.join(VALID_TYPES)}")
    status = clean(payload.get("status"))
    if status and status not in VALID_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(VALID_STATUSES)}")
    email = clean(payload.get("email"))
    if email and not EMAIL_RE.match(email):
        errors.append("Email is not valid.")
    return errors


def create_account(s: "Session", payload: dict, user: "User | None") -> "Account":
    from app.crm.modules.accounts.models import Account

    now = datetime.utcnow()
    account = Account(
        tenant_id=tenant_id_of(s),
        name=clean(payload.get("name")) or "",
        account_type=clean(payload.get("account_type")) or "company",
        status=clean(payload.get("status")) or "active",
        owner_id=parse_int(payload.get("owner_id")) or (user.id if user else None),
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id if user else None,
        updated_by_user_id=user.id if user else None,
    )
    for field in _TEXT_FIELDS:
        if field in payload:
            setattr(account, field, clean(payload.get(field)))
    if account.email:
        account.email = account.email.lower()
    s.add(account)
    s.flush()

    record_event(
        s,
        actor=user,
        action="account.create",
        entity_type="Account",
        entity_id=str(account.id),
        metadata={"name": account.name, "account_type": account.account_type},
    )
    return account


def update_account(s: "Session", account: "Account", payload: dict, user: "User", reason: str | None = None) -> "Account":
    changes = {}
    for field in ("name", "account_type", "status", *_TEXT_FIELDS):
        if field not in payload:
            continue
        new_val = clean(payload.get(field))
        if field in ("name", "account_type", "status") and not new_val:
            continue
        if field == "email" and new_val:
            new_val = new_val.lower()
        old_val = getattr(account, field)
        if old_val != new_val:
            changes[field] = {"old": old_val, "new": new_val}
            setattr(account, field, new_val)
    if "owner_id" in payload:
        new_owner = parse_int(payload.get("owner_id"))
        if new_owner != account.owner_id:
            changes["owner_id"] = {"old": account.owner_id, "new": new_owner}
            account.owner_id = new_owner

    if changes:
        account.updated_at = datetime.utcnow()
        account.updated_by_user_id = user.id
        record_event(
            s,
            actor=user,
            action="account.update",
            entity_type="Account",
            entity_id=str(account.id),
            reason=reason,
            metadata={"changes": changes},
        )
    return account


def delete_account(s: "Session", account: "Account", user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="account.delete",
        entity_type="Account",
        entity_id=str(account.id),
        metadata={"name": account.name},
    )
    s.delete(account)


# ---------- Merge ----------


def validate_merge_payload(payload: dict) -> list[str]:
    errors = []
    try:
        survivor_id = parse_int(payload.get("survivor_id"))
        duplicate_id = parse_int(payload.get("duplicate_id"))
    except ValueError:
        return ["survivor_id and duplicate_id must be integers."]
    if not survivor_id or not duplicate_id:
        errors.append("Both survivor_id and duplicate_id are required.")
    elif survivor_id == duplicate_id:
        errors.append("Cannot merge a record with itself.")
    if not isinstance(payload.get("merged_data") or {}, dict):
        errors.append("merged_data must be an object.")
    return errors


def reassign_references(
    s: "Session", tenant_id: str, entity_type: str, columns: dict, old_id: int, new_id: int
) -> dict[str, int]:
    """Point every row that references `old_id` at `new_id`; returns counts by label.

    `columns` maps a label to (model, column name). Tasks and attachments are linked
    through entity_type/entity_id and are always included.
    """
    from app.crm.modules.attachments.models import Attachment
    from app.crm.modules.tasks.models import Task

    counts = {}
    for label, (model, column) in columns.items():
        counts[label] = (
            s.query(model)
            .filter(model.tenant_id == tenant_id, getattr(model, column) == old_id)
            .update({column: new_id}, synchronize_session="fetch")
        )
    for label, model in (("tasks", Task), ("attachments", Attachment)):
        counts[label] = (
            s.query(model)
            .filter(model.tenant_id == tenant_id, model.entity_type == entity_type, model.entity_id == old_id)
            .update({"entity_id": new_id}, synchronize_session="fetch")
        )
    return counts


def merge_accounts(
    s: "Session",
    survivor: "Account",
    duplicate: "Account",
    user: "User",
    *,
    merged_data: dict | None = None,
    notes: str | None = None,
) -> dict[str, int]:
    """
    Merge `duplicate` into `survivor` and delete the duplicate.

    Blank survivor fields take the duplicate's value; `merged_data` then overrides
    explicitly. Events, opportunities, quotes, invoices, converted leads, tasks,
    attachments and contact links move to the survivor. A contact linked to both
    keeps one link, primary if either was.
    """
    from app.crm.modules.billing.models import Invoice, Quote
    from app.crm.modules.events.models import Event
    from app.crm.modules.leads.models import Lead
    from app.crm.modules.opportunities.models import Opportunity

    if survivor.id == duplicate.id:
        raise ValueError("Cannot merge an account with itself.")

    duplicate_data = {"id": duplicate.id, "name": duplicate.name, "email": duplicate.email}
    fields_merged = []
    for field in _TEXT_FIELDS:
        if not getattr(survivor, field) and getattr(duplicate, field):
            setattr(survivor, field, getattr(duplicate, field))
            fields_merged.append(field)
    if merged_data:
        update_account(s, survivor, merged_data, user, reason="merge")

    counts = reassign_references(
        s,
        survivor.tenant_id,
        "account",
        {
            "events": (Event, "account_id"),
            "opportunities": (Opportunity, "account_id"),
            "quotes": (Quote, "account_id"),
            "invoices": (Invoice, "account_id"),
            "leads": (Lead, "converted_account_id"),
        },
        duplicate.id,
        survivor.id,
    )

    linked = {ln.contact_id: ln for ln in survivor.contact_links}
    moved = 0
    for link in list(duplicate.contact_links):
        existing = linked.get(link.contact_id)
        if existing is None:
            link.account = survivor
            moved += 1
        else:
            existing.is_primary = existing.is_primary or link.is_primary
            duplicate.contact_links.remove(link)
    counts["contact_links"] = moved

    survivor.updated_at = datetime.utcnow()
    survivor.updated_by_user_id = user.id
    s.flush()
    s.delete(duplicate)
    record_event(
        s,
        actor=user,
        action="account.merge",
        entity_type="Account",
        entity_id=str(survivor.id),
        reason=notes,
        metadata={
            "merged_account_id": duplicate_data["id"],
            "merged_name": duplicate_data["name"],
            "merged_email": duplicate_data["email"],
            "fields_merged": fields_merged,
            "transferred": counts,
        },
    )
    return counts
