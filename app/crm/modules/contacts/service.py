from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.crm.audit import record_event
from app.crm.modules.accounts.service import EMAIL_RE, reassign_references
from app.crm.tenancy import tenant_id_of
from app.crm.utils import ConflictError, clean, parse_bool, parse_int, tenant_get

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.crm.models import User
    from app.crm.modules.contacts.models import Contact, ContactAccount


VALID_STATUSES = ("active", "inactive")

_TEXT_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "mobile",
    "title",
    "department",
    "mailing_address_line1",
    "mailing_address_line2",
    "mailing_city",
    "mailing_state",
    "mailing_postal_code",
    "mailing_country",
    "description",
)


def validate_contact_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "first_name" in payload or "last_name" in payload:
        if not clean(payload.get("first_name")) and not clean(payload.get("last_name")):
            errors.append("First name or last name is required.")
    email = clean(payload.get("email"))
    if email and not EMAIL_RE.match(email):
        errors.append("Email is not valid.")
    status = clean(payload.get("status"))
    if status and status not in VALID_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(VALID_STATUSES)}")
    return errors


def create_contact(s: "Session", payload: dict, user: "User | None") -> "Contact":
    from app.crm.modules.contacts.models import Contact

    now = datetime.utcnow()
    contact = Contact(
        tenant_id=tenant_id_of(s),
        status=clean(payload.get("status")) or "active",
        owner_id=parse_int(payload.get("owner_id")) or (user.id if user else None),
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id if user else None,
        updated_by_user_id=user.id if user else None,
    )
    for field in _TEXT_FIELDS:
        if field in payload:
            setattr(contact, field, clean(payload.get(field)))
    if contact.email:
        contact.email = contact.email.lower()
    s.add(contact)
    s.flush()

    account_id = parse_int(payload.get("account_id"))
    if account_id:
        link_contact_to_account(s, contact, account_id, user, role=clean(payload.get("role")), is_primary=True, audit=False)

    record_event(
        s,
        actor=user,
        action="contact.create",
        entity_type="Contact",
        entity_id=str(contact.id),
        metadata={"name": contact.full_name, "email": contact.email, "account_id": account_id},
    )
    return contact


def update_contact(s: "Session", contact: "Contact", payload: dict, user: "User", reason: str | None = None) -> "Contact":
    changes = {}
    for field in ("status", *_TEXT_FIELDS):
        if field not in payload:
            continue
        new_val = clean(payload.get(field))
        if field == "status" and not new_val:
            continue
        if field == "email" and new_val:
            new_val = new_val.lower()
        old_val = getattr(contact, field)
        if old_val != new_val:
            changes[field] = {"old": old_val, "new": new_val}
            setattr(contact, field, new_val)
    if "owner_id" in payload:
        new_owner = parse_int(payload.get("owner_id"))
        if new_owner != contact.owner_id:
            changes["owner_id"] = {"old": contact.owner_id, "new": new_owner}
            contact.owner_id = new_owner

    if changes:
        contact.updated_at = datetime.utcnow()
        contact.updated_by_user_id = user.id
        record_event(
            s,
            actor=user,
            action="contact.update",
            entity_type="Contact",
            entity_id=str(contact.id),
            reason=reason,
            metadata={"changes": changes},
        )
    return contact


def delete_contact(s: "Session", contact: "Contact", user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="contact.delete",
        entity_type="Contact",
        entity_id=str(contact.id),
        metadata={"name": contact.full_name},
    )
    s.delete(contact)


def link_contact_to_account(
    s: "Session",
    contact: "Contact",
    account_id: int,
    user: "User | None",
    *,
    role: str | None = None,
    is_primary: bool = False,
    audit: bool = True,
) -> "ContactAccount":
    """Link (or re-link) a contact to an account. A primary link demotes the contact's other links."""
    from app.crm.modules.accounts.models import Account
    from app.crm.modules.contacts.models import ContactAccount

    account = tenant_get(s, Account, account_id)
    if account is None:
        raise ValueError(f"Account not found: {account_id}")

    link = next((ln for ln in contact.account_links if ln.account_id == account.id), None)
    if link is None:
        link = ContactAccount(tenant_id=contact.tenant_id, contact=contact, account=account, role=role, is_primary=False)
        s.add(link)
    elif role is not None:
        link.role = role

    if is_primary:
        for other in contact.account_links:
            other.is_primary = other is link
        link.is_primary = True

    s.flush()
    if audit:
        record_event(
            s,
            actor=user,
            action="contact.link_account",
            entity_type="Contact",
            entity_id=str(contact.id),
            metadata={"account_id": account.id, "role": link.role, "is_primary": link.is_primary},
        )
    return link


def unlink_contact_from_account(s: "Session", contact: "Contact", account_id: int, user: "User") -> None:
    link = next((ln for ln in contact.account_links if ln.account_id == account_id), None)
    if link is None:
        raise ConflictError("Contact is not linked to this account.")
    contact.account_links.remove(link)
    s.delete(link)
    record_event(
        s,
        actor=user,
        action="contact.unlink_account",
        entity_type="Contact",
        entity_id=str(contact.id),
        metadata={"account_id": account_id},
    )


def link_payload_flags(payload: dict) -> tuple[int | None, str | None, bool]:
    return parse_int(payload.get("account_id")), clean(payload.get("role")), parse_bool(payload.get("is_primary"))


def merge_contacts(
    s: "Session",
    survivor: "Contact",
    duplicate: "Contact",
    user: "User",
    *,
    merged_data: dict | None = None,
    notes: str | None = None,
) -> dict[str, int]:
    """Merge `duplicate` into `survivor`, move everything that points at it, then delete it."""
    from app.crm.modules.billing.models import Invoice, Quote
    from app.crm.modules.events.models import Event
    from app.crm.modules.leads.models import Lead
    from app.crm.modules.opportunities.models import Opportunity

    if survivor.id == duplicate.id:
        raise ValueError("Cannot merge a contact with itself.")

    duplicate_data = {"id": duplicate.id, "name": duplicate.full_name, "email": duplicate.email}
    fields_merged = []
    for field in _TEXT_FIELDS:
        if not getattr(survivor, field) and getattr(duplicate, field):
            setattr(survivor, field, getattr(duplicate, field))
            fields_merged.append(field)
    if merged_data:
        update_contact(s, survivor, merged_data, user, reason="merge")

    counts = reassign_references(
        s,
        survivor.tenant_id,
        "contact",
        {
            "events": (Event, "contact_id"),
            "opportunities": (Opportunity, "contact_id"),
            "quotes": (Quote, "contact_id"),
            "invoices": (Invoice, "contact_id"),
            "leads": (Lead, "converted_contact_id"),
        },
        duplicate.id,
        survivor.id,
    )

    # Survivor keeps its own primary account; moved links are secondary.
    linked = {ln.account_id for ln in survivor.account_links}
    has_primary = any(ln.is_primary for ln in survivor.account_links)
    moved = 0
    for link in list(duplicate.account_links):
        if link.account_id in linked:
            duplicate.account_links.remove(link)
            continue
        if has_primary:
            link.is_primary = False
        has_primary = has_primary or link.is_primary
        link.contact = survivor
        moved += 1
    counts["account_links"] = moved

    survivor.updated_at = datetime.utcnow()
    survivor.updated_by_user_id = user.id
    s.flush()
    s.delete(duplicate)
    record_event(
        s,
        actor=user,
        action="contact.merge",
        entity_type="Contact",
        entity_id=str(survivor.id),
        reason=notes,
        metadata={
            "merged_contact_id": duplicate_data["id"],
            "merged_name": duplicate_data["name"],
            "merged_email": duplicate_data["email"],
            "fields_merged": fields_merged,
            "transferred": counts,
        },
    )
    return counts
