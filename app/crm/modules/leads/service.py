from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from app.crm.audit import record_event
from app.crm.modules.accounts.service import EMAIL_RE
from app.crm.tenancy import tenant_id_of
from app.crm.utils import ConflictError, clean, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.crm.models import User
    from app.crm.modules.accounts.models import Account
    from app.crm.modules.contacts.models import Contact
    from app.crm.modules.leads.models import Lead
    from app.crm.modules.opportunities.models import Opportunity


VALID_STATUSES = ("new", "contacted", "qualified", "unqualified", "converted")
VALID_RATINGS = ("hot", "warm", "cold")

_TEXT_FIELDS = ("first_name", "last_name", "email", "phone", "company", "title", "source", "description")


def validate_lead_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or any(k in payload for k in ("first_name", "last_name", "company")):
        if not any(clean(payload.get(k)) for k in ("first_name", "last_name", "company")):
            errors.append("A name or company is required.")
    email = clean(payload.get("email"))
    if email and not EMAIL_RE.match(email):
        errors.append("Email is not valid.")
    status = clean(payload.get("status"))
    if status and status not in VALID_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(VALID_STATUSES)}")
    if status == "converted":
        errors.append("Use the convert operation to convert a lead.")
    rating = clean(payload.get("rating"))
    if rating and rating not in VALID_RATINGS:
        errors.append(f"Invalid rating. Must be one of: {', '.join(VALID_RATINGS)}")
    return errors


def create_lead(s: "Session", payload: dict, user: "User | None") -> "Lead":
    from app.crm.modules.leads.models import Lead

    now = datetime.utcnow()
    lead = Lead(
        tenant_id=tenant_id_of(s),
        status=clean(payload.get("status")) or "new",
        rating=clean(payload.get("rating")),
        owner_id=parse_int(payload.get("owner_id")) or (user.id if user else None),
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id if user else None,
        updated_by_user_id=user.id if user else None,
    )
    for field in _TEXT_FIELDS:
        if field in payload:
            setattr(lead, field, clean(payload.get(field)))
    if lead.email:
        lead.email = lead.email.lower()
    s.add(lead)
    s.flush()

    record_event(
        s,
        actor=user,
        action="lead.create",
        entity_type="Lead",
        entity_id=str(lead.id),
        metadata={"name": lead.full_name, "company": lead.company, "source": lead.source},
    )
    return lead


def update_lead(s: "Session", lead: "Lead", payload: dict, user: "User", reason: str | None = None) -> "Lead":
    if lead.is_converted:
        raise ConflictError("Converted leads cannot be edited.")
    changes = {}
    for field in ("status", "rating", *_TEXT_FIELDS):
        if field not in payload:
            continue
        new_val = clean(payload.get(field))
        if field == "status" and not new_val:
            continue
        if field == "email" and new_val:
            new_val = new_val.lower()
        old_val = getattr(lead, field)
        if old_val != new_val:
            changes[field] = {"old": old_val, "new": new_val}
            setattr(lead, field, new_val)
    if "owner_id" in payload:
        new_owner = parse_int(payload.get("owner_id"))
        if new_owner != lead.owner_id:
            changes["owner_id"] = {"old": lead.owner_id, "new": new_owner}
            lead.owner_id = new_owner

    if changes:
        lead.updated_at = datetime.utcnow()
        lead.updated_by_user_id = user.id
        record_event(
            s,
            actor=user,
            action="lead.update",
            entity_type="Lead",
            entity_id=str(lead.id),
            reason=reason,
            metadata={"changes": changes},
        )
    return lead


def delete_lead(s: "Session", lead: "Lead", user: "User") -> None:
    record_event(s, actor=user, action="lead.delete", entity_type="Lead", entity_id=str(lead.id), metadata={"name": lead.full_name})
    s.delete(lead)


@dataclass
class LeadConversion:
    account: "Account"
    contact: "Contact | None"
    opportunity: "Opportunity | None"


def convert_lead(
    s: "Session",
    lead: "Lead",
    user: "User | None",
    *,
    create_opportunity: bool = False,
    opportunity_name: str | None = None,
) -> LeadConversion:
    """
    Turn a lead into an account (named after the company, or the person when there is
    no company), plus a contact when the lead came from a company.
    """
    from app.crm.modules.accounts.service import create_account
    from app.crm.modules.contacts.service import create_contact

    if lead.is_converted:
        raise ConflictError("Lead has already been converted.")

    person = lead.full_name
    account = create_account(
        s,
        {
            "name": lead.company or person or "Unnamed account",
            "account_type": "company" if lead.company else "individual",
            "email": lead.email,
            "phone": lead.phone,
            "owner_id": lead.owner_id,
            "description": lead.description,
        },
        user,
    )

    contact = None
    if lead.company:
        contact = create_contact(
            s,
            {
                "first_name": lead.first_name,
                "last_name": lead.last_name,
                "email": lead.email,
                "phone": lead.phone,
                "title": lead.title,
                "owner_id": lead.owner_id,
                "account_id": account.id,
            },
            user,
        )

    opportunity = None
    if create_opportunity:
        from app.crm.modules.opportunities.service import create_opportunity as _create_opportunity

        opportunity = _create_opportunity(
            s,
            {
                "name": opportunity_name or f"{account.name} opportunity",
                "account_id": account.id,
                "contact_id": contact.id if contact else None,
                "lead_id": lead.id,
                "owner_id": lead.owner_id,
                "lead_source": lead.source,
            },
            user,
        )

    lead.is_converted = True
    lead.status = "converted"
    lead.converted_at = datetime.utcnow()
    lead.converted_account_id = account.id
    lead.converted_contact_id = contact.id if contact else None
    lead.converted_opportunity_id = opportunity.id if opportunity else None
    lead.updated_at = lead.converted_at
    s.flush()

    record_event(
        s,
        actor=user,
        action="lead.convert",
        entity_type="Lead",
        entity_id=str(lead.id),
        metadata={
            "account_id": account.id,
            "contact_id": contact.id if contact else None,
            "opportunity_id": opportunity.id if opportunity else None,
        },
    )
    return LeadConversion(account=account, contact=contact, opportunity=opportunity)
