from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.crm.audit import record_event
from app.crm.tenancy import tenant_id_of
from app.crm.utils import ConflictError, clean, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.crm.models import User
    from app.crm.modules.tickets.models import Ticket


VALID_TYPES = ("bug", "feature", "question", "improvement")
VALID_STATUSES = ("new", "in_progress", "resolved", "closed")
VALID_PRIORITIES = ("low", "medium", "high", "critical")


def validate_ticket_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "title" in payload:
        if not clean(payload.get("title")):
            errors.append("Title is required.")
    for field, allowed in (("ticket_type", VALID_TYPES), ("status", VALID_STATUSES), ("priority", VALID_PRIORITIES)):
        value = clean(payload.get(field))
        if value and value not in allowed:
            errors.append(f"Invalid {field}. Must be one of: {', '.join(allowed)}")
    try:
        parse_int(payload.get("assigned_to"))
    except ValueError:
        errors.append("assigned_to must be an integer.")
    return errors


def create_ticket(s: "Session", payload: dict, user: "User") -> "Ticket":
    from app.crm.modules.tickets.models import Ticket

    now = datetime.utcnow()
    ticket = Ticket(
        tenant_id=tenant_id_of(s),
        title=clean(payload.get("title")) or "",
        description=clean(payload.get("description")),
        ticket_type=clean(payload.get("ticket_type")) or "bug",
        status="new",
        priority=clean(payload.get("priority")) or "medium",
        page_url=clean(payload.get("page_url")),
        reported_by=user.id,
        assigned_to=parse_int(payload.get("assigned_to")),
        votes=0,
        created_at=now,
        updated_at=now,
    )
    s.add(ticket)
    s.flush()
    record_event(
        s,
        actor=user,
        action="ticket.create",
        entity_type="Ticket",
        entity_id=str(ticket.id),
        metadata={"title": ticket.title, "ticket_type": ticket.ticket_type, "priority": ticket.priority},
    )
    return ticket


def update_ticket(s: "Session", ticket: "Ticket", payload: dict, user: "User") -> "Ticket":
    changes = {}
    for field in ("title", "ticket_type", "status", "priority"):
        if field in payload and clean(payload.get(field)):
            new_val = clean(payload.get(field))
            if getattr(ticket, field) != new_val:
                changes[field] = {"old": getattr(ticket, field), "new": new_val}
                setattr(ticket, field, new_val)
    for field in ("description", "page_url", "resolution_notes"):
        if field in payload:
            new_val = clean(payload.get(field))
            if getattr(ticket, field) != new_val:
                changes[field] = {"old": getattr(ticket, field), "new": new_val}
                setattr(ticket, field, new_val)
    if "assigned_to" in payload:
        new_val = parse_int(payload.get("assigned_to"))
        if ticket.assigned_to != new_val:
            changes["assigned_to"] = {"old": ticket.assigned_to, "new": new_val}
            ticket.assigned_to = new_val

    if "status" in changes:
        if ticket.status in ("resolved", "closed") and ticket.resolved_at is None:
            ticket.resolved_at = datetime.utcnow()
            ticket.resolved_by = user.id
        elif ticket.status in ("new", "in_progress"):
            ticket.resolved_at = None
            ticket.resolved_by = None

    if changes:
        ticket.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="ticket.update",
            entity_type="Ticket",
            entity_id=str(ticket.id),
            metadata={"changes": changes},
        )
    return ticket


def resolve_ticket(s: "Session", ticket: "Ticket", user: "User", resolution_notes: str | None) -> "Ticket":
    if ticket.status in ("resolved", "closed"):
        raise ConflictError(f"Ticket is already {ticket.status}.")
    now = datetime.utcnow()
    ticket.status = "resolved"
    ticket.resolved_at = now
    ticket.resolved_by = user.id
    ticket.resolution_notes = resolution_notes
    ticket.updated_at = now
    record_event(
        s,
        actor=user,
        action="ticket.resolve",
        entity_type="Ticket",
        entity_id=str(ticket.id),
        metadata={"resolution_notes": resolution_notes},
    )
    return ticket


def vote_ticket(s: "Session", ticket: "Ticket", user: "User") -> "Ticket":
    ticket.votes = (ticket.votes or 0) + 1
    record_event(s, actor=user, action="ticket.vote", entity_type="Ticket", entity_id=str(ticket.id), metadata={"votes": ticket.votes})
    return ticket


def delete_ticket(s: "Session", ticket: "Ticket", user: "User") -> None:
    record_event(s, actor=user, action="ticket.delete", entity_type="Ticket", entity_id=str(ticket.id), metadata={"title": ticket.title})
    s.delete(ticket)
