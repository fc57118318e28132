from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from app.crm.audit import record_event
from app.crm.tenancy import tenant_id_of
from app.crm.utils import ConflictError, clean, parse_bool, parse_date, parse_decimal, parse_int, parse_time, tenant_get

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.crm.models import User
    from app.crm.modules.events.models import Event, EventDate, EventStaffAssignment, EventType, StaffRole


VALID_STATUSES = ("planning", "scheduled", "confirmed", "completed", "cancelled")
ASSIGNMENT_STATUSES = ("assigned", "confirmed", "declined", "completed")

_TEXT_FIELDS = (
    "location_name",
    "address_line1",
    "address_line2",
    "city",
    "state",
    "postal_code",
    "description",
)
_LINK_FIELDS = ("account_id", "contact_id", "opportunity_id", "event_type_id")


# ---------- Event types / staff roles ----------


def _name_taken(s: "Session", model, name: str, exclude_id: int | None = None) -> bool:
    q = select(func.count(model.id)).where(model.tenant_id == tenant_id_of(s), func.lower(model.name) == name.lower())
    if exclude_id is not None:
        q = q.where(model.id != exclude_id)
    return (s.execute(q).scalar() or 0) > 0


def validate_lookup_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "name" in payload:
        if not clean(payload.get("name")):
            errors.append("Name is required.")
    for field in ("display_order",):
        try:
            parse_int(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be an integer.")
    try:
        rate = parse_decimal(payload.get("default_hourly_rate"))
    except ValueError:
        errors.append("default_hourly_rate must be a number.")
    else:
        if rate is not None and rate < 0:
            errors.append("default_hourly_rate cannot be negative.")
    return errors


def save_event_type(s: "Session", payload: dict, user: "User", event_type: "EventType | None" = None) -> "EventType":
    from app.crm.modules.events.models import EventType

    creating = event_type is None
    name = clean(payload.get("name"))
    if name and _name_taken(s, EventType, name, None if creating else event_type.id):
        raise ConflictError(f"An event type named '{name}' already exists.")
    if creating:
        event_type = EventType(tenant_id=tenant_id_of(s), name=name, created_at=datetime.utcnow())
        s.add(event_type)
    elif name:
        event_type.name = name
    if "description" in payload:
        event_type.description = clean(payload.get("description"))
    if "is_active" in payload or creating:
        event_type.is_active = parse_bool(payload.get("is_active"), default=True)
    if "display_order" in payload or creating:
        event_type.display_order = parse_int(payload.get("display_order"), 0)
    s.flush()
    record_event(
        s,
        actor=user,
        action="event_type.create" if creating else "event_type.update",
        entity_type="EventType",
        entity_id=str(event_type.id),
        metadata={"name": event_type.name, "is_active": event_type.is_active},
    )
    return event_type


def save_staff_role(s: "Session", payload: dict, user: "User", role: "StaffRole | None" = None) -> "StaffRole":
    from app.crm.modules.events.models import StaffRole

    creating = role is None
    name = clean(payload.get("name"))
    if name and _name_taken(s, StaffRole, name, None if creating else role.id):
        raise ConflictError(f"A staff role named '{name}' already exists.")
    if creating:
        role = StaffRole(tenant_id=tenant_id_of(s), name=name, created_at=datetime.utcnow())
        s.add(role)
    elif name:
        role.name = name
    if "description" in payload:
        role.description = clean(payload.get("description"))
    if "default_hourly_rate" in payload:
        role.default_hourly_rate = parse_decimal(payload.get("default_hourly_rate"))
    if "is_active" in payload or creating:
        role.is_active = parse_bool(payload.get("is_active"), default=True)
    s.flush()
    record_event(
        s,
        actor=user,
        action="staff_role.create" if creating else "staff_role.update",
        entity_type="StaffRole",
        entity_id=str(role.id),
        metadata={"name": role.name, "is_active": role.is_active},
    )
    return role


def delete_lookup(s: "Session", obj, user: "User", *, action: str) -> None:
    record_event(s, actor=user, action=action, entity_type=type(obj).__name__, entity_id=str(obj.id), metadata={"name": obj.name})
    s.delete(obj)


# ---------- Events ----------


def validate_event_payload(payload: dict, *, partial: bool = False, current: "Event | None" = None) -> list[str]:
    errors = []
    if not partial or "name" in payload:
        if not clean(payload.get("name")):
            errors.append("Name is required.")
    status = clean(payload.get("status"))
    if status and status not in VALID_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(VALID_STATUSES)}")

    dates = {}
    for field in ("start_date", "end_date"):
        try:
            dates[field] = parse_date(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be YYYY-MM-DD.")
    for field in ("start_time", "end_time"):
        try:
            parse_time(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be HH:MM.")
    for field in (*_LINK_FIELDS, "owner_id", "assigned_to"):
        try:
            parse_int(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be an integer.")

    start = dates.get("start_date") if "start_date" in payload else (current.start_date if current else None)
    end = dates.get("end_date") if "end_date" in payload else (current.end_date if current else None)
    if start and end and end < start:
        errors.append("end_date cannot be before start_date.")
    return errors


def _check_links(s: "Session", payload: dict) -> None:
    from app.crm.modules.accounts.models import Account
    from app.crm.modules.contacts.models import Contact
    from app.crm.modules.events.models import EventType
    from app.crm.modules.opportunities.models import Opportunity

    models = {"account_id": Account, "contact_id": Contact, "opportunity_id": Opportunity, "event_type_id": EventType}
    for field, model in models.items():
        ref_id = parse_int(payload.get(field))
        if ref_id is not None and tenant_get(s, model, ref_id) is None:
            raise ValueError(f"{field} not found: {ref_id}")


def create_event(s: "Session", payload: dict, user: "User | None") -> "Event":
    """Insert an event. Callers fire event_created workflows once the row exists."""
    from app.crm.modules.events.models import Event

    _check_links(s, payload)
    now = datetime.utcnow()
    event = Event(
        tenant_id=tenant_id_of(s),
        name=clean(payload.get("name")) or "",
        status=clean(payload.get("status")) or "planning",
        start_date=parse_date(payload.get("start_date")),
        end_date=parse_date(payload.get("end_date")),
        start_time=parse_time(payload.get("start_time")),
        end_time=parse_time(payload.get("end_time")),
        owner_id=parse_int(payload.get("owner_id")) or (user.id if user else None),
        assigned_to=parse_int(payload.get("assigned_to")),
        converted_from_opportunity_id=parse_int(payload.get("converted_from_opportunity_id")),
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id if user else None,
        updated_by_user_id=user.id if user else None,
    )
    for field in _LINK_FIELDS:
        setattr(event, field, parse_int(payload.get(field)))
    for field in _TEXT_FIELDS:
        if field in payload:
            setattr(event, field, clean(payload.get(field)))
    s.add(event)
    s.flush()

    record_event(
        s,
        actor=user,
        action="event.create",
        entity_type="Event",
        entity_id=str(event.id),
        metadata={
            "name": event.name,
            "event_type_id": event.event_type_id,
            "start_date": event.start_date.isoformat() if event.start_date else None,
        },
    )
    return event


def update_event(s: "Session", event: "Event", payload: dict, user: "User", reason: str | None = None) -> "Event":
    _check_links(s, payload)
    changes = {}

    def _set(field, new_val):
        old_val = getattr(event, field)
        if old_val != new_val:
            changes[field] = {"old": old_val, "new": new_val}
            setattr(event, field, new_val)

    for field in ("name", "status", *_TEXT_FIELDS):
        if field in payload:
            new_val = clean(payload.get(field))
            if field in ("name", "status") and not new_val:
                continue
            _set(field, new_val)
    for field in ("start_date", "end_date"):
        if field in payload:
            _set(field, parse_date(payload.get(field)))
    for field in ("start_time", "end_time"):
        if field in payload:
            _set(field, parse_time(payload.get(field)))
    for field in (*_LINK_FIELDS, "owner_id", "assigned_to"):
        if field in payload:
            _set(field, parse_int(payload.get(field)))

    if changes:
        event.updated_at = datetime.utcnow()
        event.updated_by_user_id = user.id
        record_event(
            s,
            actor=user,
            action="event.update",
            entity_type="Event",
            entity_id=str(event.id),
            reason=reason,
            metadata={"changes": changes},
        )
    return event


def delete_event(s: "Session", event: "Event", user: "User") -> None:
    record_event(s, actor=user, action="event.delete", entity_type="Event", entity_id=str(event.id), metadata={"name": event.name})
    s.delete(event)


# ---------- Event dates ----------


def validate_event_date_payload(payload: dict) -> list[str]:
    errors = []
    try:
        if parse_date(payload.get("event_date")) is None:
            errors.append("event_date is required.")
    except ValueError:
        errors.append("event_date must be YYYY-MM-DD.")
    for field in ("start_time", "end_time"):
        try:
            parse_time(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be HH:MM.")
    return errors


def build_event_date(tenant_id: str, payload: dict) -> "EventDate":
    from app.crm.modules.events.models import EventDate

    return EventDate(
        tenant_id=tenant_id,
        event_date=parse_date(payload.get("event_date")),
        start_time=parse_time(payload.get("start_time")),
        end_time=parse_time(payload.get("end_time")),
        location=clean(payload.get("location")),
        notes=clean(payload.get("notes")),
        status=clean(payload.get("status")) or "scheduled",
        created_at=datetime.utcnow(),
    )


def add_event_date(s: "Session", event: "Event", payload: dict, user: "User") -> "EventDate":
    row = build_event_date(event.tenant_id, payload)
    event.event_dates.append(row)
    if event.start_date is None:
        event.start_date = row.event_date
    s.flush()
    record_event(
        s,
        actor=user,
        action="event.date.add",
        entity_type="Event",
        entity_id=str(event.id),
        metadata={"event_date_id": row.id, "event_date": row.event_date.isoformat()},
    )
    return row


def remove_event_date(s: "Session", event: "Event", event_date_id: int, user: "User") -> None:
    row = next((d for d in event.event_dates if d.id == event_date_id), None)
    if row is None:
        raise ValueError(f"Event date not found: {event_date_id}")
    event.event_dates.remove(row)
    s.delete(row)
    record_event(
        s,
        actor=user,
        action="event.date.remove",
        entity_type="Event",
        entity_id=str(event.id),
        metadata={"event_date_id": event_date_id, "event_date": row.event_date.isoformat()},
    )


# ---------- Staff assignments ----------


def find_staff_assignment(
    s: "Session", event_id: int, user_id: int, staff_role_id: int | None, event_date_id: int | None = None
) -> "EventStaffAssignment | None":
    from app.crm.modules.events.models import EventStaffAssignment

    q = s.query(EventStaffAssignment).filter(
        EventStaffAssignment.tenant_id == tenant_id_of(s),
        EventStaffAssignment.event_id == event_id,
        EventStaffAssignment.user_id == user_id,
    )
    q = q.filter(
        EventStaffAssignment.staff_role_id.is_(None)
        if staff_role_id is None
        else EventStaffAssignment.staff_role_id == staff_role_id
    )
    q = q.filter(
        EventStaffAssignment.event_date_id.is_(None)
        if event_date_id is None
        else EventStaffAssignment.event_date_id == event_date_id
    )
    return q.first()


def validate_staff_payload(payload: dict) -> list[str]:
    errors = []
    try:
        if parse_int(payload.get("user_id")) is None:
            errors.append("user_id is required.")
        parse_int(payload.get("staff_role_id"))
        parse_int(payload.get("event_date_id"))
    except ValueError as e:
        errors.append(str(e))
    try:
        parse_decimal(payload.get("hourly_rate"))
    except ValueError:
        errors.append("hourly_rate must be a number.")
    status = clean(payload.get("status"))
    if status and status not in ASSIGNMENT_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(ASSIGNMENT_STATUSES)}")
    return errors


def assign_staff(
    s: "Session", event: "Event", payload: dict, user: "User | None", *, audit: bool = True
) -> "EventStaffAssignment":
    from app.crm.modules.events.models import EventStaffAssignment, StaffRole

    user_id = parse_int(payload.get("user_id"))
    role_id = parse_int(payload.get("staff_role_id"))
    date_id = parse_int(payload.get("event_date_id"))

    role = None
    if role_id is not None:
        role = tenant_get(s, StaffRole, role_id)
        if role is None:
            raise ValueError(f"Staff role not found: {role_id}")
    if date_id is not None and not any(d.id == date_id for d in event.event_dates):
        raise ValueError(f"Event date {date_id} does not belong to this event.")
    if find_staff_assignment(s, event.id, user_id, role_id, date_id) is not None:
        raise ConflictError("This user is already assigned to the event in that role.")

    rate = parse_decimal(payload.get("hourly_rate"))
    if rate is None and role is not None:
        rate = role.default_hourly_rate
    assignment = EventStaffAssignment(
        tenant_id=event.tenant_id,
        user_id=user_id,
        staff_role_id=role_id,
        event_date_id=date_id,
        hourly_rate=Decimal(rate) if rate is not None else None,
        notes=clean(payload.get("notes")),
        status=clean(payload.get("status")) or "assigned",
        created_at=datetime.utcnow(),
    )
    event.staff_assignments.append(assignment)
    s.flush()
    if audit:
        record_event(
            s,
            actor=user,
            action="event.staff.assign",
            entity_type="Event",
            entity_id=str(event.id),
            metadata={"assignment_id": assignment.id, "user_id": user_id, "staff_role_id": role_id},
        )
    return assignment


def unassign_staff(s: "Session", event: "Event", assignment_id: int, user: "User") -> None:
    assignment = next((a for a in event.staff_assignments if a.id == assignment_id), None)
    if assignment is None:
        raise ValueError(f"Staff assignment not found: {assignment_id}")
    event.staff_assignments.remove(assignment)
    s.delete(assignment)
    record_event(
        s,
        actor=user,
        action="event.staff.unassign",
        entity_type="Event",
        entity_id=str(event.id),
        metadata={"assignment_id": assignment_id, "user_id": assignment.user_id},
    )
