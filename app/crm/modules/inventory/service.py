from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from app.crm.audit import record_event
from app.crm.tenancy import tenant_id_of
from app.crm.utils import ConflictError, clean, parse_date, parse_int, serialize, tenant_get

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.crm.models import User
    from app.crm.modules.events.models import Event
    from app.crm.modules.inventory.models import InventoryItem


VALID_STATUSES = ("available", "in_use", "maintenance", "retired")
ASSIGNMENT_TYPES = ("none", "long_term_staff", "event_checkout", "warehouse")
ASSIGNED_TO_TYPES = ("user", "location")
OUT_OF_SERVICE = ("maintenance", "retired")

_TEXT_FIELDS = ("item_name", "category", "serial_number", "assigned_to_id", "assigned_to_name", "notes")


def validate_item_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "item_name" in payload:
        if not clean(payload.get("item_name")):
            errors.append("item_name is required.")
    for field, allowed in (
        ("status", VALID_STATUSES),
        ("assignment_type", ASSIGNMENT_TYPES),
        ("assigned_to_type", ASSIGNED_TO_TYPES),
    ):
        value = clean(payload.get(field))
        if value and value not in allowed:
            errors.append(f"Invalid {field}. Must be one of: {', '.join(allowed)}")
    try:
        parse_date(payload.get("expected_return_date"))
    except ValueError:
        errors.append("expected_return_date must be YYYY-MM-DD.")
    try:
        parse_int(payload.get("event_id"))
    except ValueError:
        errors.append("event_id must be an integer.")
    return errors


def _apply_fields(s: "Session", item: "InventoryItem", payload: dict, changes: dict) -> None:
    from app.crm.modules.events.models import Event

    def _set(field, new_val):
        old_val = getattr(item, field)
        if old_val != new_val:
            changes[field] = {"old": old_val, "new": new_val}
            setattr(item, field, new_val)

    for field in _TEXT_FIELDS:
        if field in payload:
            value = clean(payload.get(field))
            if field == "item_name" and not value:
                continue
            _set(field, value)
    for field in ("status", "assignment_type"):
        if field in payload and clean(payload.get(field)):
            _set(field, clean(payload.get(field)))
    if "assigned_to_type" in payload:
        _set("assigned_to_type", clean(payload.get("assigned_to_type")))
    if "expected_return_date" in payload:
        _set("expected_return_date", parse_date(payload.get("expected_return_date")))
    if "event_id" in payload:
        event_id = parse_int(payload.get("event_id"))
        if event_id is not None and tenant_get(s, Event, event_id) is None:
            raise ValueError(f"event_id not found: {event_id}")
        _set("event_id", event_id)


def create_item(s: "Session", payload: dict, user: "User") -> "InventoryItem":
    from app.crm.modules.inventory.models import InventoryItem

    now = datetime.utcnow()
    item = InventoryItem(
        tenant_id=tenant_id_of(s),
        item_name="",
        status="available",
        assignment_type="none",
        created_at=now,
        updated_at=now,
    )
    _apply_fields(s, item, payload, {})
    s.add(item)
    s.flush()
    record_event(
        s,
        actor=user,
        action="inventory.create",
        entity_type="InventoryItem",
        entity_id=str(item.id),
        metadata={"item_name": item.item_name, "category": item.category, "serial_number": item.serial_number},
    )
    return item


def update_item(s: "Session", item: "InventoryItem", payload: dict, user: "User", reason: str | None = None) -> "InventoryItem":
    changes: dict[str, Any] = {}
    _apply_fields(s, item, payload, changes)
    if changes:
        item.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="inventory.update",
            entity_type="InventoryItem",
            entity_id=str(item.id),
            reason=reason,
            metadata={"changes": changes},
        )
    return item


def delete_item(s: "Session", item: "InventoryItem", user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="inventory.delete",
        entity_type="InventoryItem",
        entity_id=str(item.id),
        metadata={"item_name": item.item_name},
    )
    s.delete(item)


def checkout_item(s: "Session", item: "InventoryItem", payload: dict, user: "User") -> "InventoryItem":
    from app.crm.modules.events.models import Event

    if item.status in OUT_OF_SERVICE:
        raise ConflictError(f"Item is {item.status} and cannot be checked out.")
    if item.assignment_type == "event_checkout":
        raise ConflictError("Item is already checked out.")
    event_id = parse_int(payload.get("event_id"))
    event = tenant_get(s, Event, event_id)
    if event is None:
        raise ValueError("event_id is required and must reference an existing event.")
    return_date = parse_date(payload.get("expected_return_date")) or event.end_date or event.start_date

    item.assignment_type = "event_checkout"
    item.event_id = event.id
    item.expected_return_date = return_date
    item.status = "in_use"
    if "assigned_to_id" in payload:
        item.assigned_to_type = clean(payload.get("assigned_to_type")) or "user"
        item.assigned_to_id = clean(payload.get("assigned_to_id"))
        item.assigned_to_name = clean(payload.get("assigned_to_name"))
    item.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="inventory.checkout",
        entity_type="InventoryItem",
        entity_id=str(item.id),
        metadata={"event_id": event.id, "expected_return_date": return_date.isoformat() if return_date else None},
    )
    return item


def checkin_item(s: "Session", item: "InventoryItem", user: "User", notes: str | None = None) -> "InventoryItem":
    if item.assignment_type != "event_checkout":
        raise ConflictError("Item is not checked out.")
    old_event = item.event_id
    item.assignment_type = "none"
    item.event_id = None
    item.expected_return_date = None
    item.assigned_to_type = None
    item.assigned_to_id = None
    item.assigned_to_name = None
    if item.status == "in_use":
        item.status = "available"
    if notes:
        item.notes = notes
    item.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="inventory.checkin",
        entity_type="InventoryItem",
        entity_id=str(item.id),
        metadata={"event_id": old_event},
    )
    return item


# ---------- Availability ----------


def item_availability(
    item: "InventoryItem", event: "Event | None", start: date, end: date
) -> tuple[bool, str | None, dict[str, Any]]:
    """Returns (available, reason, extra fields) for one item over [start, end]."""
    extra: dict[str, Any] = {}
    who = item.assigned_to_name or "assigned"

    if item.assignment_type == "long_term_staff":
        return False, f"Assigned to {who} (long-term)", extra
    if item.assignment_type == "event_checkout" and item.expected_return_date:
        if item.expected_return_date > start:
            if item.expected_return_date <= end:
                extra["returns_during_period"] = True
                extra["available_from"] = item.expected_return_date.isoformat()
            return False, f"Returns {item.expected_return_date.isoformat()} ({who})", extra
    elif item.event_id and event is not None and event.start_date:
        if start <= event.start_date <= end:
            return False, f"Booked for {event.name} on {event.start_date.isoformat()}", extra
    if item.status in OUT_OF_SERVICE:
        return False, f"Item is {item.status}", extra
    return True, None, extra


def check_availability(
    items: list["InventoryItem"], events_by_id: dict[int, "Event"], start: date, end: date
) -> dict[str, Any]:
    available, unavailable = [], []
    for item in items:
        event = events_by_id.get(item.event_id) if item.event_id else None
        ok, reason, extra = item_availability(item, event, start, end)
        row = serialize(item)
        row.update(extra)
        if event is not None:
            row["event_name"] = event.name
            row["event_date"] = event.start_date.isoformat() if event.start_date else None
        if ok:
            available.append(row)
        else:
            row["unavailable_reason"] = reason
            unavailable.append(row)
    return {
        "available": available,
        "unavailable": unavailable,
        "summary": {
            "total": len(items),
            "available": len(available),
            "unavailable": len(unavailable),
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
        },
    }
