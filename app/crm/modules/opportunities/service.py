from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from app.crm.audit import record_event
from app.crm.tenancy import tenant_id_of
from app.crm.utils import (
    ConflictError,
    clean,
    money,
    parse_date,
    parse_decimal,
    parse_int,
    parse_time,
    tenant_get,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.crm.models import User
    from app.crm.modules.billing.models import Invoice
    from app.crm.modules.events.models import Event, EventDate
    from app.crm.modules.opportunities.models import Opportunity, OpportunityLineItem


VALID_STAGES = ("prospecting", "qualification", "proposal", "negotiation", "closed_won", "closed_lost")
CLOSED_STAGES = {"closed_won": "won", "closed_lost": "lost"}
VALID_DATE_TYPES = ("single_day", "multi_day")
STATS_PERIODS = ("week", "month", "year", "all")

_TEXT_FIELDS = ("description", "lead_source", "next_step")
_LINK_FIELDS = ("account_id", "contact_id", "lead_id", "event_type_id")


def validate_opportunity_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "name" in payload:
        if not clean(payload.get("name")):
            errors.append("Name is required.")
    stage = clean(payload.get("stage"))
    if stage and stage not in VALID_STAGES:
        errors.append(f"Invalid stage. Must be one of: {', '.join(VALID_STAGES)}")
    date_type = clean(payload.get("date_type"))
    if date_type and date_type not in VALID_DATE_TYPES:
        errors.append(f"Invalid date_type. Must be one of: {', '.join(VALID_DATE_TYPES)}")
    try:
        probability = parse_int(payload.get("probability"))
    except ValueError:
        errors.append("probability must be an integer.")
    else:
        if probability is not None and not 0 <= probability <= 100:
            errors.append("probability must be between 0 and 100.")
    try:
        amount = parse_decimal(payload.get("amount"))
    except ValueError:
        errors.append("amount must be a number.")
    else:
        if amount is not None and amount < 0:
            errors.append("amount cannot be negative.")
    for field in ("expected_close_date", "actual_close_date"):
        try:
            parse_date(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be YYYY-MM-DD.")
    for field in (*_LINK_FIELDS, "owner_id"):
        try:
            parse_int(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be an integer.")
    return errors


def _check_links(s: "Session", payload: dict) -> None:
    from app.crm.modules.accounts.models import Account
    from app.crm.modules.contacts.models import Contact
    from app.crm.modules.events.models import EventType
    from app.crm.modules.leads.models import Lead

    models = {"account_id": Account, "contact_id": Contact, "lead_id": Lead, "event_type_id": EventType}
    for field, model in models.items():
        ref_id = parse_int(payload.get(field))
        if ref_id is not None and tenant_get(s, model, ref_id) is None:
            raise ValueError(f"{field} not found: {ref_id}")


def apply_stage(opp: "Opportunity", stage: str, actual_close_date: date | None = None) -> None:
    """Closed stages set status and close date; leaving a closed stage reopens."""
    opp.stage = stage
    if stage in CLOSED_STAGES:
        opp.status = CLOSED_STAGES[stage]
        opp.probability = 100 if stage == "closed_won" else 0
        opp.actual_close_date = actual_close_date or opp.actual_close_date or date.today()
    else:
        opp.status = "open"
        opp.actual_close_date = None


def create_opportunity(s: "Session", payload: dict, user: "User | None") -> "Opportunity":
    from app.crm.modules.events.service import build_event_date
    from app.crm.modules.opportunities.models import Opportunity

    _check_links(s, payload)
    now = datetime.utcnow()
    opp = Opportunity(
        tenant_id=tenant_id_of(s),
        name=clean(payload.get("name")) or "",
        amount=money(parse_decimal(payload.get("amount"), Decimal("0"))),
        probability=parse_int(payload.get("probability"), 0),
        expected_close_date=parse_date(payload.get("expected_close_date")),
        date_type=clean(payload.get("date_type")) or "single_day",
        owner_id=parse_int(payload.get("owner_id")) or (user.id if user else None),
        is_converted=False,
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id if user else None,
        updated_by_user_id=user.id if user else None,
    )
    for field in _LINK_FIELDS:
        setattr(opp, field, parse_int(payload.get(field)))
    for field in _TEXT_FIELDS:
        if field in payload:
            setattr(opp, field, clean(payload.get(field)))
    apply_stage(opp, clean(payload.get("stage")) or "prospecting", parse_date(payload.get("actual_close_date")))
    for date_payload in payload.get("event_dates") or []:
        opp.event_dates.append(build_event_date(opp.tenant_id, date_payload))
    s.add(opp)
    s.flush()

    record_event(
        s,
        actor=user,
        action="opportunity.create",
        entity_type="Opportunity",
        entity_id=str(opp.id),
        metadata={"name": opp.name, "stage": opp.stage, "amount": str(opp.amount)},
    )
    return opp


def update_opportunity(
    s: "Session", opp: "Opportunity", payload: dict, user: "User", reason: str | None = None
) -> "Opportunity":
    _check_links(s, payload)
    changes: dict[str, Any] = {}

    def _set(field, new_val):
        old_val = getattr(opp, field)
        if old_val != new_val:
            changes[field] = {"old": old_val, "new": new_val}
            setattr(opp, field, new_val)

    if "name" in payload and clean(payload.get("name")):
        _set("name", clean(payload.get("name")))
    for field in _TEXT_FIELDS:
        if field in payload:
            _set(field, clean(payload.get(field)))
    for field in (*_LINK_FIELDS, "owner_id"):
        if field in payload:
            _set(field, parse_int(payload.get(field)))
    if "amount" in payload and not opp.line_items:
        _set("amount", money(parse_decimal(payload.get("amount"), Decimal("0"))))
    if "probability" in payload:
        _set("probability", parse_int(payload.get("probability"), 0))
    if "expected_close_date" in payload:
        _set("expected_close_date", parse_date(payload.get("expected_close_date")))
    if "date_type" in payload and clean(payload.get("date_type")):
        _set("date_type", clean(payload.get("date_type")))

    new_stage = clean(payload.get("stage"))
    close_date = parse_date(payload.get("actual_close_date"))
    if new_stage and new_stage != opp.stage:
        old = {"stage": opp.stage, "status": opp.status, "actual_close_date": opp.actual_close_date}
        apply_stage(opp, new_stage, close_date)
        changes["stage"] = {"old": old["stage"], "new": opp.stage}
        if old["status"] != opp.status:
            changes["status"] = {"old": old["status"], "new": opp.status}
        if old["actual_close_date"] != opp.actual_close_date:
            changes["actual_close_date"] = {"old": old["actual_close_date"], "new": opp.actual_close_date}
    elif close_date and opp.stage in CLOSED_STAGES:
        _set("actual_close_date", close_date)

    if changes:
        opp.updated_at = datetime.utcnow()
        opp.updated_by_user_id = user.id
        record_event(
            s,
            actor=user,
            action="opportunity.update",
            entity_type="Opportunity",
            entity_id=str(opp.id),
            reason=reason,
            metadata={"changes": changes},
        )
    return opp


def delete_opportunity(s: "Session", opp: "Opportunity", user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="opportunity.delete",
        entity_type="Opportunity",
        entity_id=str(opp.id),
        metadata={"name": opp.name},
    )
    s.delete(opp)


# ---------- Line items ----------


def recalculate_amount(opp: "Opportunity") -> None:
    total = Decimal("0")
    for item in opp.line_items:
        item.total_price = money(Decimal(item.quantity or 0) * Decimal(item.unit_price or 0))
        total += item.total_price
    opp.amount = money(total)


def validate_line_item_payload(payload: dict, *, partial: bool = False) -> list[str]:
    from app.crm.modules.billing.service import validate_line_item_payload as _validate

    return _validate(payload, partial=partial)


def add_line_item(s: "Session", opp: "Opportunity", payload: dict, user: "User") -> "OpportunityLineItem":
    from app.crm.modules.opportunities.models import OpportunityLineItem

    now = datetime.utcnow()
    item = OpportunityLineItem(
        tenant_id=opp.tenant_id,
        description=clean(payload.get("description")) or "",
        quantity=parse_decimal(payload.get("quantity"), Decimal("1")),
        unit_price=parse_decimal(payload.get("unit_price"), Decimal("0")),
        sort_order=parse_int(payload.get("sort_order"), max((li.sort_order for li in opp.line_items), default=-1) + 1),
        created_at=now,
        updated_at=now,
    )
    opp.line_items.append(item)
    recalculate_amount(opp)
    opp.updated_at = now
    s.flush()
    record_event(
        s,
        actor=user,
        action="opportunity.line_item.add",
        entity_type="Opportunity",
        entity_id=str(opp.id),
        metadata={"line_item_id": item.id, "amount": str(opp.amount)},
    )
    return item


def update_line_item(s: "Session", opp: "Opportunity", item: "OpportunityLineItem", payload: dict, user: "User") -> None:
    if "description" in payload and clean(payload.get("description")):
        item.description = clean(payload.get("description"))
    if "quantity" in payload:
        item.quantity = parse_decimal(payload.get("quantity"), Decimal("1"))
    if "unit_price" in payload:
        item.unit_price = parse_decimal(payload.get("unit_price"), Decimal("0"))
    if "sort_order" in payload:
        item.sort_order = parse_int(payload.get("sort_order"), item.sort_order)
    item.updated_at = datetime.utcnow()
    recalculate_amount(opp)
    opp.updated_at = item.updated_at
    record_event(
        s,
        actor=user,
        action="opportunity.line_item.update",
        entity_type="Opportunity",
        entity_id=str(opp.id),
        metadata={"line_item_id": item.id, "amount": str(opp.amount)},
    )


def delete_line_item(s: "Session", opp: "Opportunity", item: "OpportunityLineItem", user: "User") -> None:
    opp.line_items.remove(item)
    s.delete(item)
    recalculate_amount(opp)
    opp.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="opportunity.line_item.delete",
        entity_type="Opportunity",
        entity_id=str(opp.id),
        metadata={"line_item_id": item.id, "amount": str(opp.amount)},
    )


# ---------- Dates ----------


def add_opportunity_date(s: "Session", opp: "Opportunity", payload: dict, user: "User") -> "EventDate":
    from app.crm.modules.events.service import build_event_date

    row = build_event_date(opp.tenant_id, payload)
    opp.event_dates.append(row)
    if len(opp.event_dates) > 1:
        opp.date_type = "multi_day"
    s.flush()
    record_event(
        s,
        actor=user,
        action="opportunity.date.add",
        entity_type="Opportunity",
        entity_id=str(opp.id),
        metadata={"event_date_id": row.id, "event_date": row.event_date.isoformat()},
    )
    return row


def remove_opportunity_date(s: "Session", opp: "Opportunity", date_id: int, user: "User") -> None:
    row = next((d for d in opp.event_dates if d.id == date_id), None)
    if row is None:
        raise ValueError(f"Opportunity date not found: {date_id}")
    opp.event_dates.remove(row)
    s.delete(row)
    record_event(
        s,
        actor=user,
        action="opportunity.date.remove",
        entity_type="Opportunity",
        entity_id=str(opp.id),
        metadata={"event_date_id": date_id},
    )


# ---------- Stats ----------


def period_start(period: str, today: date | None = None) -> date | None:
    today = today or date.today()
    if period == "week":
        return today - timedelta(days=today.weekday())
    if period == "month":
        return today.replace(day=1)
    if period == "year":
        return today.replace(month=1, day=1)
    return None


def opportunity_stats(opps: list["Opportunity"], *, period: str = "all", today: date | None = None) -> dict[str, Any]:
    """KPIs over an already-filtered list of opportunities."""
    today = today or date.today()
    since = period_start(period, today)

    def _in_period(d: date | None) -> bool:
        return d is not None and (since is None or since <= d <= today)

    by_stage = {stage: {"count": 0, "value": 0.0} for stage in VALID_STAGES}
    for o in opps:
        bucket = by_stage.setdefault(o.stage, {"count": 0, "value": 0.0})
        bucket["count"] += 1
        bucket["value"] = float(money(Decimal(str(bucket["value"])) + Decimal(o.amount or 0)))

    open_opps = [o for o in opps if o.stage not in CLOSED_STAGES]
    won = [o for o in opps if o.stage == "closed_won" and _in_period(o.actual_close_date)]
    lost = [o for o in opps if o.stage == "closed_lost" and _in_period(o.actual_close_date)]
    new_opps = [o for o in opps if _in_period(o.created_at.date() if o.created_at else None)]

    won_value = sum((Decimal(o.amount or 0) for o in won), Decimal("0"))
    lost_value = sum((Decimal(o.amount or 0) for o in lost), Decimal("0"))
    decided = len(won) + len(lost)
    close_days = [
        (o.actual_close_date - o.created_at.date()).days for o in won if o.actual_close_date and o.created_at
    ]
    soon_cutoff = today + timedelta(days=7)
    closing_soon = [o for o in open_opps if o.expected_close_date and today <= o.expected_close_date <= soon_cutoff]

    return {
        "period": period,
        "byStage": by_stage,
        "newOpps": len(new_opps),
        "openPipeline": {
            "count": len(open_opps),
            "value": float(money(sum((Decimal(o.amount or 0) for o in open_opps), Decimal("0")))),
        },
        "won": {"count": len(won), "value": float(money(won_value))},
        "lost": {"count": len(lost), "value": float(money(lost_value))},
        "winRate": round(len(won) / decided * 100) if decided else 0,
        "avgDaysToClose": round(sum(close_days) / len(close_days)) if close_days else 0,
        "avgDealSize": float(money(won_value / len(won))) if won else 0.0,
        "closingSoon": {
            "count": len(closing_soon),
            "value": float(money(sum((Decimal(o.amount or 0) for o in closing_soon), Decimal("0")))),
            "ids": [o.id for o in closing_soon],
        },
    }


# ---------- Convert to event ----------


@dataclass
class EventConversion:
    event: "Event"
    invoice: "Invoice | None"
    event_dates: list["EventDate"]
    workflows: dict[str, Any]


def convert_to_event(
    s: "Session", opp: "Opportunity", user: "User", payload: dict | None = None
) -> EventConversion:
    """
    Book an opportunity: create the event (dates copied, spanning earliest..latest),
    close the opportunity as won and invoice the accepted quote if there is one.
    """
    from app.crm.modules.billing.models import Quote
    from app.crm.modules.billing.service import create_invoice_from_quote
    from app.crm.modules.events.service import build_event_date, create_event
    from app.crm.modules.leads.models import Lead
    from app.crm.modules.leads.service import convert_lead
    from app.crm.modules.workflows.engine import trigger_event_created

    payload = payload or {}
    if opp.is_converted:
        raise ConflictError("Opportunity has already been converted to an event.")

    date_payloads = [
        {
            "event_date": d.event_date,
            "start_time": d.start_time,
            "end_time": d.end_time,
            "location": d.location,
            "notes": d.notes,
        }
        for d in opp.event_dates
    ]
    if not date_payloads:
        fallback = parse_date(payload.get("event_date"))
        if fallback is None:
            raise ValueError("Opportunity has no event dates; add a date or pass event_date.")
        date_payloads = [
            {
                "event_date": fallback,
                "start_time": parse_time(payload.get("start_time")),
                "end_time": parse_time(payload.get("end_time")),
            }
        ]

    if opp.account_id is None and opp.lead_id is not None:
        lead = tenant_get(s, Lead, opp.lead_id)
        if lead is not None:
            if lead.is_converted:
                opp.account_id = lead.converted_account_id
                opp.contact_id = opp.contact_id or lead.converted_contact_id
            else:
                result = convert_lead(s, lead, user)
                opp.account_id = result.account.id
                opp.contact_id = opp.contact_id or (result.contact.id if result.contact else None)
                lead.converted_opportunity_id = opp.id

    days = sorted(p["event_date"] for p in date_payloads)
    first = date_payloads[0] if len(date_payloads) == 1 else None
    event = create_event(
        s,
        {
            "name": clean(payload.get("name")) or opp.name,
            "account_id": opp.account_id,
            "contact_id": opp.contact_id,
            "opportunity_id": opp.id,
            "event_type_id": opp.event_type_id,
            "status": "scheduled",
            "start_date": days[0],
            "end_date": days[-1] if len(days) > 1 else None,
            "start_time": first["start_time"] if first else None,
            "end_time": first["end_time"] if first else None,
            "description": opp.description,
            "owner_id": opp.owner_id,
            "converted_from_opportunity_id": opp.id,
            "location_name": clean(payload.get("location_name")),
        },
        user,
    )
    for p in date_payloads:
        event.event_dates.append(build_event_date(event.tenant_id, p))
    s.flush()

    now = datetime.utcnow()
    opp.is_converted = True
    opp.converted_at = now
    opp.converted_event_id = event.id
    apply_stage(opp, "closed_won")
    opp.updated_at = now
    opp.updated_by_user_id = user.id

    invoice = None
    quote = (
        s.query(Quote)
        .filter(Quote.tenant_id == opp.tenant_id, Quote.opportunity_id == opp.id, Quote.status == "accepted")
        .order_by(Quote.updated_at.desc())
        .first()
    )
    if quote is not None and quote.invoice_id is None:
        invoice = create_invoice_from_quote(
            s, quote, user, event_id=event.id, due_date=event.start_date + timedelta(days=30)
        )

    record_event(
        s,
        actor=user,
        action="opportunity.convert_to_event",
        entity_type="Opportunity",
        entity_id=str(opp.id),
        metadata={"event_id": event.id, "invoice_id": invoice.id if invoice else None, "dates": len(date_payloads)},
    )

    workflows = trigger_event_created(s, event, user)
    return EventConversion(event=event, invoice=invoice, event_dates=list(event.event_dates), workflows=workflows)
