"""
Billing service: quotes, invoices, line items and payments.

Totals are always derived, never entered:
    line total_price = quantity * unit_price
    subtotal         = sum(line total_price)
    taxable subtotal = sum over lines not explicitly marked taxable=False
    tax_amount       = taxable subtotal * tax_rate
    total            = subtotal + tax_amount
    balance_due      = total - amount_paid          (invoices)

Numbers are sequential per tenant: QT-0001..., INV-0001... (next after the highest
existing number, so gaps from deletes are not reused).
"""
from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Union

from sqlalchemy import select

from app.crm.audit import record_event
from app.crm.tenancy import tenant_id_of
from app.crm.utils import ConflictError, clean, money, parse_bool, parse_date, parse_decimal, parse_int, tenant_get

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.crm.models import User
    from app.crm.modules.billing.models import Invoice, InvoiceLineItem, Payment, Quote, QuoteLineItem

    BillingDoc = Union[Invoice, Quote]
    LineItem = Union[InvoiceLineItem, QuoteLineItem]


QUOTE_STATUSES = ("draft", "sent", "accepted", "rejected", "expired")
INVOICE_STATUSES = ("draft", "sent", "partially_paid", "paid", "overdue", "cancelled")
PAYMENT_METHODS = ("card", "check", "cash", "ach", "wire", "other")
DEFAULT_PAYMENT_TERMS_DAYS = 30

_NUMBER_RE = re.compile(r"^[A-Z]+-(\d+)$")


# ---------- Numbering ----------


def next_document_number(s: "Session", model, column, prefix: str) -> str:
    tid = tenant_id_of(s)
    existing = s.execute(select(column).where(model.tenant_id == tid, column.like(f"{prefix}-%"))).scalars().all()
    highest = 0
    for number in existing:
        m = _NUMBER_RE.match(number or "")
        if m:
            highest = max(highest, int(m.group(1)))
    return f"{prefix}-{highest + 1:04d}"


def next_invoice_number(s: "Session") -> str:
    from app.crm.modules.billing.models import Invoice

    return next_document_number(s, Invoice, Invoice.invoice_number, "INV")


def next_quote_number(s: "Session") -> str:
    from app.crm.modules.billing.models import Quote

    return next_document_number(s, Quote, Quote.quote_number, "QT")


# ---------- Totals ----------


def line_total(quantity: Decimal | None, unit_price: Decimal | None) -> Decimal:
    return money(Decimal(quantity or 0) * Decimal(unit_price or 0))


def recalculate_totals(doc: "BillingDoc") -> None:
    subtotal = Decimal("0")
    taxable_subtotal = Decimal("0")
    for item in doc.line_items:
        item.total_price = line_total(item.quantity, item.unit_price)
        subtotal += item.total_price
        if item.taxable is not False:
            taxable_subtotal += item.total_price
    doc.subtotal = money(subtotal)
    doc.tax_amount = money(taxable_subtotal * Decimal(doc.tax_rate or 0))
    doc.total = money(doc.subtotal + doc.tax_amount)
    if hasattr(doc, "balance_due"):
        doc.balance_due = money(doc.total - Decimal(doc.amount_paid or 0))


def apply_payments(invoice: "Invoice") -> None:
    paid = sum((Decimal(p.amount or 0) for p in invoice.payments if p.status == "completed"), Decimal("0"))
    invoice.amount_paid = money(paid)
    invoice.balance_due = money(Decimal(invoice.total or 0) - invoice.amount_paid)
    if invoice.status == "cancelled":
        return
    if paid > 0 and invoice.balance_due <= 0:
        invoice.status = "paid"
    elif paid > 0:
        invoice.status = "partially_paid"
    elif invoice.status in ("paid", "partially_paid"):
        invoice.status = "sent"


# ---------- Validation ----------


def _validate_tax_rate(payload: dict, errors: list[str]) -> None:
    if "tax_rate" not in payload:
        return
    try:
        rate = parse_decimal(payload.get("tax_rate"), Decimal("0"))
    except ValueError:
        errors.append("tax_rate must be a number.")
        return
    if rate < 0 or rate > 1:
        errors.append("tax_rate must be a fraction between 0 and 1 (e.g. 0.0825).")


def validate_document_payload(payload: dict, statuses: tuple[str, ...]) -> list[str]:
    errors: list[str] = []
    status = clean(payload.get("status"))
    if status and status not in statuses:
        errors.append(f"Invalid status. Must be one of: {', '.join(statuses)}")
    for field in ("issue_date", "due_date", "expiration_date"):
        try:
            parse_date(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be YYYY-MM-DD.")
    _validate_tax_rate(payload, errors)
    for item in payload.get("line_items") or []:
        errors.extend(validate_line_item_payload(item if isinstance(item, dict) else {}))
    return errors


def validate_line_item_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "description" in payload:
        if not clean(payload.get("description")):
            errors.append("Line item description is required.")
    for field in ("quantity", "unit_price"):
        try:
            value = parse_decimal(payload.get(field))
        except ValueError:
            errors.append(f"Line item {field} must be a number.")
            continue
        if value is not None and value < 0:
            errors.append(f"Line item {field} cannot be negative.")
    return errors


def validate_payment_payload(payload: dict) -> list[str]:
    errors = []
    try:
        amount = parse_decimal(payload.get("amount"))
    except ValueError:
        amount = None
    if amount is None or amount <= 0:
        errors.append("Payment amount must be greater than zero.")
    try:
        parse_date(payload.get("payment_date"))
    except ValueError:
        errors.append("payment_date must be YYYY-MM-DD.")
    method = clean(payload.get("payment_method"))
    if method and method not in PAYMENT_METHODS:
        errors.append(f"Invalid payment_method. Must be one of: {', '.join(PAYMENT_METHODS)}")
    return errors


# ---------- Line items (shared by quotes and invoices) ----------


def _line_item_model(doc: "BillingDoc"):
    from app.crm.modules.billing.models import Invoice, InvoiceLineItem, QuoteLineItem

    return InvoiceLineItem if isinstance(doc, Invoice) else QuoteLineItem


def _entity_type(doc: "BillingDoc") -> str:
    from app.crm.modules.billing.models import Invoice

    return "Invoice" if isinstance(doc, Invoice) else "Quote"


def _build_line_item(doc: "BillingDoc", payload: dict, sort_order: int) -> "LineItem":
    model = _line_item_model(doc)
    item = model(
        tenant_id=doc.tenant_id,
        description=clean(payload.get("description")) or "",
        quantity=parse_decimal(payload.get("quantity"), Decimal("1")),
        unit_price=parse_decimal(payload.get("unit_price"), Decimal("0")),
        taxable=parse_bool(payload.get("taxable"), default=True),
        sort_order=parse_int(payload.get("sort_order"), sort_order),
    )
    item.total_price = line_total(item.quantity, item.unit_price)
    return item


def _ensure_editable(doc: "BillingDoc") -> None:
    if getattr(doc, "invoice_id", None) is not None:
        raise ConflictError("Quote has been invoiced and can no longer be edited.")


def add_line_item(s: "Session", doc: "BillingDoc", payload: dict, user: "User | None") -> "LineItem":
    _ensure_editable(doc)
    next_order = max((li.sort_order for li in doc.line_items), default=-1) + 1
    item = _build_line_item(doc, payload, next_order)
    doc.line_items.append(item)
    recalculate_totals(doc)
    doc.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action=f"{_entity_type(doc).lower()}.line_item.add",
        entity_type=_entity_type(doc),
        entity_id=str(doc.id),
        metadata={"line_item_id": item.id, "description": item.description, "total_price": str(item.total_price)},
    )
    return item


def update_line_item(s: "Session", doc: "BillingDoc", item: "LineItem", payload: dict, user: "User") -> "LineItem":
    _ensure_editable(doc)
    changed = set()
    if "description" in payload and clean(payload.get("description")):
        item.description = clean(payload.get("description"))
        changed.add("description")
    if "quantity" in payload:
        item.quantity = parse_decimal(payload.get("quantity"), Decimal("1"))
        changed.add("quantity")
    if "unit_price" in payload:
        item.unit_price = parse_decimal(payload.get("unit_price"), Decimal("0"))
        changed.add("unit_price")
    if "taxable" in payload:
        item.taxable = parse_bool(payload.get("taxable"), default=True)
        changed.add("taxable")
    if "sort_order" in payload:
        item.sort_order = parse_int(payload.get("sort_order"), item.sort_order)
        changed.add("sort_order")

    # Reordering alone does not touch money.
    if changed and changed != {"sort_order"}:
        recalculate_totals(doc)
        doc.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action=f"{_entity_type(doc).lower()}.line_item.update",
        entity_type=_entity_type(doc),
        entity_id=str(doc.id),
        metadata={"line_item_id": item.id, "fields": sorted(changed)},
    )
    return item


def delete_line_item(s: "Session", doc: "BillingDoc", item: "LineItem", user: "User") -> None:
    _ensure_editable(doc)
    doc.line_items.remove(item)
    s.delete(item)
    recalculate_totals(doc)
    doc.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action=f"{_entity_type(doc).lower()}.line_item.delete",
        entity_type=_entity_type(doc),
        entity_id=str(doc.id),
        metadata={"line_item_id": item.id, "description": item.description},
    )


def find_line_item(doc: "BillingDoc", item_id: int) -> "LineItem | None":
    return next((li for li in doc.line_items if li.id == item_id), None)


# ---------- Shared header fields ----------


def _apply_links(s: "Session", doc: "BillingDoc", payload: dict) -> None:
    from app.crm.modules.accounts.models import Account
    from app.crm.modules.contacts.models import Contact
    from app.crm.modules.opportunities.models import Opportunity

    for field, model in (("account_id", Account), ("contact_id", Contact), ("opportunity_id", Opportunity)):
        if field in payload:
            ref_id = parse_int(payload.get(field))
            if ref_id is not None and tenant_get(s, model, ref_id) is None:
                raise ValueError(f"{field} not found: {ref_id}")
            setattr(doc, field, ref_id)


def _apply_header(s: "Session", doc: "BillingDoc", payload: dict) -> bool:
    """Apply editable header fields; returns True when totals must be recalculated."""
    _apply_links(s, doc, payload)
    for field in ("terms", "notes"):
        if field in payload:
            setattr(doc, field, clean(payload.get(field)))
    for field in ("issue_date", "due_date", "expiration_date"):
        if field in payload and hasattr(doc, field):
            value = parse_date(payload.get(field))
            if field == "issue_date" and value is None:
                continue
            setattr(doc, field, value)
    if "status" in payload and clean(payload.get("status")):
        doc.status = clean(payload.get("status"))
    if "owner_id" in payload:
        doc.owner_id = parse_int(payload.get("owner_id"))
    if "tax_rate" in payload:
        new_rate = parse_decimal(payload.get("tax_rate"), Decimal("0"))
        if Decimal(doc.tax_rate or 0) != new_rate:
            doc.tax_rate = new_rate
            return True
    return False


# ---------- Quotes ----------


def create_quote(s: "Session", payload: dict, user: "User | None") -> "Quote":
    from app.crm.modules.billing.models import Quote

    now = datetime.utcnow()
    quote = Quote(
        tenant_id=tenant_id_of(s),
        quote_number=next_quote_number(s),
        issue_date=parse_date(payload.get("issue_date")) or date.today(),
        status="draft",
        tax_rate=Decimal("0"),
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id if user else None,
        owner_id=user.id if user else None,
    )
    _apply_header(s, quote, payload)
    if quote.expiration_date is None:
        quote.expiration_date = quote.issue_date + timedelta(days=DEFAULT_PAYMENT_TERMS_DAYS)
    for idx, item_payload in enumerate(payload.get("line_items") or []):
        quote.line_items.append(_build_line_item(quote, item_payload, idx))
    recalculate_totals(quote)
    s.add(quote)
    s.flush()

    record_event(
        s,
        actor=user,
        action="quote.create",
        entity_type="Quote",
        entity_id=str(quote.id),
        metadata={"quote_number": quote.quote_number, "total": str(quote.total)},
    )
    return quote


def update_quote(s: "Session", quote: "Quote", payload: dict, user: "User") -> "Quote":
    _ensure_editable(quote)
    if _apply_header(s, quote, payload):
        recalculate_totals(quote)
    quote.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="quote.update",
        entity_type="Quote",
        entity_id=str(quote.id),
        metadata={"fields": sorted(k for k in payload if k != "csrf_token")},
    )
    return quote


def accept_quote(s: "Session", quote: "Quote", user: "User") -> "Quote":
    if quote.status == "accepted":
        raise ConflictError("Quote is already accepted.")
    if quote.status in ("rejected", "expired"):
        raise ConflictError(f"A {quote.status} quote cannot be accepted.")
    old = quote.status
    quote.status = "accepted"
    quote.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="quote.accept",
        entity_type="Quote",
        entity_id=str(quote.id),
        metadata={"old_status": old},
    )
    return quote


def delete_quote(s: "Session", quote: "Quote", user: "User") -> None:
    record_event(s, actor=user, action="quote.delete", entity_type="Quote", entity_id=str(quote.id), metadata={"quote_number": quote.quote_number})
    s.delete(quote)


def create_invoice_from_quote(
    s: "Session",
    quote: "Quote",
    user: "User | None",
    *,
    event_id: int | None = None,
    issue_date: date | None = None,
    due_date: date | None = None,
) -> "Invoice":
    from app.crm.modules.billing.models import Invoice, InvoiceLineItem

    if quote.invoice_id is not None:
        raise ConflictError("Quote has already been converted to an invoice.")

    now = datetime.utcnow()
    issued = issue_date or date.today()
    invoice = Invoice(
        tenant_id=quote.tenant_id,
        invoice_number=next_invoice_number(s),
        account_id=quote.account_id,
        contact_id=quote.contact_id,
        opportunity_id=quote.opportunity_id,
        event_id=event_id,
        issue_date=issued,
        due_date=due_date or issued + timedelta(days=DEFAULT_PAYMENT_TERMS_DAYS),
        tax_rate=quote.tax_rate,
        amount_paid=Decimal("0"),
        status="draft",
        terms=quote.terms,
        notes=quote.notes,
        owner_id=quote.owner_id,
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id if user else None,
    )
    for li in quote.line_items:
        invoice.line_items.append(
            InvoiceLineItem(
                tenant_id=quote.tenant_id,
                description=li.description,
                quantity=li.quantity,
                unit_price=li.unit_price,
                total_price=li.total_price,
                taxable=li.taxable,
                sort_order=li.sort_order,
            )
        )
    recalculate_totals(invoice)
    s.add(invoice)
    s.flush()
    quote.invoice_id = invoice.id
    quote.updated_at = now

    record_event(
        s,
        actor=user,
        action="invoice.create_from_quote",
        entity_type="Invoice",
        entity_id=str(invoice.id),
        metadata={"invoice_number": invoice.invoice_number, "quote_id": quote.id, "total": str(invoice.total)},
    )
    return invoice


# ---------- Invoices ----------


def create_invoice(s: "Session", payload: dict, user: "User | None") -> "Invoice":
    from app.crm.modules.billing.models import Invoice
    from app.crm.modules.events.models import Event

    now = datetime.utcnow()
    issued = parse_date(payload.get("issue_date")) or date.today()
    invoice = Invoice(
        tenant_id=tenant_id_of(s),
        invoice_number=next_invoice_number(s),
        issue_date=issued,
        status="draft",
        tax_rate=Decimal("0"),
        amount_paid=Decimal("0"),
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id if user else None,
        owner_id=user.id if user else None,
    )
    _apply_header(s, invoice, payload)
    event_id = parse_int(payload.get("event_id"))
    if event_id is not None:
        if tenant_get(s, Event, event_id) is None:
            raise ValueError(f"event_id not found: {event_id}")
        invoice.event_id = event_id
    if invoice.due_date is None:
        invoice.due_date = issued + timedelta(days=DEFAULT_PAYMENT_TERMS_DAYS)
    for idx, item_payload in enumerate(payload.get("line_items") or []):
        invoice.line_items.append(_build_line_item(invoice, item_payload, idx))
    recalculate_totals(invoice)
    s.add(invoice)
    s.flush()

    record_event(
        s,
        actor=user,
        action="invoice.create",
        entity_type="Invoice",
        entity_id=str(invoice.id),
        metadata={"invoice_number": invoice.invoice_number, "total": str(invoice.total)},
    )
    return invoice


def update_invoice(s: "Session", invoice: "Invoice", payload: dict, user: "User") -> "Invoice":
    old_status = invoice.status
    if _apply_header(s, invoice, payload):
        recalculate_totals(invoice)
    if "event_id" in payload:
        invoice.event_id = parse_int(payload.get("event_id"))
    invoice.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="invoice.update",
        entity_type="Invoice",
        entity_id=str(invoice.id),
        metadata={
            "fields": sorted(k for k in payload if k != "csrf_token"),
            "old_status": old_status,
            "new_status": invoice.status,
        },
    )
    return invoice


def delete_invoice(s: "Session", invoice: "Invoice", user: "User") -> None:
    from app.crm.modules.billing.models import Quote

    if any(p.status == "completed" for p in invoice.payments):
        raise ConflictError("Invoices with recorded payments cannot be deleted.")
    for quote in s.query(Quote).filter(Quote.tenant_id == invoice.tenant_id, Quote.invoice_id == invoice.id).all():
        quote.invoice_id = None
    record_event(
        s,
        actor=user,
        action="invoice.delete",
        entity_type="Invoice",
        entity_id=str(invoice.id),
        metadata={"invoice_number": invoice.invoice_number},
    )
    s.delete(invoice)


def record_payment(s: "Session", invoice: "Invoice", payload: dict, user: "User") -> "Payment":
    from app.crm.modules.billing.models import Payment

    if invoice.status == "cancelled":
        raise ConflictError("Cannot record a payment against a cancelled invoice.")
    payment = Payment(
        tenant_id=invoice.tenant_id,
        payment_date=parse_date(payload.get("payment_date")) or date.today(),
        amount=money(parse_decimal(payload.get("amount"))),
        payment_method=clean(payload.get("payment_method")),
        reference_number=clean(payload.get("reference_number")),
        notes=clean(payload.get("notes")),
        status="completed",
        created_by_user_id=user.id,
    )
    invoice.payments.append(payment)
    apply_payments(invoice)
    invoice.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="invoice.payment",
        entity_type="Invoice",
        entity_id=str(invoice.id),
        metadata={
            "payment_id": payment.id,
            "amount": str(payment.amount),
            "balance_due": str(invoice.balance_due),
            "status": invoice.status,
        },
    )
    return payment


def delete_payment(s: "Session", invoice: "Invoice", payment: "Payment", user: "User") -> None:
    invoice.payments.remove(payment)
    s.delete(payment)
    apply_payments(invoice)
    invoice.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="invoice.payment_delete",
        entity_type="Invoice",
        entity_id=str(invoice.id),
        metadata={"payment_id": payment.id, "amount": str(payment.amount)},
    )
