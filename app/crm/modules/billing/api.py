from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_

from app.crm.modules.billing.models import Invoice, Quote
from app.crm.modules.billing.service import (
    INVOICE_STATUSES,
    QUOTE_STATUSES,
    accept_quote,
    add_line_item,
    create_invoice,
    create_invoice_from_quote,
    create_quote,
    delete_invoice,
    delete_line_item,
    delete_payment,
    delete_quote,
    find_line_item,
    record_payment,
    update_invoice,
    update_line_item,
    update_quote,
    validate_document_payload,
    validate_line_item_payload,
    validate_payment_payload,
)
from app.crm.rbac import current_user, require_permission
from app.crm.tenancy import current_tenant_id, tenant_db
from app.crm.utils import (
    json_error,
    page_args,
    parse_date,
    request_payload,
    serialize,
    service_error,
    tenant_get_or_404,
    validation_error,
)

bp = Blueprint("billing", __name__)


def quote_to_dict(quote: Quote) -> dict:
    data = serialize(quote)
    data["line_items"] = [serialize(li) for li in quote.line_items]
    return data


def invoice_to_dict(invoice: Invoice, *, detail: bool = True) -> dict:
    data = serialize(invoice)
    if detail:
        data["line_items"] = [serialize(li) for li in invoice.line_items]
        data["payments"] = [serialize(p) for p in invoice.payments]
    return data


def _line_item_or_404(doc, item_id: int):
    item = find_line_item(doc, item_id)
    if item is None:
        return None, json_error("not_found", f"Line item not found: {item_id}", 404)
    return item, None


# ---------- Quotes ----------
@bp.get("/quotes")
@require_permission("invoices.view")
def quotes_list():
    s = tenant_db()
    limit, offset = page_args()
    status_filter = (request.args.get("status") or "").strip()
    account_filter = (request.args.get("account_id") or "").strip()
    opp_filter = (request.args.get("opportunity_id") or "").strip()

    q = s.query(Quote).filter(Quote.tenant_id == current_tenant_id())
    if status_filter:
        q = q.filter(Quote.status == status_filter)
    if account_filter.isdigit():
        q = q.filter(Quote.account_id == int(account_filter))
    if opp_filter.isdigit():
        q = q.filter(Quote.opportunity_id == int(opp_filter))

    total = q.with_entities(func.count(Quote.id)).scalar() or 0
    quotes = q.order_by(Quote.created_at.desc()).offset(offset).limit(limit).all()
    return jsonify({"quotes": [quote_to_dict(x) for x in quotes], "total": total})


@bp.get("/quotes/<int:quote_id>")
@require_permission("invoices.view")
def quote_detail(quote_id: int):
    s = tenant_db()
    return jsonify(quote_to_dict(tenant_get_or_404(s, Quote, quote_id)))


@bp.post("/quotes")
@require_permission("invoices.create")
def quote_create():
    s = tenant_db()
    payload = request_payload()
    errors = validate_document_payload(payload, QUOTE_STATUSES)
    if errors:
        return validation_error(errors)
    try:
        quote = create_quote(s, payload, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(quote_to_dict(quote)), 201


@bp.route("/quotes/<int:quote_id>", methods=["PATCH", "PUT"])
@require_permission("invoices.edit")
def quote_update(quote_id: int):
    s = tenant_db()
    quote = tenant_get_or_404(s, Quote, quote_id)
    payload = request_payload()
    errors = validate_document_payload(payload, QUOTE_STATUSES)
    if errors:
        return validation_error(errors)
    try:
        update_quote(s, quote, payload, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(quote_to_dict(quote))


@bp.delete("/quotes/<int:quote_id>")
@require_permission("invoices.delete")
def quote_delete(quote_id: int):
    s = tenant_db()
    quote = tenant_get_or_404(s, Quote, quote_id)
    delete_quote(s, quote, current_user())
    s.commit()
    return jsonify({"ok": True})


@bp.post("/quotes/<int:quote_id>/accept")
@require_permission("invoices.edit")
def quote_accept(quote_id: int):
    s = tenant_db()
    quote = tenant_get_or_404(s, Quote, quote_id)
    try:
        accept_quote(s, quote, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(quote_to_dict(quote))


@bp.post("/quotes/<int:quote_id>/convert-to-invoice")
@require_permission("invoices.create")
def quote_convert_to_invoice(quote_id: int):
    s = tenant_db()
    quote = tenant_get_or_404(s, Quote, quote_id)
    payload = request_payload() if request.content_length else {}
    try:
        invoice = create_invoice_from_quote(
            s,
            quote,
            current_user(),
            issue_date=parse_date(payload.get("issue_date")),
            due_date=parse_date(payload.get("due_date")),
        )
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify({"invoice": invoice_to_dict(invoice), "quote": quote_to_dict(quote)}), 201


@bp.post("/quotes/<int:quote_id>/line-items")
@require_permission("invoices.edit")
def quote_line_item_add(quote_id: int):
    s = tenant_db()
    quote = tenant_get_or_404(s, Quote, quote_id)
    payload = request_payload()
    errors = validate_line_item_payload(payload)
    if errors:
        return validation_error(errors)
    try:
        add_line_item(s, quote, payload, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(quote_to_dict(quote)), 201


@bp.route("/quotes/<int:quote_id>/line-items/<int:item_id>", methods=["PATCH", "PUT"])
@require_permission("invoices.edit")
def quote_line_item_update(quote_id: int, item_id: int):
    s = tenant_db()
    quote = tenant_get_or_404(s, Quote, quote_id)
    item, err = _line_item_or_404(quote, item_id)
    if err:
        return err
    payload = request_payload()
    errors = validate_line_item_payload(payload, partial=True)
    if errors:
        return validation_error(errors)
    try:
        update_line_item(s, quote, item, payload, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(quote_to_dict(quote))


@bp.delete("/quotes/<int:quote_id>/line-items/<int:item_id>")
@require_permission("invoices.edit")
def quote_line_item_delete(quote_id: int, item_id: int):
    s = tenant_db()
    quote = tenant_get_or_404(s, Quote, quote_id)
    item, err = _line_item_or_404(quote, item_id)
    if err:
        return err
    try:
        delete_line_item(s, quote, item, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(quote_to_dict(quote))


# ---------- Invoices ----------
@bp.get("/invoices")
@require_permission("invoices.view")
def invoices_list():
    s = tenant_db()
    limit, offset = page_args()
    search = (request.args.get("q") or "").strip()
    status_filter = (request.args.get("status") or "").strip()
    account_filter = (request.args.get("account_id") or "").strip()
    event_filter = (request.args.get("event_id") or "").strip()

    q = s.query(Invoice).filter(Invoice.tenant_id == current_tenant_id())
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Invoice.invoice_number.ilike(like), Invoice.notes.ilike(like)))
    if status_filter:
        q = q.filter(Invoice.status == status_filter)
    if account_filter.isdigit():
        q = q.filter(Invoice.account_id == int(account_filter))
    if event_filter.isdigit():
        q = q.filter(Invoice.event_id == int(event_filter))

    total = q.with_entities(func.count(Invoice.id)).scalar() or 0
    invoices = q.order_by(Invoice.created_at.desc()).offset(offset).limit(limit).all()
    return jsonify({"invoices": [invoice_to_dict(i, detail=False) for i in invoices], "total": total})


@bp.get("/invoices/<int:invoice_id>")
@require_permission("invoices.view")
def invoice_detail(invoice_id: int):
    s = tenant_db()
    return jsonify(invoice_to_dict(tenant_get_or_404(s, Invoice, invoice_id)))


@bp.post("/invoices")
@require_permission("invoices.create")
def invoice_create():
    s = tenant_db()
    payload = request_payload()
    errors = validate_document_payload(payload, INVOICE_STATUSES)
    if errors:
        return validation_error(errors)
    try:
        invoice = create_invoice(s, payload, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(invoice_to_dict(invoice)), 201


@bp.route("/invoices/<int:invoice_id>", methods=["PATCH", "PUT"])
@require_permission("invoices.edit")
def invoice_update(invoice_id: int):
    s = tenant_db()
    invoice = tenant_get_or_404(s, Invoice, invoice_id)
    payload = request_payload()
    errors = validate_document_payload(payload, INVOICE_STATUSES)
    if errors:
        return validation_error(errors)
    try:
        update_invoice(s, invoice, payload, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(invoice_to_dict(invoice))


@bp.delete("/invoices/<int:invoice_id>")
@require_permission("invoices.delete")
def invoice_delete(invoice_id: int):
    s = tenant_db()
    invoice = tenant_get_or_404(s, Invoice, invoice_id)
    try:
        delete_invoice(s, invoice, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify({"ok": True})


@bp.post("/invoices/<int:invoice_id>/line-items")
@require_permission("invoices.edit")
def invoice_line_item_add(invoice_id: int):
    s = tenant_db()
    invoice = tenant_get_or_404(s, Invoice, invoice_id)
    payload = request_payload()
    errors = validate_line_item_payload(payload)
    if errors:
        return validation_error(errors)
    add_line_item(s, invoice, payload, current_user())
    s.commit()
    return jsonify(invoice_to_dict(invoice)), 201


@bp.route("/invoices/<int:invoice_id>/line-items/<int:item_id>", methods=["PATCH", "PUT"])
@require_permission("invoices.edit")
def invoice_line_item_update(invoice_id: int, item_id: int):
    s = tenant_db()
    invoice = tenant_get_or_404(s, Invoice, invoice_id)
    item, err = _line_item_or_404(invoice, item_id)
    if err:
        return err
    payload = request_payload()
    errors = validate_line_item_payload(payload, partial=True)
    if errors:
        return validation_error(errors)
    update_line_item(s, invoice, item, payload, current_user())
    s.commit()
    return jsonify(invoice_to_dict(invoice))


@bp.delete("/invoices/<int:invoice_id>/line-items/<int:item_id>")
@require_permission("invoices.edit")
def invoice_line_item_delete(invoice_id: int, item_id: int):
    s = tenant_db()
    invoice = tenant_get_or_404(s, Invoice, invoice_id)
    item, err = _line_item_or_404(invoice, item_id)
    if err:
        return err
    delete_line_item(s, invoice, item, current_user())
    s.commit()
    return jsonify(invoice_to_dict(invoice))


# ---------- Payments ----------
@bp.post("/invoices/<int:invoice_id>/payments")
@require_permission("invoices.edit")
def invoice_payment_add(invoice_id: int):
    s = tenant_db()
    invoice = tenant_get_or_404(s, Invoice, invoice_id)
    payload = request_payload()
    errors = validate_payment_payload(payload)
    if errors:
        return validation_error(errors)
    try:
        record_payment(s, invoice, payload, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(invoice_to_dict(invoice)), 201


@bp.delete("/invoices/<int:invoice_id>/payments/<int:payment_id>")
@require_permission("invoices.edit")
def invoice_payment_delete(invoice_id: int, payment_id: int):
    s = tenant_db()
    invoice = tenant_get_or_404(s, Invoice, invoice_id)
    payment = next((p for p in invoice.payments if p.id == payment_id), None)
    if payment is None:
        return json_error("not_found", f"Payment not found: {payment_id}", 404)
    delete_payment(s, invoice, payment, current_user())
    s.commit()
    return jsonify(invoice_to_dict(invoice))
