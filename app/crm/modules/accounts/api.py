from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_

from app.crm.modules.accounts.models import Account
from app.crm.modules.accounts.service import (
    create_account,
    delete_account,
    merge_accounts,
    update_account,
    validate_account_payload,
    validate_merge_payload,
)
from app.crm.rbac import current_user, require_permission
from app.crm.tenancy import current_tenant_id, tenant_db
from app.crm.utils import (
    page_args,
    request_payload,
    serialize,
    service_error,
    tenant_get_or_404,
    validation_error,
)

bp = Blueprint("accounts", __name__)


def account_to_dict(account: Account, *, with_contacts: bool = False) -> dict:
    data = serialize(account)
    if with_contacts:
        data["contacts"] = [
            {
                "id": link.contact.id,
                "name": link.contact.full_name,
                "email": link.contact.email,
                "role": link.role,
                "is_primary": link.is_primary,
            }
            for link in account.contact_links
        ]
    return data


# ---------- List ----------
@bp.get("/accounts")
@require_permission("accounts.view")
def accounts_list():
    s = tenant_db()
    limit, offset = page_args()

    search = (request.args.get("q") or "").strip()
    status_filter = (request.args.get("status") or "").strip()
    type_filter = (request.args.get("account_type") or "").strip()
    owner_filter = (request.args.get("owner_id") or "").strip()

    q = s.query(Account).filter(Account.tenant_id == current_tenant_id())
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Account.name.ilike(like), Account.email.ilike(like)))
    if status_filter:
        q = q.filter(Account.status == status_filter)
    if type_filter:
        q = q.filter(Account.account_type == type_filter)
    if owner_filter.isdigit():
        q = q.filter(Account.owner_id == int(owner_filter))

    total = q.with_entities(func.count(Account.id)).scalar() or 0
    accounts = q.order_by(Account.name.asc()).offset(offset).limit(limit).all()
    return jsonify({"accounts": [account_to_dict(a) for a in accounts], "total": total})


# ---------- Detail ----------
@bp.get("/accounts/<int:account_id>")
@require_permission("accounts.view")
def account_detail(account_id: int):
    from app.crm.modules.billing.models import Invoice
    from app.crm.modules.events.models import Event
    from app.crm.modules.opportunities.models import Opportunity

    s = tenant_db()
    account = tenant_get_or_404(s, Account, account_id)
    tid = current_tenant_id()

    data = account_to_dict(account, with_contacts=True)
    opps = (
        s.query(Opportunity)
        .filter(Opportunity.tenant_id == tid, Opportunity.account_id == account.id)
        .order_by(Opportunity.created_at.desc())
        .all()
    )
    events = (
        s.query(Event)
        .filter(Event.tenant_id == tid, Event.account_id == account.id)
        .order_by(Event.start_date.desc())
        .all()
    )
    invoices = (
        s.query(Invoice)
        .filter(Invoice.tenant_id == tid, Invoice.account_id == account.id)
        .order_by(Invoice.issue_date.desc())
        .all()
    )
    data["opportunities"] = [{"id": o.id, "name": o.name, "stage": o.stage, "amount": float(o.amount or 0)} for o in opps]
    data["events"] = [
        {"id": e.id, "name": e.name, "status": e.status, "start_date": e.start_date.isoformat() if e.start_date else None}
        for e in events
    ]
    data["invoices"] = [
        {"id": i.id, "invoice_number": i.invoice_number, "status": i.status, "balance_due": float(i.balance_due or 0)}
        for i in invoices
    ]
    return jsonify(data)


# ---------- Create ----------
@bp.post("/accounts")
@require_permission("accounts.create")
def account_create():
    s = tenant_db()
    payload = request_payload()
    errors = validate_account_payload(payload)
    if errors:
        return validation_error(errors)
    try:
        account = create_account(s, payload, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(account_to_dict(account)), 201


# ---------- Update ----------
@bp.route("/accounts/<int:account_id>", methods=["PATCH", "PUT"])
@require_permission("accounts.edit")
def account_update(account_id: int):
    s = tenant_db()
    account = tenant_get_or_404(s, Account, account_id)
    payload = request_payload()
    errors = validate_account_payload(payload, partial=True)
    if errors:
        return validation_error(errors)
    try:
        update_account(s, account, payload, current_user(), reason=payload.get("reason"))
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(account_to_dict(account, with_contacts=True))


# ---------- Delete ----------
@bp.delete("/accounts/<int:account_id>")
@require_permission("accounts.delete")
def account_delete(account_id: int):
    s = tenant_db()
    account = tenant_get_or_404(s, Account, account_id)
    delete_account(s, account, current_user())
    s.commit()
    return jsonify({"ok": True})


# ---------- Merge ----------
@bp.post("/accounts/merge")
@require_permission("accounts.delete")
def accounts_merge():
    s = tenant_db()
    payload = request_payload()
    errors = validate_merge_payload(payload)
    merged_data = payload.get("merged_data") or {}
    if not errors and merged_data:
        errors = validate_account_payload(merged_data, partial=True)
    if errors:
        return validation_error(errors)
    duplicate_id = int(payload["duplicate_id"])
    survivor = tenant_get_or_404(s, Account, int(payload["survivor_id"]))
    duplicate = tenant_get_or_404(s, Account, duplicate_id)
    try:
        transferred = merge_accounts(
            s, survivor, duplicate, current_user(), merged_data=merged_data, notes=(payload.get("notes") or None)
        )
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(
        {
            "account": account_to_dict(survivor, with_contacts=True),
            "merged_account_id": duplicate_id,
            "transferred": transferred,
        }
    )
