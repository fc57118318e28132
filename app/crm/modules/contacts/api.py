from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_

from app.crm.modules.accounts.service import validate_merge_payload
from app.crm.modules.contacts.models import Contact, ContactAccount
from app.crm.modules.contacts.service import (
    create_contact,
    delete_contact,
    link_contact_to_account,
    link_payload_flags,
    merge_contacts,
    unlink_contact_from_account,
    update_contact,
    validate_contact_payload,
)
from app.crm.rbac import current_user, require_permission
from app.crm.tenancy import current_tenant_id, tenant_db
from app.crm.utils import (
    json_error,
    page_args,
    request_payload,
    serialize,
    service_error,
    tenant_get_or_404,
    validation_error,
)

bp = Blueprint("contacts", __name__)


def contact_to_dict(contact: Contact) -> dict:
    data = serialize(contact)
    data["full_name"] = contact.full_name
    data["accounts"] = [
        {"account_id": ln.account_id, "name": ln.account.name, "role": ln.role, "is_primary": ln.is_primary}
        for ln in contact.account_links
    ]
    return data


@bp.get("/contacts")
@require_permission("contacts.view")
def contacts_list():
    s = tenant_db()
    limit, offset = page_args()

    search = (request.args.get("q") or "").strip()
    status_filter = (request.args.get("status") or "").strip()
    account_filter = (request.args.get("account_id") or "").strip()

    q = s.query(Contact).filter(Contact.tenant_id == current_tenant_id())
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                Contact.first_name.ilike(like),
                Contact.last_name.ilike(like),
                Contact.email.ilike(like),
                Contact.phone.ilike(like),
            )
        )
    if status_filter:
        q = q.filter(Contact.status == status_filter)
    if account_filter.isdigit():
        q = q.join(ContactAccount, ContactAccount.contact_id == Contact.id).filter(
            ContactAccount.account_id == int(account_filter)
        )

    total = q.with_entities(func.count(Contact.id)).scalar() or 0
    contacts = q.order_by(Contact.last_name.asc(), Contact.first_name.asc()).offset(offset).limit(limit).all()
    return jsonify({"contacts": [contact_to_dict(c) for c in contacts], "total": total})


@bp.get("/contacts/<int:contact_id>")
@require_permission("contacts.view")
def contact_detail(contact_id: int):
    s = tenant_db()
    contact = tenant_get_or_404(s, Contact, contact_id)
    return jsonify(contact_to_dict(contact))


@bp.post("/contacts")
@require_permission("contacts.create")
def contact_create():
    s = tenant_db()
    payload = request_payload()
    errors = validate_contact_payload(payload)
    if errors:
        return validation_error(errors)
    try:
        contact = create_contact(s, payload, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(contact_to_dict(contact)), 201


@bp.route("/contacts/<int:contact_id>", methods=["PATCH", "PUT"])
@require_permission("contacts.edit")
def contact_update(contact_id: int):
    s = tenant_db()
    contact = tenant_get_or_404(s, Contact, contact_id)
    payload = request_payload()
    errors = validate_contact_payload(payload, partial=True)
    if errors:
        return validation_error(errors)
    update_contact(s, contact, payload, current_user(), reason=payload.get("reason"))
    s.commit()
    return jsonify(contact_to_dict(contact))


@bp.delete("/contacts/<int:contact_id>")
@require_permission("contacts.delete")
def contact_delete(contact_id: int):
    s = tenant_db()
    contact = tenant_get_or_404(s, Contact, contact_id)
    delete_contact(s, contact, current_user())
    s.commit()
    return jsonify({"ok": True})


# ---------- Account links ----------
@bp.post("/contacts/<int:contact_id>/accounts")
@require_permission("contacts.edit")
def contact_link_account(contact_id: int):
    s = tenant_db()
    contact = tenant_get_or_404(s, Contact, contact_id)
    account_id, role, is_primary = link_payload_flags(request_payload())
    if not account_id:
        return json_error("bad_request", "account_id is required.", 400)
    try:
        link_contact_to_account(s, contact, account_id, current_user(), role=role, is_primary=is_primary)
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(contact_to_dict(contact)), 201


@bp.delete("/contacts/<int:contact_id>/accounts/<int:account_id>")
@require_permission("contacts.edit")
def contact_unlink_account(contact_id: int, account_id: int):
    s = tenant_db()
    contact = tenant_get_or_404(s, Contact, contact_id)
    try:
        unlink_contact_from_account(s, contact, account_id, current_user())
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify(contact_to_dict(contact))


# ---------- Merge ----------
@bp.post("/contacts/merge")
@require_permission("contacts.delete")
def contacts_merge():
    s = tenant_db()
    payload = request_payload()
    errors = validate_merge_payload(payload)
    merged_data = payload.get("merged_data") or {}
    if not errors and merged_data:
        errors = validate_contact_payload(merged_data, partial=True)
    if errors:
        return validation_error(errors)
    duplicate_id = int(payload["duplicate_id"])
    survivor = tenant_get_or_404(s, Contact, int(payload["survivor_id"]))
    duplicate = tenant_get_or_404(s, Contact, duplicate_id)
    try:
        transferred = merge_contacts(
            s, survivor, duplicate, current_user(), merged_data=merged_data, notes=(payload.get("notes") or None)
        )
    except ValueError as e:
        return service_error(e)
    s.commit()
    return jsonify({"contact": contact_to_dict(survivor), "merged_contact_id": duplicate_id, "transferred": transferred})
