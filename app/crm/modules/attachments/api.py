from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request, send_file

from app.crm.audit import record_event
from app.crm.modules.attachments.models import Attachment
from app.crm.modules.attachments.service import ENTITY_TYPES, delete_attachment, upload_attachment
from app.crm.rbac import current_user, login_required
from app.crm.storage import StorageError, storage_from_config
from app.crm.tenancy import current_tenant_id, tenant_db
from app.crm.utils import json_error, serialize, service_error, tenant_get_or_404

bp = Blueprint("attachments", __name__)

# Attachments inherit the permission of the record they hang off.
_MODULE_FOR_ENTITY = {
    "account": "accounts",
    "contact": "contacts",
    "lead": "leads",
    "opportunity": "opportunities",
    "event": "events",
    "quote": "invoices",
    "invoice": "invoices",
    "task": "tasks",
    "ticket": "tickets",
}


def attachment_to_dict(a: Attachment) -> dict:
    data = serialize(a, exclude=("extracted_text", "storage_key"))
    data["has_text"] = bool(a.extracted_text)
    return data


def _check_entity_permission(entity_type: str, action: str):
    from app.crm.rbac import user_has_permission

    if entity_type not in _MODULE_FOR_ENTITY:
        return json_error("bad_request", f"Invalid entity_type. Must be one of: {', '.join(ENTITY_TYPES)}", 400)
    key = f"{_MODULE_FOR_ENTITY[entity_type]}.{action}"
    if not user_has_permission(current_user(), key):
        return json_error("forbidden", "You do not have permission to do that.", 403, missing_permission=key)
    return None


@bp.get("/attachments")
@login_required
def attachments_list():
    entity_type = (request.args.get("entity_type") or "").strip()
    entity_id = (request.args.get("entity_id") or "").strip()
    if not entity_type or not entity_id.isdigit():
        return json_error("bad_request", "entity_type and entity_id are required.", 400)
    denied = _check_entity_permission(entity_type, "view")
    if denied:
        return denied
    s = tenant_db()
    rows = (
        s.query(Attachment)
        .filter(
            Attachment.tenant_id == current_tenant_id(),
            Attachment.entity_type == entity_type,
            Attachment.entity_id == int(entity_id),
        )
        .order_by(Attachment.uploaded_at.desc())
        .all()
    )
    return jsonify({"attachments": [attachment_to_dict(a) for a in rows]})


@bp.post("/attachments")
@login_required
def attachment_upload():
    entity_type = (request.form.get("entity_type") or "").strip()
    entity_id = (request.form.get("entity_id") or "").strip()
    if not entity_type or not entity_id.isdigit():
        return json_error("bad_request", "entity_type and entity_id are required.", 400)
    denied = _check_entity_permission(entity_type, "edit")
    if denied:
        return denied
    f = request.files.get("file")
    if not f or not f.filename:
        return json_error("bad_request", "A file is required.", 400)

    s = tenant_db()
    file_bytes = f.read()
    try:
        attachment = upload_attachment(
            s,
            storage_from_config(current_app.config),
            entity_type=entity_type,
            entity_id=int(entity_id),
            file_bytes=file_bytes,
            filename=f.filename,
            content_type=f.mimetype,
            user=current_user(),
            description=(request.form.get("description") or "").strip() or None,
        )
    except ValueError as e:
        if "10 MB" in str(e):
            return json_error("payload_too_large", str(e), 413)
        return service_error(e)
    s.commit()
    return jsonify(attachment_to_dict(attachment)), 201


@bp.get("/attachments/<int:attachment_id>")
@login_required
def attachment_detail(attachment_id: int):
    s = tenant_db()
    a = tenant_get_or_404(s, Attachment, attachment_id)
    denied = _check_entity_permission(a.entity_type, "view")
    if denied:
        return denied
    data = attachment_to_dict(a)
    data["extracted_text"] = a.extracted_text
    return jsonify(data)


@bp.get("/attachments/<int:attachment_id>/download")
@login_required
def attachment_download(attachment_id: int):
    s = tenant_db()
    a = tenant_get_or_404(s, Attachment, attachment_id)
    denied = _check_entity_permission(a.entity_type, "view")
    if denied:
        return denied
    try:
        fobj = storage_from_config(current_app.config).open(a.storage_key)
    except StorageError:
        current_app.logger.warning("attachment %s missing from storage (%s)", a.id, a.storage_key)
        return json_error("not_found", "Attachment file is missing from storage.", 404)

    record_event(
        s,
        actor=current_user(),
        action="attachment.download",
        entity_type="Attachment",
        entity_id=str(a.id),
        metadata={"entity": f"{a.entity_type}:{a.entity_id}", "filename": a.filename},
    )
    s.commit()
    return send_file(fobj, mimetype=a.content_type, as_attachment=True, download_name=a.filename, max_age=0)


@bp.delete("/attachments/<int:attachment_id>")
@login_required
def attachment_delete(attachment_id: int):
    s = tenant_db()
    a = tenant_get_or_404(s, Attachment, attachment_id)
    denied = _check_entity_permission(a.entity_type, "edit")
    if denied:
        return denied
    delete_attachment(s, storage_from_config(current_app.config), a, current_user())
    s.commit()
    return jsonify({"ok": True})
