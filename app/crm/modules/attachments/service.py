from __future__ import annotations

import hashlib
import logging
from datetime import datetime
from io import BytesIO
from typing import TYPE_CHECKING

import pdfplumber
from werkzeug.utils import secure_filename

from app.crm.audit import record_event
from app.crm.tenancy import tenant_id_of
from app.crm.utils import tenant_get

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.crm.models import User
    from app.crm.modules.attachments.models import Attachment
    from app.crm.storage import Storage

logger = logging.getLogger(__name__)

MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024
MAX_EXTRACTED_CHARS = 200_000


def _entity_models() -> dict:
    from app.crm.modules.accounts.models import Account
    from app.crm.modules.billing.models import Invoice, Quote
    from app.crm.modules.contacts.models import Contact
    from app.crm.modules.events.models import Event
    from app.crm.modules.leads.models import Lead
    from app.crm.modules.opportunities.models import Opportunity
    from app.crm.modules.tasks.models import Task
    from app.crm.modules.tickets.models import Ticket

    return {
        "account": Account,
        "contact": Contact,
        "lead": Lead,
        "opportunity": Opportunity,
        "event": Event,
        "quote": Quote,
        "invoice": Invoice,
        "task": Task,
        "ticket": Ticket,
    }


ENTITY_TYPES = ("account", "contact", "lead", "opportunity", "event", "quote", "invoice", "task", "ticket")


def ensure_entity(s: "Session", entity_type: str, entity_id: int) -> None:
    model = _entity_models().get(entity_type)
    if model is None:
        raise ValueError(f"Invalid entity_type. Must be one of: {', '.join(ENTITY_TYPES)}")
    if tenant_get(s, model, entity_id) is None:
        raise ValueError(f"{entity_type} not found: {entity_id}")


def file_digest(file_bytes: bytes) -> tuple[str, int]:
    h = hashlib.sha256()
    h.update(file_bytes)
    return h.hexdigest(), len(file_bytes)


def build_storage_key(tenant_id: str, entity_type: str, entity_id: int, sha256: str, filename: str) -> str:
    safe_filename = secure_filename(filename) or "attachment.bin"
    return f"tenants/{tenant_id}/{entity_type}/{entity_id}/{sha256[:12]}_{safe_filename}"


def extract_pdf_text(pdf_bytes: bytes) -> str:
    text = []
    try:
        with pdfplumber.open(BytesIO(pdf_bytes)) as pdf:
            for page in pdf.pages:
                text.append(page.extract_text() or "")
    except Exception as e:
        logger.warning("PDF text extraction failed: %s", e)
        return ""
    return "\n".join(text)[:MAX_EXTRACTED_CHARS]


def _is_pdf(filename: str, content_type: str | None) -> bool:
    return (content_type or "").lower() == "application/pdf" or filename.lower().endswith(".pdf")


def upload_attachment(
    s: "Session",
    storage: "Storage",
    *,
    entity_type: str,
    entity_id: int,
    file_bytes: bytes,
    filename: str,
    content_type: str | None,
    user: "User",
    description: str | None = None,
) -> "Attachment":
    from app.crm.modules.attachments.models import Attachment

    if not file_bytes:
        raise ValueError("File is empty.")
    if len(file_bytes) > MAX_ATTACHMENT_BYTES:
        raise ValueError("File exceeds the 10 MB attachment limit.")
    ensure_entity(s, entity_type, entity_id)

    tid = tenant_id_of(s)
    sha256, size_bytes = file_digest(file_bytes)
    storage_key = build_storage_key(tid, entity_type, entity_id, sha256, filename)
    content_type = content_type or "application/octet-stream"
    storage.put_bytes(storage_key, file_bytes, content_type=content_type)

    attachment = Attachment(
        tenant_id=tid,
        entity_type=entity_type,
        entity_id=entity_id,
        storage_key=storage_key,
        filename=secure_filename(filename) or "attachment.bin",
        content_type=content_type,
        size_bytes=size_bytes,
        sha256=sha256,
        description=description,
        extracted_text=(extract_pdf_text(file_bytes) or None) if _is_pdf(filename, content_type) else None,
        uploaded_at=datetime.utcnow(),
        uploaded_by_user_id=user.id,
    )
    s.add(attachment)
    s.flush()

    record_event(
        s,
        actor=user,
        action="attachment.upload",
        entity_type="Attachment",
        entity_id=str(attachment.id),
        metadata={
            "entity": f"{entity_type}:{entity_id}",
            "filename": attachment.filename,
            "size_bytes": size_bytes,
            "sha256": sha256,
        },
    )
    return attachment


def delete_attachment(s: "Session", storage: "Storage", attachment: "Attachment", user: "User") -> None:
    storage.delete(attachment.storage_key)
    record_event(
        s,
        actor=user,
        action="attachment.delete",
        entity_type="Attachment",
        entity_id=str(attachment.id),
        metadata={"entity": f"{attachment.entity_type}:{attachment.entity_id}", "filename": attachment.filename},
    )
    s.delete(attachment)
