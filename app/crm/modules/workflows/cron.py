"""
Scheduled workflow triggers. Called from the cron endpoint and from
scripts/run_workflow_triggers.py; both need an app context.
"""
from __future__ import annotations

import logging
import time
from datetime import date, timedelta
from typing import Any

from flask import Flask
from sqlalchemy import select

from app.crm.db import session_scope
from app.crm.models import Tenant
from app.crm.modules.workflows.engine import EVENT_DATE_TRIGGER_DAYS, trigger_event_date_approaching
from app.crm.tenancy import tenant_session_scope

logger = logging.getLogger(__name__)


def _active_tenant_ids(app: Flask, only: list[str] | None = None) -> list[str]:
    with session_scope(app) as s:
        q = select(Tenant.id).where(Tenant.status == "active").order_by(Tenant.id.asc())
        if only:
            q = q.where(Tenant.id.in_(only))
        return list(s.execute(q).scalars())


def run_event_date_triggers(
    app: Flask,
    *,
    tenant_ids: list[str] | None = None,
    days_list: tuple[int, ...] | list[int] = EVENT_DATE_TRIGGER_DAYS,
    today: date | None = None,
) -> dict[str, Any]:
    """
    Fire event_date_approaching for every event starting exactly `today + days`.
    One tenant failing does not stop the others; its error is reported in `errors`.
    """
    from app.crm.modules.events.models import Event

    started = time.monotonic()
    today = today or date.today()
    result: dict[str, Any] = {
        "success": True,
        "triggers_processed": 0,
        "workflows_executed": 0,
        "events_processed": 0,
        "tenants_processed": 0,
        "errors": [],
    }

    for tid in _active_tenant_ids(app, tenant_ids):
        try:
            with tenant_session_scope(app, tid) as s:
                for days in days_list:
                    target = today + timedelta(days=int(days))
                    events = (
                        s.query(Event)
                        .filter(Event.tenant_id == s.info["tenant_id"], Event.start_date == target)
                        .order_by(Event.id.asc())
                        .all()
                    )
                    result["triggers_processed"] += 1
                    for event in events:
                        summary = trigger_event_date_approaching(s, event, int(days))
                        result["events_processed"] += 1
                        result["workflows_executed"] += summary["workflows_executed"]
            result["tenants_processed"] += 1
        except Exception as e:
            logger.exception("event date triggers failed for tenant %s", tid)
            result["errors"].append({"tenant_id": tid, "error": str(e)})

    result["success"] = not result["errors"]
    result["duration_ms"] = int((time.monotonic() - started) * 1000)
    logger.info(
        "event date triggers: tenants=%s events=%s workflows=%s errors=%s",
        result["tenants_processed"],
        result["events_processed"],
        result["workflows_executed"],
        len(result["errors"]),
    )
    return result
