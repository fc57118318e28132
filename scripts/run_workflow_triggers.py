#!/usr/bin/env python3
"""
Fire event_date_approaching workflows for all active tenants (or the ones named).
Intended for a daily scheduler when the HTTP cron endpoint is not used.

Usage:
    python scripts/run_workflow_triggers.py
    python scripts/run_workflow_triggers.py --tenant acme --days 7 --days 1
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def main() -> None:
    parser = argparse.ArgumentParser(description="Run scheduled workflow triggers.")
    parser.add_argument("--tenant", action="append", default=None, help="App tenant id (repeatable)")
    parser.add_argument("--days", action="append", type=int, default=None, help="Days before event (repeatable)")
    args = parser.parse_args()

    from app.crm import create_app
    from app.crm.modules.workflows.cron import run_event_date_triggers
    from app.crm.modules.workflows.engine import EVENT_DATE_TRIGGER_DAYS

    app = create_app()
    with app.app_context():
        result = run_event_date_triggers(
            app,
            tenant_ids=args.tenant,
            days_list=args.days or EVENT_DATE_TRIGGER_DAYS,
        )

    print(json.dumps(result, indent=2, default=str), flush=True)
    if result["errors"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
