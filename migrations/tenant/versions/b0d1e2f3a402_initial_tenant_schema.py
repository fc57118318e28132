"""initial tenant schema: CRM, events, billing, inventory, tasks, tickets, workflows, attachments, audit

Revision ID: b0d1e2f3a402
Revises:
Create Date: 2026-02-02

Business tables live in the tenant data DB; every row carries tenant_id.
User ids (owner_id, assigned_to, ...) reference the app DB and are plain integers.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "b0d1e2f3a402"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now())


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now())


def _tenant_id() -> sa.Column:
    return sa.Column("tenant_id", sa.String(64), nullable=False)


def _fk(name: str, target: str, ondelete: str = "SET NULL", nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.Integer(), sa.ForeignKey(target, ondelete=ondelete), nullable=nullable)


def upgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)

    def missing(table: str) -> bool:
        return not insp.has_table(table)

    if missing("audit_events"):
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            _created_at(),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
        )
        op.create_index("idx_audit_events_tenant_created", "audit_events", ["tenant_id", "created_at"])
        op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])

    if missing("event_types"):
        op.create_table(
            "event_types",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
            _created_at(),
            sa.UniqueConstraint("tenant_id", "name", name="uq_event_types_tenant_name"),
        )

    if missing("accounts"):
        op.create_table(
            "accounts",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("account_type", sa.String(32), nullable=False, server_default="company"),
            sa.Column("industry", sa.String(100), nullable=True),
            sa.Column("email", sa.String(255), nullable=True),
            sa.Column("phone", sa.String(50), nullable=True),
            sa.Column("website", sa.String(255), nullable=True),
            sa.Column("billing_address_line1", sa.String(255), nullable=True),
            sa.Column("billing_address_line2", sa.String(255), nullable=True),
            sa.Column("billing_city", sa.String(100), nullable=True),
            sa.Column("billing_state", sa.String(50), nullable=True),
            sa.Column("billing_postal_code", sa.String(20), nullable=True),
            sa.Column("billing_country", sa.String(100), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="active"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("owner_id", sa.Integer(), nullable=True),
            _created_at(),
            _updated_at(),
            sa.Column("created_by_user_id", sa.Integer(), nullable=True),
            sa.Column("updated_by_user_id", sa.Integer(), nullable=True),
        )
        op.create_index("idx_accounts_tenant_id", "accounts", ["tenant_id"])
        op.create_index("idx_accounts_name", "accounts", ["name"])
        op.create_index("idx_accounts_status", "accounts", ["status"])

    if missing("contacts"):
        op.create_table(
            "contacts",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            sa.Column("first_name", sa.String(100), nullable=True),
            sa.Column("last_name", sa.String(100), nullable=True),
            sa.Column("email", sa.String(255), nullable=True),
            sa.Column("phone", sa.String(50), nullable=True),
            sa.Column("mobile", sa.String(50), nullable=True),
            sa.Column("title", sa.String(100), nullable=True),
            sa.Column("department", sa.String(100), nullable=True),
            sa.Column("mailing_address_line1", sa.String(255), nullable=True),
            sa.Column("mailing_address_line2", sa.String(255), nullable=True),
            sa.Column("mailing_city", sa.String(100), nullable=True),
            sa.Column("mailing_state", sa.String(50), nullable=True),
            sa.Column("mailing_postal_code", sa.String(20), nullable=True),
            sa.Column("mailing_country", sa.String(100), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="active"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("owner_id", sa.Integer(), nullable=True),
            _created_at(),
            _updated_at(),
            sa.Column("created_by_user_id", sa.Integer(), nullable=True),
            sa.Column("updated_by_user_id", sa.Integer(), nullable=True),
        )
        op.create_index("idx_contacts_tenant_id", "contacts", ["tenant_id"])
        op.create_index("idx_contacts_email", "contacts", ["email"])
        op.create_index("idx_contacts_last_name", "contacts", ["last_name"])

    if missing("contact_accounts"):
        op.create_table(
            "contact_accounts",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            _fk("contact_id", "contacts.id", "CASCADE", nullable=False),
            _fk("account_id", "accounts.id", "CASCADE", nullable=False),
            sa.Column("role", sa.String(100), nullable=True),
            sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
            _created_at(),
            sa.UniqueConstraint("contact_id", "account_id", name="uq_contact_accounts_pair"),
        )
        op.create_index("idx_contact_accounts_account_id", "contact_accounts", ["account_id"])

    if missing("leads"):
        op.create_table(
            "leads",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            sa.Column("first_name", sa.String(100), nullable=True),
            sa.Column("last_name", sa.String(100), nullable=True),
            sa.Column("email", sa.String(255), nullable=True),
            sa.Column("phone", sa.String(50), nullable=True),
            sa.Column("company", sa.String(255), nullable=True),
            sa.Column("title", sa.String(100), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="new"),
            sa.Column("source", sa.String(100), nullable=True),
            sa.Column("rating", sa.String(32), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("owner_id", sa.Integer(), nullable=True),
            sa.Column("is_converted", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("converted_at", sa.DateTime(), nullable=True),
            _fk("converted_account_id", "accounts.id"),
            _fk("converted_contact_id", "contacts.id"),
            sa.Column("converted_opportunity_id", sa.Integer(), nullable=True),
            _created_at(),
            _updated_at(),
            sa.Column("created_by_user_id", sa.Integer(), nullable=True),
            sa.Column("updated_by_user_id", sa.Integer(), nullable=True),
        )
        op.create_index("idx_leads_tenant_id", "leads", ["tenant_id"])
        op.create_index("idx_leads_status", "leads", ["status"])
        op.create_index("idx_leads_email", "leads", ["email"])

    if missing("opportunities"):
        op.create_table(
            "opportunities",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            sa.Column("name", sa.String(255), nullable=False),
            _fk("account_id", "accounts.id"),
            _fk("contact_id", "contacts.id"),
            _fk("lead_id", "leads.id"),
            _fk("event_type_id", "event_types.id"),
            sa.Column("stage", sa.String(32), nullable=False, server_default="prospecting"),
            sa.Column("status", sa.String(16), nullable=False, server_default="open"),
            sa.Column("amount", sa.Numeric(15, 2), nullable=False, server_default="0"),
            sa.Column("probability", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("expected_close_date", sa.Date(), nullable=True),
            sa.Column("actual_close_date", sa.Date(), nullable=True),
            sa.Column("date_type", sa.String(16), nullable=False, server_default="single_day"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("owner_id", sa.Integer(), nullable=True),
            sa.Column("lead_source", sa.String(100), nullable=True),
            sa.Column("next_step", sa.Text(), nullable=True),
            sa.Column("is_converted", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("converted_at", sa.DateTime(), nullable=True),
            sa.Column("converted_event_id", sa.Integer(), nullable=True),
            _created_at(),
            _updated_at(),
            sa.Column("created_by_user_id", sa.Integer(), nullable=True),
            sa.Column("updated_by_user_id", sa.Integer(), nullable=True),
        )
        op.create_index("idx_opportunities_tenant_id", "opportunities", ["tenant_id"])
        op.create_index("idx_opportunities_stage", "opportunities", ["stage"])
        op.create_index("idx_opportunities_owner_id", "opportunities", ["owner_id"])
        op.create_index("idx_opportunities_expected_close", "opportunities", ["expected_close_date"])

    if missing("opportunity_line_items"):
        op.create_table(
            "opportunity_line_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            _fk("opportunity_id", "opportunities.id", "CASCADE", nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("quantity", sa.Numeric(10, 2), nullable=False, server_default="1"),
            sa.Column("unit_price", sa.Numeric(15, 2), nullable=False, server_default="0"),
            sa.Column("total_price", sa.Numeric(15, 2), nullable=False, server_default="0"),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            _created_at(),
            _updated_at(),
        )
        op.create_index("idx_opportunity_line_items_opportunity_id", "opportunity_line_items", ["opportunity_id"])

    if missing("events"):
        op.create_table(
            "events",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            sa.Column("name", sa.String(255), nullable=False),
            _fk("account_id", "accounts.id"),
            _fk("contact_id", "contacts.id"),
            _fk("opportunity_id", "opportunities.id"),
            _fk("event_type_id", "event_types.id"),
            sa.Column("status", sa.String(32), nullable=False, server_default="planning"),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("start_time", sa.Time(), nullable=True),
            sa.Column("end_time", sa.Time(), nullable=True),
            sa.Column("location_name", sa.String(255), nullable=True),
            sa.Column("address_line1", sa.String(255), nullable=True),
            sa.Column("address_line2", sa.String(255), nullable=True),
            sa.Column("city", sa.String(100), nullable=True),
            sa.Column("state", sa.String(50), nullable=True),
            sa.Column("postal_code", sa.String(20), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("owner_id", sa.Integer(), nullable=True),
            sa.Column("assigned_to", sa.Integer(), nullable=True),
            _fk("converted_from_opportunity_id", "opportunities.id"),
            _created_at(),
            _updated_at(),
            sa.Column("created_by_user_id", sa.Integer(), nullable=True),
            sa.Column("updated_by_user_id", sa.Integer(), nullable=True),
        )
        op.create_index("idx_events_tenant_id", "events", ["tenant_id"])
        op.create_index("idx_events_start_date", "events", ["start_date"])
        op.create_index("idx_events_status", "events", ["status"])
        op.create_index("idx_events_event_type_id", "events", ["event_type_id"])

    if missing("event_dates"):
        op.create_table(
            "event_dates",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            _fk("opportunity_id", "opportunities.id", "CASCADE"),
            _fk("event_id", "events.id", "CASCADE"),
            sa.Column("event_date", sa.Date(), nullable=False),
            sa.Column("start_time", sa.Time(), nullable=True),
            sa.Column("end_time", sa.Time(), nullable=True),
            sa.Column("location", sa.String(255), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="scheduled"),
            _created_at(),
        )
        op.create_index("idx_event_dates_event_id", "event_dates", ["event_id"])
        op.create_index("idx_event_dates_opportunity_id", "event_dates", ["opportunity_id"])

    if missing("staff_roles"):
        op.create_table(
            "staff_roles",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("default_hourly_rate", sa.Numeric(10, 2), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
            sa.UniqueConstraint("tenant_id", "name", name="uq_staff_roles_tenant_name"),
        )

    if missing("event_staff_assignments"):
        op.create_table(
            "event_staff_assignments",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            _fk("event_id", "events.id", "CASCADE", nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            _fk("staff_role_id", "staff_roles.id"),
            _fk("event_date_id", "event_dates.id", "CASCADE"),
            sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="assigned"),
            _created_at(),
        )
        op.create_index("idx_event_staff_assignments_event_id", "event_staff_assignments", ["event_id"])
        op.create_index("idx_event_staff_assignments_user_id", "event_staff_assignments", ["user_id"])

    if missing("design_item_types"):
        op.create_table(
            "design_item_types",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("category", sa.String(100), nullable=True),
            sa.Column("default_design_days", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("default_production_days", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("default_shipping_days", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("client_approval_buffer_days", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
            sa.UniqueConstraint("tenant_id", "name", name="uq_design_item_types_tenant_name"),
        )

    if missing("operations_item_types"):
        op.create_table(
            "operations_item_types",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("category", sa.String(100), nullable=True),
            sa.Column("due_date_days", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
            sa.UniqueConstraint("tenant_id", "name", name="uq_operations_item_types_tenant_name"),
        )

    if missing("task_templates"):
        op.create_table(
            "task_templates",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("default_title", sa.String(255), nullable=False),
            sa.Column("default_description", sa.Text(), nullable=True),
            sa.Column("default_priority", sa.String(16), nullable=False, server_default="medium"),
            sa.Column("default_due_in_days", sa.Integer(), nullable=True),
            sa.Column("department", sa.String(64), nullable=True),
            sa.Column("task_type", sa.String(64), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
        )
        op.create_index("idx_task_templates_tenant_id", "task_templates", ["tenant_id"])

    if missing("workflows"):
        op.create_table(
            "workflows",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("trigger_type", sa.String(64), nullable=False, server_default="event_created"),
            sa.Column("event_type_ids", sa.JSON(), nullable=True),
            sa.Column("trigger_config", sa.JSON(), nullable=True),
            sa.Column("conditions", sa.JSON(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_by", sa.Integer(), nullable=True),
            _created_at(),
            _updated_at(),
            sa.UniqueConstraint("tenant_id", "name", name="uq_workflows_tenant_name"),
        )
        op.create_index("idx_workflows_trigger", "workflows", ["tenant_id", "trigger_type", "is_active"])

    if missing("workflow_actions"):
        op.create_table(
            "workflow_actions",
            sa.Column("id", sa.Integer(), primary_key=True),
            _fk("workflow_id", "workflows.id", "CASCADE", nullable=False),
            sa.Column("action_type", sa.String(64), nullable=False, server_default="create_task"),
            sa.Column("execution_order", sa.Integer(), nullable=False, server_default="0"),
            _fk("task_template_id", "task_templates.id"),
            sa.Column("assigned_to_user_id", sa.Integer(), nullable=True),
            _fk("design_item_type_id", "design_item_types.id"),
            _fk("operations_item_type_id", "operations_item_types.id"),
            _fk("staff_role_id", "staff_roles.id"),
            sa.Column("config", sa.JSON(), nullable=True),
            _created_at(),
            sa.UniqueConstraint("workflow_id", "execution_order", name="uq_workflow_actions_order"),
        )

    if missing("workflow_executions"):
        op.create_table(
            "workflow_executions",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            _fk("workflow_id", "workflows.id", "CASCADE", nullable=False),
            sa.Column("trigger_type", sa.String(64), nullable=False),
            sa.Column("trigger_entity_type", sa.String(32), nullable=True),
            sa.Column("trigger_entity_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(16), nullable=False, server_default="running"),
            sa.Column("started_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("actions_executed", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("actions_successful", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("actions_failed", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("error_details", sa.JSON(), nullable=True),
            sa.Column("created_task_ids", sa.JSON(), nullable=True),
            sa.Column("action_results", sa.JSON(), nullable=True),
            sa.Column("conditions_evaluated", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("conditions_passed", sa.Boolean(), nullable=True),
            sa.Column("condition_results", sa.JSON(), nullable=True),
            sa.Column("triggered_by", sa.Integer(), nullable=True),
        )
        op.create_index("idx_workflow_executions_workflow_id", "workflow_executions", ["workflow_id"])
        op.create_index(
            "idx_workflow_executions_entity", "workflow_executions", ["trigger_entity_type", "trigger_entity_id"]
        )
        op.create_index("idx_workflow_executions_started_at", "workflow_executions", ["started_at"])

    if missing("event_design_items"):
        op.create_table(
            "event_design_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            _fk("event_id", "events.id", "CASCADE", nullable=False),
            _fk("design_item_type_id", "design_item_types.id"),
            sa.Column("item_name", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
            sa.Column("assigned_designer_id", sa.Integer(), nullable=True),
            sa.Column("design_deadline", sa.Date(), nullable=True),
            sa.Column("auto_created", sa.Boolean(), nullable=False, server_default=sa.false()),
            _fk("workflow_id", "workflows.id"),
            _fk("workflow_execution_id", "workflow_executions.id"),
            _created_at(),
        )
        op.create_index("idx_event_design_items_event_id", "event_design_items", ["event_id"])

    if missing("event_operations_items"):
        op.create_table(
            "event_operations_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            _fk("event_id", "events.id", "CASCADE", nullable=False),
            _fk("operations_item_type_id", "operations_item_types.id"),
            sa.Column("item_name", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
            sa.Column("assigned_to_id", sa.Integer(), nullable=True),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("auto_created", sa.Boolean(), nullable=False, server_default=sa.false()),
            _fk("workflow_id", "workflows.id"),
            _fk("workflow_execution_id", "workflow_executions.id"),
            _created_at(),
        )
        op.create_index("idx_event_operations_items_event_id", "event_operations_items", ["event_id"])

    if missing("invoices"):
        op.create_table(
            "invoices",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            sa.Column("invoice_number", sa.String(32), nullable=False),
            _fk("account_id", "accounts.id"),
            _fk("contact_id", "contacts.id"),
            _fk("opportunity_id", "opportunities.id"),
            _fk("event_id", "events.id"),
            sa.Column("issue_date", sa.Date(), nullable=False),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("subtotal", sa.Numeric(15, 2), nullable=False, server_default="0"),
            sa.Column("tax_rate", sa.Numeric(6, 4), nullable=False, server_default="0"),
            sa.Column("tax_amount", sa.Numeric(15, 2), nullable=False, server_default="0"),
            sa.Column("total", sa.Numeric(15, 2), nullable=False, server_default="0"),
            sa.Column("amount_paid", sa.Numeric(15, 2), nullable=False, server_default="0"),
            sa.Column("balance_due", sa.Numeric(15, 2), nullable=False, server_default="0"),
            sa.Column("status", sa.String(32), nullable=False, server_default="draft"),
            sa.Column("terms", sa.Text(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("owner_id", sa.Integer(), nullable=True),
            _created_at(),
            _updated_at(),
            sa.Column("created_by_user_id", sa.Integer(), nullable=True),
            sa.UniqueConstraint("tenant_id", "invoice_number", name="uq_invoices_tenant_number"),
        )
        op.create_index("idx_invoices_account_id", "invoices", ["account_id"])
        op.create_index("idx_invoices_event_id", "invoices", ["event_id"])
        op.create_index("idx_invoices_status", "invoices", ["status"])

    if missing("invoice_line_items"):
        op.create_table(
            "invoice_line_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            _fk("invoice_id", "invoices.id", "CASCADE", nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("quantity", sa.Numeric(10, 2), nullable=False, server_default="1"),
            sa.Column("unit_price", sa.Numeric(15, 2), nullable=False, server_default="0"),
            sa.Column("total_price", sa.Numeric(15, 2), nullable=False, server_default="0"),
            sa.Column("taxable", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            _created_at(),
        )
        op.create_index("idx_invoice_line_items_invoice_id", "invoice_line_items", ["invoice_id"])

    if missing("payments"):
        op.create_table(
            "payments",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            _fk("invoice_id", "invoices.id", "CASCADE", nullable=False),
            sa.Column("payment_date", sa.Date(), nullable=False),
            sa.Column("amount", sa.Numeric(15, 2), nullable=False),
            sa.Column("payment_method", sa.String(50), nullable=True),
            sa.Column("reference_number", sa.String(255), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="completed"),
            _created_at(),
            sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        )
        op.create_index("idx_payments_invoice_id", "payments", ["invoice_id"])

    if missing("quotes"):
        op.create_table(
            "quotes",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            sa.Column("quote_number", sa.String(32), nullable=False),
            _fk("account_id", "accounts.id"),
            _fk("contact_id", "contacts.id"),
            _fk("opportunity_id", "opportunities.id"),
            _fk("invoice_id", "invoices.id"),
            sa.Column("issue_date", sa.Date(), nullable=False),
            sa.Column("expiration_date", sa.Date(), nullable=True),
            sa.Column("subtotal", sa.Numeric(15, 2), nullable=False, server_default="0"),
            sa.Column("tax_rate", sa.Numeric(6, 4), nullable=False, server_default="0"),
            sa.Column("tax_amount", sa.Numeric(15, 2), nullable=False, server_default="0"),
            sa.Column("total", sa.Numeric(15, 2), nullable=False, server_default="0"),
            sa.Column("status", sa.String(32), nullable=False, server_default="draft"),
            sa.Column("terms", sa.Text(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("owner_id", sa.Integer(), nullable=True),
            _created_at(),
            _updated_at(),
            sa.Column("created_by_user_id", sa.Integer(), nullable=True),
            sa.UniqueConstraint("tenant_id", "quote_number", name="uq_quotes_tenant_number"),
        )
        op.create_index("idx_quotes_opportunity_id", "quotes", ["opportunity_id"])
        op.create_index("idx_quotes_status", "quotes", ["status"])

    if missing("quote_line_items"):
        op.create_table(
            "quote_line_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            _fk("quote_id", "quotes.id", "CASCADE", nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("quantity", sa.Numeric(10, 2), nullable=False, server_default="1"),
            sa.Column("unit_price", sa.Numeric(15, 2), nullable=False, server_default="0"),
            sa.Column("total_price", sa.Numeric(15, 2), nullable=False, server_default="0"),
            sa.Column("taxable", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            _created_at(),
        )
        op.create_index("idx_quote_line_items_quote_id", "quote_line_items", ["quote_id"])

    if missing("inventory_items"):
        op.create_table(
            "inventory_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            sa.Column("item_name", sa.String(255), nullable=False),
            sa.Column("category", sa.String(100), nullable=True),
            sa.Column("serial_number", sa.String(128), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="available"),
            sa.Column("assignment_type", sa.String(32), nullable=False, server_default="none"),
            sa.Column("assigned_to_type", sa.String(32), nullable=True),
            sa.Column("assigned_to_id", sa.String(64), nullable=True),
            sa.Column("assigned_to_name", sa.String(255), nullable=True),
            _fk("event_id", "events.id"),
            sa.Column("expected_return_date", sa.Date(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            _created_at(),
            _updated_at(),
        )
        op.create_index("idx_inventory_items_tenant_id", "inventory_items", ["tenant_id"])
        op.create_index("idx_inventory_items_category", "inventory_items", ["category"])
        op.create_index("idx_inventory_items_event_id", "inventory_items", ["event_id"])

    if missing("tasks"):
        op.create_table(
            "tasks",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
            sa.Column("priority", sa.String(16), nullable=False, server_default="medium"),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("assigned_to", sa.Integer(), nullable=True),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("entity_type", sa.String(32), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("department", sa.String(64), nullable=True),
            sa.Column("task_type", sa.String(64), nullable=True),
            sa.Column("auto_created", sa.Boolean(), nullable=False, server_default=sa.false()),
            _fk("workflow_id", "workflows.id"),
            _fk("workflow_execution_id", "workflow_executions.id"),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            _created_at(),
            _updated_at(),
        )
        op.create_index("idx_tasks_tenant_id", "tasks", ["tenant_id"])
        op.create_index("idx_tasks_assigned_to", "tasks", ["assigned_to"])
        op.create_index("idx_tasks_entity", "tasks", ["entity_type", "entity_id"])
        op.create_index("idx_tasks_due_date", "tasks", ["due_date"])

    if missing("notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("priority", sa.String(16), nullable=False, server_default="normal"),
            sa.Column("link", sa.String(512), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("entity_type", sa.String(32), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            _fk("workflow_id", "workflows.id"),
            _created_at(),
        )
        op.create_index("idx_notifications_user_id", "notifications", ["user_id", "is_read"])

    if missing("tickets"):
        op.create_table(
            "tickets",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("ticket_type", sa.String(32), nullable=False, server_default="bug"),
            sa.Column("status", sa.String(32), nullable=False, server_default="new"),
            sa.Column("priority", sa.String(16), nullable=False, server_default="medium"),
            sa.Column("page_url", sa.String(1024), nullable=True),
            sa.Column("reported_by", sa.Integer(), nullable=True),
            sa.Column("assigned_to", sa.Integer(), nullable=True),
            sa.Column("resolved_by", sa.Integer(), nullable=True),
            sa.Column("resolved_at", sa.DateTime(), nullable=True),
            sa.Column("resolution_notes", sa.Text(), nullable=True),
            sa.Column("votes", sa.Integer(), nullable=False, server_default="0"),
            _created_at(),
            _updated_at(),
        )
        op.create_index("idx_tickets_tenant_id", "tickets", ["tenant_id"])
        op.create_index("idx_tickets_status", "tickets", ["status"])

    if missing("attachments"):
        op.create_table(
            "attachments",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_id(),
            sa.Column("entity_type", sa.String(32), nullable=False),
            sa.Column("entity_id", sa.Integer(), nullable=False),
            sa.Column("storage_key", sa.Text(), nullable=False),
            sa.Column("filename", sa.Text(), nullable=False),
            sa.Column("content_type", sa.String(128), nullable=False),
            sa.Column("size_bytes", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("sha256", sa.String(64), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("extracted_text", sa.Text(), nullable=True),
            sa.Column("uploaded_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("uploaded_by_user_id", sa.Integer(), nullable=True),
        )
        op.create_index("idx_attachments_entity", "attachments", ["tenant_id", "entity_type", "entity_id"])


_TABLES_IN_DROP_ORDER = (
    "attachments",
    "tickets",
    "notifications",
    "tasks",
    "inventory_items",
    "quote_line_items",
    "quotes",
    "payments",
    "invoice_line_items",
    "invoices",
    "event_operations_items",
    "event_design_items",
    "workflow_executions",
    "workflow_actions",
    "workflows",
    "task_templates",
    "operations_item_types",
    "design_item_types",
    "event_staff_assignments",
    "staff_roles",
    "event_dates",
    "events",
    "opportunity_line_items",
    "opportunities",
    "leads",
    "contact_accounts",
    "contacts",
    "accounts",
    "event_types",
    "audit_events",
)


def downgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)
    for table in _TABLES_IN_DROP_ORDER:
        if insp.has_table(table):
            op.drop_table(table)
