from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.crm.models import TenantBase


class Workflow(TenantBase):
    """
    A trigger plus an ordered list of actions.

    trigger_type:
      - event_created          (event_type_ids: events of these types)
      - task_created           (trigger_config: task_types, departments)
      - task_status_changed    (trigger_config: from_status, to_status, task_types, departments)
      - event_date_approaching (trigger_config: days_before)
    """

    __tablename__ = "workflows"
    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_workflows_tenant_name"),
        Index("idx_workflows_trigger", "tenant_id", "trigger_type", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    trigger_type: Mapped[str] = mapped_column(String(64), nullable=False, default="event_created")
    event_type_ids: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)
    trigger_config: Mapped[dict | None] = mapped_column(JSON, nullable=True, default=dict)
    conditions: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    actions: Mapped[list["WorkflowAction"]] = relationship(
        "WorkflowAction",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowAction.execution_order",
        lazy="selectin",
    )


class WorkflowAction(TenantBase):
    __tablename__ = "workflow_actions"
    __table_args__ = (
        UniqueConstraint("workflow_id", "execution_order", name="uq_workflow_actions_order"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    workflow_id: Mapped[int] = mapped_column(ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False)
    action_type: Mapped[str] = mapped_column(String(64), nullable=False, default="create_task")
    execution_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    task_template_id: Mapped[int | None] = mapped_column(ForeignKey("task_templates.id", ondelete="SET NULL"), nullable=True)
    assigned_to_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    design_item_type_id: Mapped[int | None] = mapped_column(
        ForeignKey("design_item_types.id", ondelete="SET NULL"), nullable=True
    )
    operations_item_type_id: Mapped[int | None] = mapped_column(
        ForeignKey("operations_item_types.id", ondelete="SET NULL"), nullable=True
    )
    staff_role_id: Mapped[int | None] = mapped_column(ForeignKey("staff_roles.id", ondelete="SET NULL"), nullable=True)
    config: Mapped[dict | None] = mapped_column(JSON, nullable=True, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    workflow: Mapped[Workflow] = relationship("Workflow", back_populates="actions")


class WorkflowExecution(TenantBase):
    """Audit log row for one run of a workflow against one entity."""

    __tablename__ = "workflow_executions"
    __table_args__ = (
        Index("idx_workflow_executions_workflow_id", "workflow_id"),
        Index("idx_workflow_executions_entity", "trigger_entity_type", "trigger_entity_id"),
        Index("idx_workflow_executions_started_at", "started_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    workflow_id: Mapped[int] = mapped_column(ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False)
    trigger_type: Mapped[str] = mapped_column(String(64), nullable=False)
    trigger_entity_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    trigger_entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="running")  # running, completed, failed, partial, skipped
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    actions_executed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    actions_successful: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    actions_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_task_ids: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)
    action_results: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)

    conditions_evaluated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    conditions_passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    condition_results: Mapped[list | None] = mapped_column(JSON, nullable=True)

    triggered_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
