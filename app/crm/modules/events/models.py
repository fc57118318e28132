from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Time, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.crm.models import TenantBase

if TYPE_CHECKING:
    from app.crm.modules.opportunities.models import Opportunity


class EventType(TenantBase):
    __tablename__ = "event_types"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_event_types_tenant_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)  # Wedding, Corporate, ...
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class Event(TenantBase):
    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_tenant_id", "tenant_id"),
        Index("idx_events_start_date", "start_date"),
        Index("idx_events_status", "status"),
        Index("idx_events_event_type_id", "event_type_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_id: Mapped[int | None] = mapped_column(ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    contact_id: Mapped[int | None] = mapped_column(ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True)
    opportunity_id: Mapped[int | None] = mapped_column(ForeignKey("opportunities.id", ondelete="SET NULL"), nullable=True)
    event_type_id: Mapped[int | None] = mapped_column(ForeignKey("event_types.id", ondelete="SET NULL"), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="planning")
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)

    location_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address_line1: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address_line2: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[str | None] = mapped_column(String(50), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(20), nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    assigned_to: Mapped[int | None] = mapped_column(Integer, nullable=True)
    converted_from_opportunity_id: Mapped[int | None] = mapped_column(
        ForeignKey("opportunities.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_by_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    event_dates: Mapped[list["EventDate"]] = relationship(
        "EventDate",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="EventDate.event_date",
        lazy="selectin",
        foreign_keys="EventDate.event_id",
    )
    staff_assignments: Mapped[list["EventStaffAssignment"]] = relationship(
        "EventStaffAssignment",
        back_populates="event",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class EventDate(TenantBase):
    """A dated slot belonging to either an opportunity (pre-booking) or an event."""

    __tablename__ = "event_dates"
    __table_args__ = (
        Index("idx_event_dates_event_id", "event_id"),
        Index("idx_event_dates_opportunity_id", "opportunity_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    opportunity_id: Mapped[int | None] = mapped_column(ForeignKey("opportunities.id", ondelete="CASCADE"), nullable=True)
    event_id: Mapped[int | None] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=True)

    event_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="scheduled")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    event: Mapped[Event | None] = relationship("Event", back_populates="event_dates", foreign_keys=[event_id])
    opportunity: Mapped["Opportunity | None"] = relationship(
        "Opportunity", back_populates="event_dates", foreign_keys=[opportunity_id]
    )


class StaffRole(TenantBase):
    __tablename__ = "staff_roles"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_staff_roles_tenant_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)  # Booth Attendant, Event Manager, ...
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    default_hourly_rate: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class EventStaffAssignment(TenantBase):
    __tablename__ = "event_staff_assignments"
    __table_args__ = (
        Index("idx_event_staff_assignments_event_id", "event_id"),
        Index("idx_event_staff_assignments_user_id", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)  # app DB user id
    staff_role_id: Mapped[int | None] = mapped_column(ForeignKey("staff_roles.id", ondelete="SET NULL"), nullable=True)
    event_date_id: Mapped[int | None] = mapped_column(ForeignKey("event_dates.id", ondelete="CASCADE"), nullable=True)
    hourly_rate: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="assigned")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    event: Mapped[Event] = relationship("Event", back_populates="staff_assignments")
    staff_role: Mapped[StaffRole | None] = relationship("StaffRole", lazy="selectin")


class DesignItemType(TenantBase):
    __tablename__ = "design_item_types"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_design_item_types_tenant_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)  # Print template, Backdrop, ...
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    default_design_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    default_production_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    default_shipping_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    client_approval_buffer_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    @property
    def lead_time_days(self) -> int:
        return (
            (self.default_design_days or 0)
            + (self.default_production_days or 0)
            + (self.default_shipping_days or 0)
            + (self.client_approval_buffer_days or 0)
        )


class EventDesignItem(TenantBase):
    __tablename__ = "event_design_items"
    __table_args__ = (Index("idx_event_design_items_event_id", "event_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    design_item_type_id: Mapped[int | None] = mapped_column(
        ForeignKey("design_item_types.id", ondelete="SET NULL"), nullable=True
    )
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    assigned_designer_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    design_deadline: Mapped[date | None] = mapped_column(Date, nullable=True)
    auto_created: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    workflow_id: Mapped[int | None] = mapped_column(ForeignKey("workflows.id", ondelete="SET NULL"), nullable=True)
    workflow_execution_id: Mapped[int | None] = mapped_column(
        ForeignKey("workflow_executions.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class OperationsItemType(TenantBase):
    __tablename__ = "operations_item_types"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_operations_item_types_tenant_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)  # Load-in plan, Venue COI, ...
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    due_date_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # days before the event
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class EventOperationsItem(TenantBase):
    __tablename__ = "event_operations_items"
    __table_args__ = (Index("idx_event_operations_items_event_id", "event_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    operations_item_type_id: Mapped[int | None] = mapped_column(
        ForeignKey("operations_item_types.id", ondelete="SET NULL"), nullable=True
    )
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    assigned_to_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    auto_created: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    workflow_id: Mapped[int | None] = mapped_column(ForeignKey("workflows.id", ondelete="SET NULL"), nullable=True)
    workflow_execution_id: Mapped[int | None] = mapped_column(
        ForeignKey("workflow_executions.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
