from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class AppBase(DeclarativeBase):
    """Tables that live in the app DB (tenants, identity, RBAC)."""


class TenantBase(DeclarativeBase):
    """Tables that live in a tenant data DB. Every row carries tenant_id."""


# ---------------------------------------------------------------------------
# App DB
# ---------------------------------------------------------------------------


class Tenant(AppBase):
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # slug or uuid
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    subdomain: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")  # active, suspended
    plan: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Data source routing. data_source_url is Fernet-encrypted when ENCRYPTION_KEY is set.
    data_source_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    data_source_region: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tenant_id_in_data_source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    connection_pool_min: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    connection_pool_max: Mapped[int] = mapped_column(Integer, nullable=False, default=5)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    users: Mapped[list["User"]] = relationship(back_populates="tenant", lazy="selectin")


class UserRole(AppBase):
    __tablename__ = "user_roles"
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)


class RolePermission(AppBase):
    __tablename__ = "role_permissions"
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    permission_id: Mapped[int] = mapped_column(ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True)


class User(AppBase):
    __tablename__ = "users"
    __table_args__ = (Index("idx_users_tenant_id", "tenant_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str | None] = mapped_column(ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    tenant: Mapped[Tenant | None] = relationship(back_populates="users", lazy="selectin")
    roles: Mapped[list["Role"]] = relationship(
        secondary="user_roles",
        back_populates="users",
        lazy="selectin",
    )

    @property
    def full_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or self.email


class Role(AppBase):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # e.g. "sales_rep"
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    users: Mapped[list[User]] = relationship(secondary="user_roles", back_populates="roles", lazy="selectin")
    permissions: Mapped[list["Permission"]] = relationship(
        secondary="role_permissions",
        back_populates="roles",
        lazy="selectin",
    )


class Permission(AppBase):
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)  # e.g. "leads.edit"
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    roles: Mapped[list[Role]] = relationship(secondary="role_permissions", back_populates="permissions", lazy="selectin")


# ---------------------------------------------------------------------------
# Tenant DB
# ---------------------------------------------------------------------------


class AuditEvent(TenantBase):
    """
    Append-only audit trail event.
    Actor ids reference the app DB, so they are stored as plain integers.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_events_tenant_created", "tenant_id", "created_at"),
        Index("idx_audit_events_entity", "entity_type", "entity_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "lead.convert"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)


# Ensure module models are imported so TenantBase.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.crm.modules.accounts.models import Account  # noqa: E402,F401
from app.crm.modules.contacts.models import Contact, ContactAccount  # noqa: E402,F401
from app.crm.modules.leads.models import Lead  # noqa: E402,F401
from app.crm.modules.opportunities.models import Opportunity, OpportunityLineItem  # noqa: E402,F401
from app.crm.modules.events.models import (  # noqa: E402,F401
    DesignItemType,
    Event,
    EventDate,
    EventDesignItem,
    EventOperationsItem,
    EventStaffAssignment,
    EventType,
    OperationsItemType,
    StaffRole,
)
from app.crm.modules.billing.models import (  # noqa: E402,F401
    Invoice,
    InvoiceLineItem,
    Payment,
    Quote,
    QuoteLineItem,
)
from app.crm.modules.inventory.models import InventoryItem  # noqa: E402,F401
from app.crm.modules.tasks.models import Notification, Task, TaskTemplate  # noqa: E402,F401
from app.crm.modules.tickets.models import Ticket  # noqa: E402,F401
from app.crm.modules.attachments.models import Attachment  # noqa: E402,F401
from app.crm.modules.workflows.models import Workflow, WorkflowAction, WorkflowExecution  # noqa: E402,F401
