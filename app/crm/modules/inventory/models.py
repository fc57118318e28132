from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.crm.models import TenantBase


class InventoryItem(TenantBase):
    __tablename__ = "inventory_items"
    __table_args__ = (
        Index("idx_inventory_items_tenant_id", "tenant_id"),
        Index("idx_inventory_items_category", "category"),
        Index("idx_inventory_items_event_id", "event_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)  # Camera, Printer, Backdrop, ...
    serial_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="available")

    # Where the item is: long_term_staff, event_checkout, warehouse, or none
    assignment_type: Mapped[str] = mapped_column(String(32), nullable=False, default="none")
    assigned_to_type: Mapped[str | None] = mapped_column(String(32), nullable=True)  # user, location
    assigned_to_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    assigned_to_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    event_id: Mapped[int | None] = mapped_column(ForeignKey("events.id", ondelete="SET NULL"), nullable=True)
    expected_return_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
