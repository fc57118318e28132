from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.crm.models import TenantBase

if TYPE_CHECKING:
    from app.crm.modules.events.models import EventDate


class Opportunity(TenantBase):
    __tablename__ = "opportunities"
    __table_args__ = (
        Index("idx_opportunities_tenant_id", "tenant_id"),
        Index("idx_opportunities_stage", "stage"),
        Index("idx_opportunities_owner_id", "owner_id"),
        Index("idx_opportunities_expected_close", "expected_close_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_id: Mapped[int | None] = mapped_column(ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    contact_id: Mapped[int | None] = mapped_column(ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True)
    lead_id: Mapped[int | None] = mapped_column(ForeignKey("leads.id", ondelete="SET NULL"), nullable=True)
    event_type_id: Mapped[int | None] = mapped_column(ForeignKey("event_types.id", ondelete="SET NULL"), nullable=True)

    stage: Mapped[str] = mapped_column(String(32), nullable=False, default="prospecting")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")  # open, won, lost
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    probability: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expected_close_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_close_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_type: Mapped[str] = mapped_column(String(16), nullable=False, default="single_day")  # single_day, multi_day

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    lead_source: Mapped[str | None] = mapped_column(String(100), nullable=True)
    next_step: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_converted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    converted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    converted_event_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_by_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    line_items: Mapped[list["OpportunityLineItem"]] = relationship(
        "OpportunityLineItem",
        back_populates="opportunity",
        cascade="all, delete-orphan",
        order_by="OpportunityLineItem.sort_order",
        lazy="selectin",
    )
    event_dates: Mapped[list["EventDate"]] = relationship(
        "EventDate",
        back_populates="opportunity",
        cascade="all, delete-orphan",
        order_by="EventDate.event_date",
        lazy="selectin",
        foreign_keys="EventDate.opportunity_id",
    )


class OpportunityLineItem(TenantBase):
    __tablename__ = "opportunity_line_items"
    __table_args__ = (Index("idx_opportunity_line_items_opportunity_id", "opportunity_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    opportunity_id: Mapped[int] = mapped_column(ForeignKey("opportunities.id", ondelete="CASCADE"), nullable=False)

    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("1"))
    unit_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    total_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    opportunity: Mapped[Opportunity] = relationship("Opportunity", back_populates="line_items")
