from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.feebook.models import Base
from app.feebook.utils import utcnow

if TYPE_CHECKING:
    from app.feebook.modules.members.models import Member
    from app.feebook.modules.payments.models import Order, Transaction
    from app.feebook.modules.providers.models import Provider


class FeePlan(Base):
    __tablename__ = "fee_plans"
    __table_args__ = (
        Index("idx_fee_plans_member", "member_id"),
        Index("idx_fee_plans_provider_status", "provider_id", "status"),
        Index("idx_fee_plans_due_date", "due_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_id: Mapped[int] = mapped_column(ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="DUE")  # DUE, OVERDUE, PAID
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    is_offline_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)  # marked paid by the provider
    consumer_claims_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    receipt: Mapped[str | None] = mapped_column(String(1024), nullable=True)  # receipt PDF URL

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)

    member: Mapped["Member"] = relationship("Member", back_populates="fee_plans", lazy="selectin")
    provider: Mapped["Provider"] = relationship("Provider", lazy="selectin")
    orders: Mapped[list["Order"]] = relationship("Order", back_populates="fee_plan", cascade="all, delete-orphan")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="fee_plan",
        cascade="all, delete-orphan",
    )
