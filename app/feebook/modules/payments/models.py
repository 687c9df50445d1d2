from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.feebook.models import Base
from app.feebook.utils import utcnow

if TYPE_CHECKING:
    from app.feebook.modules.consumers.models import Consumer
    from app.feebook.modules.fee_plans.models import FeePlan


class Order(Base):
    """Gateway payment order. `id` is our merchant order id, `external_order_id` the gateway's."""

    __tablename__ = "orders"
    __table_args__ = (Index("idx_orders_fee_plan", "fee_plan_id"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    external_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    fee_plan_id: Mapped[int] = mapped_column(ForeignKey("fee_plans.id", ondelete="CASCADE"), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="INR")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="ACTIVE")
    payment_session_id: Mapped[str | None] = mapped_column(String(512), nullable=True)

    customer_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    order_meta_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    order_tags_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    note: Mapped[str | None] = mapped_column(String(512), nullable=True)
    expiry_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)

    fee_plan: Mapped["FeePlan"] = relationship("FeePlan", back_populates="orders", lazy="selectin")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="Transaction.payment_time.desc()",
    )


class Transaction(Base):
    """One gateway payment attempt."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("idx_transactions_fee_plan", "fee_plan_id"),
        Index("idx_transactions_consumer", "consumer_id"),
        Index("idx_transactions_status", "status"),
        Index("idx_transactions_payment_time", "payment_time"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[str | None] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=True)
    fee_plan_id: Mapped[int] = mapped_column(ForeignKey("fee_plans.id", ondelete="CASCADE"), nullable=False)
    consumer_id: Mapped[int | None] = mapped_column(ForeignKey("consumers.id", ondelete="SET NULL"), nullable=True)

    external_payment_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)  # SUCCESS, PENDING, FAILED, ...
    payment_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    payment_currency: Mapped[str] = mapped_column(String(8), nullable=False, default="INR")
    payment_message: Mapped[str | None] = mapped_column(String(512), nullable=True)
    bank_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    payment_group: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payment_gateway: Mapped[str] = mapped_column(String(64), nullable=False, default="CASHFREE")
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="GETAPI")

    payment_method_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_surcharge_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    gateway_details_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_offers_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_details_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    order: Mapped["Order | None"] = relationship("Order", back_populates="transactions")
    fee_plan: Mapped["FeePlan"] = relationship("FeePlan", back_populates="transactions", lazy="selectin")
    consumer: Mapped["Consumer | None"] = relationship("Consumer")
