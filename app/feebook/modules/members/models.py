from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.feebook.models import Base
from app.feebook.utils import utcnow

if TYPE_CHECKING:
    from app.feebook.modules.consumers.models import ConsumerMember
    from app.feebook.modules.fee_plans.models import FeePlan
    from app.feebook.modules.providers.models import Provider


class Member(Base):
    __tablename__ = "members"
    __table_args__ = (
        UniqueConstraint("provider_id", "unique_id", name="uq_members_provider_unique_id"),
        Index("idx_members_provider", "provider_id"),
        Index("idx_members_phone", "phone"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_id: Mapped[int] = mapped_column(ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)

    # Provider-assigned identifier (roll number, membership number...); unique per provider
    unique_id: Mapped[str] = mapped_column(String(64), nullable=False)

    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    middle_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    category: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. class / batch
    subcategory: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. section
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)

    provider: Mapped["Provider"] = relationship("Provider", back_populates="members", lazy="selectin")
    fee_plans: Mapped[list["FeePlan"]] = relationship(
        "FeePlan",
        back_populates="member",
        cascade="all, delete-orphan",
        order_by="FeePlan.due_date.asc()",
    )
    claims: Mapped[list["ConsumerMember"]] = relationship(
        "ConsumerMember",
        back_populates="member",
        cascade="all, delete-orphan",
    )
