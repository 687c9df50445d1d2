from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.feebook.models import Base
from app.feebook.utils import utcnow

if TYPE_CHECKING:
    from app.feebook.modules.members.models import Member


class Consumer(Base):
    __tablename__ = "consumers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, unique=True)
    phone: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    # OTP-registered consumers have no password until they set one.
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_phone_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)

    memberships: Mapped[list["ConsumerMember"]] = relationship(
        "ConsumerMember",
        back_populates="consumer",
        cascade="all, delete-orphan",
        order_by="ConsumerMember.claimed_at.desc()",
    )


class ConsumerMember(Base):
    """A consumer's claim on a provider's member record."""

    __tablename__ = "consumer_members"
    __table_args__ = (UniqueConstraint("consumer_id", "member_id", name="uq_consumer_members_consumer_member"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    consumer_id: Mapped[int] = mapped_column(ForeignKey("consumers.id", ondelete="CASCADE"), nullable=False)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    consumer: Mapped[Consumer] = relationship("Consumer", back_populates="memberships")
    member: Mapped["Member"] = relationship("Member", back_populates="claims", lazy="selectin")
