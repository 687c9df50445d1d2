from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.feebook.utils import utcnow


class Base(DeclarativeBase):
    pass


class Moderator(Base):
    __tablename__ = "moderators"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)


class OtpCode(Base):
    """
    One outstanding OTP per (identifier, purpose). Issuing a new code replaces the old row.
    """

    __tablename__ = "otp_codes"
    __table_args__ = (
        UniqueConstraint("identifier", "purpose", name="uq_otp_identifier_purpose"),
        Index("idx_otp_expires_at", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    identifier: Mapped[str] = mapped_column(String(320), nullable=False)  # email or phone
    purpose: Mapped[str] = mapped_column(String(32), nullable=False)  # login, verification, password-reset
    channel: Mapped[str] = mapped_column(String(16), nullable=False)  # EMAIL or SMS
    code_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)


class AuditEvent(Base):
    """
    Append-only audit trail event.
    The actor may be any of the three roles, so it is stored by type + id rather than a foreign key.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_action", "action"),
        Index("idx_audit_entity", "entity_type", "entity_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_type: Mapped[str | None] = mapped_column(String(32), nullable=True)  # moderator, provider, consumer
    actor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actor_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "provider.login"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "FeePlan"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.feebook.modules.providers.models import BankAccount, Provider, ProviderVerification  # noqa: E402,F401
from app.feebook.modules.consumers.models import Consumer, ConsumerMember  # noqa: E402,F401
from app.feebook.modules.members.models import Member  # noqa: E402,F401
from app.feebook.modules.fee_plans.models import FeePlan  # noqa: E402,F401
from app.feebook.modules.payments.models import Order, Transaction  # noqa: E402,F401
from app.feebook.modules.moderation.models import Policy, Query  # noqa: E402,F401
