from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.feebook.models import Base
from app.feebook.utils import utcnow

if TYPE_CHECKING:
    from app.feebook.modules.members.models import Member


class Provider(Base):
    __tablename__ = "providers"
    __table_args__ = (
        Index("idx_providers_category", "category"),
        Index("idx_providers_region", "region"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    admin_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    phone: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)  # public short code, e.g. "GS7K2Q"

    account_type: Mapped[str] = mapped_column(String(32), nullable=False, default="INDIVIDUAL")  # INDIVIDUAL, ORGANIZATION
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="OTHER")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="ACTIVE")

    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_phone_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    wallet_balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    region: Mapped[str | None] = mapped_column(String(128), nullable=True)
    country: Mapped[str] = mapped_column(String(64), nullable=False, default="India")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)

    verification: Mapped["ProviderVerification | None"] = relationship(
        "ProviderVerification",
        back_populates="provider",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    bank_accounts: Mapped[list["BankAccount"]] = relationship(
        "BankAccount",
        back_populates="provider",
        cascade="all, delete-orphan",
        order_by="BankAccount.created_at.desc()",
    )
    members: Mapped[list["Member"]] = relationship("Member", back_populates="provider", cascade="all, delete-orphan")


class ProviderVerification(Base):
    """KYC record; one per provider. `poc_*` is the point of contact, `org_*` the legal entity."""

    __tablename__ = "provider_verifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_id: Mapped[int] = mapped_column(ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")  # PENDING, VERIFIED, FAILED

    poc_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    poc_dob: Mapped[date | None] = mapped_column(Date, nullable=True)
    poc_aadhaar_num: Mapped[str | None] = mapped_column(String(32), nullable=True)
    poc_aadhaar_doc: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    poc_pan_num: Mapped[str | None] = mapped_column(String(32), nullable=True)
    poc_pan_doc: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    org_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    org_legal_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    org_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    org_other_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    org_cin: Mapped[str | None] = mapped_column(String(64), nullable=True)
    org_llpin: Mapped[str | None] = mapped_column(String(64), nullable=True)
    org_pan: Mapped[str | None] = mapped_column(String(32), nullable=True)
    org_pan_doc: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    org_gstin: Mapped[str | None] = mapped_column(String(32), nullable=True)
    org_gst_doc: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    org_reg_doc: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    address: Mapped[str | None] = mapped_column(Text, nullable=True)  # single-line rendering
    reg_address_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # structured address as JSON string

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)

    provider: Mapped[Provider] = relationship("Provider", back_populates="verification")


class BankAccount(Base):
    __tablename__ = "bank_accounts"
    __table_args__ = (
        UniqueConstraint("provider_id", "acc_number", "ifsc", name="uq_bank_accounts_provider_acc_ifsc"),
        Index("idx_bank_accounts_provider", "provider_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_id: Mapped[int] = mapped_column(ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)

    acc_number: Mapped[str] = mapped_column(String(64), nullable=False)
    ifsc: Mapped[str] = mapped_column(String(16), nullable=False)
    acc_name: Mapped[str] = mapped_column(String(255), nullable=False)
    acc_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # Filled from the verification response
    ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    name_at_bank: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bank_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    branch_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    verifier_response_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    verification_status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")

    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)

    provider: Mapped[Provider] = relationship("Provider", back_populates="bank_accounts")
