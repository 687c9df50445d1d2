"""Initial schema: accounts, OTP, audit, members, fee plans, payments, moderation.

Revision ID: a0f1c2d3e4b5
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a0f1c2d3e4b5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "moderators",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "otp_codes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("identifier", sa.String(320), nullable=False),
        sa.Column("purpose", sa.String(32), nullable=False),
        sa.Column("channel", sa.String(16), nullable=False),
        sa.Column("code_hash", sa.String(255), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("identifier", "purpose", name="uq_otp_identifier_purpose"),
    )
    op.create_index("idx_otp_expires_at", "otp_codes", ["expires_at"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.Column("actor_type", sa.String(32), nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("actor_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
    )
    op.create_index("idx_audit_action", "audit_events", ["action"])
    op.create_index("idx_audit_entity", "audit_events", ["entity_type", "entity_id"])

    op.create_table(
        "providers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("admin_name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("phone", sa.String(32), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("account_type", sa.String(32), nullable=False, server_default="INDIVIDUAL"),
        sa.Column("category", sa.String(64), nullable=False, server_default="OTHER"),
        sa.Column("status", sa.String(32), nullable=False, server_default="ACTIVE"),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_email_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_phone_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("wallet_balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("city", sa.String(128), nullable=True),
        sa.Column("region", sa.String(128), nullable=True),
        sa.Column("country", sa.String(64), nullable=False, server_default="India"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("phone"),
        sa.UniqueConstraint("code"),
    )
    op.create_index("idx_providers_category", "providers", ["category"])
    op.create_index("idx_providers_region", "providers", ["region"])

    op.create_table(
        "provider_verifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="PENDING"),
        sa.Column("poc_name", sa.String(255), nullable=True),
        sa.Column("poc_dob", sa.Date(), nullable=True),
        sa.Column("poc_aadhaar_num", sa.String(32), nullable=True),
        sa.Column("poc_aadhaar_doc", sa.String(1024), nullable=True),
        sa.Column("poc_pan_num", sa.String(32), nullable=True),
        sa.Column("poc_pan_doc", sa.String(1024), nullable=True),
        sa.Column("org_name", sa.String(255), nullable=True),
        sa.Column("org_legal_name", sa.String(255), nullable=True),
        sa.Column("org_type", sa.String(64), nullable=True),
        sa.Column("org_other_type", sa.String(128), nullable=True),
        sa.Column("org_cin", sa.String(64), nullable=True),
        sa.Column("org_llpin", sa.String(64), nullable=True),
        sa.Column("org_pan", sa.String(32), nullable=True),
        sa.Column("org_pan_doc", sa.String(1024), nullable=True),
        sa.Column("org_gstin", sa.String(32), nullable=True),
        sa.Column("org_gst_doc", sa.String(1024), nullable=True),
        sa.Column("org_reg_doc", sa.String(1024), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("reg_address_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("provider_id"),
    )

    op.create_table(
        "bank_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("acc_number", sa.String(64), nullable=False),
        sa.Column("ifsc", sa.String(16), nullable=False),
        sa.Column("acc_name", sa.String(255), nullable=False),
        sa.Column("acc_phone", sa.String(32), nullable=True),
        sa.Column("ref_id", sa.String(64), nullable=True),
        sa.Column("name_at_bank", sa.String(255), nullable=True),
        sa.Column("bank_name", sa.String(255), nullable=True),
        sa.Column("branch_name", sa.String(255), nullable=True),
        sa.Column("city", sa.String(128), nullable=True),
        sa.Column("verifier_response_json", sa.Text(), nullable=True),
        sa.Column("verification_status", sa.String(32), nullable=False, server_default="PENDING"),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("provider_id", "acc_number", "ifsc", name="uq_bank_accounts_provider_acc_ifsc"),
    )
    op.create_index("idx_bank_accounts_provider", "bank_accounts", ["provider_id"])

    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("unique_id", sa.String(64), nullable=False),
        sa.Column("first_name", sa.String(128), nullable=False),
        sa.Column("middle_name", sa.String(128), nullable=True),
        sa.Column("last_name", sa.String(128), nullable=False, server_default=""),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("phone", sa.String(32), nullable=False),
        sa.Column("category", sa.String(128), nullable=True),
        sa.Column("subcategory", sa.String(128), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("provider_id", "unique_id", name="uq_members_provider_unique_id"),
    )
    op.create_index("idx_members_provider", "members", ["provider_id"])
    op.create_index("idx_members_phone", "members", ["phone"])

    op.create_table(
        "consumers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("first_name", sa.String(128), nullable=True),
        sa.Column("last_name", sa.String(128), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("phone", sa.String(32), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("is_phone_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("phone"),
    )

    op.create_table(
        "consumer_members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("consumer_id", sa.Integer(), nullable=False),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("claimed_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["consumer_id"], ["consumers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("consumer_id", "member_id", name="uq_consumer_members_consumer_member"),
    )

    op.create_table(
        "fee_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="DUE"),
        sa.Column("due_date", sa.DateTime(), nullable=False),
        sa.Column("is_offline_paid", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("consumer_claims_paid", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("receipt", sa.String(1024), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_fee_plans_member", "fee_plans", ["member_id"])
    op.create_index("idx_fee_plans_provider_status", "fee_plans", ["provider_id", "status"])
    op.create_index("idx_fee_plans_due_date", "fee_plans", ["due_date"])

    op.create_table(
        "orders",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("external_order_id", sa.String(64), nullable=True),
        sa.Column("fee_plan_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False, server_default="INR"),
        sa.Column("status", sa.String(32), nullable=False, server_default="ACTIVE"),
        sa.Column("payment_session_id", sa.String(512), nullable=True),
        sa.Column("customer_json", sa.Text(), nullable=True),
        sa.Column("order_meta_json", sa.Text(), nullable=True),
        sa.Column("order_tags_json", sa.Text(), nullable=True),
        sa.Column("note", sa.String(512), nullable=True),
        sa.Column("expiry_time", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["fee_plan_id"], ["fee_plans.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_orders_fee_plan", "orders", ["fee_plan_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.String(64), nullable=True),
        sa.Column("fee_plan_id", sa.Integer(), nullable=False),
        sa.Column("consumer_id", sa.Integer(), nullable=True),
        sa.Column("external_payment_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("payment_time", sa.DateTime(), nullable=True),
        sa.Column("payment_currency", sa.String(8), nullable=False, server_default="INR"),
        sa.Column("payment_message", sa.String(512), nullable=True),
        sa.Column("bank_reference", sa.String(128), nullable=True),
        sa.Column("payment_group", sa.String(64), nullable=True),
        sa.Column("payment_gateway", sa.String(64), nullable=False, server_default="CASHFREE"),
        sa.Column("source", sa.String(32), nullable=False, server_default="GETAPI"),
        sa.Column("payment_method_json", sa.Text(), nullable=True),
        sa.Column("payment_surcharge_json", sa.Text(), nullable=True),
        sa.Column("gateway_details_json", sa.Text(), nullable=True),
        sa.Column("payment_offers_json", sa.Text(), nullable=True),
        sa.Column("error_details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["fee_plan_id"], ["fee_plans.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["consumer_id"], ["consumers.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("external_payment_id"),
    )
    op.create_index("idx_transactions_fee_plan", "transactions", ["fee_plan_id"])
    op.create_index("idx_transactions_consumer", "transactions", ["consumer_id"])
    op.create_index("idx_transactions_status", "transactions", ["status"])
    op.create_index("idx_transactions_payment_time", "transactions", ["payment_time"])

    op.create_table(
        "policies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(128), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("slug"),
    )

    op.create_table(
        "queries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="OPEN"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_queries_status", "queries", ["status"])


def downgrade() -> None:
    op.drop_index("idx_queries_status", table_name="queries")
    op.drop_table("queries")
    op.drop_table("policies")
    for idx in (
        "idx_transactions_payment_time",
        "idx_transactions_status",
        "idx_transactions_consumer",
        "idx_transactions_fee_plan",
    ):
        op.drop_index(idx, table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("idx_orders_fee_plan", table_name="orders")
    op.drop_table("orders")
    for idx in ("idx_fee_plans_due_date", "idx_fee_plans_provider_status", "idx_fee_plans_member"):
        op.drop_index(idx, table_name="fee_plans")
    op.drop_table("fee_plans")
    op.drop_table("consumer_members")
    op.drop_table("consumers")
    op.drop_index("idx_members_phone", table_name="members")
    op.drop_index("idx_members_provider", table_name="members")
    op.drop_table("members")
    op.drop_index("idx_bank_accounts_provider", table_name="bank_accounts")
    op.drop_table("bank_accounts")
    op.drop_table("provider_verifications")
    op.drop_index("idx_providers_region", table_name="providers")
    op.drop_index("idx_providers_category", table_name="providers")
    op.drop_table("providers")
    op.drop_index("idx_audit_entity", table_name="audit_events")
    op.drop_index("idx_audit_action", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("idx_otp_expires_at", table_name="otp_codes")
    op.drop_table("otp_codes")
    op.drop_table("moderators")
