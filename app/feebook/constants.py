"""
Central constants for the Feebook application.
"""
from __future__ import annotations

from decimal import Decimal

# Session roles (one signed-session key per role; sessions coexist)
ROLE_MODERATOR = "moderator"
ROLE_PROVIDER = "provider"
ROLE_CONSUMER = "consumer"
ROLES = (ROLE_MODERATOR, ROLE_PROVIDER, ROLE_CONSUMER)

SESSION_KEYS = {
    ROLE_MODERATOR: "moderator_id",
    ROLE_PROVIDER: "provider_id",
    ROLE_CONSUMER: "consumer_id",
}

# Fee plans
FEE_PLAN_DUE = "DUE"
FEE_PLAN_OVERDUE = "OVERDUE"
FEE_PLAN_PAID = "PAID"
FEE_PLAN_STATUSES = (FEE_PLAN_DUE, FEE_PLAN_OVERDUE, FEE_PLAN_PAID)
FEE_PLAN_PENDING_STATUSES = (FEE_PLAN_DUE, FEE_PLAN_OVERDUE)

# Gateway orders
ORDER_ACTIVE = "ACTIVE"
ORDER_PAID = "PAID"
ORDER_STATUSES = (ORDER_ACTIVE, ORDER_PAID, "EXPIRED", "TERMINATED", "TERMINATION_REQUESTED")

# Gateway payments
TXN_SUCCESS = "SUCCESS"
TXN_PENDING = "PENDING"
TXN_STATUSES = (TXN_SUCCESS, TXN_PENDING, "FAILED", "CANCELLED", "USER_DROPPED", "VOID", "NOT_ATTEMPTED", "FLAGGED")
TXN_FAILED_STATUSES = ("FAILED", "CANCELLED", "USER_DROPPED", "VOID")

# Providers
PROVIDER_ACCOUNT_TYPES = ("INDIVIDUAL", "ORGANIZATION")
PROVIDER_CATEGORIES = (
    "SCHOOL",
    "COLLEGE",
    "COACHING",
    "TUITION",
    "HOSTEL",
    "SPORTS",
    "ARTS",
    "CLUB",
    "SOCIETY",
    "OTHER",
)
ENTITY_TYPES = (
    "PVT_LTD",
    "PUBLIC_LTD",
    "GOVT_ENTITY",
    "LLP",
    "PARTNERSHIP",
    "PROPRIETORSHIP",
    "OPC",
    "NON_PROFIT",
    "TRUST",
    "SOCIETY",
    "OTHERS",
)

# KYC / bank verification
VERIFICATION_PENDING = "PENDING"
VERIFICATION_VERIFIED = "VERIFIED"
KYC_PLACEHOLDER = "EMPTY"

# Moderation
QUERY_OPEN = "OPEN"
QUERY_RESOLVED = "RESOLVED"

# OTP
OTP_CHANNEL_EMAIL = "EMAIL"
OTP_CHANNEL_SMS = "SMS"
OTP_PURPOSE_LOGIN = "login"
OTP_PURPOSE_VERIFICATION = "verification"
OTP_PURPOSE_PASSWORD_RESET = "password-reset"
OTP_PURPOSES = (OTP_PURPOSE_LOGIN, OTP_PURPOSE_VERIFICATION, OTP_PURPOSE_PASSWORD_RESET)

# Uploads
UPLOAD_CONTENT_TYPES = {
    "pdf": "application/pdf",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "txt": "text/plain",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

DEFAULT_CURRENCY = "INR"
# Largest value a Numeric(12, 2) money column holds
MAX_AMOUNT = Decimal("9999999999.99")
