from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func
from werkzeug.security import generate_password_hash

from app.feebook.audit import record_event
from app.feebook.constants import (
    ENTITY_TYPES,
    FEE_PLAN_PENDING_STATUSES,
    KYC_PLACEHOLDER,
    PROVIDER_ACCOUNT_TYPES,
    TXN_SUCCESS,
    VERIFICATION_PENDING,
    VERIFICATION_VERIFIED,
)
from app.feebook.errors import ApiError
from app.feebook.utils import EMAIL_RE, dump_json, gen_short_code, iso, load_json, money, parse_date, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from werkzeug.datastructures import FileStorage
    from app.feebook.modules.providers.models import BankAccount, Provider, ProviderVerification
    from app.feebook.storage import Storage

logger = logging.getLogger(__name__)


# ---------- Serializers ----------
def provider_public_dict(p: "Provider") -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "code": p.code,
        "type": p.account_type,
        "category": p.category,
        "region": p.region,
    }


def provider_to_dict(p: "Provider") -> dict:
    """Full provider record for its own session and moderators. Never includes the password hash."""
    return {
        "id": p.id,
        "name": p.name,
        "adminName": p.admin_name,
        "email": p.email,
        "phone": p.phone,
        "code": p.code,
        "type": p.account_type,
        "category": p.category,
        "status": p.status,
        "isVerified": p.is_verified,
        "isEmailVerified": p.is_email_verified,
        "isPhoneVerified": p.is_phone_verified,
        "walletBalance": money(p.wallet_balance),
        "city": p.city,
        "region": p.region,
        "country": p.country,
        "createdAt": iso(p.created_at),
        "updatedAt": iso(p.updated_at),
    }


def verification_to_dict(v: "ProviderVerification") -> dict:
    return {
        "id": v.id,
        "providerId": v.provider_id,
        "status": v.status,
        "pocName": v.poc_name,
        "pocDob": iso(v.poc_dob),
        "pocAadhaarNum": v.poc_aadhaar_num,
        "pocAadhaarDoc": v.poc_aadhaar_doc,
        "pocPanNum": v.poc_pan_num,
        "pocPanDoc": v.poc_pan_doc,
        "orgName": v.org_name,
        "orgLegalName": v.org_legal_name,
        "orgType": v.org_type,
        "orgOtherType": v.org_other_type,
        "orgCin": v.org_cin,
        "orgLlpin": v.org_llpin,
        "orgPan": v.org_pan,
        "orgPanDoc": v.org_pan_doc,
        "orgGstin": v.org_gstin,
        "orgGstDoc": v.org_gst_doc,
        "orgRegDoc": v.org_reg_doc,
        "address": v.address,
        "regAddress": load_json(v.reg_address_json),
        "createdAt": iso(v.created_at),
        "updatedAt": iso(v.updated_at),
    }


def bank_account_to_dict(acc: "BankAccount") -> dict:
    return {
        "id": acc.id,
        "providerId": acc.provider_id,
        "accNumber": acc.acc_number,
        "ifsc": acc.ifsc,
        "accName": acc.acc_name,
        "accPhone": acc.acc_phone,
        "refId": acc.ref_id,
        "nameAtBank": acc.name_at_bank,
        "bankName": acc.bank_name,
        "branchName": acc.branch_name,
        "city": acc.city,
        "verificationStatus": acc.verification_status,
        "isDefault": acc.is_default,
        "createdAt": iso(acc.created_at),
    }


# ---------- Registration ----------
REGISTRATION_FIELDS = ("name", "email", "phone", "password", "code", "accountType")


def validate_registration_payload(payload: dict) -> list[str]:
    errors = []
    missing = [k for k in REGISTRATION_FIELDS if not str(payload.get(k) or "").strip()]
    if missing:
        errors.append("All fields are required")
    email = str(payload.get("email") or "").strip()
    if email and not EMAIL_RE.match(email):
        errors.append("Invalid email format")
    account_type = str(payload.get("accountType") or "").strip().upper()
    if account_type and account_type not in PROVIDER_ACCOUNT_TYPES:
        errors.append(f"Invalid account type. Must be one of: {', '.join(PROVIDER_ACCOUNT_TYPES)}")
    return errors


def find_registration_conflict(s: "Session", *, email: str, phone: str, code: str) -> str | None:
    """Returns the first of email/phone/code already taken by another provider."""
    from app.feebook.modules.providers.models import Provider

    if s.query(Provider.id).filter(Provider.email == email).first():
        return "email"
    if s.query(Provider.id).filter(Provider.phone == phone).first():
        return "phone"
    if code and s.query(Provider.id).filter(Provider.code == code).first():
        return "code"
    return None


def unused_provider_code(s: "Session", name: str) -> str:
    from app.feebook.modules.providers.models import Provider

    while True:
        code = gen_short_code(name)
        if not s.query(Provider.id).filter(Provider.code == code).first():
            return code


def create_verified_provider(s: "Session", payload: dict) -> "Provider":
    """Create a provider whose email was just proven by OTP, plus its placeholder KYC row."""
    from app.feebook.modules.providers.models import Provider, ProviderVerification

    name = str(payload.get("name") or "").strip()
    provider = Provider(
        name=name,
        email=str(payload.get("email") or "").strip().lower(),
        phone=str(payload.get("phone") or "").strip(),
        password_hash=generate_password_hash(str(payload.get("password") or "")),
        code=str(payload.get("code") or "").strip().upper() or unused_provider_code(s, name),
        account_type=str(payload.get("accountType") or "INDIVIDUAL").strip().upper(),
        category=str(payload.get("category") or "OTHER").strip().upper(),
        is_verified=True,
        is_email_verified=True,
    )
    s.add(provider)
    s.flush()

    s.add(
        ProviderVerification(
            provider_id=provider.id,
            status=VERIFICATION_VERIFIED,
            poc_name=KYC_PLACEHOLDER,
            poc_aadhaar_num=KYC_PLACEHOLDER,
            poc_pan_num=KYC_PLACEHOLDER,
            org_name=KYC_PLACEHOLDER,
            address=KYC_PLACEHOLDER,
        )
    )
    s.flush()

    record_event(
        s,
        actor=provider,
        action="provider.register",
        entity_type="Provider",
        entity_id=str(provider.id),
        metadata={"code": provider.code, "account_type": provider.account_type},
    )
    return provider


# ---------- Lookup ----------
def get_provider_by_code(s: "Session", code: str) -> "Provider | None":
    from app.feebook.modules.providers.models import Provider

    return s.query(Provider).filter(Provider.code == (code or "").strip().upper()).one_or_none()


def search_providers(s: "Session", *, category: str, region: str = "", name: str = "", limit: int = 10) -> list["Provider"]:
    from app.feebook.modules.providers.models import Provider

    q = s.query(Provider).filter(Provider.category == category.strip().upper(), Provider.is_verified.is_(True))
    if region:
        q = q.filter(Provider.region == region)
    if name.strip():
        q = q.filter(Provider.name.ilike(f"%{name.strip()}%"))
    return q.order_by(Provider.name.asc()).limit(limit).all()


# ---------- Dashboard ----------
_dashboard_lock = threading.Lock()


def _month_start(year: int, month: int) -> datetime:
    # month may run below 1 when walking back across a year boundary
    while month < 1:
        month += 12
        year -= 1
    return datetime(year, month, 1)


def _sum_amount(q) -> float:
    return money(q.scalar() or Decimal("0"))


def build_dashboard(s: "Session", provider: "Provider", now: datetime | None = None) -> dict:
    from app.feebook.modules.fee_plans.models import FeePlan
    from app.feebook.modules.members.models import Member
    from app.feebook.modules.members.service import count_members
    from app.feebook.modules.payments.models import Transaction

    now = now or utcnow()
    this_month = _month_start(now.year, now.month)
    last_month = _month_start(now.year, now.month - 1)
    six_months_ago = _month_start(now.year, now.month - 5)

    fee_q = s.query(FeePlan).filter(FeePlan.provider_id == provider.id)
    pending_q = fee_q.filter(FeePlan.status.in_(FEE_PLAN_PENDING_STATUSES), FeePlan.is_offline_paid.is_(False))
    overdue_q = pending_q.filter(FeePlan.due_date < now)

    success_q = (
        s.query(Transaction)
        .join(FeePlan, Transaction.fee_plan_id == FeePlan.id)
        .filter(FeePlan.provider_id == provider.id, Transaction.status == TXN_SUCCESS)
    )
    amount_sum = func.coalesce(func.sum(Transaction.amount), 0)
    total_revenue = _sum_amount(success_q.with_entities(amount_sum))
    this_month_revenue = _sum_amount(success_q.filter(Transaction.payment_time >= this_month).with_entities(amount_sum))
    last_month_revenue = _sum_amount(
        success_q.filter(Transaction.payment_time >= last_month, Transaction.payment_time < this_month).with_entities(amount_sum)
    )
    if last_month_revenue > 0:
        revenue_growth = (this_month_revenue - last_month_revenue) / last_month_revenue * 100
    elif this_month_revenue > 0:
        revenue_growth = 100.0
    else:
        revenue_growth = 0.0

    fee_sum = func.coalesce(func.sum(FeePlan.amount), 0)
    stats = {
        "totalMembers": count_members(s, provider.id),
        "totalRevenue": total_revenue,
        "pendingAmount": _sum_amount(pending_q.with_entities(fee_sum)),
        "overdueAmount": _sum_amount(overdue_q.with_entities(fee_sum)),
        "thisMonthRevenue": this_month_revenue,
        "revenueGrowth": round(revenue_growth, 1),
        "totalFeePlans": fee_q.count(),
        "pendingFeePlans": pending_q.count(),
        "overdueFeePlans": overdue_q.count(),
        "walletBalance": money(provider.wallet_balance),
    }

    recent = success_q.order_by(Transaction.payment_time.desc()).limit(3).all()
    recent_transactions = [
        {
            "id": t.id,
            "amount": money(t.amount),
            "paymentTime": iso(t.payment_time),
            "memberName": f"{t.fee_plan.member.first_name} {t.fee_plan.member.last_name or ''}".strip(),
            "memberUniqueId": t.fee_plan.member.unique_id,
            "feePlanName": t.fee_plan.name,
        }
        for t in recent
    ]

    buckets: dict[tuple[int, int], dict[str, Any]] = {}
    for i in range(5, -1, -1):
        start = _month_start(now.year, now.month - i)
        buckets[(start.year, start.month)] = {"month": start.strftime("%b"), "amount": 0.0, "count": 0}
    for paid_at, amount in success_q.filter(Transaction.payment_time >= six_months_ago).with_entities(
        Transaction.payment_time, Transaction.amount
    ):
        bucket = buckets.get((paid_at.year, paid_at.month))
        if bucket is not None:
            bucket["amount"] += money(amount)
            bucket["count"] += 1

    members = (
        s.query(Member)
        .filter(Member.provider_id == provider.id)
        .order_by(Member.created_at.desc(), Member.id.desc())
        .limit(3)
        .all()
    )
    recent_members = [
        {
            "id": m.id,
            "name": f"{m.first_name} {m.last_name or ''}".strip(),
            "uniqueId": m.unique_id,
            "joinedAt": iso(m.created_at),
            "pendingAmount": sum(money(fp.amount) for fp in m.fee_plans if fp.status in FEE_PLAN_PENDING_STATUSES),
        }
        for m in members
    ]

    accounts = provider.bank_accounts
    return {
        "stats": stats,
        "recentTransactions": recent_transactions,
        "monthlyData": list(buckets.values()),
        "recentMembers": recent_members,
        "bankAccounts": {
            "total": len(accounts),
            "verified": sum(1 for a in accounts if a.verification_status == VERIFICATION_VERIFIED),
            "hasDefault": any(a.is_default for a in accounts),
        },
    }


def cached_dashboard(s: "Session", provider: "Provider", ttl_seconds: int, cache: dict) -> tuple[dict, bool]:
    """Returns (dashboard, served_from_cache). `cache` maps provider id to (built_at, dashboard)."""
    now = time.monotonic()
    with _dashboard_lock:
        hit = cache.get(provider.id)
        if hit and now - hit[0] < ttl_seconds:
            return hit[1], True
    data = build_dashboard(s, provider)
    with _dashboard_lock:
        cache[provider.id] = (now, data)
    return data, False


def dashboard_cache() -> dict:
    from flask import current_app

    return current_app.extensions.setdefault("feebook_dashboard_cache", {})


def invalidate_dashboard(cache: dict, provider_id: int) -> None:
    with _dashboard_lock:
        cache.pop(provider_id, None)


# ---------- KYC ----------
def _address(form: dict, prefix: str) -> dict:
    return {
        "addressLine1": (form.get(f"{prefix}.addressLine1") or "").strip(),
        "addressLine2": (form.get(f"{prefix}.addressLine2") or "").strip(),
        "city": (form.get(f"{prefix}.city") or "").strip(),
        "state": (form.get(f"{prefix}.state") or "").strip(),
        "pincode": (form.get(f"{prefix}.pincode") or "").strip(),
    }


def _address_line(addr: dict) -> str:
    parts = [addr["addressLine1"], addr["addressLine2"], addr["city"], addr["state"]]
    line = ", ".join(p for p in parts if p)
    return f"{line}, India - {addr['pincode']}" if addr["pincode"] else f"{line}, India"


def _upload_kyc_doc(storage: "Storage", provider: "Provider", folder: str, doc: "FileStorage") -> str:
    from app.feebook.storage import split_filename, upload_file

    _, ext = split_filename(doc.filename or "")
    result = upload_file(
        storage,
        doc.read(),
        file_ext=ext,
        folder_path=f"kyc/{provider.id}/{folder}",
        content_type=doc.mimetype,
    )
    return result.url


def _verification_for(s: "Session", provider: "Provider") -> "ProviderVerification":
    from app.feebook.modules.providers.models import ProviderVerification

    v = provider.verification
    if v is None:
        v = ProviderVerification(provider_id=provider.id)
        s.add(v)
        provider.verification = v
    return v


def validate_individual_kyc(form: dict, files: dict) -> list[str]:
    errors = []
    addr = _address(form, "permanentAddress")
    if not (form.get("fullName") or "").strip() or not (form.get("dateOfBirth") or "").strip() or not addr["addressLine1"]:
        errors.append("All fields are required")
    if not files.get("panCard.documentFile") or not files.get("aadhaarCard.documentFile"):
        errors.append("All document files are required")
    try:
        parse_date(form.get("dateOfBirth"))
    except ValueError:
        errors.append("Invalid date of birth")
    return errors


def submit_individual_kyc(s: "Session", provider: "Provider", form: dict, files: dict, storage: "Storage") -> "ProviderVerification":
    addr = _address(form, "permanentAddress")
    full = (form.get("fullName") or "").strip()

    pan_url = _upload_kyc_doc(storage, provider, "pan_card", files["panCard.documentFile"])
    aadhaar_url = _upload_kyc_doc(storage, provider, "aadhaar_card", files["aadhaarCard.documentFile"])

    v = _verification_for(s, provider)
    v.status = VERIFICATION_PENDING
    v.poc_name = full
    v.poc_dob = parse_date(form.get("dateOfBirth"))
    v.poc_pan_num = (form.get("panCard.panNumber") or "").strip() or None
    v.poc_pan_doc = pan_url
    v.poc_aadhaar_num = (form.get("aadhaarCard.aadhaarNumber") or "").strip() or None
    v.poc_aadhaar_doc = aadhaar_url
    v.org_name = full
    v.address = _address_line(addr)
    v.reg_address_json = dump_json(addr)

    provider.admin_name = full
    provider.city = addr["city"] or provider.city
    provider.region = addr["state"] or provider.region
    s.flush()

    record_event(
        s,
        actor=provider,
        action="provider.kyc_submit",
        entity_type="ProviderVerification",
        entity_id=str(v.id),
        metadata={"kind": "individual"},
    )
    return v


ORG_KYC_DOCS = {
    "contactPersonAadhaarDocument": "aadhaar_card",
    "contactPersonPanDocument": "pan_card",
    "gstDocument": "gst",
    "panDocument": "pan_card",
    "registrationCertificate": "registration_certificate",
}


def validate_organization_kyc(form: dict, files: dict) -> list[str]:
    errors = []
    required = ("contactPersonName", "contactPersonAadhaar", "contactPersonPan", "organizationName")
    if any(not (form.get(k) or "").strip() for k in required):
        errors.append("All fields are required")
    if any(not files.get(k) for k in ORG_KYC_DOCS):
        errors.append("All document files are required")
    entity_type = (form.get("entityType") or "").strip()
    if entity_type and entity_type not in ENTITY_TYPES:
        errors.append(f"Invalid entity type. Must be one of: {', '.join(ENTITY_TYPES)}")
    return errors


def submit_organization_kyc(s: "Session", provider: "Provider", form: dict, files: dict, storage: "Storage") -> "ProviderVerification":
    addr = _address(form, "registeredAddress")
    urls = {field: _upload_kyc_doc(storage, provider, folder, files[field]) for field, folder in ORG_KYC_DOCS.items()}
    org_name = (form.get("organizationName") or "").strip()
    contact = (form.get("contactPersonName") or "").strip()

    v = _verification_for(s, provider)
    v.status = VERIFICATION_PENDING
    v.poc_name = contact
    v.poc_aadhaar_num = (form.get("contactPersonAadhaar") or "").strip()
    v.poc_aadhaar_doc = urls["contactPersonAadhaarDocument"]
    v.poc_pan_num = (form.get("contactPersonPan") or "").strip()
    v.poc_pan_doc = urls["contactPersonPanDocument"]
    v.org_name = org_name
    v.org_legal_name = org_name
    v.org_type = (form.get("entityType") or "").strip() or None
    v.org_other_type = (form.get("otherEntityType") or "").strip() or None
    v.org_cin = (form.get("cinNumber") or "").strip() or None
    v.org_llpin = (form.get("llpinNumber") or "").strip() or None
    v.org_pan = (form.get("panNumber") or "").strip() or None
    v.org_pan_doc = urls["panDocument"]
    v.org_gstin = (form.get("gstNumber") or "").strip() or None
    v.org_gst_doc = urls["gstDocument"]
    v.org_reg_doc = urls["registrationCertificate"]
    v.address = _address_line(addr)
    v.reg_address_json = dump_json(addr)

    provider.name = org_name
    provider.admin_name = contact
    provider.city = addr["city"] or provider.city
    provider.region = addr["state"] or provider.region
    s.flush()

    record_event(
        s,
        actor=provider,
        action="provider.kyc_submit",
        entity_type="ProviderVerification",
        entity_id=str(v.id),
        metadata={"kind": "organization", "entity_type": v.org_type},
    )
    return v


# ---------- Wallet / bank accounts ----------
def list_bank_accounts(s: "Session", provider: "Provider", *, default_only: bool = False) -> list["BankAccount"]:
    from app.feebook.modules.providers.models import BankAccount

    accounts = (
        s.query(BankAccount)
        .filter(BankAccount.provider_id == provider.id)
        .order_by(BankAccount.created_at.desc(), BankAccount.id.desc())
        .all()
    )
    if default_only:
        default = next((a for a in accounts if a.is_default), accounts[0] if accounts else None)
        return [default] if default else []
    return accounts


def add_verified_bank_account(s: "Session", provider: "Provider", payload: dict, verifier) -> "BankAccount":
    """
    Validate the account with the gateway (synchronous) and store it when the bank reports VALID.
    The first account a provider adds becomes its default.
    """
    from app.feebook.modules.providers.models import BankAccount

    acc_number = str(payload.get("accNumber") or "").strip()
    ifsc = str(payload.get("ifsc") or "").strip().upper()
    acc_name = str(payload.get("accName") or "").strip()
    acc_phone = str(payload.get("accPhone") or "").strip() or None

    result = verifier.verify_bank_account(account_number=acc_number, ifsc=ifsc, name=acc_name, phone=acc_phone)
    status = (result.get("account_status") or "").upper()
    if status != "VALID":
        record_event(
            s,
            actor=provider,
            action="provider.bank_verify_failed",
            entity_type="Provider",
            entity_id=str(provider.id),
            metadata={"ifsc": ifsc, "account_status": status, "account_status_code": result.get("account_status_code")},
        )
        raise ApiError(
            400,
            result.get("account_status_code") or "Bank account verification failed",
            accountStatus=status or None,
        )

    has_accounts = s.query(BankAccount.id).filter(BankAccount.provider_id == provider.id).first() is not None
    ifsc_details = result.get("ifsc_details") or {}
    acc = BankAccount(
        provider_id=provider.id,
        acc_number=acc_number,
        ifsc=ifsc,
        acc_name=result.get("name_at_bank") or acc_name,
        acc_phone=acc_phone,
        ref_id=str(result["reference_id"]) if result.get("reference_id") is not None else None,
        name_at_bank=result.get("name_at_bank"),
        bank_name=result.get("bank_name") or ifsc_details.get("bank"),
        branch_name=result.get("branch") or ifsc_details.get("branch"),
        city=result.get("city") or ifsc_details.get("city"),
        verifier_response_json=dump_json(result),
        verification_status=VERIFICATION_VERIFIED,
        is_default=not has_accounts,
    )
    s.add(acc)
    s.flush()

    record_event(
        s,
        actor=provider,
        action="provider.bank_add",
        entity_type="BankAccount",
        entity_id=str(acc.id),
        metadata={"ifsc": ifsc, "bank_name": acc.bank_name, "is_default": acc.is_default},
    )
    return acc


def set_default_bank_account(s: "Session", provider: "Provider", account_id) -> "BankAccount":
    from app.feebook.modules.providers.models import BankAccount

    try:
        aid = int(account_id)
    except (TypeError, ValueError):
        raise ApiError(400, "Bank Account ID is required")
    acc = s.query(BankAccount).filter(BankAccount.id == aid, BankAccount.provider_id == provider.id).one_or_none()
    if acc is None:
        raise ApiError(404, "Bank account not found")
    (
        s.query(BankAccount)
        .filter(BankAccount.provider_id == provider.id, BankAccount.id != acc.id)
        .update({BankAccount.is_default: False}, synchronize_session="fetch")
    )
    acc.is_default = True
    record_event(
        s,
        actor=provider,
        action="provider.bank_set_default",
        entity_type="BankAccount",
        entity_id=str(acc.id),
    )
    return acc
