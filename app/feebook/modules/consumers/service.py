from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func
from werkzeug.security import generate_password_hash

from app.feebook.audit import record_event
from app.feebook.constants import FEE_PLAN_PAID, FEE_PLAN_PENDING_STATUSES, TXN_FAILED_STATUSES, TXN_PENDING, TXN_SUCCESS
from app.feebook.errors import ApiError
from app.feebook.utils import EMAIL_RE, full_name, iso, money, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.feebook.modules.consumers.models import Consumer, ConsumerMember
    from app.feebook.modules.fee_plans.models import FeePlan
    from app.feebook.modules.providers.models import Provider


def consumer_to_dict(c: "Consumer") -> dict:
    return {
        "id": c.id,
        "firstName": c.first_name,
        "lastName": c.last_name,
        "email": c.email,
        "phone": c.phone,
        "isPhoneVerified": c.is_phone_verified,
        "createdAt": iso(c.created_at),
        "updatedAt": iso(c.updated_at),
    }


def _member_summary(m) -> dict:
    return {
        "id": m.id,
        "uniqueId": m.unique_id,
        "firstName": m.first_name,
        "middleName": m.middle_name,
        "lastName": m.last_name,
        "fullName": full_name(m.first_name, m.middle_name, m.last_name),
        "email": m.email,
        "phone": m.phone,
        "category": m.category,
        "subcategory": m.subcategory,
    }


def _provider_summary(p: "Provider") -> dict:
    return {"id": p.id, "name": p.name, "code": p.code, "category": p.category, "type": p.account_type}


def _is_pending(fp: "FeePlan") -> bool:
    return fp.status in FEE_PLAN_PENDING_STATUSES and not fp.is_offline_paid


def membership_to_dict(claim: "ConsumerMember", *, with_fee_plans: bool = False) -> dict:
    from app.feebook.modules.fee_plans.service import fee_plan_to_dict

    member = claim.member
    data = {
        "id": claim.id,
        "claimedAt": iso(claim.claimed_at),
        "member": _member_summary(member),
        "provider": _provider_summary(member.provider),
        "pendingFeePlans": sum(1 for fp in member.fee_plans if fp.status != FEE_PLAN_PAID),
    }
    if with_fee_plans:
        data["feePlans"] = [fee_plan_to_dict(fp) for fp in member.fee_plans]
    return data


# ---------- Registration ----------
def find_consumer_conflict(s: "Session", *, email: str | None, phone: str) -> str | None:
    from app.feebook.modules.consumers.models import Consumer

    if email and s.query(Consumer.id).filter(Consumer.email == email).first():
        return "email"
    if s.query(Consumer.id).filter(Consumer.phone == phone).first():
        return "phone"
    return None


def create_consumer(
    s: "Session",
    *,
    phone: str,
    first_name: str | None = None,
    last_name: str | None = None,
    email: str | None = None,
    password: str | None = None,
    phone_verified: bool = False,
) -> "Consumer":
    from app.feebook.modules.consumers.models import Consumer

    consumer = Consumer(
        phone=phone.strip(),
        first_name=(first_name or "").strip() or None,
        last_name=(last_name or "").strip() or None,
        email=(email or "").strip().lower() or None,
        password_hash=generate_password_hash(password) if password else None,
        is_phone_verified=phone_verified,
    )
    s.add(consumer)
    s.flush()
    record_event(
        s,
        actor=consumer,
        action="consumer.register",
        entity_type="Consumer",
        entity_id=str(consumer.id),
        metadata={"phone_verified": phone_verified},
    )
    return consumer


# ---------- Memberships ----------
def claim_membership(s: "Session", consumer: "Consumer", provider: "Provider | None", member_unique_id: str) -> "ConsumerMember":
    """Link `consumer` to the provider's member record. The provider must be verified."""
    from app.feebook.modules.consumers.models import ConsumerMember
    from app.feebook.modules.members.service import get_provider_member

    if provider is None or not provider.is_verified:
        raise ApiError(404, "Provider not found or not verified")
    member = get_provider_member(s, provider.id, member_unique_id)
    if member is None:
        raise ApiError(404, "Member not found with the provided unique ID")

    existing = (
        s.query(ConsumerMember)
        .filter(ConsumerMember.consumer_id == consumer.id, ConsumerMember.member_id == member.id)
        .one_or_none()
    )
    if existing is not None:
        raise ApiError(409, "Membership already claimed", membershipId=existing.id, claimedAt=iso(existing.claimed_at))

    claim = ConsumerMember(consumer_id=consumer.id, member_id=member.id)
    s.add(claim)
    s.flush()
    s.refresh(claim)

    record_event(
        s,
        actor=consumer,
        action="consumer.claim_membership",
        entity_type="ConsumerMember",
        entity_id=str(claim.id),
        metadata={"provider_id": provider.id, "member_unique_id": member.unique_id},
    )
    return claim


def list_memberships(s: "Session", consumer: "Consumer") -> list["ConsumerMember"]:
    from app.feebook.modules.consumers.models import ConsumerMember

    return (
        s.query(ConsumerMember)
        .filter(ConsumerMember.consumer_id == consumer.id)
        .order_by(ConsumerMember.claimed_at.desc(), ConsumerMember.id.desc())
        .all()
    )


def get_membership(s: "Session", consumer: "Consumer", membership_id: int) -> "ConsumerMember | None":
    from app.feebook.modules.consumers.models import ConsumerMember

    return (
        s.query(ConsumerMember)
        .filter(ConsumerMember.id == membership_id, ConsumerMember.consumer_id == consumer.id)
        .one_or_none()
    )


def simplified_memberships(s: "Session", consumer: "Consumer", now: datetime | None = None) -> list[dict]:
    now = now or utcnow()
    rows = []
    for claim in list_memberships(s, consumer):
        pending = [fp for fp in claim.member.fee_plans if _is_pending(fp)]
        rows.append(
            {
                "id": claim.id,
                "claimedAt": iso(claim.claimed_at),
                "member": _member_summary(claim.member),
                "provider": _provider_summary(claim.member.provider),
                "pendingFeePlansCount": len(pending),
                "totalPendingAmount": sum(money(fp.amount) for fp in pending),
                "hasOverdueFees": any(fp.due_date < now for fp in pending),
            }
        )
    return rows


# ---------- Dashboard ----------
def _txn_summary(t) -> dict:
    fp = t.fee_plan
    return {
        "id": t.id,
        "externalPaymentId": t.external_payment_id,
        "amount": money(t.amount),
        "status": t.status,
        "paymentTime": iso(t.payment_time),
        "paymentGroup": t.payment_group,
        "feePlan": {"id": fp.id, "name": fp.name},
        "member": {
            "id": fp.member.id,
            "uniqueId": fp.member.unique_id,
            "name": full_name(fp.member.first_name, fp.member.middle_name, fp.member.last_name),
        },
        "provider": {"id": fp.provider.id, "name": fp.provider.name},
    }


def build_dashboard(s: "Session", consumer: "Consumer", now: datetime | None = None) -> dict:
    from app.feebook.modules.payments.models import Transaction

    now = now or utcnow()
    week_ahead = now + timedelta(days=7)
    month_ago = now - timedelta(days=30)

    claims = list_memberships(s, consumer)
    pending = [fp for claim in claims for fp in claim.member.fee_plans if _is_pending(fp)]
    overdue = [fp for fp in pending if fp.due_date < now]
    upcoming = [fp for fp in pending if now <= fp.due_date <= week_ahead]

    recent_q = s.query(Transaction).filter(
        Transaction.consumer_id == consumer.id,
        Transaction.status == TXN_SUCCESS,
    )
    recent_total = recent_q.filter(Transaction.payment_time >= month_ago).with_entities(
        func.coalesce(func.sum(Transaction.amount), 0), func.count(Transaction.id)
    ).one()

    urgent = sorted((fp for fp in pending if fp.due_date <= week_ahead), key=lambda fp: fp.due_date)[:5]
    urgent_fees = []
    for fp in urgent:
        urgent_fees.append(
            {
                "id": fp.id,
                "name": fp.name,
                "amount": money(fp.amount),
                "dueDate": iso(fp.due_date),
                "daysUntilDue": (fp.due_date.date() - now.date()).days,
                "isOverdue": fp.due_date < now,
                "member": {"id": fp.member.id, "uniqueId": fp.member.unique_id, "firstName": fp.member.first_name},
                "provider": {"id": fp.provider.id, "name": fp.provider.name},
            }
        )

    recent = recent_q.order_by(Transaction.payment_time.desc(), Transaction.id.desc()).limit(5).all()
    return {
        "statistics": {
            "totalMemberships": len(claims),
            "totalPendingFees": len(pending),
            "totalPendingAmount": sum(money(fp.amount) for fp in pending),
            "overdueFees": len(overdue),
            "overdueAmount": sum(money(fp.amount) for fp in overdue),
            "upcomingFees": len(upcoming),
            "recentPaymentsTotal": money(recent_total[0]),
            "recentPaymentsCount": int(recent_total[1] or 0),
        },
        "urgentFees": urgent_fees,
        "recentTransactions": [_txn_summary(t) for t in recent],
    }


# ---------- Payment history ----------
def payment_history(
    s: "Session",
    consumer: "Consumer",
    *,
    page: int,
    limit: int,
    status: str = "",
    start: datetime | None = None,
    end: datetime | None = None,
) -> tuple[list[dict], int, dict]:
    from app.feebook.modules.payments.models import Transaction

    q = s.query(Transaction).filter(Transaction.consumer_id == consumer.id)
    if status and status.lower() != "all":
        q = q.filter(Transaction.status == status.upper())
    if start is not None:
        q = q.filter(Transaction.payment_time >= start)
    if end is not None:
        q = q.filter(Transaction.payment_time <= end)

    total = q.count()
    rows = (
        q.order_by(Transaction.payment_time.desc(), Transaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    summary_rows = q.with_entities(Transaction.status, func.count(Transaction.id), func.coalesce(func.sum(Transaction.amount), 0)).group_by(
        Transaction.status
    )
    by_status = {st: (int(n), money(amt)) for st, n, amt in summary_rows}
    summary = {
        "totalAmount": sum(amt for _, amt in by_status.values()),
        "successfulPayments": by_status.get(TXN_SUCCESS, (0, 0.0))[0],
        "successfulAmount": by_status.get(TXN_SUCCESS, (0, 0.0))[1],
        "pendingPayments": by_status.get(TXN_PENDING, (0, 0.0))[0],
        "failedPayments": sum(by_status.get(st, (0, 0.0))[0] for st in TXN_FAILED_STATUSES),
    }
    return [_txn_summary(t) for t in rows], total, summary


# ---------- Profile ----------
PROFILE_FIELDS = ("firstName", "lastName", "email")


def update_profile(s: "Session", consumer: "Consumer", payload: dict) -> "Consumer":
    from app.feebook.modules.consumers.models import Consumer

    changes = {}
    if "email" in payload:
        email = str(payload.get("email") or "").strip().lower() or None
        if email and not EMAIL_RE.match(email):
            raise ApiError(400, "Invalid email format")
        if email and email != consumer.email:
            taken = s.query(Consumer.id).filter(Consumer.email == email, Consumer.id != consumer.id).first()
            if taken:
                raise ApiError(409, "Email is already in use")
        if email != consumer.email:
            changes["email"] = {"old": consumer.email, "new": email}
            consumer.email = email

    for key, attr in (("firstName", "first_name"), ("lastName", "last_name")):
        if key in payload:
            value = str(payload.get(key) or "").strip() or None
            if value != getattr(consumer, attr):
                changes[attr] = {"old": getattr(consumer, attr), "new": value}
                setattr(consumer, attr, value)

    record_event(
        s,
        actor=consumer,
        action="consumer.profile_update",
        entity_type="Consumer",
        entity_id=str(consumer.id),
        metadata={"changes": changes},
    )
    return consumer
