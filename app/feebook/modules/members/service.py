from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, or_

from app.feebook.audit import record_event
from app.feebook.constants import FEE_PLAN_PAID
from app.feebook.errors import ApiError
from app.feebook.utils import EMAIL_RE, full_name, iso, money, parse_date, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.feebook.modules.members.models import Member
    from app.feebook.modules.providers.models import Provider


def member_to_dict(member: "Member") -> dict:
    return {
        "id": member.id,
        "providerId": member.provider_id,
        "uniqueId": member.unique_id,
        "firstName": member.first_name,
        "middleName": member.middle_name,
        "lastName": member.last_name,
        "fullName": full_name(member.first_name, member.middle_name, member.last_name),
        "email": member.email,
        "phone": member.phone,
        "category": member.category,
        "subcategory": member.subcategory,
        "dateOfBirth": iso(member.date_of_birth),
        "createdAt": iso(member.created_at),
    }


def _linked_consumers(member: "Member") -> list[dict]:
    return [
        {
            "membershipId": claim.id,
            "claimedAt": iso(claim.claimed_at),
            "consumer": {
                "id": claim.consumer.id,
                "firstName": claim.consumer.first_name,
                "lastName": claim.consumer.last_name,
                "phone": claim.consumer.phone,
                "email": claim.consumer.email,
            },
        }
        for claim in member.claims
    ]


def validate_member_payload(payload: dict) -> list[str]:
    """Validate member creation payload. Returns list of errors."""
    errors = []
    for key, label in (("uniqueId", "Member ID"), ("firstName", "First name"), ("phone", "Phone")):
        if not str(payload.get(key) or "").strip():
            errors.append(f"{label} is required.")
    email = str(payload.get("email") or "").strip()
    if email and not EMAIL_RE.match(email):
        errors.append("Invalid email format.")
    dob = payload.get("dateOfBirth")
    if dob:
        try:
            parse_date(dob)
        except ValueError:
            errors.append("Invalid date of birth.")
    return errors


def create_member(s: "Session", provider: "Provider", payload: dict) -> "Member":
    from app.feebook.modules.members.models import Member

    unique_id = str(payload.get("uniqueId") or "").strip()
    exists = (
        s.query(Member.id)
        .filter(Member.provider_id == provider.id, Member.unique_id == unique_id)
        .first()
    )
    if exists:
        raise ApiError(409, f"A member with ID {unique_id} already exists")

    member = Member(
        provider_id=provider.id,
        unique_id=unique_id,
        first_name=str(payload.get("firstName") or "").strip(),
        middle_name=(str(payload.get("middleName") or "").strip() or None),
        last_name=str(payload.get("lastName") or "").strip(),
        email=(str(payload.get("email") or "").strip().lower() or None),
        phone=str(payload.get("phone") or "").strip(),
        category=(str(payload.get("category") or "").strip() or None),
        subcategory=(str(payload.get("subcategory") or "").strip() or None),
        date_of_birth=parse_date(payload.get("dateOfBirth")),
    )
    s.add(member)
    s.flush()

    record_event(
        s,
        actor=provider,
        action="member.create",
        entity_type="Member",
        entity_id=str(member.id),
        metadata={"unique_id": member.unique_id},
    )
    return member


def get_provider_member(s: "Session", provider_id: int, unique_id: str) -> "Member | None":
    from app.feebook.modules.members.models import Member

    return (
        s.query(Member)
        .filter(Member.provider_id == provider_id, Member.unique_id == (unique_id or "").strip())
        .one_or_none()
    )


def list_members(s: "Session", provider_id: int, *, search: str = "", page: int = 1, limit: int = 20) -> tuple[list["Member"], int]:
    from app.feebook.modules.members.models import Member

    q = s.query(Member).filter(Member.provider_id == provider_id)
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                Member.first_name.ilike(like),
                Member.last_name.ilike(like),
                Member.unique_id.ilike(like),
                Member.phone.ilike(like),
                Member.email.ilike(like),
            )
        )
    total = q.count()
    members = q.order_by(Member.created_at.desc(), Member.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return members, total


def member_detail(member: "Member") -> dict:
    from app.feebook.modules.fee_plans.service import fee_plan_to_dict

    data = member_to_dict(member)
    data["feePlans"] = [fee_plan_to_dict(fp) for fp in member.fee_plans]
    data["consumerMemberships"] = _linked_consumers(member)
    return data


def upcoming_fee_plans(s: "Session", member: "Member", *, within_days: int, now: datetime | None = None) -> list:
    """Unpaid fee plans of `member` due on or before now + within_days (overdue ones included)."""
    from app.feebook.modules.fee_plans.models import FeePlan

    horizon = (now or utcnow()) + timedelta(days=within_days)
    return (
        s.query(FeePlan)
        .filter(
            FeePlan.member_id == member.id,
            FeePlan.status != FEE_PLAN_PAID,
            FeePlan.due_date <= horizon,
        )
        .order_by(FeePlan.due_date.asc())
        .all()
    )


def simplified_members(s: "Session", provider_id: int, now: datetime | None = None) -> dict:
    from app.feebook.modules.members.models import Member

    now = now or utcnow()
    members = (
        s.query(Member)
        .filter(Member.provider_id == provider_id)
        .order_by(Member.created_at.desc(), Member.id.desc())
        .all()
    )
    rows = []
    for m in members:
        pending = [fp for fp in m.fee_plans if fp.status != FEE_PLAN_PAID]
        overdue = [fp for fp in pending if fp.due_date < now]
        linked = m.claims[0].consumer if m.claims else None
        rows.append(
            {
                "id": m.id,
                "memberName": full_name(m.first_name, m.middle_name, m.last_name),
                "uniqueId": m.unique_id,
                "phone": m.phone,
                "email": m.email,
                "category": m.category,
                "subcategory": m.subcategory,
                "joinedAt": iso(m.created_at),
                "pendingFeePlansCount": len(pending),
                "totalPendingAmount": sum(money(fp.amount) for fp in pending),
                "hasOverdueFees": bool(overdue),
                "overdueFeePlansCount": len(overdue),
                "isLinkedToConsumer": bool(m.claims),
                "linkedConsumer": (
                    {"id": linked.id, "firstName": linked.first_name, "lastName": linked.last_name, "phone": linked.phone}
                    if linked
                    else None
                ),
            }
        )
    return {
        "members": rows,
        "totalMembers": len(rows),
        "totalPendingFees": sum(r["pendingFeePlansCount"] for r in rows),
        "totalMembersWithOverdueFees": sum(1 for r in rows if r["hasOverdueFees"]),
    }


def count_members(s: "Session", provider_id: int) -> int:
    from app.feebook.modules.members.models import Member

    return int(s.query(func.count(Member.id)).filter(Member.provider_id == provider_id).scalar() or 0)
