from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.feebook.audit import record_event
from app.feebook.constants import FEE_PLAN_DUE, FEE_PLAN_PAID, FEE_PLAN_STATUSES, MAX_AMOUNT, TXN_SUCCESS
from app.feebook.errors import ApiError
from app.feebook.utils import iso, money, parse_amount, parse_datetime, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.feebook.modules.fee_plans.models import FeePlan
    from app.feebook.modules.members.models import Member
    from app.feebook.modules.providers.models import Provider


def fee_plan_to_dict(fp: "FeePlan", now: datetime | None = None) -> dict:
    now = now or utcnow()
    return {
        "id": fp.id,
        "name": fp.name,
        "description": fp.description,
        "amount": money(fp.amount),
        "status": fp.status,
        "dueDate": iso(fp.due_date),
        "isOverdue": fp.status != FEE_PLAN_PAID and fp.due_date < now,
        "isOfflinePaid": fp.is_offline_paid,
        "consumerClaimsPaid": fp.consumer_claims_paid,
        "receipt": fp.receipt,
        "memberId": fp.member_id,
        "providerId": fp.provider_id,
        "createdAt": iso(fp.created_at),
        "updatedAt": iso(fp.updated_at),
    }


def validate_fee_plan_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate fee plan create/update payload. Returns list of errors."""
    errors = []
    if not partial or "name" in payload:
        if not str(payload.get("name") or "").strip():
            errors.append("Name is required.")
    if not partial or "amount" in payload:
        amount = parse_amount(payload.get("amount"))
        if amount is None or amount <= 0:
            errors.append("Amount must be a positive number.")
        elif amount > MAX_AMOUNT:
            errors.append(f"Amount cannot exceed {MAX_AMOUNT}.")
    if not partial or "dueDate" in payload:
        try:
            if parse_datetime(payload.get("dueDate")) is None:
                errors.append("Due date is required.")
        except ValueError:
            errors.append("Invalid due date.")
    status = str(payload.get("status") or "").strip()
    if status and status not in FEE_PLAN_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(FEE_PLAN_STATUSES)}")
    return errors


def get_provider_fee_plan(s: "Session", provider_id: int, fee_plan_id) -> "FeePlan | None":
    from app.feebook.modules.fee_plans.models import FeePlan

    try:
        fid = int(fee_plan_id)
    except (TypeError, ValueError):
        return None
    return s.query(FeePlan).filter(FeePlan.id == fid, FeePlan.provider_id == provider_id).one_or_none()


def create_fee_plan(s: "Session", provider: "Provider", member: "Member", payload: dict) -> "FeePlan":
    from app.feebook.modules.fee_plans.models import FeePlan

    fp = FeePlan(
        provider_id=provider.id,
        member_id=member.id,
        name=str(payload.get("name") or "").strip(),
        description=(str(payload.get("description") or "").strip() or None),
        amount=parse_amount(payload.get("amount")),
        due_date=parse_datetime(payload.get("dueDate")),
        status=(str(payload.get("status") or "").strip() or FEE_PLAN_DUE),
    )
    s.add(fp)
    s.flush()

    record_event(
        s,
        actor=provider,
        action="fee_plan.create",
        entity_type="FeePlan",
        entity_id=str(fp.id),
        metadata={"member_id": member.id, "name": fp.name, "amount": str(fp.amount)},
    )
    return fp


def update_fee_plan(s: "Session", fp: "FeePlan", payload: dict, provider: "Provider") -> "FeePlan":
    changes = {}

    if "name" in payload:
        new_name = str(payload.get("name") or "").strip()
        if new_name != fp.name:
            changes["name"] = {"old": fp.name, "new": new_name}
            fp.name = new_name

    if "description" in payload:
        new_desc = str(payload.get("description") or "").strip() or None
        if new_desc != fp.description:
            changes["description"] = {"old": fp.description, "new": new_desc}
            fp.description = new_desc

    if "amount" in payload:
        new_amount = parse_amount(payload.get("amount"))
        if new_amount != fp.amount:
            changes["amount"] = {"old": str(fp.amount), "new": str(new_amount)}
            fp.amount = new_amount

    if "dueDate" in payload:
        new_due = parse_datetime(payload.get("dueDate"))
        if new_due != fp.due_date:
            changes["due_date"] = {"old": iso(fp.due_date), "new": iso(new_due)}
            fp.due_date = new_due

    new_status = str(payload.get("status") or "").strip()
    if new_status and new_status != fp.status:
        changes["status"] = {"old": fp.status, "new": new_status}
        fp.status = new_status

    record_event(
        s,
        actor=provider,
        action="fee_plan.edit",
        entity_type="FeePlan",
        entity_id=str(fp.id),
        metadata={"changes": changes},
    )
    return fp


def delete_fee_plan(s: "Session", fp: "FeePlan", provider: "Provider") -> None:
    if any(t.status == TXN_SUCCESS for t in fp.transactions):
        raise ApiError(400, "Fee plan has successful payments and cannot be deleted")
    record_event(
        s,
        actor=provider,
        action="fee_plan.delete",
        entity_type="FeePlan",
        entity_id=str(fp.id),
        metadata={"member_id": fp.member_id, "name": fp.name, "amount": str(fp.amount)},
    )
    s.delete(fp)


def mark_fee_plan_paid(s: "Session", fp: "FeePlan", is_offline_paid: bool, provider: "Provider") -> "FeePlan":
    """Toggle offline payment. Online-paid plans are immutable here."""
    if fp.status == FEE_PLAN_PAID and not fp.is_offline_paid:
        raise ApiError(400, "This fee has already been paid online and cannot be modified")
    old_status = fp.status
    fp.is_offline_paid = is_offline_paid
    fp.status = FEE_PLAN_PAID if is_offline_paid else FEE_PLAN_DUE
    record_event(
        s,
        actor=provider,
        action="fee_plan.mark_paid" if is_offline_paid else "fee_plan.mark_unpaid",
        entity_type="FeePlan",
        entity_id=str(fp.id),
        metadata={"old_status": old_status, "new_status": fp.status},
    )
    return fp
