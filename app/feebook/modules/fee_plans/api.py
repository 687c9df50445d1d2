from __future__ import annotations

from flask import Blueprint, request

from app.feebook.constants import ROLE_PROVIDER
from app.feebook.db import db_session
from app.feebook.errors import ApiError, json_error, json_ok
from app.feebook.modules.fee_plans.models import FeePlan
from app.feebook.modules.fee_plans.service import (
    create_fee_plan,
    delete_fee_plan,
    fee_plan_to_dict,
    get_provider_fee_plan,
    mark_fee_plan_paid,
    update_fee_plan,
    validate_fee_plan_payload,
)
from app.feebook.modules.members.service import get_provider_member, member_to_dict
from app.feebook.modules.providers.service import dashboard_cache, invalidate_dashboard, provider_public_dict
from app.feebook.rbac import current_actor, ensure_owner, require_role

bp = Blueprint("fee_plans", __name__)


def _provider():
    p = current_actor(ROLE_PROVIDER)
    if not p:
        raise RuntimeError("No current provider")
    return p


def _payload() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return {}
    inner = data.get("feePlan")
    return inner if isinstance(inner, dict) else data


def _owned_or_404(s, fee_plan_id) -> FeePlan:
    fp = get_provider_fee_plan(s, _provider().id, fee_plan_id)
    if fp is None:
        raise ApiError(404, "Fee plan not found or you don't have permission to modify it")
    return fp


# ---------- Provider-scoped CRUD ----------
@bp.get("/provider/feeplan")
@require_role(ROLE_PROVIDER)
def fee_plans_list():
    unique_id = (request.args.get("memberId") or "").strip()
    if not unique_id:
        return json_error("Member ID is required", 400)
    s = db_session()
    member = get_provider_member(s, _provider().id, unique_id)
    if member is None:
        return json_error("Member not found", 404)
    return json_ok([fee_plan_to_dict(fp) for fp in member.fee_plans])


@bp.post("/provider/feeplan")
@require_role(ROLE_PROVIDER)
def fee_plans_create():
    payload = _payload()
    ensure_owner(ROLE_PROVIDER, payload.get("providerId"))
    errors = validate_fee_plan_payload(payload)
    unique_id = str(payload.get("memberUniqueId") or payload.get("memberId") or "").strip()
    if not unique_id:
        errors.insert(0, "Member ID is required.")
    if errors:
        return json_error(errors[0], 400, errors=errors)

    s = db_session()
    provider = _provider()
    member = get_provider_member(s, provider.id, unique_id)
    if member is None:
        return json_error("Member not found", 404)

    fp = create_fee_plan(s, provider, member, payload)
    s.commit()
    invalidate_dashboard(dashboard_cache(), provider.id)
    return json_ok(fee_plan_to_dict(fp), 201, message="Fee plan created successfully")


@bp.put("/provider/feeplan")
@require_role(ROLE_PROVIDER)
def fee_plans_update():
    payload = _payload()
    s = db_session()
    fp = _owned_or_404(s, payload.get("id"))
    errors = validate_fee_plan_payload(payload, partial=True)
    if errors:
        return json_error(errors[0], 400, errors=errors)
    update_fee_plan(s, fp, payload, _provider())
    s.commit()
    invalidate_dashboard(dashboard_cache(), fp.provider_id)
    return json_ok(fee_plan_to_dict(fp), message="Fee plan updated successfully")


@bp.delete("/provider/feeplan")
@require_role(ROLE_PROVIDER)
def fee_plans_delete():
    fee_plan_id = request.args.get("id") or _payload().get("feePlanId") or _payload().get("id")
    s = db_session()
    fp = _owned_or_404(s, fee_plan_id)
    provider_id = fp.provider_id
    delete_fee_plan(s, fp, _provider())
    s.commit()
    invalidate_dashboard(dashboard_cache(), provider_id)
    return json_ok(message="Fee plan deleted successfully")


@bp.post("/provider/feeplan/mark-paid")
@require_role(ROLE_PROVIDER)
def fee_plans_mark_paid():
    payload = _payload()
    is_offline_paid = payload.get("isOfflinePaid")
    if not isinstance(is_offline_paid, bool):
        return json_error("isOfflinePaid must be a boolean", 400)
    s = db_session()
    fp = _owned_or_404(s, payload.get("feePlanId"))
    mark_fee_plan_paid(s, fp, is_offline_paid, _provider())
    s.commit()
    invalidate_dashboard(dashboard_cache(), fp.provider_id)
    message = "Fee plan marked as paid successfully" if is_offline_paid else "Fee plan marked as unpaid successfully"
    return json_ok(fee_plan_to_dict(fp), message=message)


# ---------- Public ----------
@bp.get("/fee-plans/<int:fee_plan_id>")
def fee_plan_public(fee_plan_id: int):
    s = db_session()
    fp = s.get(FeePlan, fee_plan_id)
    if fp is None:
        return json_error("Fee plan not found", 404)
    data = fee_plan_to_dict(fp)
    data["member"] = member_to_dict(fp.member)
    data["provider"] = provider_public_dict(fp.provider)
    return json_ok(data)
