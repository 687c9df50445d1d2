from __future__ import annotations

from flask import Blueprint, request

from app.feebook.constants import ROLE_PROVIDER
from app.feebook.db import db_session
from app.feebook.errors import ApiError, json_error, json_ok
from app.feebook.modules.fee_plans.service import fee_plan_to_dict
from app.feebook.modules.members.models import Member
from app.feebook.modules.members.service import (
    create_member,
    get_provider_member,
    list_members,
    member_detail,
    member_to_dict,
    simplified_members,
    upcoming_fee_plans,
    validate_member_payload,
)
from app.feebook.modules.providers.service import dashboard_cache, invalidate_dashboard, provider_public_dict
from app.feebook.rbac import current_actor, ensure_owner, require_role
from app.feebook.utils import pagination_meta, parse_int_arg

bp = Blueprint("members", __name__)


def _provider():
    p = current_actor(ROLE_PROVIDER)
    if not p:
        raise RuntimeError("No current provider")
    return p


def _payload() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return {}
    # the web client wraps the record: {"member": {...}}
    inner = data.get("member")
    return inner if isinstance(inner, dict) else data


# ---------- Provider-scoped ----------
@bp.get("/provider/member")
@require_role(ROLE_PROVIDER)
def members_list():
    ensure_owner(ROLE_PROVIDER, request.args.get("providerId"))
    page = parse_int_arg(request.args.get("page"), 1)
    limit = parse_int_arg(request.args.get("limit"), 20, maximum=100)
    search = (request.args.get("search") or "").strip()

    s = db_session()
    members, total = list_members(s, _provider().id, search=search, page=page, limit=limit)
    return json_ok([member_to_dict(m) for m in members], pagination=pagination_meta(page=page, limit=limit, total=total))


@bp.post("/provider/member")
@require_role(ROLE_PROVIDER)
def members_create():
    payload = _payload()
    ensure_owner(ROLE_PROVIDER, payload.get("providerId"))
    errors = validate_member_payload(payload)
    if errors:
        return json_error(errors[0], 400, errors=errors)

    s = db_session()
    provider = _provider()
    member = create_member(s, provider, payload)
    s.commit()
    invalidate_dashboard(dashboard_cache(), provider.id)
    return json_ok(member_to_dict(member), 201, message="Member created successfully")


@bp.get("/provider/member/by-uniqueid")
@require_role(ROLE_PROVIDER)
def members_by_unique_id():
    unique_id = (request.args.get("uniqueId") or "").strip()
    if not unique_id:
        return json_error("Member unique ID is required", 400)
    s = db_session()
    member = get_provider_member(s, _provider().id, unique_id)
    if member is None:
        return json_error("Member not found", 404)
    data = member_detail(member)
    data["feePlans"] = [fee_plan_to_dict(fp) for fp in upcoming_fee_plans(s, member, within_days=30)]
    return json_ok(data)


@bp.get("/provider/member/simplified")
@require_role(ROLE_PROVIDER)
def members_simplified():
    s = db_session()
    return json_ok(simplified_members(s, _provider().id))


# ---------- Public (direct-pay page) ----------
@bp.get("/member")
def member_public():
    raw = (request.args.get("memberId") or "").strip()
    if not raw:
        raise ApiError(400, "Member ID is required")
    try:
        member_id = int(raw)
    except ValueError:
        raise ApiError(404, "Member not found")
    s = db_session()
    member = s.get(Member, member_id)
    if member is None:
        raise ApiError(404, "Member not found")
    data = member_to_dict(member)
    data["provider"] = provider_public_dict(member.provider)
    data["feePlans"] = [fee_plan_to_dict(fp) for fp in upcoming_fee_plans(s, member, within_days=30)]
    return json_ok(data)
