from __future__ import annotations

from flask import Blueprint, request

from app.feebook.constants import ROLE_CONSUMER
from app.feebook.db import db_session
from app.feebook.errors import ApiError, json_error, json_ok
from app.feebook.modules.consumers.service import (
    PROFILE_FIELDS,
    build_dashboard,
    claim_membership,
    consumer_to_dict,
    get_membership,
    list_memberships,
    membership_to_dict,
    payment_history,
    simplified_memberships,
    update_profile,
)
from app.feebook.modules.providers.models import Provider
from app.feebook.modules.providers.service import get_provider_by_code
from app.feebook.rbac import current_actor, ensure_owner, require_role
from app.feebook.utils import pagination_meta, parse_datetime, parse_int_arg

bp = Blueprint("consumers", __name__)


def _consumer():
    c = current_actor(ROLE_CONSUMER)
    if not c:
        raise RuntimeError("No current consumer")
    return c


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _claim(s, provider: Provider | None, member_unique_id: str):
    claim = claim_membership(s, _consumer(), provider, member_unique_id)
    s.commit()
    return json_ok(membership_to_dict(claim), 201, message="Membership claimed successfully")


# ---------- Memberships ----------
@bp.post("/claim-membership")
@require_role(ROLE_CONSUMER)
def claim_by_provider_id():
    payload = _payload()
    ensure_owner(ROLE_CONSUMER, payload.get("consumerId"))
    provider_id = payload.get("providerId")
    unique_id = str(payload.get("memberUniqueId") or "").strip()
    if provider_id in (None, "") or not unique_id:
        return json_error("Provider ID and member unique ID are required", 400)
    try:
        pid = int(provider_id)
    except (TypeError, ValueError):
        return json_error("Provider not found or not verified", 404)
    s = db_session()
    return _claim(s, s.get(Provider, pid), unique_id)


@bp.get("/memberships")
@require_role(ROLE_CONSUMER)
def memberships_list():
    s = db_session()
    return json_ok([membership_to_dict(c, with_fee_plans=True) for c in list_memberships(s, _consumer())])


@bp.post("/memberships")
@require_role(ROLE_CONSUMER)
def claim_by_provider_code():
    payload = _payload()
    code = str(payload.get("providerCode") or "").strip()
    unique_id = str(payload.get("memberUniqueId") or "").strip()
    if not code or not unique_id:
        return json_error("Provider code and member unique ID are required", 400)
    s = db_session()
    return _claim(s, get_provider_by_code(s, code), unique_id)


@bp.get("/memberships/simplified")
@require_role(ROLE_CONSUMER)
def memberships_simplified():
    s = db_session()
    return json_ok(simplified_memberships(s, _consumer()))


@bp.get("/memberships/<int:membership_id>")
@require_role(ROLE_CONSUMER)
def membership_detail(membership_id: int):
    s = db_session()
    claim = get_membership(s, _consumer(), membership_id)
    if claim is None:
        return json_error("Membership not found", 404)
    return json_ok(membership_to_dict(claim, with_fee_plans=True))


# ---------- Dashboard / history ----------
@bp.get("/dashboard")
@require_role(ROLE_CONSUMER)
def dashboard():
    s = db_session()
    return json_ok(build_dashboard(s, _consumer()))


@bp.get("/payment-history")
@require_role(ROLE_CONSUMER)
def history():
    page = parse_int_arg(request.args.get("page"), 1)
    limit = parse_int_arg(request.args.get("limit"), 10, maximum=100)
    try:
        start = parse_datetime(request.args.get("startDate"))
        end = parse_datetime(request.args.get("endDate"))
    except ValueError:
        raise ApiError(400, "Invalid date range")

    s = db_session()
    items, total, summary = payment_history(
        s,
        _consumer(),
        page=page,
        limit=limit,
        status=(request.args.get("status") or "").strip(),
        start=start,
        end=end,
    )
    return json_ok(
        {
            "transactions": items,
            "pagination": pagination_meta(page=page, limit=limit, total=total),
            "summary": summary,
        }
    )


# ---------- Profile ----------
@bp.get("/profile")
@require_role(ROLE_CONSUMER)
def profile_get():
    return json_ok(consumer_to_dict(_consumer()))


@bp.put("/profile")
@require_role(ROLE_CONSUMER)
def profile_update():
    payload = {k: v for k, v in _payload().items() if k in PROFILE_FIELDS}
    s = db_session()
    consumer = update_profile(s, _consumer(), payload)
    s.commit()
    return json_ok(consumer_to_dict(consumer), message="Profile updated successfully")
