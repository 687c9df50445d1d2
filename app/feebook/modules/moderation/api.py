from __future__ import annotations

from flask import Blueprint, request

from app.feebook.constants import ROLE_MODERATOR
from app.feebook.db import db_session
from app.feebook.errors import json_error, json_ok
from app.feebook.modules.consumers.models import Consumer
from app.feebook.modules.consumers.service import consumer_to_dict
from app.feebook.modules.moderation.service import (
    create_policy,
    delete_policy,
    get_policy,
    get_published_policy,
    list_policies,
    list_queries,
    policy_to_dict,
    query_to_dict,
    resolve_query,
    submit_query as submit_support_query,
    update_policy,
    validate_policy_payload,
    validate_query_payload,
)
from app.feebook.modules.payments.service import all_transactions
from app.feebook.modules.providers.models import Provider
from app.feebook.modules.providers.service import provider_to_dict
from app.feebook.rbac import current_actor, require_role
from app.feebook.utils import parse_int_arg

bp = Blueprint("moderation", __name__)


def _moderator():
    m = current_actor(ROLE_MODERATOR)
    if not m:
        raise RuntimeError("No current moderator")
    return m


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ---------- Directory ----------
@bp.get("/moderator/consumers")
@require_role(ROLE_MODERATOR)
def consumers_list():
    s = db_session()
    rows = []
    for c in s.query(Consumer).order_by(Consumer.created_at.desc(), Consumer.id.desc()).all():
        data = consumer_to_dict(c)
        data["membershipsCount"] = len(c.memberships)
        rows.append(data)
    return json_ok(rows)


@bp.get("/moderator/org")
@require_role(ROLE_MODERATOR)
def providers_list():
    s = db_session()
    providers = s.query(Provider).order_by(Provider.created_at.desc(), Provider.id.desc()).all()
    return json_ok([provider_to_dict(p) for p in providers])


@bp.get("/moderator/transactions")
@require_role(ROLE_MODERATOR)
def transactions_list():
    page = parse_int_arg(request.args.get("page"), 1)
    limit = parse_int_arg(request.args.get("limit"), 10, maximum=100)
    s = db_session()
    items, total = all_transactions(s, page=page, limit=limit)
    return json_ok(
        {
            "transactions": items,
            "pagination": {"total": total, "page": page, "limit": limit, "totalPages": -(-total // limit)},
        }
    )


# ---------- Policies ----------
@bp.get("/moderator/policy")
@require_role(ROLE_MODERATOR)
def policies_list():
    s = db_session()
    return json_ok([policy_to_dict(p) for p in list_policies(s)])


@bp.post("/moderator/policy")
@require_role(ROLE_MODERATOR)
def policies_create():
    payload = _payload()
    errors = validate_policy_payload(payload)
    if errors:
        return json_error(errors[0], 400, errors=errors)
    s = db_session()
    p = create_policy(s, _moderator(), payload)
    s.commit()
    return json_ok(policy_to_dict(p), 201, message="Policy created successfully")


@bp.get("/moderator/policy/<int:policy_id>")
@require_role(ROLE_MODERATOR)
def policies_get(policy_id: int):
    s = db_session()
    return json_ok(policy_to_dict(get_policy(s, policy_id)))


@bp.patch("/moderator/policy/<int:policy_id>")
@require_role(ROLE_MODERATOR)
def policies_update(policy_id: int):
    payload = _payload()
    s = db_session()
    p = get_policy(s, policy_id)
    errors = validate_policy_payload(payload, partial=True)
    if errors:
        return json_error(errors[0], 400, errors=errors)
    update_policy(s, p, _moderator(), payload)
    s.commit()
    return json_ok(policy_to_dict(p), message="Policy updated successfully")


@bp.delete("/moderator/policy/<int:policy_id>")
@require_role(ROLE_MODERATOR)
def policies_delete(policy_id: int):
    s = db_session()
    delete_policy(s, get_policy(s, policy_id), _moderator())
    s.commit()
    return "", 204


# ---------- Support queries ----------
@bp.get("/moderator/queries")
@require_role(ROLE_MODERATOR)
def queries_list():
    s = db_session()
    return json_ok([query_to_dict(q) for q in list_queries(s)])


@bp.patch("/moderator/queries")
@require_role(ROLE_MODERATOR)
def queries_resolve():
    s = db_session()
    q = resolve_query(s, _moderator(), _payload().get("queryId"))
    s.commit()
    return json_ok(query_to_dict(q), message="Query resolved")


# ---------- Public ----------
@bp.post("/general/query")
def submit_query():
    payload = _payload()
    errors = validate_query_payload(payload)
    if errors:
        return json_error(errors[0], 400, errors=errors)
    s = db_session()
    q = submit_support_query(s, payload)
    s.commit()
    return json_ok(query_to_dict(q), 201, message="Query submitted successfully")


@bp.get("/general/policy/<slug>")
def policy_public(slug: str):
    s = db_session()
    return json_ok(policy_to_dict(get_published_policy(s, slug)))
