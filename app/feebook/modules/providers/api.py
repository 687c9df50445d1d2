from __future__ import annotations

from flask import Blueprint, current_app, request

from app.feebook.constants import PROVIDER_CATEGORIES, ROLE_PROVIDER
from app.feebook.db import db_session
from app.feebook.errors import ApiError, json_error, json_ok
from app.feebook.modules.payments.cashfree_client import CashfreeError, verification_client_from_config
from app.feebook.modules.payments.service import provider_payments
from app.feebook.modules.providers.service import (
    add_verified_bank_account,
    bank_account_to_dict,
    cached_dashboard,
    dashboard_cache,
    get_provider_by_code,
    invalidate_dashboard,
    list_bank_accounts,
    provider_public_dict,
    provider_to_dict,
    search_providers,
    set_default_bank_account,
    submit_individual_kyc,
    submit_organization_kyc,
    validate_individual_kyc,
    validate_organization_kyc,
    verification_to_dict,
)
from app.feebook.rbac import current_actor, ensure_owner, require_role
from app.feebook.storage import StorageError, storage_from_config
from app.feebook.utils import pagination_meta, parse_datetime, parse_int_arg

bp = Blueprint("providers", __name__)


def _provider():
    p = current_actor(ROLE_PROVIDER)
    if not p:
        raise RuntimeError("No current provider")
    return p


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _date_arg(name: str):
    try:
        return parse_datetime(request.args.get(name))
    except ValueError:
        raise ApiError(400, f"Invalid {name}")


# ---------- Public lookup ----------
@bp.get("/by-code/<code>")
def by_code(code: str):
    s = db_session()
    p = get_provider_by_code(s, code)
    if p is None:
        return json_error("Organization not found", 404)
    return json_ok(provider_public_dict(p))


@bp.get("/search")
def search():
    category = (request.args.get("category") or "").strip().upper()
    if not category:
        return json_error("Category is required", 400)
    if category not in PROVIDER_CATEGORIES:
        return json_error(f"Invalid category. Must be one of: {', '.join(PROVIDER_CATEGORIES)}", 400)
    limit = parse_int_arg(request.args.get("limit"), 10, maximum=50)
    name = (request.args.get("name") or request.args.get("search") or "").strip()

    s = db_session()
    providers = search_providers(s, category=category, region=(request.args.get("region") or "").strip(), name=name, limit=limit)
    rows = []
    for p in providers:
        row = provider_public_dict(p)
        row.update({"email": p.email, "phone": p.phone})
        rows.append(row)
    return json_ok({"providers": rows, "total": len(rows)})


# ---------- Dashboard ----------
@bp.get("/dashboard")
@require_role(ROLE_PROVIDER)
def dashboard():
    ensure_owner(ROLE_PROVIDER, request.args.get("providerId"))
    s = db_session()
    ttl = int(current_app.config.get("DASHBOARD_CACHE_SECONDS") or 120)
    data, cached = cached_dashboard(s, _provider(), ttl, dashboard_cache())
    return json_ok(data, cached=cached)


# ---------- KYC ----------
def _kyc_submit(validate, submit):
    form = request.form.to_dict()
    files = {k: f for k, f in request.files.items() if f and f.filename}
    errors = validate(form, files)
    if errors:
        return json_error(errors[0], 400, errors=errors)

    s = db_session()
    provider = _provider()
    try:
        v = submit(s, provider, form, files, storage_from_config(current_app.config))
    except StorageError as e:
        current_app.logger.error("KYC document upload failed (provider_id=%s): %s", provider.id, e)
        return json_error("Failed to upload KYC documents", 500)
    s.commit()
    return json_ok(verification_to_dict(v), message="KYC submitted successfully")


@bp.post("/kyc/individual")
@require_role(ROLE_PROVIDER)
def kyc_individual():
    return _kyc_submit(validate_individual_kyc, submit_individual_kyc)


@bp.post("/kyc/organization")
@require_role(ROLE_PROVIDER)
def kyc_organization():
    return _kyc_submit(validate_organization_kyc, submit_organization_kyc)


@bp.get("/kyc")
@require_role(ROLE_PROVIDER)
def kyc_get():
    p = _provider()
    if p.verification is None:
        return json_error("Provider KYC not found", 404)
    data = provider_to_dict(p)
    data["verification"] = verification_to_dict(p.verification)
    return json_ok(data)


# ---------- Payments ----------
@bp.get("/payments")
@require_role(ROLE_PROVIDER)
def payments():
    ensure_owner(ROLE_PROVIDER, request.args.get("providerId"))
    page = parse_int_arg(request.args.get("page"), 1)
    limit = parse_int_arg(request.args.get("limit"), 10, maximum=100)
    s = db_session()
    items, total, stats = provider_payments(
        s,
        _provider().id,
        page=page,
        limit=limit,
        status=(request.args.get("status") or "").strip(),
        start=_date_arg("startDate"),
        end=_date_arg("endDate"),
        search=(request.args.get("search") or "").strip(),
    )
    return json_ok({"transactions": items, "pagination": pagination_meta(page=page, limit=limit, total=total), "stats": stats})


# ---------- Wallet ----------
@bp.get("/wallet/bank")
@require_role(ROLE_PROVIDER)
def bank_list():
    default_only = (request.args.get("default") or "").strip().lower() in ("1", "true", "yes")
    s = db_session()
    accounts = list_bank_accounts(s, _provider(), default_only=default_only)
    return json_ok([bank_account_to_dict(a) for a in accounts])


@bp.post("/wallet/bank")
@require_role(ROLE_PROVIDER)
def bank_add():
    payload = _payload()
    if not all(str(payload.get(k) or "").strip() for k in ("accNumber", "ifsc", "accName")):
        return json_error("All account details are required", 400)

    s = db_session()
    provider = _provider()
    verifier = verification_client_from_config(current_app.config)
    try:
        acc = add_verified_bank_account(s, provider, payload, verifier)
    except CashfreeError as e:
        current_app.logger.error("Bank verification request failed (provider_id=%s): %s", provider.id, e.message)
        return json_error(e.message or "Bank account verification failed", 502)
    except ApiError:
        # keep the failed-verification audit row
        s.commit()
        raise
    s.commit()
    invalidate_dashboard(dashboard_cache(), provider.id)
    return json_ok(bank_account_to_dict(acc), 201, message="Bank account verification succeeded")


@bp.patch("/wallet/bank")
@require_role(ROLE_PROVIDER)
def bank_set_default():
    payload = _payload()
    account_id = payload.get("accountId", payload.get("bankAccountId"))
    s = db_session()
    acc = set_default_bank_account(s, _provider(), account_id)
    s.commit()
    invalidate_dashboard(dashboard_cache(), acc.provider_id)
    return json_ok(bank_account_to_dict(acc), message="Default bank account updated")
