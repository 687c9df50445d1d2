from __future__ import annotations

from flask import Blueprint, current_app, g, request

from app.feebook.constants import ROLE_CONSUMER
from app.feebook.db import db_session
from app.feebook.errors import json_error, json_ok
from app.feebook.modules.payments.cashfree_client import CashfreeError, pg_client_from_config
from app.feebook.modules.payments.invoice_client import invoice_client_from_config
from app.feebook.modules.payments.service import create_order, find_payable_fee_plan, verify_order
from app.feebook.modules.providers.service import dashboard_cache, invalidate_dashboard
from app.feebook.rbac import any_actor, current_actor, ensure_owner

bp = Blueprint("payments", __name__)


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@bp.post("/create-order")
def create_order_route():
    payload = _payload()
    s = db_session()
    fp = find_payable_fee_plan(
        s,
        fee_plan_id=payload.get("feePlanId"),
        member_id=payload.get("memberId"),
        provider_id=payload.get("providerId"),
    )

    # Only a signed-in consumer can attach payments to a consumer account.
    consumer = current_actor(ROLE_CONSUMER)
    if consumer is not None:
        ensure_owner(ROLE_CONSUMER, payload.get("consumerId"))

    client = pg_client_from_config(current_app.config)
    try:
        order, gateway_payload = create_order(
            s,
            client,
            fp,
            consumer_id=consumer.id if consumer else None,
            public_base_url=current_app.config.get("PUBLIC_BASE_URL") or "",
            actor=any_actor(),
        )
    except CashfreeError as e:
        current_app.logger.error(
            "Order creation failed (fee_plan_id=%s request_id=%s): %s", fp.id, getattr(g, "request_id", None), e.message
        )
        return json_error(e.message or "Failed to create order", 500)
    s.commit()
    current_app.logger.info("Order %s opened for fee plan %s", order.id, fp.id)
    return json_ok(gateway_payload, 201)


@bp.get("/verify-order")
def verify_order_route():
    order_id = (request.args.get("orderId") or "").strip()
    if not order_id:
        return json_error("Order ID is required", 400)

    s = db_session()
    try:
        result = verify_order(
            s,
            pg_client_from_config(current_app.config),
            invoice_client_from_config(current_app.config),
            order_id,
        )
    except CashfreeError as e:
        current_app.logger.error("Order verification failed (order_id=%s): %s", order_id, e.message)
        return json_error(e.message or "Failed to verify order", 500)
    s.commit()
    invalidate_dashboard(dashboard_cache(), result["order"]["feePlan"]["provider"]["id"])
    return json_ok(result)
