from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_

from app.feebook.audit import record_event
from app.feebook.constants import (
    DEFAULT_CURRENCY,
    FEE_PLAN_PAID,
    ORDER_ACTIVE,
    ORDER_PAID,
    ORDER_STATUSES,
    TXN_FAILED_STATUSES,
    TXN_PENDING,
    TXN_STATUSES,
    TXN_SUCCESS,
)
from app.feebook.errors import ApiError
from app.feebook.modules.payments.invoice_client import InvoiceSuiteError
from app.feebook.utils import dump_json, full_name, iso, load_json, money, parse_amount, parse_datetime

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.feebook.modules.fee_plans.models import FeePlan
    from app.feebook.modules.payments.cashfree_client import CashfreePGClient
    from app.feebook.modules.payments.invoice_client import InvoiceSuiteClient
    from app.feebook.modules.payments.models import Order, Transaction

logger = logging.getLogger(__name__)

PAYMENT_METHODS = "cc,dc,upi,app,banktransfer"


def order_to_dict(o: "Order") -> dict:
    data = {
        "id": o.id,
        "externalOrderId": o.external_order_id,
        "feePlanId": o.fee_plan_id,
        "amount": money(o.amount),
        "currency": o.currency,
        "status": o.status,
        "paymentSessionId": o.payment_session_id,
        "customer": load_json(o.customer_json),
        "orderMeta": load_json(o.order_meta_json),
        "orderTags": load_json(o.order_tags_json),
        "note": o.note,
        "expiryTime": iso(o.expiry_time),
        "createdAt": iso(o.created_at),
    }
    fp = o.fee_plan
    if fp is not None:
        data["feePlan"] = {
            "id": fp.id,
            "name": fp.name,
            "amount": money(fp.amount),
            "status": fp.status,
            "receipt": fp.receipt,
            "member": {
                "id": fp.member.id,
                "uniqueId": fp.member.unique_id,
                "firstName": fp.member.first_name,
                "lastName": fp.member.last_name,
            },
            "provider": {"id": fp.provider.id, "name": fp.provider.name, "code": fp.provider.code},
        }
    return data


def transaction_to_dict(t: "Transaction") -> dict:
    return {
        "id": t.id,
        "orderId": t.order_id,
        "feePlanId": t.fee_plan_id,
        "consumerId": t.consumer_id,
        "externalPaymentId": t.external_payment_id,
        "amount": money(t.amount),
        "status": t.status,
        "paymentTime": iso(t.payment_time),
        "paymentCurrency": t.payment_currency,
        "paymentMessage": t.payment_message,
        "bankReference": t.bank_reference,
        "paymentGroup": t.payment_group,
        "paymentGateway": t.payment_gateway,
        "paymentMethod": load_json(t.payment_method_json),
        "errorDetails": load_json(t.error_details_json),
        "source": t.source,
        "createdAt": iso(t.created_at),
    }


def _parse_optional_id(raw: Any) -> int | None:
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


# ---------- Orders ----------
def find_payable_fee_plan(s: "Session", *, fee_plan_id: Any, member_id: Any, provider_id: Any) -> "FeePlan":
    from app.feebook.modules.fee_plans.models import FeePlan

    ids = [_parse_optional_id(v) for v in (fee_plan_id, member_id, provider_id)]
    fp = None
    if all(v is not None for v in ids):
        fp = (
            s.query(FeePlan)
            .filter(FeePlan.id == ids[0], FeePlan.member_id == ids[1], FeePlan.provider_id == ids[2])
            .one_or_none()
        )
    if fp is None:
        raise ApiError(404, "Fee Plan not found")
    if fp.status == FEE_PLAN_PAID or fp.is_offline_paid:
        raise ApiError(400, "Fee Plan is already paid")
    return fp


def new_order_id() -> str:
    return f"fb_{uuid.uuid4().hex[:24]}"


def build_order_request(fp: "FeePlan", *, order_id: str, consumer_id: Any, public_base_url: str) -> dict:
    member = fp.member
    customer = {
        "customer_id": str(member.id),
        "customer_name": full_name(member.first_name, member.middle_name, member.last_name),
        "customer_phone": member.phone,
    }
    if member.email:
        customer["customer_email"] = member.email
    return {
        "order_id": order_id,
        "order_amount": money(fp.amount),
        "order_currency": DEFAULT_CURRENCY,
        "customer_details": customer,
        "order_meta": {
            "return_url": f"{public_base_url.rstrip('/')}/pay-direct/verify?orderId={{order_id}}",
            "payment_methods": PAYMENT_METHODS,
        },
        "order_note": f"{fp.name} ({member.unique_id})",
        "order_tags": {
            "feePlanId": str(fp.id),
            "memberId": str(fp.member_id),
            "providerId": str(fp.provider_id),
            "consumerId": str(consumer_id or ""),
        },
    }


def create_order(
    s: "Session",
    client: "CashfreePGClient",
    fp: "FeePlan",
    *,
    consumer_id: Any = None,
    public_base_url: str,
    actor: Any = None,
) -> tuple["Order", dict]:
    """Open a gateway order for `fp` and persist it. Returns (order, gateway payload)."""
    from app.feebook.modules.payments.models import Order

    body = build_order_request(fp, order_id=new_order_id(), consumer_id=consumer_id, public_base_url=public_base_url)
    payload = client.create_order(body)

    order = Order(
        id=str(payload.get("order_id") or body["order_id"]),
        external_order_id=str(payload["cf_order_id"]) if payload.get("cf_order_id") is not None else None,
        fee_plan_id=fp.id,
        amount=parse_amount(payload.get("order_amount")) or fp.amount,
        currency=payload.get("order_currency") or DEFAULT_CURRENCY,
        status=payload.get("order_status") or ORDER_ACTIVE,
        payment_session_id=payload.get("payment_session_id"),
        customer_json=dump_json(payload.get("customer_details") or body["customer_details"]),
        order_meta_json=dump_json(payload.get("order_meta") or body["order_meta"]),
        order_tags_json=dump_json(payload.get("order_tags") or body["order_tags"]),
        note=payload.get("order_note") or body["order_note"],
        expiry_time=_gateway_time(payload.get("order_expiry_time")),
    )
    s.add(order)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="payment.order_create",
        entity_type="Order",
        entity_id=order.id,
        metadata={"fee_plan_id": fp.id, "amount": str(order.amount), "external_order_id": order.external_order_id},
    )
    return order, payload


def _gateway_time(raw: Any) -> datetime | None:
    try:
        return parse_datetime(raw)
    except ValueError:
        logger.warning("Unparseable gateway timestamp: %r", raw)
        return None


def _payment_status(raw: Any) -> str:
    status = str(raw or TXN_PENDING).strip().upper()
    if status not in TXN_STATUSES:
        logger.warning("Unknown gateway payment status %r; storing as %s", raw, TXN_PENDING)
        return TXN_PENDING
    return status


def _transaction_from_payment(payment: dict, *, order_id: str, fee_plan_id: int, consumer_id: int | None) -> "Transaction":
    from app.feebook.modules.payments.models import Transaction

    offers = payment.get("payment_offers")
    if offers is not None and not isinstance(offers, list):
        offers = [offers]
    gateway_details = payment.get("payment_gateway_details") or None
    return Transaction(
        order_id=order_id,
        fee_plan_id=fee_plan_id,
        consumer_id=consumer_id,
        external_payment_id=str(payment.get("cf_payment_id") or ""),
        amount=parse_amount(payment.get("payment_amount")) or Decimal("0"),
        status=_payment_status(payment.get("payment_status")),
        payment_time=_gateway_time(payment.get("payment_time")),
        payment_currency=payment.get("payment_currency") or DEFAULT_CURRENCY,
        payment_message=payment.get("payment_message"),
        bank_reference=payment.get("bank_reference"),
        payment_group=payment.get("payment_group"),
        payment_gateway=(gateway_details or {}).get("gateway_name") or "CASHFREE",
        source="GETAPI",
        payment_method_json=dump_json(payment.get("payment_method")),
        payment_surcharge_json=dump_json(payment.get("payment_surcharge")),
        gateway_details_json=dump_json(gateway_details),
        payment_offers_json=dump_json(offers or []),
        error_details_json=dump_json(payment.get("error_details")),
    )


def receipt_fields(order: "Order", gateway_order: dict, payment: dict) -> dict[str, Any]:
    fp = order.fee_plan
    provider, member = fp.provider, fp.member
    paid_at = _gateway_time(payment.get("payment_time"))
    return {
        "filename": f"{gateway_order.get('cf_order_id')}-{payment.get('cf_payment_id')}",
        "p1": provider.name,
        "p2": provider.email,
        "p3": provider.phone,
        "p4": f"Code: {provider.code}",
        "p5": str(gateway_order.get("cf_order_id") or ""),
        "p6": str(payment.get("cf_payment_id") or ""),
        "p7": paid_at.strftime("%a %b %d %Y") if paid_at else "",
        "p8": ", ".join((payment.get("payment_method") or {}).keys()).upper(),
        "p9": f"{member.first_name} {member.last_name or ''}".strip(),
        "p10": member.unique_id,
        "p11": member.category or "",
        "p12": member.phone,
        "p13": fp.name,
        "p14": str(payment.get("order_amount") or payment.get("payment_amount") or money(fp.amount)),
        "note": gateway_order.get("order_note") or "",
    }


def verify_order(
    s: "Session",
    client: "CashfreePGClient",
    invoices: "InvoiceSuiteClient",
    order_id: str,
) -> dict:
    """
    Reconcile a gateway order: copy its status, mark the fee plan PAID when the order is PAID,
    store new payment attempts, and render a receipt once.
    """
    from app.feebook.modules.consumers.models import Consumer
    from app.feebook.modules.payments.models import Order, Transaction

    order = s.get(Order, order_id)
    if order is None:
        raise ApiError(404, "Order not found")

    gateway_order = client.fetch_order(order_id)
    status = str(gateway_order.get("order_status") or "").strip().upper()
    if not status:
        raise ApiError(502, "Gateway returned an order without a status")
    if status not in ORDER_STATUSES:
        raise ApiError(502, f"Gateway returned an unknown order status: {status}")

    old_status = order.status
    order.status = status
    fp = order.fee_plan
    if status == ORDER_PAID and fp.status != FEE_PLAN_PAID:
        fp.status = FEE_PLAN_PAID

    tags = gateway_order.get("order_tags") or load_json(order.order_tags_json) or {}
    consumer_id = _parse_optional_id(tags.get("consumerId"))
    if consumer_id is not None and s.get(Consumer, consumer_id) is None:
        consumer_id = None
    payments = client.fetch_order_payments(order_id)

    incoming = {str(p.get("cf_payment_id")): p for p in payments if p.get("cf_payment_id") is not None}
    existing = set()
    if incoming:
        existing = {
            pid
            for (pid,) in s.query(Transaction.external_payment_id).filter(
                Transaction.external_payment_id.in_(list(incoming))
            )
        }
    created = []
    for pid, payment in incoming.items():
        if pid in existing:
            continue
        t = _transaction_from_payment(payment, order_id=order.id, fee_plan_id=fp.id, consumer_id=consumer_id)
        s.add(t)
        created.append(t)
    s.flush()

    if not created:
        created = (
            s.query(Transaction)
            .filter(Transaction.order_id == order.id)
            .order_by(Transaction.payment_time.desc(), Transaction.id.desc())
            .all()
        )

    if not fp.receipt and status == ORDER_PAID and payments and invoices.configured:
        try:
            fp.receipt = invoices.generate_pdf(receipt_fields(order, gateway_order, payments[0]))
        except InvoiceSuiteError as e:
            logger.error("Receipt generation failed for order %s: %s", order.id, e)

    record_event(
        s,
        actor=None,
        action="payment.order_verify",
        entity_type="Order",
        entity_id=order.id,
        metadata={"old_status": old_status, "new_status": status, "payments_seen": len(incoming)},
    )
    return {
        "order": order_to_dict(order),
        "payments": [transaction_to_dict(t) for t in created],
        "receipt": fp.receipt,
    }


# ---------- Listings ----------
def _payment_stats(q) -> dict:
    from app.feebook.modules.payments.models import Transaction

    rows = (
        q.with_entities(Transaction.status, func.count(Transaction.id), func.coalesce(func.sum(Transaction.amount), 0))
        .group_by(Transaction.status)
        .all()
    )
    by_status = {st: (int(n), money(amt)) for st, n, amt in rows}
    return {
        "totalAmount": by_status.get(TXN_SUCCESS, (0, 0.0))[1],
        "successful": by_status.get(TXN_SUCCESS, (0, 0.0))[0],
        "pending": by_status.get(TXN_PENDING, (0, 0.0))[0],
        "failed": sum(by_status.get(st, (0, 0.0))[0] for st in TXN_FAILED_STATUSES),
    }


def provider_payments(
    s: "Session",
    provider_id: int,
    *,
    page: int,
    limit: int,
    status: str = "",
    start: datetime | None = None,
    end: datetime | None = None,
    search: str = "",
) -> tuple[list[dict], int, dict]:
    """Transactions on the provider's fee plans. Stats cover the whole filtered set, not just the page."""
    from app.feebook.modules.fee_plans.models import FeePlan
    from app.feebook.modules.members.models import Member
    from app.feebook.modules.payments.models import Transaction

    q = (
        s.query(Transaction)
        .join(FeePlan, Transaction.fee_plan_id == FeePlan.id)
        .join(Member, FeePlan.member_id == Member.id)
        .filter(FeePlan.provider_id == provider_id)
    )
    if status and status.lower() != "all":
        q = q.filter(Transaction.status == status.upper())
    if start is not None:
        q = q.filter(Transaction.payment_time >= start)
    if end is not None:
        q = q.filter(Transaction.payment_time <= end)
    if search.strip():
        like = f"%{search.strip()}%"
        q = q.filter(
            or_(
                Transaction.external_payment_id.ilike(like),
                Transaction.bank_reference.ilike(like),
                Member.first_name.ilike(like),
                Member.last_name.ilike(like),
                Member.unique_id.ilike(like),
            )
        )

    total = q.count()
    rows = (
        q.order_by(Transaction.payment_time.desc(), Transaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    items = []
    for t in rows:
        data = transaction_to_dict(t)
        fp = t.fee_plan
        data["feePlan"] = {"id": fp.id, "name": fp.name, "amount": money(fp.amount)}
        data["member"] = {
            "id": fp.member.id,
            "uniqueId": fp.member.unique_id,
            "name": full_name(fp.member.first_name, fp.member.middle_name, fp.member.last_name),
        }
        items.append(data)
    return items, total, _payment_stats(q)


def all_transactions(s: "Session", *, page: int, limit: int) -> tuple[list[dict], int]:
    from app.feebook.modules.payments.models import Transaction

    q = s.query(Transaction)
    total = q.count()
    rows = q.order_by(Transaction.created_at.desc(), Transaction.id.desc()).offset((page - 1) * limit).limit(limit).all()
    items = []
    for t in rows:
        data = transaction_to_dict(t)
        data["feePlan"] = {"id": t.fee_plan.id, "name": t.fee_plan.name}
        data["provider"] = {"id": t.fee_plan.provider.id, "name": t.fee_plan.provider.name}
        items.append(data)
    return items, total
