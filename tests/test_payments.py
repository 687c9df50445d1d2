"""Tests for gateway order creation and reconciliation (gateway and receipt clients are faked)."""
from datetime import timedelta
from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from app.feebook import create_app
from app.feebook.db import session_scope
from app.feebook.models import Base
from app.feebook.modules.consumers.models import Consumer
from app.feebook.modules.fee_plans.models import FeePlan
from app.feebook.modules.members.models import Member
from app.feebook.modules.payments.cashfree_client import CashfreeError, CashfreePGClient
from app.feebook.modules.payments.invoice_client import InvoiceSuiteClient, InvoiceSuiteError
from app.feebook.modules.payments.models import Order, Transaction
from app.feebook.modules.payments.service import build_order_request, new_order_id
from app.feebook.modules.providers.models import Provider
from app.feebook.utils import utcnow


class FakePG:
    def __init__(self):
        self.created = []
        self.order_status = "PAID"
        self.payments = [
            {
                "cf_payment_id": 9001,
                "payment_amount": 1500,
                "payment_currency": "INR",
                "payment_status": "SUCCESS",
                "payment_time": "2024-05-02T10:15:00+05:30",
                "payment_message": "Transaction successful",
                "bank_reference": "BR123",
                "payment_group": "upi",
                "payment_method": {"upi": {"upi_id": "asha@upi"}},
                "payment_gateway_details": {"gateway_name": "CASHFREE"},
            }
        ]
        self.fail_create = None

    def create_order(self, body):
        if self.fail_create:
            raise CashfreeError(self.fail_create, status_code=400)
        self.created.append(body)
        return {
            "order_id": body["order_id"],
            "cf_order_id": 5550001,
            "order_amount": body["order_amount"],
            "order_currency": "INR",
            "order_status": "ACTIVE",
            "payment_session_id": "session_abc",
            "order_expiry_time": "2030-01-01T00:00:00+05:30",
            "order_tags": body["order_tags"],
            "order_note": body["order_note"],
        }

    def fetch_order(self, order_id):
        body = self.created[-1]
        return {
            "order_id": order_id,
            "cf_order_id": 5550001,
            "order_status": self.order_status,
            "order_tags": body["order_tags"],
            "order_note": body["order_note"],
        }

    def fetch_order_payments(self, order_id):
        return list(self.payments)


class FakeInvoices:
    configured = True

    def __init__(self):
        self.calls = []
        self.fail = None

    def generate_pdf(self, fields):
        self.calls.append(fields)
        if self.fail:
            raise InvoiceSuiteError(self.fail)
        return f"https://receipts.example.com/{fields['filename']}.pdf"


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("OTP_DELIVERY", "log")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://feebook.example.com/")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        org = Provider(
            name="Greenfield School",
            email="org@example.com",
            phone="9000000001",
            password_hash=generate_password_hash("pw"),
            code="GRNFLD",
            category="SCHOOL",
            is_verified=True,
        )
        s.add(org)
        s.flush()
        m = Member(provider_id=org.id, unique_id="S1", first_name="Asha", last_name="Rao", phone="9876543210", email="asha@example.com")
        s.add(m)
        s.flush()
        s.add(FeePlan(provider_id=org.id, member_id=m.id, name="Term 1", amount=Decimal("1500"), due_date=utcnow() + timedelta(days=5)))
        s.add(Consumer(phone="9111111111", password_hash=generate_password_hash("pw")))

    pg = FakePG()
    invoices = FakeInvoices()
    monkeypatch.setattr("app.feebook.modules.payments.api.pg_client_from_config", lambda config: pg)
    monkeypatch.setattr("app.feebook.modules.payments.api.invoice_client_from_config", lambda config: invoices)
    app.extensions["test_pg"] = pg
    app.extensions["test_invoices"] = invoices

    return app.test_client()


def _csrf(client):
    return {"X-CSRF-Token": client.get("/api/v1/auth/csrf").json["data"]["csrfToken"]}


def _plan_ids(client):
    with session_scope(client.application) as s:
        fp = s.query(FeePlan).one()
        return {"feePlanId": fp.id, "memberId": fp.member_id, "providerId": fp.provider_id}


def _create_order(client, headers=None, **overrides):
    body = _plan_ids(client)
    body.update(overrides)
    return client.post("/api/v1/pg/create-order", json=body, headers=headers or _csrf(client))


def test_order_id_format():
    order_id = new_order_id()
    assert order_id.startswith("fb_")
    assert len(order_id) == 27
    assert new_order_id() != order_id


def test_build_order_request(client):
    with session_scope(client.application) as s:
        fp = s.query(FeePlan).one()
        body = build_order_request(fp, order_id="fb_x", consumer_id=None, public_base_url="https://feebook.example.com/")
    assert body["order_amount"] == 1500.0
    assert body["order_meta"]["return_url"] == "https://feebook.example.com/pay-direct/verify?orderId={order_id}"
    assert body["customer_details"]["customer_email"] == "asha@example.com"
    assert body["order_note"] == "Term 1 (S1)"
    assert body["order_tags"]["consumerId"] == ""


def test_create_order_anonymous(client):
    r = _create_order(client)
    assert r.status_code == 201
    assert r.json["data"]["payment_session_id"] == "session_abc"
    with session_scope(client.application) as s:
        order = s.query(Order).one()
        assert order.external_order_id == "5550001"
        assert order.status == "ACTIVE"
        assert order.amount == Decimal("1500.00")


def test_create_order_not_found_and_paid(client):
    ids = _plan_ids(client)
    r = _create_order(client, memberId=ids["memberId"] + 1)
    assert r.status_code == 404
    assert r.json["error"] == "Fee Plan not found"

    with session_scope(client.application) as s:
        s.get(FeePlan, ids["feePlanId"]).status = "PAID"
    r = _create_order(client)
    assert r.status_code == 400
    assert r.json["error"] == "Fee Plan is already paid"


def test_create_order_gateway_error(client):
    client.application.extensions["test_pg"].fail_create = "order_amount : invalid value"
    r = _create_order(client)
    assert r.status_code == 500
    assert r.json["error"] == "order_amount : invalid value"
    with session_scope(client.application) as s:
        assert s.query(Order).count() == 0


def test_create_order_consumer_id_comes_from_session(client):
    client.post("/api/v1/auth/consumer/login", json={"phone": "9111111111", "password": "pw"})
    with session_scope(client.application) as s:
        consumer_id = s.query(Consumer).one().id
    r = _create_order(client, consumerId=consumer_id)
    assert r.status_code == 201
    assert client.application.extensions["test_pg"].created[-1]["order_tags"]["consumerId"] == str(consumer_id)

    r = _create_order(client, consumerId=consumer_id + 100)
    assert r.status_code == 403


def test_verify_order_marks_plan_paid_and_stores_payment(client):
    client.post("/api/v1/auth/consumer/login", json={"phone": "9111111111", "password": "pw"})
    order_id = _create_order(client).json["data"]["order_id"]

    r = client.get(f"/api/v1/pg/verify-order?orderId={order_id}")
    assert r.status_code == 200
    data = r.json["data"]
    assert data["order"]["status"] == "PAID"
    assert data["order"]["feePlan"]["status"] == "PAID"
    assert [p["externalPaymentId"] for p in data["payments"]] == ["9001"]
    assert data["payments"][0]["paymentTime"] == "2024-05-02T04:45:00"
    assert data["receipt"] == "https://receipts.example.com/5550001-9001.pdf"

    fields = client.application.extensions["test_invoices"].calls[0]
    assert fields["p1"] == "Greenfield School"
    assert fields["p10"] == "S1"
    assert fields["p13"] == "Term 1"

    with session_scope(client.application) as s:
        t = s.query(Transaction).one()
        assert t.order_id == order_id
        assert t.consumer_id == s.query(Consumer).one().id
        assert t.payment_group == "upi"

    history = client.get("/api/v1/consumer/payment-history").json["data"]
    assert history["summary"]["successfulAmount"] == 1500.0


def test_verify_order_is_idempotent(client):
    order_id = _create_order(client).json["data"]["order_id"]
    client.get(f"/api/v1/pg/verify-order?orderId={order_id}")
    r = client.get(f"/api/v1/pg/verify-order?orderId={order_id}")
    assert r.status_code == 200
    assert [p["externalPaymentId"] for p in r.json["data"]["payments"]] == ["9001"]
    assert len(client.application.extensions["test_invoices"].calls) == 1
    with session_scope(client.application) as s:
        assert s.query(Transaction).count() == 1


def test_verify_active_order_keeps_plan_due(client):
    pg = client.application.extensions["test_pg"]
    pg.order_status = "ACTIVE"
    pg.payments = []
    order_id = _create_order(client).json["data"]["order_id"]
    r = client.get(f"/api/v1/pg/verify-order?orderId={order_id}")
    assert r.status_code == 200
    assert r.json["data"]["order"]["feePlan"]["status"] == "DUE"
    assert r.json["data"]["payments"] == []
    assert r.json["data"]["receipt"] is None


def test_verify_order_errors(client):
    assert client.get("/api/v1/pg/verify-order").status_code == 400
    r = client.get("/api/v1/pg/verify-order?orderId=fb_missing")
    assert r.status_code == 404
    assert r.json["error"] == "Order not found"


def test_verified_payment_shows_on_provider_dashboard(client):
    order_id = _create_order(client).json["data"]["order_id"]
    client.post("/api/v1/auth/provider/login", json={"email": "org@example.com", "password": "pw"})
    assert client.get("/api/v1/provider/dashboard").json["data"]["stats"]["totalRevenue"] == 0.0

    client.get(f"/api/v1/pg/verify-order?orderId={order_id}")
    r = client.get("/api/v1/provider/dashboard")
    assert r.json["cached"] is False
    assert r.json["data"]["stats"]["totalRevenue"] == 1500.0


def test_receipt_failure_does_not_block_verification(client):
    client.application.extensions["test_invoices"].fail = "Failed to generate invoice: template missing"
    order_id = _create_order(client).json["data"]["order_id"]
    r = client.get(f"/api/v1/pg/verify-order?orderId={order_id}")
    assert r.status_code == 200
    assert r.json["data"]["order"]["feePlan"]["status"] == "PAID"
    assert r.json["data"]["receipt"] is None
    with session_scope(client.application) as s:
        assert s.query(Transaction).one().external_payment_id == "9001"
        assert s.query(FeePlan).one().receipt is None


def test_unknown_payment_status_is_stored_as_pending(client):
    pg = client.application.extensions["test_pg"]
    pg.order_status = "ACTIVE"
    pg.payments = [dict(pg.payments[0], payment_status="SOMETHING_NEW")]
    order_id = _create_order(client).json["data"]["order_id"]
    r = client.get(f"/api/v1/pg/verify-order?orderId={order_id}")
    assert r.status_code == 200
    assert r.json["data"]["payments"][0]["status"] == "PENDING"


def test_unknown_order_status_is_a_gateway_error(client):
    client.application.extensions["test_pg"].order_status = "REFUNDED"
    order_id = _create_order(client).json["data"]["order_id"]
    r = client.get(f"/api/v1/pg/verify-order?orderId={order_id}")
    assert r.status_code == 502
    with session_scope(client.application) as s:
        assert s.get(Order, order_id).status == "ACTIVE"
        assert s.query(FeePlan).one().status == "DUE"
        assert s.query(Transaction).count() == 0


def test_cashfree_timeout_is_wrapped(monkeypatch):
    calls = []

    def timing_out(req, timeout=None):
        calls.append(req.full_url)
        raise TimeoutError("The read operation timed out")

    monkeypatch.setattr("urllib.request.urlopen", timing_out)
    monkeypatch.setattr("app.feebook.modules.payments.cashfree_client.time.sleep", lambda seconds: None)
    pg = CashfreePGClient(base_url="https://sandbox.cashfree.com/pg", client_id="id", client_secret="secret")
    with pytest.raises(CashfreeError, match="after retries"):
        pg.fetch_order("fb_1")
    assert len(calls) == 3


def test_invoice_timeout_is_wrapped(monkeypatch):
    def timing_out(req, timeout=None):
        raise TimeoutError("The read operation timed out")

    monkeypatch.setattr("urllib.request.urlopen", timing_out)
    invoices = InvoiceSuiteClient(endpoint="https://invoices.example.com", api_key="k")
    with pytest.raises(InvoiceSuiteError, match="unreachable"):
        invoices.generate_pdf({"filename": "x"})
