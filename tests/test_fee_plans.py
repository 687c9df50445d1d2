"""Tests for fee plan CRUD, offline payment marking and the public fee plan views."""
from datetime import timedelta
from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from app.feebook import create_app
from app.feebook.db import session_scope
from app.feebook.models import AuditEvent, Base
from app.feebook.modules.fee_plans.models import FeePlan
from app.feebook.modules.members.models import Member
from app.feebook.modules.payments.models import Transaction
from app.feebook.modules.providers.models import Provider
from app.feebook.utils import utcnow


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("OTP_DELIVERY", "log")
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
        other = Provider(
            name="Hilltop School",
            email="hill@example.com",
            phone="9000000002",
            password_hash=generate_password_hash("pw"),
            code="HILLTP",
            category="SCHOOL",
            is_verified=True,
        )
        s.add_all([org, other])
        s.flush()
        s.add(Member(provider_id=org.id, unique_id="S1", first_name="Asha", last_name="Rao", phone="9876543210"))
        s.add(Member(provider_id=other.id, unique_id="S1", first_name="Bala", last_name="K", phone="9876500000"))

    return app.test_client()


def _login(client, email="org@example.com"):
    client.post("/api/v1/auth/provider/login", json={"email": email, "password": "pw"})
    return {"X-CSRF-Token": client.get("/api/v1/auth/csrf").json["data"]["csrfToken"]}


def _due(days=10):
    return (utcnow() + timedelta(days=days)).replace(microsecond=0).isoformat()


def _create(client, h, **overrides):
    body = {"memberId": "S1", "name": "Term 1", "amount": 1500, "dueDate": _due()}
    body.update(overrides)
    return client.post("/api/v1/provider/feeplan", json={"feePlan": body}, headers=h)


def test_create_and_list_fee_plans(client):
    h = _login(client)
    r = _create(client, h, description="Tuition")
    assert r.status_code == 201
    fp = r.json["data"]
    assert fp["status"] == "DUE"
    assert fp["amount"] == 1500.0
    assert fp["isOverdue"] is False
    assert fp["description"] == "Tuition"

    r = client.get("/api/v1/provider/feeplan?memberId=S1")
    assert r.status_code == 200
    assert [p["id"] for p in r.json["data"]] == [fp["id"]]


def test_create_accepts_member_unique_id_alias(client):
    h = _login(client)
    r = client.post(
        "/api/v1/provider/feeplan",
        json={"memberUniqueId": "S1", "name": "Bus", "amount": "250.50", "dueDate": _due()},
        headers=h,
    )
    assert r.status_code == 201
    assert r.json["data"]["amount"] == 250.5


def test_create_validation(client):
    h = _login(client)
    r = _create(client, h, amount=0)
    assert r.status_code == 400
    assert r.json["error"] == "Amount must be a positive number."
    r = _create(client, h, dueDate="next week")
    assert r.json["error"] == "Invalid due date."
    r = _create(client, h, memberId="")
    assert r.json["error"] == "Member ID is required."
    r = _create(client, h, memberId="S404")
    assert r.status_code == 404


def test_oversized_amounts_are_rejected(client):
    h = _login(client)
    r = _create(client, h, amount="1e30")
    assert r.status_code == 400
    assert r.json["error"] == "Amount must be a positive number."
    r = _create(client, h, amount="10000000000")
    assert r.status_code == 400
    assert r.json["error"] == "Amount cannot exceed 9999999999.99."

    fp = _create(client, h).json["data"]
    r = client.put("/api/v1/provider/feeplan", json={"id": fp["id"], "amount": "1e30"}, headers=h)
    assert r.status_code == 400
    with session_scope(client.application) as s:
        assert s.get(FeePlan, fp["id"]).amount == Decimal("1500.00")


def test_list_requires_member(client):
    _login(client)
    assert client.get("/api/v1/provider/feeplan").status_code == 400
    assert client.get("/api/v1/provider/feeplan?memberId=S404").status_code == 404


def test_update_fee_plan_records_changes(client):
    h = _login(client)
    fp = _create(client, h).json["data"]
    r = client.put("/api/v1/provider/feeplan", json={"feePlan": {"id": fp["id"], "amount": 1750, "name": "Term 1 (revised)"}}, headers=h)
    assert r.status_code == 200
    assert r.json["data"]["amount"] == 1750.0
    assert r.json["data"]["name"] == "Term 1 (revised)"

    with session_scope(client.application) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "fee_plan.edit").one()
        assert '"amount"' in ev.metadata_json


def test_update_rejects_invalid_status(client):
    h = _login(client)
    fp = _create(client, h).json["data"]
    r = client.put("/api/v1/provider/feeplan", json={"id": fp["id"], "status": "LATE"}, headers=h)
    assert r.status_code == 400


def test_other_provider_cannot_touch_fee_plan(client):
    h = _login(client)
    fp = _create(client, h).json["data"]
    client.post("/api/v1/auth/logout", json={"role": "provider"})

    h = _login(client, "hill@example.com")
    r = client.put("/api/v1/provider/feeplan", json={"id": fp["id"], "amount": 1}, headers=h)
    assert r.status_code == 404
    assert r.json["error"] == "Fee plan not found or you don't have permission to modify it"
    r = client.delete(f"/api/v1/provider/feeplan?id={fp['id']}", headers=h)
    assert r.status_code == 404


def test_delete_fee_plan(client):
    h = _login(client)
    fp = _create(client, h).json["data"]
    r = client.delete("/api/v1/provider/feeplan", json={"feePlanId": fp["id"]}, headers=h)
    assert r.status_code == 200
    with session_scope(client.application) as s:
        assert s.get(FeePlan, fp["id"]) is None


def test_delete_refuses_paid_online_plan(client):
    h = _login(client)
    fp = _create(client, h).json["data"]
    with session_scope(client.application) as s:
        s.add(
            Transaction(
                fee_plan_id=fp["id"],
                external_payment_id="cf_pay_9",
                amount=Decimal("1500"),
                status="SUCCESS",
                payment_time=utcnow(),
            )
        )
    r = client.delete(f"/api/v1/provider/feeplan?id={fp['id']}", headers=h)
    assert r.status_code == 400


def test_mark_paid_toggles_offline_payment(client):
    h = _login(client)
    fp = _create(client, h).json["data"]
    r = client.post("/api/v1/provider/feeplan/mark-paid", json={"feePlanId": fp["id"], "isOfflinePaid": True}, headers=h)
    assert r.status_code == 200
    assert r.json["data"]["status"] == "PAID"
    assert r.json["data"]["isOfflinePaid"] is True
    assert r.json["message"] == "Fee plan marked as paid successfully"

    r = client.post("/api/v1/provider/feeplan/mark-paid", json={"feePlanId": fp["id"], "isOfflinePaid": False}, headers=h)
    assert r.json["data"]["status"] == "DUE"
    assert r.json["data"]["isOfflinePaid"] is False


def test_mark_paid_requires_boolean(client):
    h = _login(client)
    fp = _create(client, h).json["data"]
    r = client.post("/api/v1/provider/feeplan/mark-paid", json={"feePlanId": fp["id"], "isOfflinePaid": "yes"}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "isOfflinePaid must be a boolean"


def test_mark_paid_refuses_online_paid_plan(client):
    h = _login(client)
    fp = _create(client, h).json["data"]
    with session_scope(client.application) as s:
        s.get(FeePlan, fp["id"]).status = "PAID"
    r = client.post("/api/v1/provider/feeplan/mark-paid", json={"feePlanId": fp["id"], "isOfflinePaid": False}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "This fee has already been paid online and cannot be modified"


def test_overdue_flag(client):
    h = _login(client)
    r = _create(client, h, dueDate=_due(-2))
    assert r.json["data"]["isOverdue"] is True


# ---------- Public ----------
def test_public_fee_plan_view(client):
    h = _login(client)
    fp = _create(client, h).json["data"]
    client.post("/api/v1/auth/logout", json={})

    r = client.get(f"/api/v1/fee-plans/{fp['id']}")
    assert r.status_code == 200
    assert r.json["data"]["member"]["uniqueId"] == "S1"
    assert r.json["data"]["provider"]["code"] == "GRNFLD"
    assert client.get("/api/v1/fee-plans/999").status_code == 404


def test_public_member_view_lists_upcoming_plans(client):
    h = _login(client)
    soon = _create(client, h, name="Soon").json["data"]
    _create(client, h, name="Later", dueDate=_due(60))
    member_id = soon["memberId"]
    client.post("/api/v1/auth/logout", json={})

    r = client.get(f"/api/v1/member?memberId={member_id}")
    assert r.status_code == 200
    assert r.json["data"]["provider"]["name"] == "Greenfield School"
    assert [p["name"] for p in r.json["data"]["feePlans"]] == ["Soon"]

    assert client.get("/api/v1/member").status_code == 400
    assert client.get("/api/v1/member?memberId=abc").status_code == 404
