"""Tests for consumer memberships, dashboard, payment history and profile."""
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

    now = utcnow()
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
        unverified = Provider(
            name="Pending School",
            email="pending@example.com",
            phone="9000000003",
            password_hash=generate_password_hash("pw"),
            code="PNDING",
            category="SCHOOL",
            is_verified=False,
        )
        s.add_all([org, unverified])
        s.flush()
        m = Member(provider_id=org.id, unique_id="S1", first_name="Asha", last_name="Rao", phone="9876543210")
        s.add(m)
        s.add(Member(provider_id=unverified.id, unique_id="P1", first_name="Bala", phone="9876500000"))
        s.flush()
        s.add_all(
            [
                FeePlan(provider_id=org.id, member_id=m.id, name="Term 1", amount=Decimal("500"), due_date=now - timedelta(days=2)),
                FeePlan(provider_id=org.id, member_id=m.id, name="Term 2", amount=Decimal("300"), due_date=now + timedelta(days=3)),
                FeePlan(provider_id=org.id, member_id=m.id, name="Term 3", amount=Decimal("700"), due_date=now + timedelta(days=40)),
            ]
        )
        s.add_all(
            [
                Consumer(phone="9111111111", email="parent@example.com", first_name="Anil", password_hash=generate_password_hash("pw")),
                Consumer(phone="9222222222", email="other@example.com", password_hash=generate_password_hash("pw")),
            ]
        )

    return app.test_client()


def _login(client, phone="9111111111"):
    client.post("/api/v1/auth/consumer/login", json={"phone": phone, "password": "pw"})
    return {"X-CSRF-Token": client.get("/api/v1/auth/csrf").json["data"]["csrfToken"]}


def _ids(client):
    with session_scope(client.application) as s:
        org = s.query(Provider).filter(Provider.code == "GRNFLD").one()
        pending = s.query(Provider).filter(Provider.code == "PNDING").one()
        consumer = s.query(Consumer).filter(Consumer.phone == "9111111111").one()
        return org.id, pending.id, consumer.id


def _claim(client, h):
    return client.post("/api/v1/consumer/memberships", json={"providerCode": "grnfld", "memberUniqueId": "S1"}, headers=h)


def test_claim_by_provider_code(client):
    h = _login(client)
    r = _claim(client, h)
    assert r.status_code == 201
    data = r.json["data"]
    assert data["member"]["uniqueId"] == "S1"
    assert data["provider"]["code"] == "GRNFLD"
    assert data["pendingFeePlans"] == 3


def test_claim_by_provider_id(client):
    org_id, _, consumer_id = _ids(client)
    h = _login(client)
    r = client.post(
        "/api/v1/consumer/claim-membership",
        json={"consumerId": consumer_id, "providerId": org_id, "memberUniqueId": "S1"},
        headers=h,
    )
    assert r.status_code == 201


def test_claim_twice_conflicts(client):
    h = _login(client)
    first = _claim(client, h).json["data"]
    r = _claim(client, h)
    assert r.status_code == 409
    assert r.json["error"] == "Membership already claimed"
    assert r.json["membershipId"] == first["id"]


def test_claim_errors(client):
    org_id, pending_id, _ = _ids(client)
    h = _login(client)
    r = client.post("/api/v1/consumer/claim-membership", json={"providerId": pending_id, "memberUniqueId": "P1"}, headers=h)
    assert r.status_code == 404
    assert r.json["error"] == "Provider not found or not verified"
    r = client.post("/api/v1/consumer/claim-membership", json={"providerId": org_id, "memberUniqueId": "S404"}, headers=h)
    assert r.status_code == 404
    assert r.json["error"] == "Member not found with the provided unique ID"
    r = client.post("/api/v1/consumer/claim-membership", json={"providerId": org_id}, headers=h)
    assert r.status_code == 400


def test_claim_for_another_consumer_is_forbidden(client):
    org_id, _, consumer_id = _ids(client)
    h = _login(client, "9222222222")
    r = client.post(
        "/api/v1/consumer/claim-membership",
        json={"consumerId": consumer_id, "providerId": org_id, "memberUniqueId": "S1"},
        headers=h,
    )
    assert r.status_code == 403


def test_two_consumers_can_claim_same_member(client):
    h = _login(client)
    assert _claim(client, h).status_code == 201
    client.post("/api/v1/auth/logout", json={})
    h = _login(client, "9222222222")
    assert _claim(client, h).status_code == 201


def test_memberships_list_and_detail(client):
    h = _login(client)
    claim = _claim(client, h).json["data"]

    r = client.get("/api/v1/consumer/memberships")
    assert r.status_code == 200
    assert len(r.json["data"]) == 1
    assert len(r.json["data"][0]["feePlans"]) == 3

    r = client.get(f"/api/v1/consumer/memberships/{claim['id']}")
    assert r.status_code == 200
    assert r.json["data"]["member"]["fullName"] == "Asha Rao"


def test_membership_detail_is_private(client):
    h = _login(client)
    claim = _claim(client, h).json["data"]
    client.post("/api/v1/auth/logout", json={})
    _login(client, "9222222222")
    assert client.get(f"/api/v1/consumer/memberships/{claim['id']}").status_code == 404


def test_memberships_simplified(client):
    h = _login(client)
    _claim(client, h)
    r = client.get("/api/v1/consumer/memberships/simplified")
    row = r.json["data"][0]
    assert row["pendingFeePlansCount"] == 3
    assert row["totalPendingAmount"] == 1500.0
    assert row["hasOverdueFees"] is True


def test_dashboard(client):
    h = _login(client)
    _claim(client, h)
    r = client.get("/api/v1/consumer/dashboard")
    assert r.status_code == 200
    stats = r.json["data"]["statistics"]
    assert stats["totalMemberships"] == 1
    assert stats["totalPendingFees"] == 3
    assert stats["overdueFees"] == 1
    assert stats["overdueAmount"] == 500.0
    assert stats["upcomingFees"] == 1
    urgent = r.json["data"]["urgentFees"]
    assert [f["name"] for f in urgent] == ["Term 1", "Term 2"]
    assert urgent[0]["isOverdue"] is True


def test_payment_history(client):
    _, _, consumer_id = _ids(client)
    with session_scope(client.application) as s:
        plans = s.query(FeePlan).order_by(FeePlan.id).all()
        now = utcnow()
        s.add_all(
            [
                Transaction(
                    fee_plan_id=plans[0].id,
                    consumer_id=consumer_id,
                    external_payment_id="cf_1",
                    amount=Decimal("500"),
                    status="SUCCESS",
                    payment_time=now - timedelta(days=1),
                ),
                Transaction(
                    fee_plan_id=plans[1].id,
                    consumer_id=consumer_id,
                    external_payment_id="cf_2",
                    amount=Decimal("300"),
                    status="FAILED",
                    payment_time=now,
                ),
            ]
        )
    _login(client)
    r = client.get("/api/v1/consumer/payment-history")
    assert r.status_code == 200
    data = r.json["data"]
    assert [t["externalPaymentId"] for t in data["transactions"]] == ["cf_2", "cf_1"]
    assert data["summary"]["successfulAmount"] == 500.0
    assert data["summary"]["failedPayments"] == 1
    assert data["pagination"]["totalCount"] == 2

    r = client.get("/api/v1/consumer/payment-history?status=SUCCESS")
    assert [t["externalPaymentId"] for t in r.json["data"]["transactions"]] == ["cf_1"]

    r = client.get("/api/v1/consumer/payment-history?startDate=not-a-date")
    assert r.status_code == 400
    assert r.json["error"] == "Invalid date range"


def test_profile_update(client):
    h = _login(client)
    r = client.get("/api/v1/consumer/profile")
    assert r.json["data"]["firstName"] == "Anil"

    r = client.put("/api/v1/consumer/profile", json={"firstName": "Anil", "lastName": "Shetty", "phone": "9000000000"}, headers=h)
    assert r.status_code == 200
    assert r.json["data"]["lastName"] == "Shetty"
    assert r.json["data"]["phone"] == "9111111111"


def test_profile_email_rules(client):
    h = _login(client)
    r = client.put("/api/v1/consumer/profile", json={"email": "bad"}, headers=h)
    assert r.status_code == 400
    r = client.put("/api/v1/consumer/profile", json={"email": "other@example.com"}, headers=h)
    assert r.status_code == 409
    assert r.json["error"] == "Email is already in use"
