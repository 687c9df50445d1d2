"""Tests for the provider directory, dashboard, members, KYC and wallet."""
import io
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
from app.feebook.modules.providers.models import BankAccount, Provider
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
        s.add_all(
            [
                Provider(
                    name="Greenfield School",
                    email="org@example.com",
                    phone="9000000001",
                    password_hash=generate_password_hash("pw"),
                    code="GRNFLD",
                    category="SCHOOL",
                    region="Karnataka",
                    is_verified=True,
                ),
                Provider(
                    name="Hilltop School",
                    email="hill@example.com",
                    phone="9000000002",
                    password_hash=generate_password_hash("pw"),
                    code="HILLTP",
                    category="SCHOOL",
                    is_verified=True,
                ),
                Provider(
                    name="Pending School",
                    email="pending@example.com",
                    phone="9000000003",
                    password_hash=generate_password_hash("pw"),
                    code="PNDING",
                    category="SCHOOL",
                    is_verified=False,
                ),
            ]
        )

    return app.test_client()


def _login(client, email="org@example.com"):
    client.post("/api/v1/auth/provider/login", json={"email": email, "password": "pw"})
    return {"X-CSRF-Token": client.get("/api/v1/auth/csrf").json["data"]["csrfToken"]}


def _provider_id(client, code="GRNFLD"):
    with session_scope(client.application) as s:
        return s.query(Provider).filter(Provider.code == code).one().id


def _seed_ledger(client):
    """One member with an overdue plan, an upcoming plan and a plan paid online this month."""
    now = utcnow()
    pid = _provider_id(client)
    with session_scope(client.application) as s:
        m = Member(provider_id=pid, unique_id="S1", first_name="Asha", last_name="Rao", phone="9876543210", category="5")
        s.add(m)
        s.flush()
        overdue = FeePlan(provider_id=pid, member_id=m.id, name="Term 1", amount=Decimal("500"), due_date=now - timedelta(days=3))
        upcoming = FeePlan(provider_id=pid, member_id=m.id, name="Term 2", amount=Decimal("300"), due_date=now + timedelta(days=10))
        paid = FeePlan(
            provider_id=pid, member_id=m.id, name="Admission", amount=Decimal("1000"), status="PAID", due_date=now - timedelta(days=1)
        )
        s.add_all([overdue, upcoming, paid])
        s.flush()
        s.add_all(
            [
                Transaction(
                    fee_plan_id=paid.id,
                    external_payment_id="cf_pay_1",
                    amount=Decimal("1000"),
                    status="SUCCESS",
                    payment_time=now,
                    bank_reference="BREF77",
                ),
                Transaction(
                    fee_plan_id=overdue.id,
                    external_payment_id="cf_pay_2",
                    amount=Decimal("500"),
                    status="FAILED",
                    payment_time=now - timedelta(hours=1),
                ),
            ]
        )


class FakeVerifier:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def verify_bank_account(self, *, account_number, ifsc, name, phone=None):
        self.calls.append((account_number, ifsc, name, phone))
        return self.result


def _use_verifier(monkeypatch, result):
    verifier = FakeVerifier(result)
    monkeypatch.setattr("app.feebook.modules.providers.api.verification_client_from_config", lambda config: verifier)
    return verifier


VALID_BANK = {
    "account_status": "VALID",
    "account_status_code": "ACCOUNT_IS_VALID",
    "reference_id": 12345,
    "name_at_bank": "GREENFIELD SCHOOL",
    "bank_name": "State Bank of India",
    "branch": "MG Road",
    "city": "Bengaluru",
}


# ---------- Public lookup ----------
def test_by_code_is_case_insensitive(client):
    r = client.get("/api/v1/provider/by-code/grnfld")
    assert r.status_code == 200
    assert r.json["data"] == {
        "id": _provider_id(client),
        "name": "Greenfield School",
        "code": "GRNFLD",
        "type": "INDIVIDUAL",
        "category": "SCHOOL",
        "region": "Karnataka",
    }


def test_by_code_unknown(client):
    r = client.get("/api/v1/provider/by-code/NOPE00")
    assert r.status_code == 404
    assert r.json["error"] == "Organization not found"


def test_search_lists_verified_only(client):
    r = client.get("/api/v1/provider/search?category=school")
    assert r.status_code == 200
    names = [p["name"] for p in r.json["data"]["providers"]]
    assert names == ["Greenfield School", "Hilltop School"]
    assert r.json["data"]["total"] == 2
    assert r.json["data"]["providers"][0]["email"] == "org@example.com"


def test_search_filters_by_name(client):
    r = client.get("/api/v1/provider/search?category=SCHOOL&name=hill")
    assert [p["code"] for p in r.json["data"]["providers"]] == ["HILLTP"]


def test_search_requires_valid_category(client):
    assert client.get("/api/v1/provider/search").status_code == 400
    r = client.get("/api/v1/provider/search?category=BAKERY")
    assert r.status_code == 400
    assert r.json["error"].startswith("Invalid category")


# ---------- Members ----------
def test_member_create_and_list(client):
    h = _login(client)
    r = client.post(
        "/api/v1/provider/member",
        json={"member": {"uniqueId": "S10", "firstName": "Kiran", "lastName": "Das", "phone": "9876500000", "dateOfBirth": "2012-04-01"}},
        headers=h,
    )
    assert r.status_code == 201
    assert r.json["data"]["fullName"] == "Kiran Das"
    assert r.json["data"]["dateOfBirth"] == "2012-04-01"

    r = client.get("/api/v1/provider/member?search=kir")
    assert r.status_code == 200
    assert [m["uniqueId"] for m in r.json["data"]] == ["S10"]
    assert r.json["pagination"]["totalCount"] == 1


def test_member_duplicate_unique_id(client):
    h = _login(client)
    body = {"uniqueId": "S10", "firstName": "Kiran", "phone": "9876500000"}
    client.post("/api/v1/provider/member", json=body, headers=h)
    r = client.post("/api/v1/provider/member", json=body, headers=h)
    assert r.status_code == 409


def test_member_create_validation(client):
    h = _login(client)
    r = client.post("/api/v1/provider/member", json={"firstName": "Kiran"}, headers=h)
    assert r.status_code == 400
    assert "Member ID is required." in r.json["errors"]


def test_member_create_rejects_other_provider_id(client):
    h = _login(client)
    other = _provider_id(client, "HILLTP")
    r = client.post(
        "/api/v1/provider/member",
        json={"providerId": other, "uniqueId": "S10", "firstName": "Kiran", "phone": "9876500000"},
        headers=h,
    )
    assert r.status_code == 403


def test_member_by_unique_id_and_simplified(client):
    _seed_ledger(client)
    _login(client)
    r = client.get("/api/v1/provider/member/by-uniqueid?uniqueId=S1")
    assert r.status_code == 200
    assert sorted(fp["name"] for fp in r.json["data"]["feePlans"]) == ["Term 1", "Term 2"]
    assert r.json["data"]["consumerMemberships"] == []

    r = client.get("/api/v1/provider/member/simplified")
    data = r.json["data"]
    assert data["totalMembers"] == 1
    row = data["members"][0]
    assert row["memberName"] == "Asha Rao"
    assert row["pendingFeePlansCount"] == 2
    assert row["totalPendingAmount"] == 800.0
    assert row["hasOverdueFees"] is True
    assert row["isLinkedToConsumer"] is False


def test_members_are_scoped_to_provider(client):
    _seed_ledger(client)
    _login(client, "hill@example.com")
    r = client.get("/api/v1/provider/member/by-uniqueid?uniqueId=S1")
    assert r.status_code == 404


# ---------- Dashboard ----------
def test_dashboard_stats(client):
    _seed_ledger(client)
    _login(client)
    r = client.get("/api/v1/provider/dashboard")
    assert r.status_code == 200
    assert r.json["cached"] is False
    stats = r.json["data"]["stats"]
    assert stats["totalMembers"] == 1
    assert stats["totalRevenue"] == 1000.0
    assert stats["pendingAmount"] == 800.0
    assert stats["overdueAmount"] == 500.0
    assert stats["totalFeePlans"] == 3
    assert stats["pendingFeePlans"] == 2
    assert stats["overdueFeePlans"] == 1
    assert stats["thisMonthRevenue"] == 1000.0
    assert stats["revenueGrowth"] == 100.0

    monthly = r.json["data"]["monthlyData"]
    assert len(monthly) == 6
    assert monthly[-1]["amount"] == 1000.0
    assert monthly[-1]["count"] == 1
    assert [t["feePlanName"] for t in r.json["data"]["recentTransactions"]] == ["Admission"]
    assert r.json["data"]["bankAccounts"] == {"total": 0, "verified": 0, "hasDefault": False}


def test_dashboard_cache_and_invalidation(client):
    h = _login(client)
    assert client.get("/api/v1/provider/dashboard").json["cached"] is False
    assert client.get("/api/v1/provider/dashboard").json["cached"] is True

    client.post("/api/v1/provider/member", json={"uniqueId": "S2", "firstName": "Dev", "phone": "9876511111"}, headers=h)
    r = client.get("/api/v1/provider/dashboard")
    assert r.json["cached"] is False
    assert r.json["data"]["stats"]["totalMembers"] == 1


def test_dashboard_rejects_other_provider(client):
    _login(client)
    r = client.get(f"/api/v1/provider/dashboard?providerId={_provider_id(client, 'HILLTP')}")
    assert r.status_code == 403


# ---------- Payments ----------
def test_payments_listing_and_stats(client):
    _seed_ledger(client)
    _login(client)
    r = client.get("/api/v1/provider/payments")
    assert r.status_code == 200
    data = r.json["data"]
    assert data["pagination"]["totalCount"] == 2
    assert data["stats"] == {"totalAmount": 1000.0, "successful": 1, "pending": 0, "failed": 1}

    r = client.get("/api/v1/provider/payments?status=success&search=BREF")
    assert [t["externalPaymentId"] for t in r.json["data"]["transactions"]] == ["cf_pay_1"]


def test_payments_bad_date(client):
    _login(client)
    r = client.get("/api/v1/provider/payments?startDate=yesterday")
    assert r.status_code == 400


# ---------- KYC ----------
def _individual_form():
    return {
        "fullName": "Asha Menon",
        "dateOfBirth": "1985-06-15",
        "permanentAddress.addressLine1": "12 Lake Road",
        "permanentAddress.city": "Mysuru",
        "permanentAddress.state": "Karnataka",
        "permanentAddress.pincode": "570001",
        "panCard.panNumber": "ABCDE1234F",
        "aadhaarCard.aadhaarNumber": "123412341234",
        "panCard.documentFile": (io.BytesIO(b"%PDF-pan"), "pan.pdf"),
        "aadhaarCard.documentFile": (io.BytesIO(b"%PDF-aadhaar"), "aadhaar.pdf"),
    }


def test_kyc_individual_submit_and_fetch(client):
    h = _login(client)
    assert client.get("/api/v1/provider/kyc").status_code == 404

    r = client.post("/api/v1/provider/kyc/individual", data=_individual_form(), headers=h, content_type="multipart/form-data")
    assert r.status_code == 200
    v = r.json["data"]
    assert v["status"] == "PENDING"
    assert v["pocName"] == "Asha Menon"
    assert v["address"] == "12 Lake Road, Mysuru, Karnataka, India - 570001"
    assert "/pan_card/" in v["pocPanDoc"]

    r = client.get("/api/v1/provider/kyc")
    assert r.status_code == 200
    assert r.json["data"]["adminName"] == "Asha Menon"
    assert r.json["data"]["region"] == "Karnataka"

    doc = client.get(v["pocPanDoc"])
    assert doc.status_code == 200
    assert doc.data == b"%PDF-pan"


def test_kyc_individual_requires_documents(client):
    h = _login(client)
    form = _individual_form()
    form.pop("aadhaarCard.documentFile")
    r = client.post("/api/v1/provider/kyc/individual", data=form, headers=h, content_type="multipart/form-data")
    assert r.status_code == 400
    assert r.json["error"] == "All document files are required"


def test_kyc_organization_submit(client):
    h = _login(client)
    form = {
        "contactPersonName": "Ravi Kumar",
        "contactPersonAadhaar": "123412341234",
        "contactPersonPan": "ABCDE1234F",
        "organizationName": "Greenfield Education Trust",
        "entityType": "TRUST",
        "panNumber": "AAATG1234K",
        "gstNumber": "29AAATG1234K1Z5",
        "registeredAddress.addressLine1": "1 MG Road",
        "registeredAddress.city": "Bengaluru",
        "registeredAddress.state": "Karnataka",
        "registeredAddress.pincode": "560001",
    }
    for field in ("contactPersonAadhaarDocument", "contactPersonPanDocument", "gstDocument", "panDocument", "registrationCertificate"):
        form[field] = (io.BytesIO(b"%PDF"), f"{field}.pdf")
    r = client.post("/api/v1/provider/kyc/organization", data=form, headers=h, content_type="multipart/form-data")
    assert r.status_code == 200
    assert r.json["data"]["orgType"] == "TRUST"
    assert r.json["data"]["orgLegalName"] == "Greenfield Education Trust"
    r = client.get("/api/v1/auth/session")
    assert r.json["data"]["provider"]["name"] == "Greenfield Education Trust"


def test_kyc_organization_rejects_unknown_entity_type(client):
    h = _login(client)
    r = client.post(
        "/api/v1/provider/kyc/organization",
        data={"contactPersonName": "Ravi", "entityType": "GUILD"},
        headers=h,
        content_type="multipart/form-data",
    )
    assert r.status_code == 400


# ---------- Wallet ----------
def test_bank_account_add_becomes_default(client, monkeypatch):
    verifier = _use_verifier(monkeypatch, VALID_BANK)
    h = _login(client)
    body = {"accNumber": "00011122233", "ifsc": "sbin0001234", "accName": "Greenfield School", "accPhone": "9000000001"}
    r = client.post("/api/v1/provider/wallet/bank", json=body, headers=h)
    assert r.status_code == 201
    acc = r.json["data"]
    assert acc["isDefault"] is True
    assert acc["ifsc"] == "SBIN0001234"
    assert acc["nameAtBank"] == "GREENFIELD SCHOOL"
    assert acc["refId"] == "12345"
    assert verifier.calls == [("00011122233", "SBIN0001234", "Greenfield School", "9000000001")]

    r = client.post("/api/v1/provider/wallet/bank", json=dict(body, accNumber="99988877766"), headers=h)
    assert r.json["data"]["isDefault"] is False

    r = client.get("/api/v1/provider/wallet/bank?default=true")
    assert [a["accNumber"] for a in r.json["data"]] == ["00011122233"]


def test_bank_account_invalid_is_rejected_and_audited(client, monkeypatch):
    _use_verifier(monkeypatch, {"account_status": "INVALID", "account_status_code": "INVALID_IFSC"})
    h = _login(client)
    r = client.post(
        "/api/v1/provider/wallet/bank",
        json={"accNumber": "1", "ifsc": "BAD", "accName": "X"},
        headers=h,
    )
    assert r.status_code == 400
    assert r.json["error"] == "INVALID_IFSC"
    assert r.json["accountStatus"] == "INVALID"
    with session_scope(client.application) as s:
        assert s.query(BankAccount).count() == 0
        assert s.query(AuditEvent).filter(AuditEvent.action == "provider.bank_verify_failed").count() == 1


def test_bank_account_requires_details(client):
    h = _login(client)
    r = client.post("/api/v1/provider/wallet/bank", json={"accNumber": "1"}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "All account details are required"


def test_bank_account_set_default(client, monkeypatch):
    _use_verifier(monkeypatch, VALID_BANK)
    h = _login(client)
    body = {"accNumber": "00011122233", "ifsc": "SBIN0001234", "accName": "Greenfield"}
    first = client.post("/api/v1/provider/wallet/bank", json=body, headers=h).json["data"]
    second = client.post("/api/v1/provider/wallet/bank", json=dict(body, accNumber="555"), headers=h).json["data"]

    r = client.patch("/api/v1/provider/wallet/bank", json={"accountId": second["id"]}, headers=h)
    assert r.status_code == 200
    assert r.json["data"]["isDefault"] is True

    accounts = {a["id"]: a["isDefault"] for a in client.get("/api/v1/provider/wallet/bank").json["data"]}
    assert accounts == {first["id"]: False, second["id"]: True}

    assert client.patch("/api/v1/provider/wallet/bank", json={}, headers=h).status_code == 400
    assert client.patch("/api/v1/provider/wallet/bank", json={"bankAccountId": 999}, headers=h).status_code == 404
