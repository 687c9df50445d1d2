import pytest
from werkzeug.security import generate_password_hash

from app.feebook import create_app
from app.feebook.db import session_scope
from app.feebook.models import Base
from app.feebook.modules.providers.models import Provider


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
        s.add(
            Provider(
                name="Greenfield School",
                email="org@example.com",
                phone="9000000001",
                password_hash=generate_password_hash("pw"),
                code="GRNFLD",
                category="SCHOOL",
                is_verified=True,
            )
        )

    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_ok(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_session_empty_when_signed_out(client):
    r = client.get("/api/v1/auth/session")
    assert r.status_code == 200
    assert r.json["success"] is True
    assert r.json["data"] == {"moderator": None, "provider": None, "consumer": None}


def test_protected_routes_require_auth(client):
    for path in (
        "/api/v1/provider/dashboard",
        "/api/v1/provider/member",
        "/api/v1/consumer/memberships",
        "/api/v1/moderator/org",
    ):
        r = client.get(path)
        assert r.status_code == 401, path
        assert r.json["error"] == "Unauthorized"


def test_mutations_require_csrf_token(client):
    client.post("/api/v1/auth/provider/login", json={"email": "org@example.com", "password": "pw"})
    r = client.post("/api/v1/provider/member", json={"uniqueId": "S1", "firstName": "Asha", "phone": "9876543210"})
    assert r.status_code == 400
    assert r.json["error"] == "CSRF token missing or invalid."


def test_csrf_token_allows_mutation(client):
    client.post("/api/v1/auth/provider/login", json={"email": "org@example.com", "password": "pw"})
    token = client.get("/api/v1/auth/csrf").json["data"]["csrfToken"]
    r = client.post(
        "/api/v1/provider/member",
        json={"uniqueId": "S1", "firstName": "Asha", "phone": "9876543210"},
        headers={"X-CSRF-Token": token},
    )
    assert r.status_code == 201
    assert r.json["data"]["uniqueId"] == "S1"


def test_unknown_route_is_json_404(client):
    r = client.get("/api/v1/does-not-exist")
    assert r.status_code == 404
    assert r.json["success"] is False


def test_seed_moderator_is_idempotent(client, monkeypatch):
    from app.feebook.models import Moderator
    from scripts.init_db import seed_only

    monkeypatch.setenv("MODERATOR_EMAIL", "Admin@Example.com")
    monkeypatch.setenv("MODERATOR_PASSWORD", "first")
    db_url = client.application.config["DATABASE_URL"]
    seed_only(database_url_override=db_url)
    monkeypatch.setenv("MODERATOR_PASSWORD", "second")
    seed_only(database_url_override=db_url)

    r = client.post("/api/v1/auth/moderator/login", json={"email": "admin@example.com", "password": "first"})
    assert r.status_code == 200
    with session_scope(client.application) as s:
        assert s.query(Moderator).count() == 1
