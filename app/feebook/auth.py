from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timedelta
from functools import wraps
from typing import Any

from flask import Blueprint, current_app, g, request, session
from werkzeug.security import check_password_hash

from app.feebook.audit import record_event
from app.feebook.constants import (
    OTP_CHANNEL_EMAIL,
    OTP_CHANNEL_SMS,
    OTP_PURPOSE_LOGIN,
    OTP_PURPOSE_VERIFICATION,
    ROLE_CONSUMER,
    ROLE_MODERATOR,
    ROLE_PROVIDER,
    ROLES,
    SESSION_KEYS,
)
from app.feebook.db import db_session
from app.feebook.errors import json_error, json_ok
from app.feebook.models import Moderator
from app.feebook.modules.consumers.models import Consumer
from app.feebook.modules.consumers.service import consumer_to_dict, create_consumer, find_consumer_conflict
from app.feebook.modules.providers.models import Provider
from app.feebook.modules.providers.service import (
    create_verified_provider,
    find_registration_conflict,
    provider_to_dict,
    validate_registration_payload,
)
from app.feebook.otp import issue_otp, verify_otp
from app.feebook.security import ensure_csrf_token
from app.feebook.utils import EMAIL_RE, PHONE_RE, iso

bp = Blueprint("auth", __name__)

_RATE_LIMIT = 5
_RATE_WINDOW = 300  # seconds


def _attempts() -> dict[str, list[datetime]]:
    return current_app.extensions.setdefault("feebook_auth_attempts", defaultdict(list))


def _rate_key() -> str:
    return f"{request.remote_addr or 'unknown'}:{request.endpoint}"


def rate_limited(fn: Callable[..., Any]) -> Callable[..., Any]:
    """At most 5 calls per client IP per endpoint in any 5 minute window."""

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        attempts = _attempts()
        key = _rate_key()
        cutoff = datetime.utcnow() - timedelta(seconds=_RATE_WINDOW)
        for stale in [k for k, times in attempts.items() if not times or times[-1] <= cutoff]:
            del attempts[stale]
        attempts[key] = [t for t in attempts.get(key, []) if t > cutoff]
        if len(attempts[key]) >= _RATE_LIMIT:
            current_app.logger.warning("Rate limit hit: %s (request_id=%s)", key, getattr(g, "request_id", None))
            return json_error("Too many attempts. Please wait 5 minutes.", 429)
        attempts[key].append(datetime.utcnow())
        return fn(*args, **kwargs)

    return wrapped


def _clear_attempts() -> None:
    _attempts().pop(_rate_key(), None)


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _sign_in(role: str, actor: Any) -> None:
    session[SESSION_KEYS[role]] = actor.id
    setattr(g, f"current_{role}", actor)


def moderator_to_dict(m: Moderator) -> dict:
    return {"id": m.id, "name": m.name, "email": m.email, "isActive": m.is_active, "createdAt": iso(m.created_at)}


_LOADERS = {
    ROLE_MODERATOR: (Moderator, lambda m: m.is_active),
    ROLE_PROVIDER: (Provider, lambda p: True),
    ROLE_CONSUMER: (Consumer, lambda c: True),
}


def load_current_actors() -> None:
    """
    Loads g.current_moderator / g.current_provider / g.current_consumer from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    for role in ROLES:
        setattr(g, f"current_{role}", None)
    if request.path.startswith(("/health", "/healthz")):
        return

    for role, (model, usable) in _LOADERS.items():
        key = SESSION_KEYS[role]
        actor_id = session.get(key)
        if not actor_id:
            continue
        try:
            actor = db_session().get(model, int(actor_id))
        except Exception as e:
            current_app.logger.error("load_current_actors DB error (clearing %s session): %s", role, e)
            session.pop(key, None)
            continue
        if actor is None or not usable(actor):
            session.pop(key, None)
            continue
        setattr(g, f"current_{role}", actor)


# ---------- Session ----------
@bp.get("/csrf")
def csrf():
    return json_ok({"csrfToken": ensure_csrf_token()})


@bp.get("/session")
def session_info():
    m, p, c = g.current_moderator, g.current_provider, g.current_consumer
    return json_ok(
        {
            "moderator": moderator_to_dict(m) if m else None,
            "provider": provider_to_dict(p) if p else None,
            "consumer": consumer_to_dict(c) if c else None,
        }
    )


@bp.post("/logout")
def logout():
    role = str(_payload().get("role") or "").strip().lower()
    if role and role not in ROLES:
        return json_error(f"Invalid role. Must be one of: {', '.join(ROLES)}", 400)
    roles = (role,) if role else ROLES
    s = db_session()
    for r in roles:
        actor = getattr(g, f"current_{r}", None)
        if actor is not None:
            record_event(s, actor=actor, action="auth.logout", entity_type=type(actor).__name__, entity_id=str(actor.id))
        session.pop(SESSION_KEYS[r], None)
    s.commit()
    return json_ok(message="Logged out")


# ---------- Moderator ----------
@bp.post("/moderator/login")
@rate_limited
def moderator_login():
    data = _payload()
    email = str(data.get("email") or "").strip().lower()
    password = str(data.get("password") or "")
    if not email or not password:
        return json_error("Email and password are required", 400)

    s = db_session()
    m = s.query(Moderator).filter(Moderator.email == email).one_or_none()
    if not m or not m.is_active or not check_password_hash(m.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="Moderator",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        return json_error("Invalid credentials", 401)

    _sign_in(ROLE_MODERATOR, m)
    _clear_attempts()
    record_event(s, actor=m, action="auth.login", entity_type="Moderator", entity_id=str(m.id))
    s.commit()
    return json_ok(moderator_to_dict(m))


# ---------- Provider ----------
def _provider_by_credentials(s, email: str, password: str):
    """Returns (provider, error_response)."""
    if not email or not password:
        return None, json_error("Email and password are required", 400)
    p = s.query(Provider).filter(Provider.email == email).one_or_none()
    if p is None:
        return None, json_error("Provider not found", 404)
    if not check_password_hash(p.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="Provider",
            entity_id=str(p.id),
            reason="Invalid password",
            metadata={"email": email},
        )
        s.commit()
        return None, json_error("Invalid password", 401)
    return p, None


@bp.post("/provider/login")
@rate_limited
def provider_login():
    data = _payload()
    s = db_session()
    p, err = _provider_by_credentials(s, str(data.get("email") or "").strip().lower(), str(data.get("password") or ""))
    if err:
        return err
    _sign_in(ROLE_PROVIDER, p)
    _clear_attempts()
    record_event(s, actor=p, action="auth.login", entity_type="Provider", entity_id=str(p.id))
    s.commit()
    return json_ok(provider_to_dict(p))


def _registration_fields(data: dict) -> dict:
    return {
        "name": str(data.get("name") or "").strip(),
        "email": str(data.get("email") or "").strip().lower(),
        "phone": str(data.get("phone") or "").strip(),
        "password": str(data.get("password") or ""),
        "code": str(data.get("code") or "").strip().upper(),
        "accountType": str(data.get("accountType") or "").strip().upper(),
        "category": str(data.get("category") or "").strip().upper() or None,
    }


@bp.post("/provider/register")
@rate_limited
def provider_register():
    fields = _registration_fields(_payload())
    errors = validate_registration_payload(fields)
    if errors:
        return json_error(errors[0], 400, errors=errors)

    s = db_session()
    taken = find_registration_conflict(s, email=fields["email"], phone=fields["phone"], code=fields["code"])
    if taken:
        return json_error(f"This {taken} is already registered", 400)

    expires_at = issue_otp(s, identifier=fields["email"], channel=OTP_CHANNEL_EMAIL, purpose=OTP_PURPOSE_VERIFICATION)
    s.commit()
    public = {k: v for k, v in fields.items() if k != "password"}
    return json_ok(public, message="OTP sent to your email", expiresAt=iso(expires_at))


@bp.post("/provider/resend-registration-otp")
@rate_limited
def provider_resend_registration_otp():
    email = str(_payload().get("email") or "").strip().lower()
    if not email or not EMAIL_RE.match(email):
        return json_error("A valid email is required", 400)
    s = db_session()
    existing = s.query(Provider).filter(Provider.email == email).one_or_none()
    if existing is not None and existing.is_email_verified:
        return json_error("This email is already registered and verified", 400)
    expires_at = issue_otp(s, identifier=email, channel=OTP_CHANNEL_EMAIL, purpose=OTP_PURPOSE_VERIFICATION)
    s.commit()
    return json_ok({"email": email}, message="OTP sent to your email", expiresAt=iso(expires_at))


@bp.post("/provider/send-otp")
@rate_limited
def provider_send_otp():
    data = _payload()
    s = db_session()
    p, err = _provider_by_credentials(s, str(data.get("email") or "").strip().lower(), str(data.get("password") or ""))
    if err:
        return err
    expires_at = issue_otp(s, identifier=p.email, channel=OTP_CHANNEL_EMAIL, purpose=OTP_PURPOSE_LOGIN)
    s.commit()
    return json_ok({"email": p.email}, message="OTP sent to your email", expiresAt=iso(expires_at))


@bp.post("/provider/verify-otp")
@rate_limited
def provider_verify_otp():
    data = _payload()
    email = str(data.get("email") or "").strip().lower()
    otp = str(data.get("otp") or "").strip()
    if not email or not otp:
        return json_error("Email and OTP are required", 400)

    s = db_session()
    check = verify_otp(s, identifier=email, purpose=OTP_PURPOSE_LOGIN, code=otp)
    if not check.ok:
        s.commit()
        return json_error(check.error, 400)
    p = s.query(Provider).filter(Provider.email == email).one_or_none()
    if p is None:
        s.commit()
        return json_error("Provider not found", 404)

    _sign_in(ROLE_PROVIDER, p)
    _clear_attempts()
    record_event(s, actor=p, action="auth.login", entity_type="Provider", entity_id=str(p.id), metadata={"method": "otp"})
    s.commit()
    return json_ok(provider_to_dict(p))


@bp.post("/provider/verify-registration")
@rate_limited
def provider_verify_registration():
    data = _payload()
    fields = _registration_fields(data)
    otp = str(data.get("otp") or "").strip()
    errors = validate_registration_payload(fields)
    if not otp:
        errors.append("OTP is required")
    if errors:
        return json_error(errors[0], 400, errors=errors)

    s = db_session()
    check = verify_otp(s, identifier=fields["email"], purpose=OTP_PURPOSE_VERIFICATION, code=otp)
    if not check.ok:
        s.commit()
        return json_error(check.error, 400)

    taken = find_registration_conflict(s, email=fields["email"], phone=fields["phone"], code=fields["code"])
    if taken:
        s.commit()
        return json_error(f"This {taken} is already registered", 400)

    p = create_verified_provider(s, fields)
    _sign_in(ROLE_PROVIDER, p)
    _clear_attempts()
    s.commit()
    current_app.logger.info("Provider registered: id=%s code=%s", p.id, p.code)
    return json_ok(provider_to_dict(p), 201, message="Registration successful")


# ---------- Consumer ----------
def _normalize_phone(raw: Any) -> str:
    return str(raw or "").strip()


@bp.post("/consumer/login")
@rate_limited
def consumer_login():
    data = _payload()
    phone = _normalize_phone(data.get("phone"))
    password = str(data.get("password") or "")
    if not phone or not password:
        return json_error("Phone and password are required", 400)

    s = db_session()
    c = s.query(Consumer).filter(Consumer.phone == phone).one_or_none()
    if c is None:
        return json_error("Consumer not found", 404)
    if not c.password_hash or not check_password_hash(c.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="Consumer",
            entity_id=str(c.id),
            reason="Invalid password",
        )
        s.commit()
        return json_error("Invalid password", 401)

    _sign_in(ROLE_CONSUMER, c)
    _clear_attempts()
    record_event(s, actor=c, action="auth.login", entity_type="Consumer", entity_id=str(c.id))
    s.commit()
    return json_ok(consumer_to_dict(c))


@bp.post("/consumer/register")
@rate_limited
def consumer_register():
    data = _payload()
    email = str(data.get("email") or "").strip().lower()
    phone = _normalize_phone(data.get("phone"))
    password = str(data.get("password") or "")
    if not email or not phone or not password:
        return json_error("Email, phone and password are required", 400)
    if not EMAIL_RE.match(email):
        return json_error("Invalid email format", 400)
    if not PHONE_RE.match(phone):
        return json_error("Phone must be a 10 digit number", 400)

    s = db_session()
    taken = find_consumer_conflict(s, email=email, phone=phone)
    if taken:
        return json_error(f"This {taken} is already registered", 400)

    c = create_consumer(
        s,
        phone=phone,
        email=email,
        password=password,
        first_name=data.get("firstName"),
        last_name=data.get("lastName"),
    )
    s.commit()
    return json_ok(consumer_to_dict(c), 201, message="Registration successful")


@bp.post("/consumer/resend-registration-otp")
@rate_limited
def consumer_resend_registration_otp():
    phone = _normalize_phone(_payload().get("phone"))
    if not PHONE_RE.match(phone):
        return json_error("Phone must be a 10 digit number", 400)
    s = db_session()
    existing = s.query(Consumer).filter(Consumer.phone == phone).one_or_none()
    if existing is not None and existing.is_phone_verified:
        return json_error("This phone is already registered and verified", 400)
    expires_at = issue_otp(s, identifier=phone, channel=OTP_CHANNEL_SMS, purpose=OTP_PURPOSE_VERIFICATION)
    s.commit()
    return json_ok({"phone": phone}, message="OTP sent to your phone", expiresAt=iso(expires_at))


@bp.post("/consumer/send-otp")
@rate_limited
def consumer_send_otp():
    phone = _normalize_phone(_payload().get("phone"))
    if not PHONE_RE.match(phone):
        return json_error("Phone must be a 10 digit number", 400)
    s = db_session()
    if s.query(Consumer.id).filter(Consumer.phone == phone).first() is None:
        return json_error("Consumer not found", 404)
    expires_at = issue_otp(s, identifier=phone, channel=OTP_CHANNEL_SMS, purpose=OTP_PURPOSE_LOGIN)
    s.commit()
    return json_ok({"phone": phone}, message="OTP sent to your phone", expiresAt=iso(expires_at))


@bp.post("/consumer/verify-otp")
@rate_limited
def consumer_verify_otp():
    data = _payload()
    phone = _normalize_phone(data.get("phone"))
    otp = str(data.get("otp") or "").strip()
    if not phone or not otp:
        return json_error("Phone and OTP are required", 400)

    s = db_session()
    check = verify_otp(s, identifier=phone, purpose=OTP_PURPOSE_LOGIN, code=otp)
    if not check.ok:
        s.commit()
        return json_error(check.error, 400)
    c = s.query(Consumer).filter(Consumer.phone == phone).one_or_none()
    if c is None:
        s.commit()
        return json_error("Consumer not found", 404)

    c.is_phone_verified = True
    _sign_in(ROLE_CONSUMER, c)
    _clear_attempts()
    record_event(s, actor=c, action="auth.login", entity_type="Consumer", entity_id=str(c.id), metadata={"method": "otp"})
    s.commit()
    return json_ok(consumer_to_dict(c))


@bp.post("/consumer/verify-registration")
@rate_limited
def consumer_verify_registration():
    data = _payload()
    phone = _normalize_phone(data.get("phone"))
    first_name = str(data.get("firstName") or "").strip()
    email = str(data.get("email") or "").strip().lower() or None
    otp = str(data.get("otp") or "").strip()
    if not phone or not first_name or not otp:
        return json_error("First name, phone and OTP are required", 400)
    if not PHONE_RE.match(phone):
        return json_error("Phone must be a 10 digit number", 400)
    if email and not EMAIL_RE.match(email):
        return json_error("Invalid email format", 400)

    s = db_session()
    check = verify_otp(s, identifier=phone, purpose=OTP_PURPOSE_VERIFICATION, code=otp)
    if not check.ok:
        s.commit()
        return json_error(check.error, 400)

    existing = s.query(Consumer).filter(Consumer.phone == phone).one_or_none()
    if existing is not None:
        s.commit()
        return json_error("Consumer already exists with this phone number", 400)

    if email and find_consumer_conflict(s, email=email, phone=phone) == "email":
        s.commit()
        return json_error("This email is already registered", 400)
    c = create_consumer(
        s,
        phone=phone,
        email=email,
        first_name=first_name,
        last_name=data.get("lastName"),
        phone_verified=True,
    )

    _sign_in(ROLE_CONSUMER, c)
    _clear_attempts()
    s.commit()
    return json_ok(consumer_to_dict(c), 201, message="Registration successful")
