from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from flask import current_app
from sqlalchemy import delete
from werkzeug.security import check_password_hash, generate_password_hash

from app.feebook.constants import OTP_CHANNEL_EMAIL, OTP_CHANNEL_SMS, OTP_PURPOSES
from app.feebook.errors import ApiError
from app.feebook.models import OtpCode
from app.feebook.notifications import (
    NotificationError,
    mailer_from_config,
    render_otp_email,
    sms_client_from_config,
)
from app.feebook.utils import utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OtpCheck:
    ok: bool
    error: str | None = None


def generate_otp_code(length: int = 6) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


def _normalize(identifier: str) -> str:
    return (identifier or "").strip().lower()


def deliver_otp(channel: str, identifier: str, code: str, purpose: str) -> None:
    config = current_app.config
    if config.get("OTP_DELIVERY") != "live":
        logger.info("OTP for %s (%s/%s): %s", identifier, channel, purpose, code)
        return
    if channel == OTP_CHANNEL_EMAIL:
        subject, text, html = render_otp_email(code, purpose, int(config.get("OTP_EXPIRY_MINUTES") or 5))
        mailer_from_config(config).send(identifier, subject, text, html)
    elif channel == OTP_CHANNEL_SMS:
        sms_client_from_config(config).send_otp(identifier, code)
    else:
        raise ValueError(f"Unknown OTP channel: {channel}")


def issue_otp(s: "Session", *, identifier: str, channel: str, purpose: str) -> datetime:
    """
    Create (or replace) the OTP for identifier+purpose and deliver it. Returns the expiry time.
    """
    if purpose not in OTP_PURPOSES:
        raise ValueError(f"Unknown OTP purpose: {purpose}")
    config = current_app.config
    ident = _normalize(identifier)
    code = generate_otp_code(int(config.get("OTP_LENGTH") or 6))
    expires_at = utcnow() + timedelta(minutes=int(config.get("OTP_EXPIRY_MINUTES") or 5))

    s.execute(delete(OtpCode).where(OtpCode.identifier == ident, OtpCode.purpose == purpose))
    s.add(
        OtpCode(
            identifier=ident,
            purpose=purpose,
            channel=channel,
            code_hash=generate_password_hash(code),
            attempts=0,
            expires_at=expires_at,
        )
    )
    s.flush()

    try:
        deliver_otp(channel, identifier.strip(), code, purpose)
    except NotificationError as e:
        logger.error("OTP delivery failed (%s/%s): %s", channel, purpose, e)
        raise ApiError(500, "Failed to send OTP") from e
    return expires_at


def verify_otp(s: "Session", *, identifier: str, purpose: str, code: str) -> OtpCheck:
    """
    Check a submitted code. Failed attempts are counted on the row; callers must commit
    even when the check fails so the attempt counter sticks.
    """
    ident = _normalize(identifier)
    row = s.query(OtpCode).filter(OtpCode.identifier == ident, OtpCode.purpose == purpose).one_or_none()
    if row is None:
        return OtpCheck(False, "OTP not found or expired")

    if row.expires_at < utcnow():
        s.delete(row)
        return OtpCheck(False, "OTP has expired")

    max_attempts = int(current_app.config.get("OTP_MAX_ATTEMPTS") or 3)
    if not check_password_hash(row.code_hash, (code or "").strip()):
        row.attempts += 1
        remaining = max_attempts - row.attempts
        if remaining <= 0:
            s.delete(row)
            return OtpCheck(False, "Too many attempts. Please request a new OTP.")
        return OtpCheck(False, f"Invalid OTP. {remaining} attempts remaining.")

    s.delete(row)
    return OtpCheck(True)


def cleanup_expired_otps(s: "Session", now: datetime | None = None) -> int:
    result = s.execute(delete(OtpCode).where(OtpCode.expires_at < (now or utcnow())))
    return int(result.rowcount or 0)
