from __future__ import annotations

import json
import logging
import smtplib
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any

logger = logging.getLogger(__name__)


class NotificationError(RuntimeError):
    pass


class SmsGatewayError(NotificationError):
    pass


class EmailDeliveryError(NotificationError):
    pass


@dataclass(frozen=True)
class SmtpMailer:
    host: str
    port: int
    username: str
    password: str
    sender: str
    use_tls: bool = True
    timeout_seconds: int = 20

    def send(self, to_email: str, subject: str, text: str, html: str | None = None) -> None:
        if not self.host or not self.sender:
            raise EmailDeliveryError("SMTP is not configured (SMTP_HOST / SMTP_FROM).")
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(text)
        if html:
            message.add_alternative(html, subtype="html")
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise EmailDeliveryError(f"Failed to send email to {to_email}: {e}") from e


@dataclass(frozen=True)
class SmsGatewayClient:
    base_url: str
    auth_key: str
    otp_template_id: str
    timeout_seconds: int = 15

    def _post_json(self, payload: dict[str, Any], *, retries: int = 2) -> dict[str, Any]:
        if not self.base_url or not self.auth_key:
            raise SmsGatewayError("SMS gateway is not configured (SMS_GATEWAY_URL / SMS_GATEWAY_AUTH_KEY).")
        body = json.dumps(payload).encode("utf-8")
        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                req = urllib.request.Request(self.base_url, data=body, method="POST")
                req.add_header("authkey", self.auth_key)
                req.add_header("Content-Type", "application/json")
                req.add_header("Accept", "application/json")
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    raw = resp.read()
                try:
                    return json.loads(raw.decode("utf-8"))
                except ValueError as e:
                    raise SmsGatewayError("Invalid JSON from SMS gateway") from e
            except urllib.error.HTTPError as e:
                try:
                    detail = e.read().decode("utf-8", errors="ignore")
                except OSError:
                    detail = ""
                raise SmsGatewayError(f"HTTP {e.code} from SMS gateway: {detail[:300]}") from e
            except (urllib.error.URLError, OSError) as e:
                last_err = e
                time.sleep(min(1 * (attempt + 1), 3))
                continue
        raise SmsGatewayError(f"SMS gateway request failed after retries: {last_err}")

    def send_otp(self, mobile: str, otp: str) -> dict[str, Any]:
        payload = {
            "template_id": self.otp_template_id,
            "realTimeResponse": 1,
            "recipients": [{"mobiles": mobile, "OTP": otp}],
        }
        result = self._post_json(payload)
        if (result.get("type") or "").lower() == "error":
            raise SmsGatewayError(f"SMS gateway rejected OTP: {result.get('message')}")
        return result


def mailer_from_config(config: dict) -> SmtpMailer:
    return SmtpMailer(
        host=config.get("SMTP_HOST") or "",
        port=int(config.get("SMTP_PORT") or 587),
        username=config.get("SMTP_USERNAME") or "",
        password=config.get("SMTP_PASSWORD") or "",
        sender=config.get("SMTP_FROM") or "",
        use_tls=bool(config.get("SMTP_USE_TLS", True)),
    )


def sms_client_from_config(config: dict) -> SmsGatewayClient:
    return SmsGatewayClient(
        base_url=config.get("SMS_GATEWAY_URL") or "",
        auth_key=config.get("SMS_GATEWAY_AUTH_KEY") or "",
        otp_template_id=config.get("SMS_OTP_TEMPLATE_ID") or "",
    )


def render_otp_email(otp: str, purpose: str, expiry_minutes: int) -> tuple[str, str, str]:
    """Returns (subject, text, html) for an OTP email."""
    headline = {
        "login": "Your FeeBook login code",
        "verification": "Verify your FeeBook account",
        "password-reset": "Reset your FeeBook password",
    }.get(purpose, "Your FeeBook verification code")
    text = (
        f"{headline}\n\n"
        f"Your one-time password is: {otp}\n\n"
        f"This code expires in {expiry_minutes} minutes. "
        "If you did not request it, you can ignore this email.\n\n"
        "- FeeBook"
    )
    html = (
        '<div style="font-family:Arial,sans-serif;max-width:480px;margin:0 auto;padding:24px">'
        f'<h2 style="color:#1f2937">{headline}</h2>'
        "<p>Your one-time password is:</p>"
        f'<p style="font-size:28px;letter-spacing:6px;font-weight:bold;color:#2563eb">{otp}</p>'
        f"<p>This code expires in {expiry_minutes} minutes.</p>"
        '<p style="color:#6b7280;font-size:12px">If you did not request it, you can ignore this email.</p>'
        "<p>FeeBook</p></div>"
    )
    return headline, text, html
