import secrets

from flask import Request, session

CSRF_HEADER = "X-CSRF-Token"

# Endpoints reachable without a token: credential exchange and the public contact form.
CSRF_EXEMPT_PREFIXES = ("auth.", "routes.", "moderation.submit_query")


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def is_csrf_exempt(endpoint: str | None) -> bool:
    return (endpoint or "").startswith(CSRF_EXEMPT_PREFIXES)


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from header or form field (multipart uploads)."""
    token = req.headers.get(CSRF_HEADER) or req.form.get("csrf_token")
    expected = session.get("csrf_token")
    return bool(token and expected and secrets.compare_digest(token, expected))
