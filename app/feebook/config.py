import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    storage_backend: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str
    s3_public_base_url: str
    local_storage_root: str

    otp_length: int
    otp_expiry_minutes: int
    otp_max_attempts: int
    otp_delivery: str

    smtp_host: str
    smtp_port: int
    smtp_username: str
    smtp_password: str
    smtp_from: str
    smtp_use_tls: bool

    sms_gateway_url: str
    sms_gateway_auth_key: str
    sms_otp_template_id: str

    cashfree_environment: str
    cashfree_app_id: str
    cashfree_app_secret: str
    cashfree_api_version: str
    cashfree_vrs_base_url: str
    cashfree_vrs_app_id: str
    cashfree_vrs_app_secret: str

    invoice_suite_endpoint: str
    invoice_suite_api_key: str

    public_base_url: str
    dashboard_cache_seconds: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).") from e


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name).lower()
    if not raw:
        return default
    return raw not in ("0", "false", "no", "off")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///feebook.db"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "ap-south-1"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        s3_public_base_url=_getenv("S3_PUBLIC_BASE_URL", ""),
        local_storage_root=_getenv("LOCAL_STORAGE_ROOT", "storage"),
        otp_length=_getenv_int("OTP_LENGTH", 6),
        otp_expiry_minutes=_getenv_int("OTP_EXPIRY_MINUTES", 5),
        otp_max_attempts=_getenv_int("OTP_MAX_ATTEMPTS", 3),
        otp_delivery=_getenv("OTP_DELIVERY", "log").lower(),
        smtp_host=_getenv("SMTP_HOST", ""),
        smtp_port=_getenv_int("SMTP_PORT", 587),
        smtp_username=_getenv("SMTP_USERNAME", ""),
        smtp_password=_getenv("SMTP_PASSWORD", ""),
        smtp_from=_getenv("SMTP_FROM", ""),
        smtp_use_tls=_getenv_bool("SMTP_USE_TLS", True),
        sms_gateway_url=_getenv("SMS_GATEWAY_URL", ""),
        sms_gateway_auth_key=_getenv("SMS_GATEWAY_AUTH_KEY", ""),
        sms_otp_template_id=_getenv("SMS_OTP_TEMPLATE_ID", ""),
        cashfree_environment=_getenv("CASHFREE_ENVIRONMENT", "sandbox").lower(),
        cashfree_app_id=_getenv("CASHFREE_APP_ID", ""),
        cashfree_app_secret=_getenv("CASHFREE_APP_SECRET", ""),
        cashfree_api_version=_getenv("CASHFREE_API_VERSION", "2023-08-01"),
        cashfree_vrs_base_url=_getenv("CASHFREE_VRS_BASE_URL", "https://sandbox.cashfree.com/verification"),
        cashfree_vrs_app_id=_getenv("CASHFREE_VRS_APP_ID", ""),
        cashfree_vrs_app_secret=_getenv("CASHFREE_VRS_APP_SECRET", ""),
        invoice_suite_endpoint=_getenv("INVOICE_SUITE_ENDPOINT", ""),
        invoice_suite_api_key=_getenv("INVOICE_SUITE_API_KEY", ""),
        public_base_url=_getenv("PUBLIC_BASE_URL", "http://localhost:3000"),
        dashboard_cache_seconds=_getenv_int("DASHBOARD_CACHE_SECONDS", 120),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "STORAGE_BACKEND": s.storage_backend,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "S3_PUBLIC_BASE_URL": s.s3_public_base_url,
        "LOCAL_STORAGE_ROOT": s.local_storage_root,
        "OTP_LENGTH": s.otp_length,
        "OTP_EXPIRY_MINUTES": s.otp_expiry_minutes,
        "OTP_MAX_ATTEMPTS": s.otp_max_attempts,
        "OTP_DELIVERY": s.otp_delivery,
        "SMTP_HOST": s.smtp_host,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USERNAME": s.smtp_username,
        "SMTP_PASSWORD": s.smtp_password,
        "SMTP_FROM": s.smtp_from,
        "SMTP_USE_TLS": s.smtp_use_tls,
        "SMS_GATEWAY_URL": s.sms_gateway_url,
        "SMS_GATEWAY_AUTH_KEY": s.sms_gateway_auth_key,
        "SMS_OTP_TEMPLATE_ID": s.sms_otp_template_id,
        "CASHFREE_ENVIRONMENT": s.cashfree_environment,
        "CASHFREE_APP_ID": s.cashfree_app_id,
        "CASHFREE_APP_SECRET": s.cashfree_app_secret,
        "CASHFREE_API_VERSION": s.cashfree_api_version,
        "CASHFREE_VRS_BASE_URL": s.cashfree_vrs_base_url,
        "CASHFREE_VRS_APP_ID": s.cashfree_vrs_app_id,
        "CASHFREE_VRS_APP_SECRET": s.cashfree_vrs_app_secret,
        "INVOICE_SUITE_ENDPOINT": s.invoice_suite_endpoint,
        "INVOICE_SUITE_API_KEY": s.invoice_suite_api_key,
        "PUBLIC_BASE_URL": s.public_base_url,
        "DASHBOARD_CACHE_SECONDS": s.dashboard_cache_seconds,
        # security defaults
        "SESSION_COOKIE_NAME": "__fb_session",
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # file upload limits (25MB)
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
    }
