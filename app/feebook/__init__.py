import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, request, session
from sqlalchemy import inspect as sa_inspect

from app.feebook.auth import bp as auth_bp, load_current_actors
from app.feebook.config import load_config
from app.feebook.db import init_db, teardown_db_session
from app.feebook.errors import json_error, register_error_handlers
from app.feebook.modules.consumers.api import bp as consumers_bp
from app.feebook.modules.fee_plans.api import bp as fee_plans_bp
from app.feebook.modules.members.api import bp as members_bp
from app.feebook.modules.moderation.api import bp as moderation_bp
from app.feebook.modules.payments.api import bp as payments_bp
from app.feebook.modules.providers.api import bp as providers_bp
from app.feebook.routes import bp as routes_bp
from app.feebook.uploads import bp as uploads_bp

# Tables the running code expects; anything missing means `alembic upgrade head` was skipped.
_EXPECTED_TABLES = (
    "moderators",
    "otp_codes",
    "audit_events",
    "providers",
    "provider_verifications",
    "bank_accounts",
    "members",
    "consumers",
    "consumer_members",
    "fee_plans",
    "orders",
    "transactions",
    "policies",
    "queries",
)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=7)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    # CSRF protection (session token echoed in the X-CSRF-Token header)
    from app.feebook.security import ensure_csrf_token, is_csrf_exempt, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if is_csrf_exempt(request.endpoint):
                return None
            if not validate_csrf(request):
                return json_error("CSRF token missing or invalid.", 400)
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("CASHFREE_APP_ID") or not app.config.get("CASHFREE_APP_SECRET"):
            app.logger.error("PAYMENTS CONFIG ERROR: CASHFREE_APP_ID / CASHFREE_APP_SECRET not set; orders will fail.")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [k for k in ("S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not app.config.get(k)]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            from botocore.exceptions import BotoCoreError, ClientError

            from app.feebook.storage import S3Storage, storage_from_config

            try:
                storage = storage_from_config(app.config)
                if isinstance(storage, S3Storage):
                    storage._client().head_bucket(Bucket=storage.bucket)
                    app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
            except (BotoCoreError, ClientError) as e:
                app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/api/v1/auth")
    app.register_blueprint(consumers_bp, url_prefix="/api/v1/consumer")
    app.register_blueprint(providers_bp, url_prefix="/api/v1/provider")
    app.register_blueprint(members_bp, url_prefix="/api/v1")
    app.register_blueprint(fee_plans_bp, url_prefix="/api/v1")
    app.register_blueprint(payments_bp, url_prefix="/api/v1/pg")
    app.register_blueprint(moderation_bp, url_prefix="/api/v1")
    app.register_blueprint(uploads_bp, url_prefix="/api/v1")

    app.before_request(load_current_actors)
    app.teardown_appcontext(teardown_db_session)
    register_error_handlers(app)

    # Migration health (lean): log drift between code expectations and DB schema.
    try:
        insp = sa_inspect(app.extensions["sqlalchemy_engine"])
        missing = [t for t in _EXPECTED_TABLES if not insp.has_table(t)]
    except Exception as e:
        app.logger.exception("Schema health check failed: %s", e)
        missing = []
    if missing:
        app.logger.warning("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
