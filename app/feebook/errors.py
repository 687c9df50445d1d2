from __future__ import annotations

from typing import Any

from flask import Flask, g, jsonify
from sqlalchemy.exc import DataError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import NoResultFound
from werkzeug.exceptions import HTTPException


class ApiError(Exception):
    """Raised by services; rendered as {"success": false, "error": ...} with `status`."""

    def __init__(self, status: int, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.status = status
        self.message = message
        self.extra = extra


def json_ok(data: Any = None, status: int = 200, **extra: Any):
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    body.update(extra)
    return jsonify(body), status


def json_error(message: str, status: int, **extra: Any):
    body: dict[str, Any] = {"success": False, "error": message}
    body.update(extra)
    return jsonify(body), status


def _is_unique_violation(e: IntegrityError) -> bool:
    orig = getattr(e, "orig", None)
    # psycopg2 exposes the SQLSTATE; sqlite only has the message.
    if getattr(orig, "pgcode", None) == "23505":
        return True
    return "unique" in str(orig or e).lower()


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):  # type: ignore[no-redef]
        if e.status >= 500:
            app.logger.error("API error %s (request_id=%s): %s", e.status, getattr(g, "request_id", None), e.message)
        return json_error(e.message, e.status, **e.extra)

    @app.errorhandler(IntegrityError)
    def _integrity_error(e: IntegrityError):  # type: ignore[no-redef]
        app.logger.warning("Integrity error (request_id=%s): %s", getattr(g, "request_id", None), e.orig)
        if _is_unique_violation(e):
            return json_error("Record already exists", 409)
        return json_error("Database constraint violation", 400)

    @app.errorhandler(NoResultFound)
    def _not_found(e: NoResultFound):  # type: ignore[no-redef]
        return json_error("Record not found", 404)

    @app.errorhandler(DataError)
    def _data_error(e: DataError):  # type: ignore[no-redef]
        app.logger.warning("Data error (request_id=%s): %s", getattr(g, "request_id", None), e.orig)
        return json_error("Invalid data format", 400)

    @app.errorhandler(OperationalError)
    def _operational_error(e: OperationalError):  # type: ignore[no-redef]
        app.logger.exception("Database connection error (request_id=%s)", getattr(g, "request_id", None))
        return json_error("Database connection error", 503)

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):  # type: ignore[no-redef]
        if e.code == 413:
            return json_error("File too large. Maximum size is 25MB.", 413)
        return json_error(e.description or e.name, e.code or 500)

    @app.errorhandler(Exception)
    def _err_500(e: Exception):  # type: ignore[no-redef]
        # Ensure stack trace shows in logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return json_error("Internal server error", 500)
