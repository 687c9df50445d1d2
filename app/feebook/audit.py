import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.feebook.models import AuditEvent


def _actor_fields(actor: Any) -> tuple[str | None, int | None, str | None]:
    if actor is None:
        return None, None, None
    # Moderator / Provider / Consumer all carry id + email; the table name doubles as actor type.
    actor_type = getattr(actor, "__tablename__", "").rstrip("s") or None
    return actor_type, getattr(actor, "id", None), getattr(actor, "email", None)


def record_event(
    s: Session,
    *,
    actor: Any,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper.
    """
    in_request = has_request_context()
    rid = request_id or (getattr(g, "request_id", None) if in_request else None)
    actor_type, actor_id, actor_email = _actor_fields(actor)
    ev = AuditEvent(
        request_id=rid,
        actor_type=actor_type,
        actor_id=actor_id,
        actor_email=actor_email,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        client_ip=request.remote_addr if in_request else None,
    )
    s.add(ev)
    return ev
