from __future__ import annotations

import re
from typing import TYPE_CHECKING

from app.feebook.audit import record_event
from app.feebook.constants import QUERY_OPEN, QUERY_RESOLVED
from app.feebook.errors import ApiError
from app.feebook.utils import EMAIL_RE, iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.feebook.models import Moderator
    from app.feebook.modules.moderation.models import Policy, Query

_SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def policy_to_dict(p: "Policy") -> dict:
    return {
        "id": p.id,
        "title": p.title,
        "slug": p.slug,
        "content": p.content,
        "isPublished": p.is_published,
        "createdAt": iso(p.created_at),
        "updatedAt": iso(p.updated_at),
    }


def query_to_dict(q: "Query") -> dict:
    return {
        "id": q.id,
        "email": q.email,
        "phone": q.phone,
        "message": q.message,
        "status": q.status,
        "createdAt": iso(q.created_at),
        "updatedAt": iso(q.updated_at),
    }


# ---------- Policies ----------
def validate_policy_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    for key, label in (("title", "Title"), ("slug", "Slug"), ("content", "Content")):
        if (not partial or key in payload) and not str(payload.get(key) or "").strip():
            errors.append(f"{label} is required.")
    slug = str(payload.get("slug") or "").strip()
    if slug and not _SLUG_RE.match(slug):
        errors.append("Slug may only contain lowercase letters, digits and hyphens.")
    if "isPublished" in payload and not isinstance(payload.get("isPublished"), bool):
        errors.append("isPublished must be a boolean.")
    return errors


def _slug_taken(s: "Session", slug: str, exclude_id: int | None = None) -> bool:
    from app.feebook.modules.moderation.models import Policy

    q = s.query(Policy.id).filter(Policy.slug == slug)
    if exclude_id is not None:
        q = q.filter(Policy.id != exclude_id)
    return q.first() is not None


def list_policies(s: "Session") -> list["Policy"]:
    from app.feebook.modules.moderation.models import Policy

    return s.query(Policy).order_by(Policy.created_at.desc(), Policy.id.desc()).all()


def get_policy(s: "Session", policy_id: int) -> "Policy":
    from app.feebook.modules.moderation.models import Policy

    p = s.get(Policy, policy_id)
    if p is None:
        raise ApiError(404, "Policy not found")
    return p


def get_published_policy(s: "Session", slug: str) -> "Policy":
    from app.feebook.modules.moderation.models import Policy

    p = s.query(Policy).filter(Policy.slug == slug, Policy.is_published.is_(True)).one_or_none()
    if p is None:
        raise ApiError(404, "Policy not found")
    return p


def create_policy(s: "Session", moderator: "Moderator", payload: dict) -> "Policy":
    from app.feebook.modules.moderation.models import Policy

    slug = str(payload.get("slug") or "").strip()
    if _slug_taken(s, slug):
        raise ApiError(409, f"A policy with slug {slug} already exists")
    p = Policy(
        title=str(payload.get("title") or "").strip(),
        slug=slug,
        content=str(payload.get("content") or ""),
        is_published=bool(payload.get("isPublished", True)),
    )
    s.add(p)
    s.flush()
    record_event(s, actor=moderator, action="policy.create", entity_type="Policy", entity_id=str(p.id), metadata={"slug": slug})
    return p


def update_policy(s: "Session", p: "Policy", moderator: "Moderator", payload: dict) -> "Policy":
    changes = {}
    if "slug" in payload:
        slug = str(payload.get("slug") or "").strip()
        if slug != p.slug:
            if _slug_taken(s, slug, exclude_id=p.id):
                raise ApiError(409, f"A policy with slug {slug} already exists")
            changes["slug"] = {"old": p.slug, "new": slug}
            p.slug = slug
    if "title" in payload:
        title = str(payload.get("title") or "").strip()
        if title != p.title:
            changes["title"] = {"old": p.title, "new": title}
            p.title = title
    if "content" in payload and payload.get("content") != p.content:
        changes["content"] = "changed"
        p.content = str(payload.get("content") or "")
    if "isPublished" in payload and bool(payload["isPublished"]) != p.is_published:
        changes["is_published"] = {"old": p.is_published, "new": bool(payload["isPublished"])}
        p.is_published = bool(payload["isPublished"])
    record_event(s, actor=moderator, action="policy.edit", entity_type="Policy", entity_id=str(p.id), metadata={"changes": changes})
    return p


def delete_policy(s: "Session", p: "Policy", moderator: "Moderator") -> None:
    record_event(s, actor=moderator, action="policy.delete", entity_type="Policy", entity_id=str(p.id), metadata={"slug": p.slug})
    s.delete(p)


# ---------- Support queries ----------
def validate_query_payload(payload: dict) -> list[str]:
    errors = []
    email = str(payload.get("email") or "").strip()
    phone = str(payload.get("phone") or "").strip()
    if not email and not phone:
        errors.append("Email or phone is required.")
    if email and not EMAIL_RE.match(email):
        errors.append("Invalid email format.")
    if not str(payload.get("message") or "").strip():
        errors.append("Message is required.")
    return errors


def submit_query(s: "Session", payload: dict) -> "Query":
    from app.feebook.modules.moderation.models import Query

    q = Query(
        email=str(payload.get("email") or "").strip().lower() or None,
        phone=str(payload.get("phone") or "").strip() or None,
        message=str(payload.get("message") or "").strip(),
        status=QUERY_OPEN,
    )
    s.add(q)
    s.flush()
    record_event(s, actor=None, action="query.submit", entity_type="Query", entity_id=str(q.id))
    return q


def list_queries(s: "Session") -> list["Query"]:
    from app.feebook.modules.moderation.models import Query

    return s.query(Query).order_by(Query.created_at.desc(), Query.id.desc()).all()


def resolve_query(s: "Session", moderator: "Moderator", query_id) -> "Query":
    from app.feebook.modules.moderation.models import Query

    try:
        qid = int(query_id)
    except (TypeError, ValueError):
        raise ApiError(400, "Query ID is required")
    q = s.get(Query, qid)
    if q is None:
        raise ApiError(404, "Query not found")
    old_status = q.status
    q.status = QUERY_RESOLVED
    record_event(
        s,
        actor=moderator,
        action="query.resolve",
        entity_type="Query",
        entity_id=str(q.id),
        metadata={"old_status": old_status},
    )
    return q
