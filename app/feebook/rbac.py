from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.feebook.constants import ROLES
from app.feebook.errors import ApiError, json_error

_G_ATTRS = {role: f"current_{role}" for role in ROLES}


def current_actor(role: str) -> Any:
    """The signed-in Moderator/Provider/Consumer for `role`, or None."""
    return getattr(g, _G_ATTRS[role], None)


def any_actor() -> Any:
    for role in ROLES:
        actor = current_actor(role)
        if actor is not None:
            return actor
    return None


def ensure_owner(role: str, requested_id: Any) -> None:
    """
    Reject requests that name another account's id (e.g. ?providerId=) than the signed-in one.
    Absent ids are fine: handlers fall back to the session identity.
    """
    if requested_id in (None, ""):
        return
    actor = current_actor(role)
    try:
        same = actor is not None and int(requested_id) == actor.id
    except (TypeError, ValueError):
        same = False
    if not same:
        g.forbidden_reason = f"{role}_mismatch"
        raise ApiError(403, "Forbidden")


def require_role(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            if not any(current_actor(role) is not None for role in roles):
                return json_error("Unauthorized", 401)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_any_role(fn: Callable[..., Any]) -> Callable[..., Any]:
    return require_role(*ROLES)(fn)
