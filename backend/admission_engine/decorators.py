# Overview: Request decorators and error helpers for API routes.

from functools import wraps
from flask import current_app, g, jsonify, request

from .errors import EngineError


def _header_int(name: str) -> int | None:
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def require_actor(f):
    """
    Establish actor and tenant context from upstream identity headers.

    Authentication happens in front of this service. The identity provider
    forwards the resolved identity as:
    - X-Actor-Id: the acting user's id -> g.actor_id
    - X-Org-Id: the tenant -> g.org_id

    Returns 401 when either header is missing or not an integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = _header_int("X-Actor-Id")
        org_id = _header_int("X-Org-Id")
        if actor_id is None or org_id is None:
            return jsonify({"error": "X-Actor-Id and X-Org-Id headers required"}), 401

        g.actor_id = actor_id
        g.org_id = org_id
        return f(*args, **kwargs)

    return decorated_function


def error_response(exc: EngineError):
    """JSON body and HTTP status for an engine rejection."""
    if exc.http_status >= 500:
        current_app.logger.error("Engine failure: %s %s", exc.message, exc.details)
    return jsonify(exc.to_dict()), exc.http_status
