# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


ACTOR_HEADER = "X-User-Id"


def require_actor(f):
    """
    Require the acting user id forwarded by the upstream identity layer.

    Sets g.actor_id to the X-User-Id header value (an opaque string).

    SECURITY: The header is trusted; this service must sit behind the
    gateway that authenticates users and sets it. Returns 401 when missing.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not actor_id:
            return jsonify({"error": "Authentication required"}), 401
        if len(actor_id) > 64:
            return jsonify({"error": "Invalid user id"}), 401

        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function
