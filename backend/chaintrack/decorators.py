# Overview: Request decorators for API routes; acting-user context and role checks.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import User


ACTOR_HEADER = "X-User-Id"


def require_actor(f):
    """
    Resolve the acting user and store it in g.current_user.

    Sessions and passwords belong to the authentication layer in front of
    this API; it forwards the authenticated user's id in the X-User-Id
    header.

    Returns 401 if the header is missing or malformed, or the user is
    unknown or deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not raw.isdigit():
            return jsonify({"error": "Authentication required"}), 401

        user = db.session.get(User, int(raw))
        if user is None or not user.is_active:
            return jsonify({"error": "Unknown or inactive user"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require the acting user to hold one of the given roles.

    Must be applied after @require_actor.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "current_user"):
                return jsonify({"error": "Authentication required"}), 401
            if g.current_user.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403
            return f(*args, **kwargs)

        return decorated_function

    return decorator
