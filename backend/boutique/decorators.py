# Overview: Request identity and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import identity_service


def _is_authenticated() -> bool:
    return hasattr(g, 'user_email') and hasattr(g, 'role')


def require_auth(f):
    """
    Require an identity forwarded by the upstream auth gateway.

    Sets the following Flask g attributes:
    - g.user_email: authenticated email (lower-cased)
    - g.user_id: external user id (may be None)
    - g.role: resolved role; privileged emails always resolve to admin

    Returns 401 when no X-User-Email header is present.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        email = (request.headers.get("X-User-Email") or "").strip().lower()
        if not email:
            return jsonify({"error": "Authentication required"}), 401

        g.user_email = email
        g.user_id = request.headers.get("X-User-Id") or None
        g.role = identity_service.resolve_role(email, request.headers.get("X-User-Role"))

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require the resolved role to be one of roles. Use after @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if g.role not in roles:
                return jsonify({
                    "error": "Forbidden",
                    "required_roles": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
