"""
Request decorators and helpers shared by the API blueprints
"""

import hmac
from functools import wraps

from flask import current_app, g, jsonify, request
from flask_login import current_user

from streakr.utils.errors import InvalidInput


def add_security_headers(f):
    """Add security headers to API responses"""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        response = f(*args, **kwargs)
        if isinstance(response, tuple):
            target = response[0]
        else:
            target = response
        if hasattr(target, "headers"):
            target.headers["Cache-Control"] = (
                "no-store, no-cache, must-revalidate, max-age=0"
            )
        return response

    return decorated_function


def _token_matches(supplied):
    expected = current_app.config.get("ADMIN_TOKEN") or ""
    if not expected or not supplied:
        return False
    return hmac.compare_digest(supplied.encode(), expected.encode())


def require_admin(f):
    """
    Allow the request through for a logged-in admin user or a matching
    X-Admin-Token header. Sets ``g.admin_user_id`` (None for token access).
    """

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_user.is_authenticated and current_user.is_admin:
            g.admin_user_id = current_user.id
            return f(*args, **kwargs)

        if _token_matches(request.headers.get("X-Admin-Token")):
            g.admin_user_id = None
            return f(*args, **kwargs)

        if current_user.is_authenticated:
            return jsonify({"error": "Access denied"}), 403
        return jsonify({"error": "Unauthorized"}), 401

    return decorated_function


def get_json_body():
    """Parsed JSON object body; anything else is rejected as invalid input"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidInput("Request body must be a JSON object")
    return data


def int_arg(name, default=None):
    """Integer query-string argument; malformed values are invalid input"""
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidInput(f"{name} must be an integer") from None
