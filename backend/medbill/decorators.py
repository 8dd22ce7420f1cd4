# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


def require_user(f):
    """
    Require an acting user id and store it on g.user_id.

    The id comes from the X-User-Id header. Authentication happens upstream;
    this only attributes writes (bills, cancellations, payments) to a user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get("X-User-Id") or "").strip()
        if not raw.isdigit() or int(raw) <= 0:
            return jsonify({"error": "X-User-Id header with a positive integer is required"}), 401

        g.user_id = int(raw)
        return f(*args, **kwargs)

    return decorated_function
