# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import User


USER_HEADER = "X-User-Id"


def require_user(f):
    """
    Resolve the requesting customer and store it on g.current_user.

    Session and token handling happen upstream; by the time a request reaches
    this service the gateway has already authenticated it and forwards the
    customer id in the X-User-Id header.

    Returns 401 if:
    - The header is missing or not an integer
    - The user does not exist or is deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_user_id = request.headers.get(USER_HEADER, "").strip()
        if not raw_user_id.isdigit():
            return jsonify({"error": "Authentication required"}), 401

        user = db.session.get(User, int(raw_user_id))
        if not user or not user.is_active:
            return jsonify({"error": "Unknown or inactive user"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function
