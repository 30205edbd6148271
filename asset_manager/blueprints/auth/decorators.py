from functools import wraps

from flask import jsonify, session

from ...extensions import db
from ...models import User


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not session.get("user_id"):
            return jsonify(success=False, error="auth_required"), 401
        return fn(*args, **kwargs)
    return wrapper


def role_required(*roles):
    """
    Usage:
      @role_required("admin")

    The role is re-read from the database so a demoted or disabled account
    loses access without waiting for its session to end.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user_id = session.get("user_id")
            if not user_id:
                return jsonify(success=False, error="auth_required"), 401

            user = db.session.get(User, user_id)
            if user is None or not user.is_active or user.role not in roles:
                return jsonify(
                    success=False,
                    error="forbidden",
                    required_roles=list(roles),
                ), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator
