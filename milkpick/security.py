# milkpick/security.py
from functools import wraps

from flask import abort
from flask_login import current_user


def roles_required(*roles):
    """403 unless the authenticated user has one of `roles`."""
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                abort(401)
            if current_user.role not in roles:
                abort(403)
            return fn(*args, **kwargs)
        return wrapper
    return decorator
