import logging
from functools import wraps

from flask import abort
from flask_login import current_user

logger = logging.getLogger(__name__)


def has_permission(user, permission: str) -> bool:
    if user is None or not getattr(user, "is_authenticated", False):
        return False
    return user.has_permission(permission)


def permission_required(permission: str):
    """Fixed 403 before the view runs when the current user lacks `permission`."""
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not has_permission(current_user, permission):
                logger.info("Permission %s denied for user %s", permission, getattr(current_user, "id", None))
                abort(403)
            return view(*args, **kwargs)
        return wrapped
    return decorator
