from functools import wraps
from flask import g
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity
from servicetrack import get_db
from servicetrack.constants.permissions import ROLE_ADMIN, ROLE_STAFF
from servicetrack.errors import Unauthenticated
from servicetrack.services import policy


def current_access() -> policy.AccessContext:
    ctx = g.get('access')
    if ctx is None:
        raise Unauthenticated()
    return ctx


def _load_access() -> policy.AccessContext:
    verify_jwt_in_request()
    ctx = policy.load_access_context(get_db(), get_jwt_identity())
    g.access = ctx
    return ctx


def require_role(*roles: str):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            policy.require_role(_load_access(), *roles)
            return fn(*args, **kwargs)
        return wrapper
    return outer


def require_capability(*caps: str, roles=(ROLE_ADMIN, ROLE_STAFF)):
    """Role gate first, then any-of capability check for staff."""
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            ctx = _load_access()
            policy.require_role(ctx, *roles)
            policy.authorize(ctx, caps)
            return fn(*args, **kwargs)
        return wrapper
    return outer
