# Overview: Request and role decorators for API routes.

from functools import wraps

from flask import g, request

from .responses import fail
from .services import session_service


def require_auth(f):
    """
    Require a valid bearer token.

    Sets g.current_user to the authenticated User. Returns 401 when the
    header is missing or the token is invalid, expired, idle or revoked.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return fail("Authentication required", 401)

        token = auth_header.split(" ", 1)[1].strip()
        user = session_service.validate_session(token)
        if user is None:
            return fail("Invalid or expired token", 401)

        g.current_user = user
        g.auth_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Restrict a route to the given hierarchy roles (use after @require_auth)."""
    allowed = {getattr(r, "value", r) for r in roles}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return fail("Authentication required", 401)
            if user.role not in allowed:
                return fail("You do not have access to this resource", 403)
            return f(*args, **kwargs)

        return decorated_function
    return decorator
