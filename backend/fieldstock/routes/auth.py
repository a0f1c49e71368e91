# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Bearer-token sessions for hierarchy members.

Self-registration does not exist; admins create users (POST /api/users or
`flask users create`).
"""
from flask import Blueprint, current_app, g, request

from ..decorators import require_auth
from ..extensions import db
from ..responses import fail, json_body, ok
from ..services import auth_service, session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Request body: {"email": str, "password": str}
    Returns {"token", "user"}.
    """
    data = json_body()
    email = data.get("email") or data.get("username")
    password = data.get("password")
    if not email or not password:
        return fail("email and password required", 400)

    try:
        user = auth_service.authenticate(email, password)
        if user is None:
            db.session.rollback()
            return fail("Invalid credentials", 401)

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Login failed")
        return fail("Internal server error", 500)

    return ok({
        "token": token,
        "expires_at": session.to_dict()["expires_at"],
        "user": user.to_dict(),
    })


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.auth_token)
    return ok(None, message="Logged out")


@auth_bp.get("/me")
@require_auth
def me_route():
    return ok({"user": g.current_user.to_dict()})
