# Overview: Flask API routes for hierarchy members; parses input and returns JSON responses.

from flask import Blueprint, g, request

from ..constants import UserRole
from ..decorators import require_auth, require_role
from ..responses import json_body, ok, service_error
from ..services import session_service, user_service
from ..services.concurrency import commit_with_retry


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
def list_users():
    """
    Query params: role, region, team_leader_id, regional_manager_id,
    include_inactive (admin only).
    """
    try:
        include_inactive = (
            request.args.get("include_inactive", "").lower() in ("1", "true", "yes")
            and g.current_user.role == UserRole.ADMIN.value
        )
        users = user_service.list_users(
            role=request.args.get("role"),
            region=request.args.get("region"),
            team_leader_id=request.args.get("team_leader_id"),
            regional_manager_id=request.args.get("regional_manager_id"),
            include_inactive=include_inactive,
        )
        return ok({"users": [u.to_dict() for u in users], "count": len(users)})
    except Exception as exc:
        return service_error(exc)


@users_bp.post("")
@require_auth
@require_role(UserRole.ADMIN)
def create_user():
    try:
        user = user_service.create_user_from_payload(g.current_user, json_body())
        commit_with_retry()
        return ok({"user": user.to_dict()}, message="User created", status=201)
    except Exception as exc:
        return service_error(exc)


@users_bp.get("/<int:user_id>")
@require_auth
def get_user(user_id: int):
    try:
        return ok({"user": user_service.get_user(user_id).to_dict()})
    except Exception as exc:
        return service_error(exc)


@users_bp.patch("/<int:user_id>")
@require_auth
@require_role(UserRole.ADMIN)
def update_user(user_id: int):
    try:
        user = user_service.update_user(g.current_user, user_id, json_body())
        commit_with_retry()
        if not user.is_active:
            session_service.revoke_all_user_sessions(user.id, "User deactivated")
        return ok({"user": user.to_dict()}, message="User updated")
    except Exception as exc:
        return service_error(exc)
