# Overview: Service-layer operations for hierarchy members; create, list and relink users.

"""
User management.

HIERARCHY LINKS:
- team_leader_id must point at an active team_leader
- regional_manager_id must point at an active regional_manager
- a user never links to themselves
Admins carry no links. Field officers may carry both (the manager link is
used for commission routing).
"""
from __future__ import annotations

from typing import Any

from sqlalchemy.exc import IntegrityError

from ..constants import ROLE_VALUES, UserRole
from ..extensions import db
from ..models import User
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    parse_int,
    require_fields,
    validate_payload,
)
from .auth_service import hash_password
from .concurrency import run_with_retry


USER_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "email", "role", "region", "phone", "fo_code",
        "team_leader_id", "regional_manager_id", "is_active",
    },
    required_on_create={"name", "email", "role"},
)

_LINK_ROLES = {
    "team_leader_id": UserRole.TEAM_LEADER.value,
    "regional_manager_id": UserRole.REGIONAL_MANAGER.value,
}


def _require_admin(actor: User) -> None:
    if actor is None or actor.role != UserRole.ADMIN.value:
        raise PermissionDeniedError("Only admins can manage users")


def _check_links(user_id: int | None, role: str, patch: dict) -> None:
    if role not in ROLE_VALUES:
        raise ValidationError(f"role must be one of: {', '.join(ROLE_VALUES)}")

    for field, expected_role in _LINK_ROLES.items():
        target_id = patch.get(field)
        if target_id is None:
            continue
        if role == UserRole.ADMIN.value:
            raise ValidationError("Admins cannot have hierarchy links")
        if user_id is not None and target_id == user_id:
            raise ValidationError(f"{field} cannot point at the user itself")
        target = db.session.get(User, target_id)
        if target is None or not target.is_active:
            raise ValidationError(f"{field} does not reference an active user")
        if target.role != expected_role:
            raise ValidationError(f"{field} must reference a {expected_role.replace('_', ' ')}")


def _clean(patch: dict) -> dict:
    if "email" in patch and patch["email"]:
        patch["email"] = patch["email"].strip().lower()
    if "fo_code" in patch and not patch["fo_code"]:
        patch["fo_code"] = None
    return patch


def create_user(actor: User | None, payload: dict, password: str) -> User:
    """
    Create a hierarchy member. actor=None is only used by the CLI bootstrap.
    Caller commits.
    """
    if actor is not None:
        _require_admin(actor)
    patch = _clean(validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=False))
    _check_links(None, patch["role"], patch)

    if db.session.query(User).filter(User.email == patch["email"]).first():
        raise ConflictError(f"A user with email {patch['email']} already exists")

    def _op():
        user = User(password_hash=hash_password(password), **patch)
        db.session.add(user)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("A user with this email or FO code already exists")
        return user

    return run_with_retry(_op)


def update_user(actor: User, user_id: int, payload: dict) -> User:
    """Patch profile, role or links. Caller commits."""
    _require_admin(actor)
    user = get_user(user_id)
    patch = _clean(validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=True))

    role = patch.get("role", user.role)
    links = {
        field: patch.get(field, getattr(user, field))
        for field in _LINK_ROLES
    }
    if role == UserRole.ADMIN.value:
        # Promotion to admin drops any links unless explicitly re-sent
        links = {field: patch.get(field) for field in _LINK_ROLES}
    _check_links(user.id, role, links)

    if patch.get("is_active") is False and user.id == actor.id:
        raise ValidationError("You cannot deactivate yourself")

    for key, value in patch.items():
        setattr(user, key, value)
    for key, value in links.items():
        setattr(user, key, value)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("A user with this email or FO code already exists")
    return user


def get_user(user_id: Any) -> User:
    user = db.session.get(User, parse_int(user_id, "user_id"))
    if user is None:
        raise NotFoundError("User not found")
    return user


def list_users(
    *,
    role: str | None = None,
    region: str | None = None,
    team_leader_id: Any = None,
    regional_manager_id: Any = None,
    include_inactive: bool = False,
) -> list[User]:
    q = db.session.query(User)
    if not include_inactive:
        q = q.filter(User.is_active.is_(True))
    if role:
        if role not in ROLE_VALUES:
            raise ValidationError(f"role must be one of: {', '.join(ROLE_VALUES)}")
        q = q.filter(User.role == role)
    if region:
        q = q.filter(User.region == region)
    if team_leader_id not in (None, ""):
        q = q.filter(User.team_leader_id == parse_int(team_leader_id, "team_leader_id"))
    if regional_manager_id not in (None, ""):
        q = q.filter(User.regional_manager_id == parse_int(regional_manager_id, "regional_manager_id"))
    return q.order_by(User.id.asc()).all()


def create_user_from_payload(actor: User | None, payload: dict) -> User:
    payload = dict(require_fields(payload, "name", "email", "role", "password"))
    password = payload.pop("password")
    return create_user(actor, payload, password)
