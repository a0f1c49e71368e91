# Overview: Service-layer operations for the region registry; managers, deactivation and per-region stats.

"""
Region registry.

Users, IMEIs and sales refer to a region by name. A region may have one
regional manager; assigning the manager also sets that user's region,
and replacing or removing them clears it. Deleting a region only
deactivates it and is refused while other users are still assigned.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..constants import ImeiStatus, UserRole
from ..extensions import db
from ..models import Imei, Region, Sale, User
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    parse_int,
    validate_payload,
)


logger = logging.getLogger(__name__)


REGION_POLICY = ModelValidationPolicy(
    writable_fields={"name", "manager_id", "description", "is_active"},
    required_on_create={"name"},
)

DUPLICATE_NAME = "Region with this name already exists"


def _require_admin(actor: User | None) -> None:
    if actor is not None and actor.role != UserRole.ADMIN.value:
        raise PermissionDeniedError("Only admins can manage regions")


def _load_manager(manager_id: Any) -> User:
    manager = db.session.get(User, parse_int(manager_id, "manager_id"))
    if manager is None:
        raise ValidationError("Manager not found")
    if manager.role != UserRole.REGIONAL_MANAGER.value:
        raise ValidationError("Manager must be a regional manager")
    if not manager.is_active:
        raise ValidationError("Manager must be an active user")
    return manager


def _check_unique_name(name: str, region_id: int | None = None) -> None:
    q = db.session.query(Region).filter(func.lower(Region.name) == name.lower())
    if region_id is not None:
        q = q.filter(Region.id != region_id)
    if q.first() is not None:
        raise ConflictError(DUPLICATE_NAME)


def _flush() -> None:
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(DUPLICATE_NAME)


def list_regions(*, include_inactive: bool = False) -> list[Region]:
    q = db.session.query(Region)
    if not include_inactive:
        q = q.filter(Region.is_active.is_(True))
    return q.order_by(Region.name.asc()).all()


def get_region(region_id: Any) -> Region:
    region = db.session.get(Region, parse_int(region_id, "region_id"))
    if region is None:
        raise NotFoundError("Region not found")
    return region


def find_by_name(name: str | None) -> Region | None:
    if not name:
        return None
    return db.session.query(Region).filter(Region.name == name).first()


def manager_id_for(region_name: str | None) -> int | None:
    """Manager of an active region, or None when unknown or unmanaged."""
    region = find_by_name(region_name)
    if region is None or not region.is_active:
        return None
    return region.manager_id


def create_region(actor: User | None, payload: dict) -> Region:
    """actor=None is only used by the CLI bootstrap. Caller commits."""
    _require_admin(actor)
    patch = validate_payload(model=Region, payload=payload, policy=REGION_POLICY, partial=False)
    _check_unique_name(patch["name"])

    manager = None
    if patch.get("manager_id") is not None:
        manager = _load_manager(patch["manager_id"])

    region = Region(**patch)
    db.session.add(region)
    _flush()
    if manager is not None:
        manager.region = region.name

    logger.info("Region created name=%s manager=%s", region.name, region.manager_id)
    return region


def update_region(actor: User, region_id: Any, payload: dict) -> Region:
    """
    Patch name, description, manager or active flag. Caller commits.

    A rename carries every user and IMEI of the old name along.
    """
    _require_admin(actor)
    region = get_region(region_id)
    patch = validate_payload(model=Region, payload=payload, policy=REGION_POLICY, partial=True)

    old_name = region.name
    new_name = patch.get("name", old_name)
    if new_name != old_name:
        _check_unique_name(new_name, region.id)
        db.session.query(User).filter(User.region == old_name).update(
            {User.region: new_name}, synchronize_session="fetch"
        )
        db.session.query(Imei).filter(Imei.region == old_name).update(
            {Imei.region: new_name}, synchronize_session="fetch"
        )

    if "manager_id" in patch and patch["manager_id"] != region.manager_id:
        old_manager = region.manager
        new_manager = _load_manager(patch["manager_id"]) if patch["manager_id"] is not None else None
        if old_manager is not None:
            old_manager.region = None
        if new_manager is not None:
            new_manager.region = new_name

    for key, value in patch.items():
        setattr(region, key, value)
    _flush()

    logger.info("Region updated id=%s name=%s", region.id, region.name)
    return region


def deactivate_region(actor: User, region_id: Any) -> Region:
    """Soft delete. Caller commits."""
    _require_admin(actor)
    region = get_region(region_id)

    q = db.session.query(func.count(User.id)).filter(User.region == region.name)
    if region.manager_id is not None:
        q = q.filter(User.id != region.manager_id)
    assigned = q.scalar()
    if assigned:
        raise ValidationError(
            f"Cannot delete region with {assigned} assigned users. Reassign users first."
        )

    if region.manager is not None:
        region.manager.region = None
    region.is_active = False
    db.session.flush()

    logger.info("Region deactivated id=%s name=%s", region.id, region.name)
    return region


def region_stats(region_id: Any) -> dict:
    """Members by role, stock by status and sales totals for one region."""
    region = get_region(region_id)

    users_by_role = dict(
        db.session.query(User.role, func.count(User.id))
        .filter(User.region == region.name, User.is_active.is_(True))
        .group_by(User.role)
        .all()
    )
    imeis_by_status = dict(
        db.session.query(Imei.status, func.count(Imei.id))
        .filter(Imei.region == region.name)
        .group_by(Imei.status)
        .all()
    )
    sales_count, revenue = (
        db.session.query(func.count(Sale.id), func.coalesce(func.sum(Sale.sale_amount_cents), 0))
        .filter(Sale.region == region.name)
        .one()
    )

    return {
        "region": region.to_dict(),
        "stats": {
            "total_users": sum(users_by_role.values()),
            "regional_managers": users_by_role.get(UserRole.REGIONAL_MANAGER.value, 0),
            "team_leaders": users_by_role.get(UserRole.TEAM_LEADER.value, 0),
            "field_officers": users_by_role.get(UserRole.FIELD_OFFICER.value, 0),
            "stock": {status.value: imeis_by_status.get(status.value, 0) for status in ImeiStatus},
            "total_sales": sales_count,
            "total_revenue_cents": int(revenue or 0),
        },
    }
