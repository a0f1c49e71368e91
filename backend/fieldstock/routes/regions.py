# Overview: Flask API routes for the region registry; parses input and returns JSON responses.

from flask import Blueprint, g, request

from ..constants import UserRole
from ..decorators import require_auth, require_role
from ..responses import json_body, ok, service_error
from ..services import region_service
from ..services.concurrency import commit_with_retry


regions_bp = Blueprint("regions", __name__, url_prefix="/api/regions")


@regions_bp.get("")
@require_auth
def list_regions():
    """Query params: include_inactive (admin only)."""
    try:
        include_inactive = (
            request.args.get("include_inactive", "").lower() in ("1", "true", "yes")
            and g.current_user.role == UserRole.ADMIN.value
        )
        regions = region_service.list_regions(include_inactive=include_inactive)
        return ok({"regions": [r.to_dict() for r in regions], "count": len(regions)})
    except Exception as exc:
        return service_error(exc)


@regions_bp.post("")
@require_auth
@require_role(UserRole.ADMIN)
def create_region():
    """Request body: {"name": str, "manager_id": int (optional), "description": str (optional)}"""
    try:
        region = region_service.create_region(g.current_user, json_body())
        commit_with_retry()
        return ok({"region": region.to_dict()}, message="Region created", status=201)
    except Exception as exc:
        return service_error(exc)


@regions_bp.get("/<int:region_id>")
@require_auth
def get_region(region_id: int):
    try:
        return ok({"region": region_service.get_region(region_id).to_dict()})
    except Exception as exc:
        return service_error(exc)


@regions_bp.get("/<int:region_id>/stats")
@require_auth
def region_stats(region_id: int):
    try:
        return ok(region_service.region_stats(region_id))
    except Exception as exc:
        return service_error(exc)


@regions_bp.patch("/<int:region_id>")
@require_auth
@require_role(UserRole.ADMIN)
def update_region(region_id: int):
    try:
        region = region_service.update_region(g.current_user, region_id, json_body())
        commit_with_retry()
        return ok({"region": region.to_dict()}, message="Region updated")
    except Exception as exc:
        return service_error(exc)


@regions_bp.delete("/<int:region_id>")
@require_auth
@require_role(UserRole.ADMIN)
def delete_region(region_id: int):
    try:
        region = region_service.deactivate_region(g.current_user, region_id)
        commit_with_retry()
        return ok({"region": region.to_dict()}, message="Region deleted")
    except Exception as exc:
        return service_error(exc)
