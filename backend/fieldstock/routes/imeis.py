# Overview: Flask API routes for the IMEI registry; parses input and returns JSON responses.

from flask import Blueprint, g, request

from ..constants import UserRole
from ..decorators import require_auth, require_role
from ..responses import json_body, ok, service_error
from ..services import imei_service
from ..services.concurrency import commit_with_retry
from ..validation import ValidationError, require_fields


imeis_bp = Blueprint("imeis", __name__, url_prefix="/api/imeis")


@imeis_bp.get("")
@require_auth
def search_imeis():
    """Query params: q, status, holder_id, product_id, source, limit, offset."""
    try:
        result = imei_service.search_imeis(
            request.args.get("q"),
            status=request.args.get("status"),
            holder_id=request.args.get("holder_id", type=int),
            product_id=request.args.get("product_id", type=int),
            source=request.args.get("source"),
            limit=request.args.get("limit", 50, type=int),
            offset=request.args.get("offset", 0, type=int),
        )
        return ok(result)
    except Exception as exc:
        return service_error(exc)


@imeis_bp.post("")
@require_auth
@require_role(UserRole.ADMIN)
def register_imei():
    """
    Request body:
    {
        "imei": str (15 digits), "product_id": int,
        "imei2": str, "capacity": str, "price_cents": int, "source": str,
        "fo_commission_cents": int, "tl_commission_cents": int, "rm_commission_cents": int,
        "notes": str
    }
    """
    try:
        data = dict(require_fields(json_body(), "imei", "product_id"))
        imei = imei_service.register_imei(g.current_user, data.pop("imei"), data.pop("product_id"), **data)
        commit_with_retry()
        return ok({"imei": imei.to_dict()}, message="IMEI registered", status=201)
    except Exception as exc:
        return service_error(exc)


@imeis_bp.post("/bulk")
@require_auth
@require_role(UserRole.ADMIN)
def bulk_register():
    """Request body: {"imeis": [{"imei", "product_id", ...}, ...]}"""
    try:
        rows = json_body().get("imeis")
        if not isinstance(rows, list):
            raise ValidationError("imeis must be a list")
        result = imei_service.bulk_register(g.current_user, rows)
        commit_with_retry()
        message = f"{len(result['success'])} registered, {len(result['failed'])} failed"
        return ok(result, message=message, status=201)
    except Exception as exc:
        return service_error(exc)


@imeis_bp.get("/<ref>")
@require_auth
def get_imei(ref: str):
    try:
        return ok({"imei": imei_service.get_imei(ref).to_dict()})
    except Exception as exc:
        return service_error(exc)


@imeis_bp.post("/<ref>/status")
@require_auth
@require_role(UserRole.ADMIN)
def set_imei_status(ref: str):
    """Request body: {"action": "LOCK" | "UNLOCK" | "LOST", "reason": str}"""
    try:
        data = require_fields(json_body(), "action")
        imei = imei_service.set_imei_status(g.current_user, ref, data["action"], data.get("reason"))
        commit_with_retry()
        return ok({"imei": imei.to_dict()}, message=f"IMEI status is now {imei.status}")
    except Exception as exc:
        return service_error(exc)
