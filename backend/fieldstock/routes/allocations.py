# Overview: Flask API routes for stock allocation, recall and stock views.

"""
Stock allocation API.

Mutations (allocate, bulk, recall, bulk-recall) are single units of work
inside allocation_service; the routes only translate results into the
envelope. Reads are role-scoped to the acting user.
"""
from flask import Blueprint, current_app, g, request

from ..constants import UserRole
from ..decorators import require_auth, require_role
from ..responses import fail, json_body, ok, service_error
from ..services import allocation_service, journey_service, stock_view_service
from ..validation import ValidationError


allocations_bp = Blueprint("allocations", __name__, url_prefix="/api/stock-allocations")


def _imei_ref(data: dict):
    ref = data.get("imei_id") or data.get("imei")
    if ref in (None, ""):
        raise ValidationError("imei_id or imei is required")
    return ref


def _single(result):
    if not result.success:
        return fail(result.error, result.error_code or 400)
    return ok(result.to_dict(), message=result.message, status=201)


def _bulk(result):
    if not result.ok:
        return fail(result.error, result.error_code or 400)
    return ok(result.to_dict(), message=result.message)


@allocations_bp.get("")
@require_auth
def list_allocations():
    """
    Ledger rows visible to the caller, newest first.

    Query params: from_user_id, to_user_id, event_type (ALLOCATION|RECALL),
    imei, page, limit.
    """
    try:
        result = allocation_service.list_allocations(
            g.current_user,
            from_user_id=request.args.get("from_user_id", type=int),
            to_user_id=request.args.get("to_user_id", type=int),
            event_type=request.args.get("event_type"),
            imei=request.args.get("imei"),
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", current_app.config.get("DEFAULT_PAGE_LIMIT", 50), type=int),
        )
        return ok(result)
    except Exception as exc:
        return service_error(exc)


@allocations_bp.post("")
@require_auth
def allocate():
    """
    Request body:
    {
        "imei_id": int | "imei": str,
        "to_user_id": int,
        "notes": str (optional),
        "expected_holder_id": int | null (optional compare-and-swap guard)
    }

    Returns:
        201: allocated
        400/403/404: refused (message says why)
        409: IMEI moved by someone else
    """
    try:
        data = json_body()
        kwargs = {}
        if "expected_holder_id" in data:
            kwargs["expected_holder_id"] = data["expected_holder_id"]
        result = allocation_service.allocate(
            g.current_user,
            _imei_ref(data),
            data.get("to_user_id"),
            notes=data.get("notes"),
            **kwargs,
        )
        return _single(result)
    except Exception as exc:
        return service_error(exc)


@allocations_bp.post("/bulk")
@require_auth
def bulk_allocate():
    """Request body: {"imei_ids": [int | str], "to_user_id": int, "notes": str}"""
    try:
        data = json_body()
        refs = data.get("imei_ids") or data.get("imeis") or []
        if not isinstance(refs, list):
            raise ValidationError("imei_ids must be a list")
        result = allocation_service.bulk_allocate(
            g.current_user, refs, data.get("to_user_id"), notes=data.get("notes")
        )
        return _bulk(result)
    except Exception as exc:
        return service_error(exc)


@allocations_bp.post("/recall")
@require_auth
def recall():
    """Request body: {"imei_id" | "imei", "from_user_id" (optional), "reason" (optional)}"""
    try:
        data = json_body()
        result = allocation_service.recall(
            g.current_user,
            _imei_ref(data),
            from_user_id=data.get("from_user_id"),
            reason=data.get("reason"),
        )
        return _single(result)
    except Exception as exc:
        return service_error(exc)


@allocations_bp.post("/bulk-recall")
@require_auth
def bulk_recall():
    """Request body: {"items": [{"imei_id" | "imei", "from_user_id"}], "reason": str}"""
    try:
        data = json_body()
        items = data.get("items") or []
        if not isinstance(items, list):
            raise ValidationError("items must be a list")
        result = allocation_service.bulk_recall(g.current_user, items, reason=data.get("reason"))
        return _bulk(result)
    except Exception as exc:
        return service_error(exc)


@allocations_bp.get("/available-stock")
@require_auth
def available_stock():
    """The caller's own allocatable stock (admin also sees the unallocated pool)."""
    try:
        imeis = stock_view_service.load_my_stock(g.current_user)
        return ok({"imeis": [i.to_dict() for i in imeis], "count": len(imeis)})
    except Exception as exc:
        return service_error(exc)


@allocations_bp.get("/recallable-stock")
@require_auth
def recallable_stock():
    try:
        groups = stock_view_service.load_recallable_stock(g.current_user)
        return ok({"items": groups, "count": sum(grp["count"] for grp in groups)})
    except Exception as exc:
        return service_error(exc)


@allocations_bp.get("/allocatable-users")
@require_auth
def allocatable_users():
    try:
        return ok(stock_view_service.allocatable_users(g.current_user))
    except Exception as exc:
        return service_error(exc)


@allocations_bp.get("/subordinates")
@require_auth
def subordinates():
    try:
        rows = stock_view_service.subordinates_with_stock(g.current_user)
        return ok({"users": rows, "count": len(rows)})
    except Exception as exc:
        return service_error(exc)


@allocations_bp.get("/workflow-stats")
@require_auth
def workflow_stats():
    try:
        return ok(stock_view_service.workflow_pipeline())
    except Exception as exc:
        return service_error(exc)


@allocations_bp.get("/ownership-audit")
@require_auth
@require_role(UserRole.ADMIN)
def ownership_audit():
    try:
        return ok(stock_view_service.ownership_audit())
    except Exception as exc:
        return service_error(exc)


@allocations_bp.get("/journey/<ref>")
@require_auth
def journey(ref: str):
    try:
        return ok(journey_service.journey_for(ref))
    except Exception as exc:
        return service_error(exc)
