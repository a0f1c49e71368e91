# Overview: Flask API routes for sales and commissions; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, request

from ..constants import UserRole
from ..decorators import require_auth, require_role
from ..responses import json_body, ok, service_error
from ..services import sales_service
from ..services.concurrency import commit_with_retry
from ..validation import ValidationError


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")
commissions_bp = Blueprint("commissions", __name__, url_prefix="/api/commissions")


@sales_bp.post("")
@require_auth
def create_sale():
    """
    Request body:
    {
        "imei_id": int | "imei": str,
        "payment_method": "cash" | "mpesa" | ...,
        "payment_reference": str,
        "customer_name": str, "customer_phone": str,
        "customer_email": str, "customer_id_number": str,
        "notes": str
    }
    """
    try:
        data = json_body()
        ref = data.get("imei_id") or data.get("imei")
        if ref in (None, ""):
            raise ValidationError("imei_id or imei is required")
        sale = sales_service.record_sale(
            g.current_user,
            ref,
            data.get("payment_method"),
            payment_reference=data.get("payment_reference"),
            customer_name=data.get("customer_name"),
            customer_phone=data.get("customer_phone"),
            customer_email=data.get("customer_email"),
            customer_id_number=data.get("customer_id_number"),
            notes=data.get("notes"),
        )
        return ok(
            {"sale": sale.to_dict(), "commissions": [c.to_dict() for c in sale.commissions]},
            message=f"Sale {sale.receipt_number} recorded",
            status=201,
        )
    except Exception as exc:
        return service_error(exc)


@sales_bp.get("")
@require_auth
def list_sales():
    try:
        result = sales_service.list_sales(
            g.current_user,
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", current_app.config.get("DEFAULT_PAGE_LIMIT", 50), type=int),
        )
        return ok(result)
    except Exception as exc:
        return service_error(exc)


@commissions_bp.get("")
@require_auth
def list_commissions():
    """Own commissions; admins see all (optionally ?user_id=)."""
    try:
        rows = sales_service.list_commissions(
            g.current_user,
            status=request.args.get("status"),
            user_id=request.args.get("user_id"),
        )
        return ok({
            "commissions": [c.to_dict() for c in rows],
            "count": len(rows),
            "total_cents": sum(c.amount_cents for c in rows),
        })
    except Exception as exc:
        return service_error(exc)


@commissions_bp.post("/<int:commission_id>/approve")
@require_auth
@require_role(UserRole.ADMIN)
def approve_commission(commission_id: int):
    try:
        commission = sales_service.approve_commission(g.current_user, commission_id)
        commit_with_retry()
        return ok({"commission": commission.to_dict()}, message="Commission approved")
    except Exception as exc:
        return service_error(exc)


@commissions_bp.post("/<int:commission_id>/reject")
@require_auth
@require_role(UserRole.ADMIN)
def reject_commission(commission_id: int):
    try:
        commission = sales_service.reject_commission(g.current_user, commission_id, json_body().get("reason"))
        commit_with_retry()
        return ok({"commission": commission.to_dict()}, message="Commission rejected")
    except Exception as exc:
        return service_error(exc)


@commissions_bp.post("/<int:commission_id>/pay")
@require_auth
@require_role(UserRole.ADMIN)
def pay_commission(commission_id: int):
    try:
        commission = sales_service.mark_commission_paid(
            g.current_user, commission_id, json_body().get("payment_reference")
        )
        commit_with_retry()
        return ok({"commission": commission.to_dict()}, message="Commission marked as paid")
    except Exception as exc:
        return service_error(exc)
