# Overview: Flask API routes for products operations; parses input and returns JSON responses.

from flask import Blueprint, g, request

from ..constants import UserRole
from ..decorators import require_auth, require_role
from ..responses import json_body, ok, service_error
from ..services import products_service
from ..services.concurrency import commit_with_retry


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    """Query params: category, include_inactive."""
    try:
        products = products_service.list_products(
            category=request.args.get("category"),
            include_inactive=request.args.get("include_inactive", "").lower() in ("1", "true", "yes"),
        )
        return ok({"products": [p.to_dict() for p in products], "count": len(products)})
    except Exception as exc:
        return service_error(exc)


@products_bp.post("")
@require_auth
@require_role(UserRole.ADMIN)
def create_product():
    try:
        product = products_service.create_product(g.current_user, json_body())
        commit_with_retry()
        return ok({"product": product.to_dict()}, message="Product created", status=201)
    except Exception as exc:
        return service_error(exc)


@products_bp.get("/<int:product_id>")
@require_auth
def get_product(product_id: int):
    try:
        return ok({"product": products_service.get_product(product_id).to_dict()})
    except Exception as exc:
        return service_error(exc)


@products_bp.patch("/<int:product_id>")
@require_auth
@require_role(UserRole.ADMIN)
def update_product(product_id: int):
    try:
        product = products_service.update_product(g.current_user, product_id, json_body())
        commit_with_retry()
        return ok({"product": product.to_dict()}, message="Product updated")
    except Exception as exc:
        return service_error(exc)
