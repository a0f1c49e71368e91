# backend/fieldstock/services/products_service.py
"""
Product catalog (reference data for IMEI registration and pricing).
Admin-only writes; everyone can read active products.
"""
from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..constants import PRODUCT_CATEGORIES, UserRole
from ..extensions import db
from ..models import Product, User
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    enforce_rules_money,
    validate_payload,
)


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "brand", "category", "price_cents",
        "fo_commission_cents", "tl_commission_cents", "rm_commission_cents",
        "is_active",
    },
    required_on_create={"name", "price_cents"},
)


def _check_category(patch: dict) -> None:
    category = patch.get("category")
    if category is not None and category not in PRODUCT_CATEGORIES:
        raise ValidationError(f"category must be one of: {', '.join(PRODUCT_CATEGORIES)}")


def list_products(*, category: str | None = None, include_inactive: bool = False) -> list[Product]:
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if category:
        q = q.filter(Product.category == category)
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    return product


def create_product(actor: User | None, payload: dict) -> Product:
    """Caller commits."""
    if actor is not None and actor.role != UserRole.ADMIN.value:
        raise PermissionDeniedError("Only admins can manage products")

    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_money(patch)
    _check_category(patch)

    product = Product(**patch)
    db.session.add(product)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("A product with this name and brand already exists")
    return product


def update_product(actor: User, product_id: int, payload: dict) -> Product:
    """Caller commits."""
    if actor.role != UserRole.ADMIN.value:
        raise PermissionDeniedError("Only admins can manage products")

    product = get_product(product_id)
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_money(patch)
    _check_category(patch)

    for key, value in patch.items():
        setattr(product, key, value)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("A product with this name and brand already exists")
    return product
