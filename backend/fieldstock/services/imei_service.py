# Overview: Service-layer operations for the IMEI registry; registration, lookup and admin status changes.

"""
IMEI registry.

WHY: The IMEI is the unit of inventory. Registration puts a unit into the
unallocated pool (IN_STOCK, no holder); from there only the allocation,
recall and sales services move it.

LOOKUP:
A reference is either a database id or a 15-digit IMEI number. Numbers are
matched on imei first, then on imei2 (dual-SIM handsets).

STATUS CHANGES (admin only):
- LOCK: freezes allocation, recall and sale
- LOST: blocks allocation and sale
- UNLOCK: back to ALLOCATED when held, else IN_STOCK
SOLD is never set here and a sold unit cannot be changed.
"""
from __future__ import annotations

import logging
from typing import Any

from flask import current_app, has_app_context
from sqlalchemy import or_

from ..constants import IMEI_LENGTH, SOURCE_VALUES, ImeiStatus, UserRole
from ..extensions import db
from ..models import Imei, Product, User
from ..validation import (
    SERVICE_ERRORS,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    enforce_rules_money,
    parse_int,
)
from .concurrency import lock_for_update, run_with_retry


logger = logging.getLogger(__name__)

STATUS_ACTIONS = {"LOCK", "UNLOCK", "LOST"}


def normalize_imei(raw: Any) -> str:
    """Keep digits only."""
    if raw is None:
        return ""
    return "".join(ch for ch in str(raw) if ch.isdigit())


def validate_imei(value: Any) -> str:
    digits = normalize_imei(value)
    if len(digits) != IMEI_LENGTH:
        raise ValidationError("IMEI must be exactly 15 digits")
    return digits


def find_imei(ref: Any, *, lock: bool = False) -> Imei | None:
    """Resolve an id or IMEI number to a row (None when unknown)."""
    if ref is None or isinstance(ref, bool):
        return None

    q = db.session.query(Imei)
    if isinstance(ref, int):
        q = q.filter(Imei.id == ref)
    else:
        text = str(ref).strip()
        digits = normalize_imei(text)
        if len(digits) == IMEI_LENGTH:
            q = q.filter(or_(Imei.imei == digits, Imei.imei2 == digits)).order_by(
                (Imei.imei == digits).desc()
            )
        elif text.isdigit():
            q = q.filter(Imei.id == int(text))
        else:
            return None

    if lock:
        q = lock_for_update(q)
    return q.first()


def get_imei(ref: Any) -> Imei:
    imei = find_imei(ref)
    if imei is None:
        raise NotFoundError("IMEI not found")
    return imei


def search_imeis(
    query: str | None = None,
    *,
    status: str | None = None,
    holder_id: int | None = None,
    product_id: int | None = None,
    source: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    q = db.session.query(Imei)

    if query:
        digits = normalize_imei(query)
        if digits:
            q = q.filter(or_(Imei.imei.like(f"%{digits}%"), Imei.imei2.like(f"%{digits}%")))
        else:
            q = q.join(Product, Imei.product_id == Product.id).filter(Product.name.ilike(f"%{query.strip()}%"))
    if status:
        status = str(status).upper()
        if status not in {s.value for s in ImeiStatus}:
            raise ValidationError(f"Unknown status: {status}")
        q = q.filter(Imei.status == status)
    if holder_id is not None:
        q = q.filter(Imei.current_holder_id == holder_id)
    if product_id is not None:
        q = q.filter(Imei.product_id == product_id)
    if source:
        q = q.filter(Imei.source == source.lower())

    limit = min(max(int(limit or 50), 1), 500)
    total = q.count()
    rows = q.order_by(Imei.registered_at.desc(), Imei.id.desc()).offset(max(int(offset or 0), 0)).limit(limit).all()
    return {"imeis": [r.to_dict() for r in rows], "count": len(rows), "total": total}


def _require_admin(actor: User, message: str) -> None:
    if actor is None or actor.role != UserRole.ADMIN.value:
        raise PermissionDeniedError(message)


def _check_source(source: Any) -> str:
    value = str(source or "watu").strip().lower()
    if value not in SOURCE_VALUES:
        raise ValidationError(f"source must be one of: {', '.join(SOURCE_VALUES)}")
    return value


def _build_imei(actor: User, row: dict, product: Product, number: str) -> Imei:
    imei2 = row.get("imei2")
    if imei2 not in (None, ""):
        imei2 = validate_imei(imei2)
    else:
        imei2 = None

    money = {}
    for key in ("price_cents", "fo_commission_cents", "tl_commission_cents", "rm_commission_cents"):
        if row.get(key) is not None:
            money[key] = parse_int(row[key], key)
    enforce_rules_money(money)

    return Imei(
        imei=number,
        imei2=imei2,
        product_id=product.id,
        capacity=(row.get("capacity") or None),
        price_cents=money.get("price_cents"),
        fo_commission_cents=money.get("fo_commission_cents", product.fo_commission_cents),
        tl_commission_cents=money.get("tl_commission_cents", product.tl_commission_cents),
        rm_commission_cents=money.get("rm_commission_cents", product.rm_commission_cents),
        source=_check_source(row.get("source")),
        status=ImeiStatus.IN_STOCK.value,
        current_holder_id=None,
        current_holder_role=None,
        registered_by_user_id=actor.id,
        notes=(row.get("notes") or None),
    )


def _load_product(product_id: Any) -> Product:
    product = db.session.get(Product, parse_int(product_id, "product_id"))
    if product is None or not product.is_active:
        raise NotFoundError("Product not found")
    return product


def register_imei(actor: User, imei: Any, product_id: Any, **fields) -> Imei:
    """
    Register one unit into the unallocated pool (admin only).

    Commission split defaults to the product's unless given explicitly.
    Caller commits.
    """
    _require_admin(actor, "Only admins can register IMEIs")

    def _op():
        number = validate_imei(imei)
        product = _load_product(product_id)
        if find_imei(number) is not None:
            raise ConflictError(f"IMEI {number} is already registered")

        row = _build_imei(actor, fields, product, number)
        db.session.add(row)
        db.session.flush()
        return row

    return run_with_retry(_op)


def bulk_register(actor: User, rows: list[dict]) -> dict:
    """
    Register many units; each row succeeds or fails on its own.

    Returns {"success": [imei numbers], "failed": [{"imei", "error"}]}.
    Caller commits.
    """
    _require_admin(actor, "Only admins can register IMEIs")
    if not rows:
        raise ValidationError("No IMEIs provided")
    limit = int(current_app.config.get("MAX_BULK_ITEMS", 500)) if has_app_context() else 500
    if len(rows) > limit:
        raise ValidationError(f"Cannot process more than {limit} IMEIs at once")

    success: list[str] = []
    failed: list[dict] = []
    seen: set[str] = set()
    products: dict[Any, Product] = {}

    for row in rows:
        raw = row.get("imei") if isinstance(row, dict) else None
        try:
            if not isinstance(row, dict):
                raise ValidationError("Each row must be an object")
            number = validate_imei(raw)
            if number in seen or find_imei(number) is not None:
                raise ConflictError(f"IMEI {number} is already registered")
            key = row.get("product_id")
            if key not in products:
                products[key] = _load_product(key)
            db.session.add(_build_imei(actor, row, products[key], number))
        except SERVICE_ERRORS as exc:
            failed.append({"imei": raw, "error": str(exc)})
            continue
        seen.add(number)
        success.append(number)

    db.session.flush()
    logger.info("Bulk registration by user=%s: %d registered, %d failed", actor.id, len(success), len(failed))
    return {"success": success, "failed": failed}


def set_imei_status(actor: User, imei_ref: Any, action: str, reason: str | None = None) -> Imei:
    """Admin LOCK / UNLOCK / LOST. Caller commits."""
    _require_admin(actor, "Only admins can change IMEI status")

    action = str(action or "").strip().upper()
    if action == "LOCKED":
        action = "LOCK"
    if action not in STATUS_ACTIONS:
        raise ValidationError("action must be one of: LOCK, UNLOCK, LOST")

    def _op():
        imei = find_imei(imei_ref, lock=True)
        if imei is None:
            raise NotFoundError("IMEI not found")
        if imei.status == ImeiStatus.SOLD.value:
            raise ValidationError("Cannot change the status of a sold device")

        if action == "LOCK":
            imei.status = ImeiStatus.LOCKED.value
        elif action == "LOST":
            imei.status = ImeiStatus.LOST.value
        else:
            if imei.status not in (ImeiStatus.LOCKED.value, ImeiStatus.LOST.value):
                raise ValidationError("Device is not locked or lost")
            imei.status = (
                ImeiStatus.ALLOCATED.value if imei.current_holder_id is not None else ImeiStatus.IN_STOCK.value
            )

        if reason:
            imei.notes = str(reason).strip()[:255]
        db.session.flush()
        logger.info("IMEI %s status -> %s by user=%s", imei.imei, imei.status, actor.id)
        return imei

    return run_with_retry(_op)
