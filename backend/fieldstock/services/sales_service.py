# backend/fieldstock/services/sales_service.py
"""
Point of sale for IMEI stock, plus the commission ledger.

WHO MAY SELL:
- field_officer: only units they hold
- team_leader: units they hold or that one of their field officers holds
- regional_manager: units in their region (an unset region is claimed)
- admin: anything

A sale is one unit of work: Sale row, IMEI marked SOLD (terminal) and
commission rows are committed together.

COMMISSIONS:
- the seller earns their own role's amount
- a field officer's team leader earns the team leader amount
- the regional manager amount goes to the explicit regional_manager_id,
  else the seller's team leader's manager, else the manager registered
  for the seller's region, else any regional manager of that region;
  never a second time when the seller is that manager
Zero amounts produce no row.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from ..constants import (
    UNTRANSFERABLE_STATUSES,
    CommissionStatus,
    ImeiStatus,
    PaymentMethod,
    UserRole,
)
from ..extensions import db
from ..models import Commission, DocumentSequence, Imei, Sale, User
from ..time_utils import utcnow
from ..validation import (
    SERVICE_ERRORS,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    parse_int,
)
from . import region_service
from .concurrency import run_with_retry
from .hierarchy_service import user_key
from .imei_service import find_imei


logger = logging.getLogger(__name__)

RECEIPT_PREFIX = "RCP-"
RECEIPT_BASE = 2000
RECEIPT_SEQUENCE = "RECEIPT"

_MPESA_ALIASES = {"mpesa", "m-pesa", "m pesa"}


def normalize_payment_method(value: Any) -> str:
    """m-pesa / mpesa -> mpesa; everything else (card, bank transfer, credit, ...) -> cash."""
    text = str(value or "").strip().lower()
    if text in _MPESA_ALIASES:
        return PaymentMethod.MPESA.value
    return PaymentMethod.CASH.value


def _current_receipt_counter() -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=RECEIPT_SEQUENCE)
        .scalar()
    )


def next_receipt_number() -> str:
    """
    Allocate the next receipt number inside the caller's transaction.

    The counter row is bumped with a single UPDATE, so concurrent sales
    serialize on it. A lost race creating the first row surfaces as an
    IntegrityError, which record_sale retries.
    """
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == RECEIPT_SEQUENCE)
        .values(next_number=DocumentSequence.next_number + 1)
    )
    if db.session.execute(stmt).rowcount:
        number = _current_receipt_counter() - 1
    else:
        db.session.add(DocumentSequence(document_type=RECEIPT_SEQUENCE, next_number=2))
        db.session.flush()
        number = 1
    return f"{RECEIPT_PREFIX}{RECEIPT_BASE + number:06d}"


def _find(users: dict[str, Any], user_id: Any) -> Any:
    return users.get(str(user_id)) if user_id is not None else None


def commission_split(
    imei: Any,
    seller: Any,
    users: Iterable[Any],
    region_manager_id: Any = None,
) -> list[dict]:
    """
    Commission rows owed for selling imei.

    region_manager_id is the manager registered for the seller's region;
    it is consulted after the user links and before scanning users.
    Returns [{"user_id", "role", "amount_cents"}]; pure, no DB access.
    """
    by_id = {user_key(u): u for u in users or []}
    fo_amount = int(getattr(imei, "fo_commission_cents", 0) or 0)
    tl_amount = int(getattr(imei, "tl_commission_cents", 0) or 0)
    rm_amount = int(getattr(imei, "rm_commission_cents", 0) or 0)

    role = seller.role
    seller_id = user_key(seller)
    rows: list[dict] = []

    own = {
        UserRole.FIELD_OFFICER.value: fo_amount,
        UserRole.TEAM_LEADER.value: tl_amount,
        UserRole.REGIONAL_MANAGER.value: rm_amount,
    }.get(role, 0)
    if own > 0:
        rows.append({"user_id": seller.id, "role": role, "amount_cents": own})

    leader = None
    if role == UserRole.FIELD_OFFICER.value and seller.team_leader_id:
        leader = _find(by_id, seller.team_leader_id)
        if tl_amount > 0:
            rows.append({
                "user_id": seller.team_leader_id,
                "role": UserRole.TEAM_LEADER.value,
                "amount_cents": tl_amount,
            })

    if rm_amount > 0:
        rm_id = getattr(seller, "regional_manager_id", None)
        if rm_id is None and leader is not None:
            rm_id = getattr(leader, "regional_manager_id", None)
        if rm_id is None:
            rm_id = region_manager_id
        if rm_id is None and seller.region:
            manager = next(
                (
                    u for u in by_id.values()
                    if u.role == UserRole.REGIONAL_MANAGER.value
                    and u.region == seller.region
                    and getattr(u, "is_active", True)
                ),
                None,
            )
            rm_id = manager.id if manager is not None else None
        if rm_id is not None and str(rm_id) != seller_id:
            rows.append({
                "user_id": rm_id,
                "role": UserRole.REGIONAL_MANAGER.value,
                "amount_cents": rm_amount,
            })

    return rows


def _check_seller(actor: User, imei: Imei) -> None:
    role = actor.role
    if role == UserRole.ADMIN.value:
        return

    if role == UserRole.REGIONAL_MANAGER.value:
        if imei.region and imei.region != actor.region:
            raise PermissionDeniedError("You can only sell devices from your region")
        if not imei.region:
            imei.region = actor.region
        return

    if role == UserRole.TEAM_LEADER.value:
        if imei.current_holder_id == actor.id:
            return
        holder = db.session.get(User, imei.current_holder_id) if imei.current_holder_id else None
        if holder is None or holder.team_leader_id != actor.id:
            raise PermissionDeniedError("You can only sell devices allocated to you or your team members")
        return

    if role == UserRole.FIELD_OFFICER.value:
        if imei.current_holder_id != actor.id:
            raise PermissionDeniedError("This IMEI is not allocated to you")
        return

    raise PermissionDeniedError("Your role cannot record sales")


def record_sale(
    actor: User,
    imei_ref: Any,
    payment_method: Any = None,
    *,
    payment_reference: str | None = None,
    customer_name: str | None = None,
    customer_phone: str | None = None,
    customer_email: str | None = None,
    customer_id_number: str | None = None,
    notes: str | None = None,
) -> Sale:
    """
    Sell one IMEI. Commits on success; raises service errors on refusal
    with nothing written.
    """
    method = normalize_payment_method(payment_method)

    def _op():
        imei = find_imei(imei_ref, lock=True)
        if imei is None:
            raise NotFoundError("IMEI not found")
        if imei.status == ImeiStatus.SOLD.value:
            raise ValidationError("This device has already been sold")
        if imei.status == ImeiStatus.LOCKED.value:
            raise ValidationError("Cannot sell a locked device")
        if imei.status in UNTRANSFERABLE_STATUSES:
            raise ValidationError("Cannot sell a device marked as lost")

        _check_seller(actor, imei)

        price = imei.effective_price_cents
        now = utcnow()
        sale = Sale(
            receipt_number=next_receipt_number(),
            imei_id=imei.id,
            imei=imei.imei,
            product_id=imei.product_id,
            quantity=1,
            unit_price_cents=price,
            sale_amount_cents=price,
            payment_method=method,
            payment_reference=(payment_reference or None),
            sold_by_user_id=actor.id,
            customer_name=customer_name,
            customer_phone=customer_phone,
            customer_email=customer_email,
            customer_id_number=customer_id_number,
            source=imei.source,
            region=imei.region or actor.region,
            notes=notes,
            created_at=now,
        )
        db.session.add(sale)
        db.session.flush()

        imei.status = ImeiStatus.SOLD.value
        imei.sold_at = now
        imei.sold_by_user_id = actor.id
        imei.sale_id = sale.id

        users = db.session.query(User).all()
        region_manager_id = region_service.manager_id_for(actor.region)
        for row in commission_split(imei, actor, users, region_manager_id):
            db.session.add(Commission(sale_id=sale.id, **row))

        db.session.commit()
        return sale

    try:
        sale = run_with_retry(_op, retry_on=(IntegrityError,))
    except SERVICE_ERRORS:
        db.session.rollback()
        raise
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Sale imei=%s could not get a unique receipt: %s", imei_ref, exc)
        raise ConflictError("Could not allocate a receipt number; try again") from exc
    logger.info("Sale %s imei=%s by user=%s", sale.receipt_number, sale.imei, actor.id)
    return sale


def scoped_sales_query(actor: User):
    q = db.session.query(Sale)
    role = actor.role
    if role == UserRole.FIELD_OFFICER.value:
        return q.filter(Sale.sold_by_user_id == actor.id)
    if role == UserRole.TEAM_LEADER.value:
        team = [uid for (uid,) in db.session.query(User.id).filter(User.team_leader_id == actor.id).all()]
        return q.filter(Sale.sold_by_user_id.in_(team + [actor.id]))
    if role == UserRole.REGIONAL_MANAGER.value:
        region_ids = [uid for (uid,) in db.session.query(User.id).filter(User.region == actor.region).all()]
        return q.filter(or_(Sale.region == actor.region, Sale.sold_by_user_id.in_(region_ids + [actor.id])))
    return q


def list_sales(actor: User, *, page: int = 1, limit: int = 50) -> dict:
    q = scoped_sales_query(actor)
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 50), 1), 500)
    total = q.count()
    rows = q.order_by(Sale.created_at.desc(), Sale.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "sales": [s.to_dict() for s in rows],
        "count": len(rows),
        "total": total,
        "page": page,
        "pages": (total + limit - 1) // limit if total else 0,
    }


# --- commissions ----------------------------------------------------------------

def list_commissions(actor: User, *, status: str | None = None, user_id: Any = None) -> list[Commission]:
    q = db.session.query(Commission)
    if actor.role != UserRole.ADMIN.value:
        q = q.filter(Commission.user_id == actor.id)
    elif user_id not in (None, ""):
        q = q.filter(Commission.user_id == parse_int(user_id, "user_id"))
    if status:
        status = str(status).lower()
        if status not in {s.value for s in CommissionStatus}:
            raise ValidationError(f"Unknown commission status: {status}")
        q = q.filter(Commission.status == status)
    return q.order_by(Commission.created_at.desc(), Commission.id.desc()).all()


def _load_commission(actor: User, commission_id: int) -> Commission:
    if actor.role != UserRole.ADMIN.value:
        raise PermissionDeniedError("Only admins can manage commissions")
    commission = db.session.get(Commission, commission_id)
    if commission is None:
        raise NotFoundError("Commission not found")
    return commission


def approve_commission(actor: User, commission_id: int) -> Commission:
    """Caller commits."""
    commission = _load_commission(actor, commission_id)
    if commission.status != CommissionStatus.PENDING.value:
        raise ConflictError("Commission is not pending")
    commission.status = CommissionStatus.APPROVED.value
    commission.approved_by_user_id = actor.id
    commission.approved_at = utcnow()
    return commission


def reject_commission(actor: User, commission_id: int, reason: str | None = None) -> Commission:
    """Caller commits."""
    commission = _load_commission(actor, commission_id)
    if commission.status != CommissionStatus.PENDING.value:
        raise ConflictError("Commission is not pending")
    commission.status = CommissionStatus.REJECTED.value
    commission.approved_by_user_id = actor.id
    commission.approved_at = utcnow()
    commission.notes = reason
    return commission


def mark_commission_paid(actor: User, commission_id: int, payment_reference: str | None = None) -> Commission:
    """Caller commits."""
    commission = _load_commission(actor, commission_id)
    if commission.status == CommissionStatus.PAID.value:
        raise ConflictError("Commission already paid")
    if commission.status == CommissionStatus.REJECTED.value:
        raise ConflictError("Cannot pay a rejected commission")
    if commission.status == CommissionStatus.PENDING.value:
        commission.approved_by_user_id = actor.id
        commission.approved_at = utcnow()
    commission.status = CommissionStatus.PAID.value
    commission.paid_at = utcnow()
    commission.payment_reference = payment_reference
    return commission
