# backend/fieldstock/services/allocation_service.py
"""
Stock allocation and recall engine.

WHY: An IMEI moves down the hierarchy by allocation and back up by recall.
Each move is one unit of work: the IMEI row is locked, validated, mutated
and a ledger row appended, then committed together. Nothing is partially
written.

LEDGER:
- ALLOCATION rows: from = acting user, to = recipient.
- RECALL rows: from = previous holder, to = recalling user, notes carry
  "RECALL: <reason>" for display; event_type is the real discriminator.
- Rows are append-only.

RESULTS:
Engine entry points never raise for expected failures. They return an
AllocationResult / BulkResult whose error message tells the acting user
exactly why the move was refused.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from flask import current_app, has_app_context
from sqlalchemy import false, or_
from sqlalchemy.orm.exc import StaleDataError

from ..constants import (
    DEFAULT_BULK_RECALL_NOTE,
    DEFAULT_RECALL_NOTE,
    RECALL_NOTE_PREFIX,
    AllocationEventType,
    AllocationStatus,
    ImeiStatus,
    UserRole,
    readable_role,
)
from ..extensions import db
from ..models import Imei, StockAllocation, User
from ..time_utils import utcnow
from ..validation import (
    SERVICE_ERRORS,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    error_status,
)
from .concurrency import run_with_retry
from .hierarchy_service import resolve_recipients, subordinates_of, user_key
from .imei_service import find_imei


logger = logging.getLogger(__name__)

MOVED_BY_ANOTHER_USER = "This IMEI was moved by another user; refresh and try again"

_UNSET = object()


@dataclass
class AllocationResult:
    success: bool
    message: str | None = None
    error: str | None = None
    error_code: int | None = None
    imei: Imei | None = None
    allocation: StockAllocation | None = None

    @classmethod
    def failure(cls, exc: Exception) -> "AllocationResult":
        return cls(success=False, error=str(exc), error_code=error_status(exc))

    def to_dict(self) -> dict:
        return {
            "imei": self.imei.to_dict() if self.imei is not None else None,
            "allocation": self.allocation.to_dict() if self.allocation is not None else None,
        }


@dataclass
class BulkResult:
    """
    Per-item outcome of a bulk allocate/recall.

    succeeded holds IMEI numbers; failed holds {imei_id, imei, error}.
    ok is False only when the whole call was refused.
    """
    ok: bool = True
    succeeded: list[str] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    allocations: list[StockAllocation] = field(default_factory=list)
    message: str | None = None
    error: str | None = None
    error_code: int | None = None

    @classmethod
    def refused(cls, exc: Exception) -> "BulkResult":
        return cls(ok=False, error=str(exc), error_code=error_status(exc))

    def to_dict(self) -> dict:
        return {
            "success": list(self.succeeded),
            "failed": list(self.failed),
            "allocations": [a.to_dict() for a in self.allocations],
        }


# --- shared helpers ----------------------------------------------------------

def _max_bulk_items() -> int:
    if has_app_context():
        return int(current_app.config.get("MAX_BULK_ITEMS", 500))
    return 500


def _check_batch(items: list) -> None:
    if not items:
        raise ValidationError("No IMEIs provided")
    limit = _max_bulk_items()
    if len(items) > limit:
        raise ValidationError(f"Cannot process more than {limit} IMEIs at once")


def _load_imei(imei_ref: Any) -> Imei:
    imei = find_imei(imei_ref, lock=True)
    if imei is None:
        raise NotFoundError("IMEI not found")
    return imei


def _active_users() -> list[User]:
    return db.session.query(User).filter(User.is_active.is_(True)).all()


def _load_user(user_id: Any) -> User | None:
    if user_id in (None, ""):
        return None
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None


def _actor_holds(actor: User, imei: Imei) -> bool:
    if imei.current_holder_id is None:
        # The unallocated pool belongs to the root of the hierarchy
        return actor.role == UserRole.ADMIN.value
    return imei.current_holder_id == actor.id


def _check_expected_holder(imei: Imei, expected_holder_id: Any) -> None:
    if expected_holder_id is _UNSET:
        return
    expected = None if expected_holder_id in (None, "") else str(expected_holder_id)
    current = None if imei.current_holder_id is None else str(imei.current_holder_id)
    if expected != current:
        raise ConflictError(MOVED_BY_ANOTHER_USER)


def _check_notes(notes: str | None) -> str | None:
    if notes is None:
        return None
    text = str(notes).strip()
    if text.upper().startswith(RECALL_NOTE_PREFIX):
        raise ValidationError(f'Allocation notes cannot start with "{RECALL_NOTE_PREFIX}"')
    return text or None


def _recall_note(reason: str | None, default: str) -> str:
    return f"{RECALL_NOTE_PREFIX} {reason or default}"


# --- allocation ----------------------------------------------------------------

def _resolve_recipient(actor: User, to_user_id: Any, active_users: list[User]) -> User:
    recipient = _load_user(to_user_id)
    if recipient is None or not recipient.is_active:
        raise NotFoundError("Recipient user not found")

    if recipient.id == actor.id:
        raise ValidationError("Cannot allocate stock to yourself")

    resolution = resolve_recipients(actor, active_users)
    if not resolution.users:
        raise PermissionDeniedError("You have no eligible recipients to allocate to")

    if user_key(recipient) not in {user_key(u) for u in resolution.users}:
        raise PermissionDeniedError(
            f"{recipient.name} is not an eligible recipient for a {readable_role(actor.role)}"
        )
    return recipient


def _validate_allocatable(actor: User, imei: Imei) -> None:
    if imei.status == ImeiStatus.SOLD.value:
        raise ValidationError("Cannot allocate a sold device")
    if imei.status == ImeiStatus.LOCKED.value:
        raise ValidationError("Cannot allocate a locked device")
    if imei.status == ImeiStatus.LOST.value:
        raise ValidationError("Cannot allocate a device marked as lost")
    if not _actor_holds(actor, imei):
        raise PermissionDeniedError("This IMEI is not allocated to you")


def _apply_allocation(actor: User, imei: Imei, recipient: User, notes: str | None) -> StockAllocation:
    now = utcnow()
    entry = StockAllocation(
        imei_id=imei.id,
        imei=imei.imei,
        product_id=imei.product_id,
        quantity=1,
        from_user_id=actor.id,
        to_user_id=recipient.id,
        from_level=actor.role,
        to_level=recipient.role,
        event_type=AllocationEventType.ALLOCATION.value,
        status=AllocationStatus.COMPLETED.value,
        notes=notes,
        created_by_user_id=actor.id,
        created_at=now,
        completed_at=now,
    )
    db.session.add(entry)

    imei.status = ImeiStatus.ALLOCATED.value
    imei.current_holder_id = recipient.id
    imei.current_holder_role = recipient.role
    imei.allocated_at = now
    if recipient.role == UserRole.REGIONAL_MANAGER.value and recipient.region:
        imei.region = recipient.region
    return entry


def allocate(
    actor: User,
    imei_ref: Any,
    to_user_id: Any,
    notes: str | None = None,
    expected_holder_id: Any = _UNSET,
) -> AllocationResult:
    """
    Move one IMEI from the acting user to a hierarchy-eligible recipient.

    expected_holder_id (optional) is a compare-and-swap guard: when given,
    the move is refused with a conflict unless the IMEI is still held by
    that user (None = still in the unallocated pool).
    """
    def _op():
        clean_notes = _check_notes(notes)
        imei = _load_imei(imei_ref)
        _check_expected_holder(imei, expected_holder_id)
        _validate_allocatable(actor, imei)
        recipient = _resolve_recipient(actor, to_user_id, _active_users())

        entry = _apply_allocation(actor, imei, recipient, clean_notes)
        db.session.commit()
        return imei, entry, recipient

    try:
        imei, entry, recipient = run_with_retry(_op)
    except SERVICE_ERRORS as exc:
        db.session.rollback()
        logger.info("Allocation refused actor=%s imei=%s: %s", actor.id, imei_ref, exc)
        return AllocationResult.failure(exc)
    except StaleDataError:
        db.session.rollback()
        logger.warning("Allocation lost a version race actor=%s imei=%s", actor.id, imei_ref)
        return AllocationResult.failure(ConflictError(MOVED_BY_ANOTHER_USER))

    logger.info("Allocated imei=%s %s -> %s", imei.imei, actor.id, recipient.id)
    return AllocationResult(
        success=True,
        message=f"IMEI allocated to {recipient.name}",
        imei=imei,
        allocation=entry,
    )


def _dedupe(refs: Iterable[Any]) -> list[Any]:
    seen: set[str] = set()
    out = []
    for ref in refs:
        key = str(ref).strip()
        if key in seen:
            continue
        seen.add(key)
        out.append(ref)
    return out


def bulk_allocate(actor: User, imei_refs: list, to_user_id: Any, notes: str | None = None) -> BulkResult:
    """
    Allocate many IMEIs to one recipient.

    The recipient is resolved once; an unresolvable or ineligible recipient
    refuses the whole call. Each IMEI is then validated on its own: failures
    are reported per item and never touch state, successes are committed
    together.
    """
    try:
        refs = _dedupe(imei_refs or [])
        _check_batch(refs)
        clean_notes = _check_notes(notes)
        recipient = _resolve_recipient(actor, to_user_id, _active_users())
    except SERVICE_ERRORS as exc:
        return BulkResult.refused(exc)

    def _op():
        result = BulkResult()
        handled: set[int] = set()
        for ref in refs:
            imei = None
            try:
                imei = _load_imei(ref)
                # an id and a 15-digit number can name the same unit
                if imei.id in handled:
                    continue
                handled.add(imei.id)
                _validate_allocatable(actor, imei)
            except SERVICE_ERRORS as exc:
                result.failed.append(_failure_row(ref, imei, exc))
                continue
            result.allocations.append(_apply_allocation(actor, imei, recipient, clean_notes))
            result.succeeded.append(imei.imei)
        db.session.commit()
        return result

    try:
        result = run_with_retry(_op)
    except StaleDataError:
        db.session.rollback()
        return BulkResult.refused(ConflictError(MOVED_BY_ANOTHER_USER))

    result.message = f"{len(result.succeeded)} allocated, {len(result.failed)} failed"
    logger.info("Bulk allocation actor=%s to=%s: %s", actor.id, recipient.id, result.message)
    return result


def _failure_row(ref: Any, imei: Imei | None, exc: Exception) -> dict:
    if imei is not None:
        return {"imei_id": imei.id, "imei": imei.imei, "error": str(exc)}
    text = str(ref).strip()
    number = text if len(text) == 15 and text.isdigit() else None
    return {"imei_id": None if number else ref, "imei": number, "error": str(exc)}


# --- recall ----------------------------------------------------------------------

def _validate_recall(actor: User, imei: Imei, from_user_id: Any) -> User:
    if imei.status == ImeiStatus.SOLD.value:
        raise ValidationError("Cannot recall a sold device")
    if imei.status == ImeiStatus.LOCKED.value:
        raise ValidationError("Cannot recall a locked device")
    if imei.current_holder_id is None:
        raise ValidationError("Device is not allocated to anyone")

    if from_user_id not in (None, "") and str(from_user_id) != str(imei.current_holder_id):
        named = _load_user(from_user_id)
        raise ConflictError(f"This IMEI is no longer held by {named.name if named else 'that user'}")

    holder = db.session.get(User, imei.current_holder_id)
    all_users = db.session.query(User).all()
    if holder is None or user_key(holder) not in {user_key(u) for u in subordinates_of(actor, all_users)}:
        raise PermissionDeniedError("You can only recall stock from your subordinates")
    return holder


def _apply_recall(actor: User, imei: Imei, holder: User, reason: str | None, note: str) -> StockAllocation:
    now = utcnow()
    entry = StockAllocation(
        imei_id=imei.id,
        imei=imei.imei,
        product_id=imei.product_id,
        quantity=1,
        from_user_id=holder.id,
        to_user_id=actor.id,
        from_level=holder.role,
        to_level=actor.role,
        event_type=AllocationEventType.RECALL.value,
        status=AllocationStatus.COMPLETED.value,
        notes=note,
        recall_reason=reason,
        created_by_user_id=actor.id,
        created_at=now,
        completed_at=now,
    )
    db.session.add(entry)

    imei.status = ImeiStatus.ALLOCATED.value
    imei.current_holder_id = actor.id
    imei.current_holder_role = actor.role
    imei.allocated_at = now
    return entry


def _clean_reason(reason: Any) -> str | None:
    if reason is None:
        return None
    text = str(reason).strip()
    return text or None


def recall(actor: User, imei_ref: Any, from_user_id: Any = None, reason: str | None = None) -> AllocationResult:
    """
    Pull one IMEI back from a subordinate to the acting user.

    When from_user_id is given it must still be the holder; otherwise the
    recall is refused as a conflict.
    """
    reason = _clean_reason(reason)

    def _op():
        imei = _load_imei(imei_ref)
        holder = _validate_recall(actor, imei, from_user_id)
        entry = _apply_recall(actor, imei, holder, reason, _recall_note(reason, DEFAULT_RECALL_NOTE))
        db.session.commit()
        return imei, entry, holder

    try:
        imei, entry, holder = run_with_retry(_op)
    except SERVICE_ERRORS as exc:
        db.session.rollback()
        logger.info("Recall refused actor=%s imei=%s: %s", actor.id, imei_ref, exc)
        return AllocationResult.failure(exc)
    except StaleDataError:
        db.session.rollback()
        return AllocationResult.failure(ConflictError(MOVED_BY_ANOTHER_USER))

    logger.info("Recalled imei=%s %s -> %s", imei.imei, holder.id, actor.id)
    return AllocationResult(
        success=True,
        message=f"IMEI recalled from {holder.name}",
        imei=imei,
        allocation=entry,
    )


def _item_ref(item: Any) -> Any:
    if isinstance(item, dict):
        return item.get("imei_id") or item.get("imei") or item.get("imeiId")
    return item


def _item_from(item: Any) -> Any:
    if isinstance(item, dict):
        return item.get("from_user_id") or item.get("fromUserId")
    return None


def bulk_recall(actor: User, items: list, reason: str | None = None) -> BulkResult:
    """
    Recall many IMEIs, possibly from several subordinates.

    Items are grouped by source user; the ledger still gets one RECALL row
    per IMEI.
    """
    reason = _clean_reason(reason)
    note = _recall_note(reason, DEFAULT_BULK_RECALL_NOTE)

    try:
        unique: dict[str, Any] = {}
        for item in items or []:
            ref = _item_ref(item)
            if ref in (None, ""):
                raise ValidationError("Each item needs an imei_id or imei")
            unique.setdefault(str(ref).strip(), item)
        _check_batch(list(unique.values()))
    except SERVICE_ERRORS as exc:
        return BulkResult.refused(exc)

    groups: dict[str, list] = {}
    for item in unique.values():
        groups.setdefault(str(_item_from(item) or "*"), []).append(item)

    def _op():
        result = BulkResult()
        handled: set[int] = set()
        for source, group in groups.items():
            before = len(result.succeeded)
            for item in group:
                ref = _item_ref(item)
                imei = None
                try:
                    imei = _load_imei(ref)
                    if imei.id in handled:
                        continue
                    handled.add(imei.id)
                    holder = _validate_recall(actor, imei, _item_from(item))
                except SERVICE_ERRORS as exc:
                    result.failed.append(_failure_row(ref, imei, exc))
                    continue
                result.allocations.append(_apply_recall(actor, imei, holder, reason, note))
                result.succeeded.append(imei.imei)
            logger.debug("Bulk recall group from=%s: %d of %d", source, len(result.succeeded) - before, len(group))
        db.session.commit()
        return result

    try:
        result = run_with_retry(_op)
    except StaleDataError:
        db.session.rollback()
        return BulkResult.refused(ConflictError(MOVED_BY_ANOTHER_USER))

    result.message = f"{len(result.succeeded)} recalled, {len(result.failed)} failed"
    logger.info("Bulk recall actor=%s: %s", actor.id, result.message)
    return result


# --- ledger reads ------------------------------------------------------------------

def scoped_allocations_query(actor: User):
    """
    Ledger rows visible to the acting user.

    - field_officer: rows addressed to them
    - team_leader: rows from or to them
    - regional_manager: rows involving any user of their region
    - admin: everything
    """
    q = db.session.query(StockAllocation)
    role = actor.role

    if role == UserRole.FIELD_OFFICER.value:
        return q.filter(StockAllocation.to_user_id == actor.id)

    if role == UserRole.TEAM_LEADER.value:
        return q.filter(or_(StockAllocation.from_user_id == actor.id, StockAllocation.to_user_id == actor.id))

    if role == UserRole.REGIONAL_MANAGER.value:
        region_ids = [
            uid for (uid,) in db.session.query(User.id).filter(User.region == actor.region).all()
        ] if actor.region else []
        region_ids.append(actor.id)
        return q.filter(or_(
            StockAllocation.from_user_id.in_(region_ids),
            StockAllocation.to_user_id.in_(region_ids),
        ))

    if role == UserRole.ADMIN.value:
        return q

    return q.filter(false())


def list_allocations(
    actor: User,
    *,
    from_user_id: int | None = None,
    to_user_id: int | None = None,
    event_type: str | None = None,
    imei: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    """Paginated, role-scoped ledger listing (newest first)."""
    q = scoped_allocations_query(actor)
    if from_user_id is not None:
        q = q.filter(StockAllocation.from_user_id == from_user_id)
    if to_user_id is not None:
        q = q.filter(StockAllocation.to_user_id == to_user_id)
    if event_type:
        event_type = str(event_type).upper()
        if event_type not in {e.value for e in AllocationEventType}:
            raise ValidationError("event_type must be ALLOCATION or RECALL")
        q = q.filter(StockAllocation.event_type == event_type)
    if imei:
        q = q.filter(StockAllocation.imei == imei)

    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 50), 1), 500)

    total = q.count()
    rows = (
        q.order_by(StockAllocation.created_at.desc(), StockAllocation.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "allocations": [r.to_dict() for r in rows],
        "count": len(rows),
        "total": total,
        "page": page,
        "pages": (total + limit - 1) // limit if total else 0,
    }
