# Overview: Read-side projections of stock ownership ("my stock", recallable stock, pipeline counts).

"""
Stock view projector.

The pure functions take IMEI-like objects (ORM rows or API dicts) and
derive per-user views. The load_* / DB helpers run the same rules against
the database for the API.

ADMIN ASYMMETRY: the admin also sees the unallocated pool (no holder,
status IN_STOCK / ALLOCATED / unset) as its own stock, because unassigned
inventory belongs to the root of the hierarchy.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Any, Iterable

from sqlalchemy import func

from ..constants import FROZEN_STATUSES, AllocationEventType, ImeiStatus, UserRole
from ..extensions import db
from ..models import Imei, StockAllocation, User
from .hierarchy_service import (
    RecipientResolution,
    holder_key,
    imei_status,
    recallable_stock,
    resolve_recipients,
    subordinates_of,
    user_key,
)


POOL_STATUSES = {ImeiStatus.IN_STOCK.value, ImeiStatus.ALLOCATED.value, None, ""}
COUNTED_STATUSES = {ImeiStatus.IN_STOCK.value, ImeiStatus.ALLOCATED.value}


def _role(user: Any) -> str | None:
    role = getattr(user, "role", None)
    return getattr(role, "value", role)


def my_stock(actor: Any, imeis: Iterable[Any]) -> list:
    """Units the acting user can allocate or sell right now."""
    me = user_key(actor)
    is_admin = _role(actor) == UserRole.ADMIN.value
    out = []
    for imei in imeis or []:
        holder = holder_key(imei)
        status = imei_status(imei)
        if holder is not None:
            if holder == me and status not in FROZEN_STATUSES:
                out.append(imei)
        elif is_admin and status in POOL_STATUSES:
            out.append(imei)
    return out


def recipient_stats(recipients: Iterable[Any], imeis: Iterable[Any]) -> list[dict]:
    """Per recipient: units currently held (IN_STOCK/ALLOCATED) and units sold by them."""
    held: dict[str, int] = defaultdict(int)
    sold: dict[str, int] = defaultdict(int)
    for imei in imeis or []:
        status = imei_status(imei)
        holder = holder_key(imei)
        if holder is None:
            continue
        if status in COUNTED_STATUSES:
            held[holder] += 1
        elif status == ImeiStatus.SOLD.value:
            sold[holder] += 1

    return [
        {
            "user": u,
            "user_id": user_key(u),
            "total_stock": held.get(user_key(u), 0),
            "sold_stock": sold.get(user_key(u), 0),
        }
        for u in recipients or []
    ]


def ownership_conflicts(views: dict[Any, Iterable[Any]]) -> dict[str, list]:
    """
    IMEIs that show up in more than one user's projected stock.

    views maps user key -> that user's my_stock() result. Consistent data
    always yields an empty dict.
    """
    owners: dict[str, list] = defaultdict(list)
    for owner, stock in views.items():
        for imei in stock or []:
            number = imei.get("imei") if isinstance(imei, dict) else getattr(imei, "imei", None)
            owners[str(number)].append(owner)
    return {number: users for number, users in owners.items() if len(users) > 1}


# --- database-backed views ------------------------------------------------------

def load_users(*, active_only: bool = True) -> list[User]:
    q = db.session.query(User)
    if active_only:
        q = q.filter(User.is_active.is_(True))
    return q.order_by(User.id.asc()).all()


def _candidate_imeis(actor: User) -> list[Imei]:
    q = db.session.query(Imei).filter(~Imei.status.in_(list(FROZEN_STATUSES)))
    if actor.role == UserRole.ADMIN.value:
        q = q.filter((Imei.current_holder_id == actor.id) | (Imei.current_holder_id.is_(None)))
    else:
        q = q.filter(Imei.current_holder_id == actor.id)
    return q.order_by(Imei.id.asc()).all()


def load_my_stock(actor: User) -> list[Imei]:
    return my_stock(actor, _candidate_imeis(actor))


def ownership_audit() -> dict:
    """
    Project every user's stock and report IMEIs claimed by more than one
    user, plus IMEIs whose holder no longer exists.
    """
    users = load_users(active_only=False)
    imeis = db.session.query(Imei).order_by(Imei.id.asc()).all()
    views = {user_key(u): my_stock(u, imeis) for u in users}

    known = {user_key(u) for u in users}
    orphaned = [i.imei for i in imeis if holder_key(i) is not None and holder_key(i) not in known]
    return {
        "users_checked": len(users),
        "imeis_checked": len(imeis),
        "conflicts": ownership_conflicts(views),
        "orphaned": orphaned,
    }


def allocatable_users(actor: User) -> dict:
    """Eligible recipients with their current stock counts."""
    resolution: RecipientResolution = resolve_recipients(actor, load_users())
    ids = [u.id for u in resolution.users]
    imeis = db.session.query(Imei).filter(Imei.current_holder_id.in_(ids)).all() if ids else []
    stats = recipient_stats(resolution.users, imeis)
    return {
        "users": [
            {**row["user"].to_summary(), "total_stock": row["total_stock"], "sold_stock": row["sold_stock"]}
            for row in stats
        ],
        "tier": resolution.tier,
    }


def load_recallable_stock(actor: User) -> list[dict]:
    users = load_users(active_only=False)
    subs = subordinates_of(actor, users)
    ids = [u.id for u in subs]
    if not ids:
        return []
    imeis = (
        db.session.query(Imei)
        .filter(Imei.current_holder_id.in_(ids))
        .order_by(Imei.id.asc())
        .all()
    )
    return [
        {
            "user": group.user.to_summary(),
            "imeis": [i.to_dict() for i in group.imeis],
            "count": group.count,
        }
        for group in recallable_stock(actor, users, imeis)
    ]


def subordinates_with_stock(actor: User) -> list[dict]:
    """Each subordinate with stock, sales and the five most recent allocations to them."""
    subs = subordinates_of(actor, load_users(active_only=False))
    rows = []
    for sub in subs:
        stock_count = (
            db.session.query(func.count(Imei.id))
            .filter(Imei.current_holder_id == sub.id, Imei.status.in_(list(COUNTED_STATUSES)))
            .scalar()
        )
        sold_count = (
            db.session.query(func.count(Imei.id))
            .filter(Imei.sold_by_user_id == sub.id, Imei.status == ImeiStatus.SOLD.value)
            .scalar()
        )
        recent = (
            db.session.query(StockAllocation)
            .filter(StockAllocation.to_user_id == sub.id)
            .order_by(StockAllocation.created_at.desc(), StockAllocation.id.desc())
            .limit(5)
            .all()
        )
        total = stock_count + sold_count
        rows.append({
            **sub.to_summary(),
            "stock_count": stock_count,
            "sold_count": sold_count,
            "sell_through_rate": round(sold_count / total * 100) if total else 0,
            "recent_allocations": [r.to_dict() for r in recent],
            "recent_allocations_count": len(recent),
        })
    return rows


def workflow_pipeline() -> dict:
    """Where stock sits in the hierarchy right now, plus recent movements."""
    by_status = dict(
        db.session.query(Imei.status, func.count(Imei.id)).group_by(Imei.status).all()
    )
    by_holder_role = dict(
        db.session.query(Imei.current_holder_role, func.count(Imei.id))
        .filter(Imei.current_holder_id.isnot(None), Imei.status.in_(list(COUNTED_STATUSES)))
        .group_by(Imei.current_holder_role)
        .all()
    )
    unallocated = (
        db.session.query(func.count(Imei.id))
        .filter(Imei.current_holder_id.is_(None), Imei.status.in_(list(COUNTED_STATUSES)))
        .scalar()
    )
    users_by_role = dict(
        db.session.query(User.role, func.count(User.id)).filter(User.is_active.is_(True)).group_by(User.role).all()
    )

    def _recent(event_type: str) -> list[dict]:
        rows = (
            db.session.query(StockAllocation)
            .filter(StockAllocation.event_type == event_type)
            .order_by(StockAllocation.created_at.desc(), StockAllocation.id.desc())
            .limit(10)
            .all()
        )
        return [r.to_dict() for r in rows]

    return {
        "pipeline": {
            "unallocated": unallocated,
            "with_admin": by_holder_role.get(UserRole.ADMIN.value, 0),
            "with_regional_managers": by_holder_role.get(UserRole.REGIONAL_MANAGER.value, 0),
            "with_team_leaders": by_holder_role.get(UserRole.TEAM_LEADER.value, 0),
            "with_field_officers": by_holder_role.get(UserRole.FIELD_OFFICER.value, 0),
            "sold": by_status.get(ImeiStatus.SOLD.value, 0),
            "locked": by_status.get(ImeiStatus.LOCKED.value, 0),
            "lost": by_status.get(ImeiStatus.LOST.value, 0),
            "total": sum(by_status.values()),
        },
        "users": {
            "admins": users_by_role.get(UserRole.ADMIN.value, 0),
            "regional_managers": users_by_role.get(UserRole.REGIONAL_MANAGER.value, 0),
            "team_leaders": users_by_role.get(UserRole.TEAM_LEADER.value, 0),
            "field_officers": users_by_role.get(UserRole.FIELD_OFFICER.value, 0),
        },
        "recent_allocations": _recent(AllocationEventType.ALLOCATION.value),
        "recent_recalls": _recent(AllocationEventType.RECALL.value),
    }
