# backend/fieldstock/services/journey_service.py
"""
IMEI journey: the ordered lifecycle of one unit, rebuilt from the ledger.

registered -> allocated / recalled (one step per ledger row) -> sold

build_journey() is a pure projection. The same IMEI, ledger and users
always give the same steps, and malformed data (unknown users, empty
status, legacy rows without event_type) degrades to "Unknown" labels
instead of raising.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping

from ..constants import RECALL_NOTE_PREFIX, AllocationEventType, ImeiStatus, readable_role
from ..extensions import db
from ..models import StockAllocation, User
from ..time_utils import coerce_datetime, to_utc_z
from ..validation import NotFoundError
from .hierarchy_service import user_key
from .imei_service import find_imei


STEP_REGISTERED = "registered"
STEP_ALLOCATED = "allocated"
STEP_RECALLED = "recalled"
STEP_SOLD = "sold"

STATUS_LABELS = {
    ImeiStatus.IN_STOCK.value: "In Stock",
    ImeiStatus.ALLOCATED.value: "Allocated",
    ImeiStatus.SOLD.value: "Sold",
    ImeiStatus.LOCKED.value: "Locked",
    ImeiStatus.LOST.value: "Lost",
}


@dataclass(frozen=True)
class JourneyStep:
    kind: str
    title: str
    description: str
    timestamp: datetime | None
    allocation_id: Any = None
    from_user_id: str | None = None
    to_user_id: str | None = None
    role: str | None = None
    notes: str | None = None

    @property
    def is_recall(self) -> bool:
        return self.kind == STEP_RECALLED

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "title": self.title,
            "description": self.description,
            "timestamp": to_utc_z(self.timestamp),
            "allocation_id": self.allocation_id,
            "from_user_id": self.from_user_id,
            "to_user_id": self.to_user_id,
            "role": self.role,
            "notes": self.notes,
            "is_recall": self.is_recall,
        }


def _get(obj: Any, *names: str) -> Any:
    """Attribute or key lookup tolerant of snake_case and camelCase records."""
    for name in names:
        if isinstance(obj, Mapping):
            value = obj.get(name)
        else:
            value = getattr(obj, name, None)
        if value not in (None, ""):
            return value
    return None


def _when(value: Any) -> datetime | None:
    try:
        return coerce_datetime(value)
    except ValueError:
        return None


def status_label(status: Any) -> str:
    """Human label for an IMEI status; never raises."""
    if status is None:
        return "Unknown"
    key = getattr(status, "value", status)
    return STATUS_LABELS.get(str(key).strip().upper(), "Unknown")


def is_recall_entry(entry: Any) -> bool:
    """event_type decides; rows written before it existed fall back to the notes prefix."""
    event_type = _get(entry, "event_type", "eventType")
    if event_type:
        return str(event_type).upper() == AllocationEventType.RECALL.value
    notes = _get(entry, "notes")
    return isinstance(notes, str) and notes.startswith(RECALL_NOTE_PREFIX)


def _sort_key(entry: Any) -> tuple:
    ts = _when(_get(entry, "created_at", "createdAt")) or datetime.min
    raw_id = _get(entry, "id", "_id")
    try:
        id_key = (0, int(raw_id), "")
    except (TypeError, ValueError):
        id_key = (1, 0, str(raw_id or ""))
    return (ts, id_key)


def _id_text(value: Any) -> str | None:
    if isinstance(value, Mapping):
        return user_key(value)
    return str(value) if value is not None else None


def _entry_matches(entry: Any, number: str | None, imei_id: str | None) -> bool:
    entry_number = _get(entry, "imei")
    if number and entry_number is not None and str(entry_number) == number:
        return True
    entry_id = _get(entry, "imei_id", "imeiId")
    return imei_id is not None and entry_id is not None and str(entry_id) == imei_id


def build_journey(imei: Any, ledger: Iterable[Any], users: Iterable[Any]) -> list[JourneyStep]:
    """
    Replay the ledger for one IMEI into an ordered timeline.

    Ledger rows for other IMEIs are ignored; rows are ordered by
    (created_at, id). A sold step is appended only when status is SOLD
    and sold_at is known.
    """
    names = {}
    for u in users or []:
        key = user_key(u)
        if key is not None:
            names[key] = _get(u, "name") or "Unknown"

    def name_of(user_id: Any) -> str:
        key = _id_text(user_id)
        return names.get(key, "Unknown") if key is not None else "Unknown"

    number = _get(imei, "imei")
    number = str(number) if number is not None else None
    raw_id = _get(imei, "id", "_id")
    imei_id = str(raw_id) if raw_id is not None else None

    source = _get(imei, "source")
    steps = [
        JourneyStep(
            kind=STEP_REGISTERED,
            title="Registered",
            description=f"IMEI registered in the system from {str(source).upper() if source else 'UNKNOWN'}",
            timestamp=_when(_get(imei, "registered_at", "registeredAt", "created_at", "createdAt")),
        )
    ]

    entries = sorted((e for e in ledger or [] if _entry_matches(e, number, imei_id)), key=_sort_key)
    for entry in entries:
        from_id = _get(entry, "from_user_id", "fromUserId")
        to_id = _get(entry, "to_user_id", "toUserId")
        to_role = _get(entry, "to_level", "toRole", "level")
        common = dict(
            timestamp=_when(_get(entry, "created_at", "createdAt")),
            allocation_id=_get(entry, "id", "_id"),
            from_user_id=_id_text(from_id),
            to_user_id=_id_text(to_id),
            role=to_role,
            notes=_get(entry, "notes"),
        )
        if is_recall_entry(entry):
            steps.append(JourneyStep(
                kind=STEP_RECALLED,
                title="Recalled",
                description=f"Stock recalled from {name_of(from_id)} to {name_of(to_id)}",
                **common,
            ))
        else:
            steps.append(JourneyStep(
                kind=STEP_ALLOCATED,
                title=f"Allocated to {readable_role(to_role)}",
                description=f"{name_of(from_id)} allocated to {name_of(to_id)}",
                **common,
            ))

    sold_at = _when(_get(imei, "sold_at", "soldAt"))
    if str(_get(imei, "status") or "").upper() == ImeiStatus.SOLD.value and sold_at is not None:
        seller_id = _get(imei, "sold_by_user_id", "soldBy")
        seller = name_of(seller_id) if seller_id is not None else None
        steps.append(JourneyStep(
            kind=STEP_SOLD,
            title="Sold to Customer",
            description=f"Sold by {seller}" if seller and seller != "Unknown" else "Sold to customer",
            timestamp=sold_at,
            to_user_id=str(seller_id) if seller_id is not None else None,
        ))

    return steps


def journey_for(imei_ref: Any) -> dict:
    """Load one IMEI with its ledger and involved users and build the journey."""
    imei = find_imei(imei_ref)
    if imei is None:
        raise NotFoundError("IMEI not found")

    ledger = (
        db.session.query(StockAllocation)
        .filter(StockAllocation.imei_id == imei.id)
        .order_by(StockAllocation.created_at.asc(), StockAllocation.id.asc())
        .all()
    )

    user_ids = {imei.current_holder_id, imei.sold_by_user_id}
    for entry in ledger:
        user_ids.update((entry.from_user_id, entry.to_user_id))
    user_ids.discard(None)
    users = db.session.query(User).filter(User.id.in_(user_ids)).all() if user_ids else []

    holder = next((u for u in users if u.id == imei.current_holder_id), None)
    steps = build_journey(imei, ledger, users)

    return {
        "imei": imei.to_dict(),
        "current_holder": holder.to_summary() if holder else None,
        "status_label": status_label(imei.status),
        "steps": [s.to_dict() for s in steps],
        "history": [e.to_dict() for e in ledger],
    }
