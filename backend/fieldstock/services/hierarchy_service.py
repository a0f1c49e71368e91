# backend/fieldstock/services/hierarchy_service.py
"""
Hierarchy rules: identity normalization, allocation eligibility and
subordinate resolution.

The tree is admin -> regional_manager -> team_leader -> field_officer.
Links live on the subordinate: team leaders carry regional_manager_id,
field officers carry team_leader_id.

Every function here is pure. It works on any user-like object exposing
id / role / team_leader_id / regional_manager_id attributes (ORM User rows
or HierarchyUser records) so that the API and the client store share the
exact same rules.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from ..constants import FROZEN_STATUSES, UserRole


logger = logging.getLogger(__name__)


TIER_LINKED = "linked"
TIER_ROLE = "role"
TIER_ANY = "any"


class MissingIdentityError(ValueError):
    """Raised when a user record carries no stable identifier."""


@dataclass(frozen=True)
class HierarchyUser:
    """Canonical user shape produced once at ingestion."""
    id: str
    name: str
    role: str | None
    region: str | None = None
    team_leader_id: str | None = None
    regional_manager_id: str | None = None
    is_active: bool = True
    email: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "region": self.region,
            "team_leader_id": self.team_leader_id,
            "regional_manager_id": self.regional_manager_id,
            "is_active": self.is_active,
            "email": self.email,
        }


@dataclass
class RecipientResolution:
    users: list = field(default_factory=list)
    tier: str | None = None


@dataclass
class RecallGroup:
    user: Any
    imeis: list = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.imeis)


# --- identity -------------------------------------------------------------

def _key(value: Any) -> str | None:
    """Stringify an id; nested {"_id": ...} / {"id": ...} link objects are unwrapped."""
    if value is None:
        return None
    if isinstance(value, Mapping):
        value = value.get("id", value.get("_id"))
        if value is None:
            return None
    if isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def _pick(raw: Mapping, *names: str) -> Any:
    for name in names:
        if name in raw and raw[name] not in (None, ""):
            return raw[name]
    return None


def user_key(user: Any) -> str | None:
    """Normalized id of a user-like object or mapping (tolerates id and _id)."""
    if user is None:
        return None
    if isinstance(user, Mapping):
        return _key(_pick(user, "id", "_id"))
    return _key(getattr(user, "id", None))


def same_user(a: Any, b: Any) -> bool:
    ka, kb = user_key(a), user_key(b)
    return ka is not None and ka == kb


def normalize_user_record(raw: Any) -> HierarchyUser:
    """
    Canonicalize one user record.

    Accepts ORM rows, API JSON (id, snake_case links) and raw backend JSON
    (_id, camelCase links, populated link objects). Records with no id are
    rejected; positional ids are never invented.
    """
    if isinstance(raw, HierarchyUser):
        return raw

    if isinstance(raw, Mapping):
        uid = _key(_pick(raw, "id", "_id"))
        if uid is None:
            raise MissingIdentityError(f"User record has no id: {raw.get('name') or raw.get('email') or '?'}")
        active = raw.get("is_active", raw.get("isActive", True))
        return HierarchyUser(
            id=uid,
            name=str(_pick(raw, "name") or "Unknown"),
            role=_pick(raw, "role"),
            region=_pick(raw, "region"),
            team_leader_id=_key(_pick(raw, "team_leader_id", "teamLeaderId")),
            regional_manager_id=_key(_pick(raw, "regional_manager_id", "regionalManagerId")),
            is_active=bool(active) if active is not None else True,
            email=_pick(raw, "email"),
        )

    uid = _key(getattr(raw, "id", None))
    if uid is None:
        raise MissingIdentityError("User record has no id")
    return HierarchyUser(
        id=uid,
        name=getattr(raw, "name", None) or "Unknown",
        role=getattr(raw, "role", None),
        region=getattr(raw, "region", None),
        team_leader_id=_key(getattr(raw, "team_leader_id", None)),
        regional_manager_id=_key(getattr(raw, "regional_manager_id", None)),
        is_active=bool(getattr(raw, "is_active", True)),
        email=getattr(raw, "email", None),
    )


def normalize_users(raws: Iterable[Any]) -> list[HierarchyUser]:
    """Normalize a batch; id-less records are skipped, duplicate ids keep the first."""
    out: list[HierarchyUser] = []
    seen: set[str] = set()
    for raw in raws or []:
        try:
            user = normalize_user_record(raw)
        except MissingIdentityError as exc:
            logger.warning("Skipping user record: %s", exc)
            continue
        if user.id in seen:
            logger.warning("Skipping duplicate user record id=%s", user.id)
            continue
        seen.add(user.id)
        out.append(user)
    return out


# --- eligibility -----------------------------------------------------------

def _role(user: Any) -> str | None:
    role = getattr(user, "role", None)
    return role.value if isinstance(role, UserRole) else role


def _link(user: Any, attr: str) -> str | None:
    return _key(getattr(user, attr, None))


def _tiers(acting_user: Any, all_users: list) -> list[tuple[str, list]]:
    role = _role(acting_user)
    me = user_key(acting_user)
    others = [u for u in all_users if user_key(u) != me]

    if role == UserRole.ADMIN.value:
        return [
            (TIER_LINKED, [u for u in all_users if _role(u) == UserRole.REGIONAL_MANAGER.value]),
            (TIER_ROLE, [u for u in others if _role(u) != UserRole.ADMIN.value]),
            (TIER_ANY, others),
        ]

    if role == UserRole.REGIONAL_MANAGER.value:
        leaders = [u for u in all_users if _role(u) == UserRole.TEAM_LEADER.value]
        return [
            (TIER_LINKED, [u for u in leaders if _link(u, "regional_manager_id") == me]),
            (TIER_ROLE, leaders),
            (TIER_ANY, [u for u in others if _role(u) != UserRole.ADMIN.value]),
        ]

    if role == UserRole.TEAM_LEADER.value:
        officers = [u for u in all_users if _role(u) == UserRole.FIELD_OFFICER.value]
        return [
            (TIER_LINKED, [u for u in officers if _link(u, "team_leader_id") == me]),
            (TIER_ROLE, officers),
            (TIER_ANY, others),
        ]

    return []


def resolve_recipients(acting_user: Any, all_users: Iterable[Any]) -> RecipientResolution:
    """
    Allocation recipients plus the fallback tier that produced them.

    Tiers degrade from hierarchy-linked users to role matches to anyone;
    the first non-empty tier wins. Field officers and unknown roles get
    nothing.
    """
    users = list(all_users or [])
    for tier, candidates in _tiers(acting_user, users):
        if candidates:
            if tier != TIER_LINKED:
                logger.warning(
                    "Recipient fallback tier=%s used for user id=%s role=%s (hierarchy links incomplete)",
                    tier, user_key(acting_user), _role(acting_user),
                )
            return RecipientResolution(users=candidates, tier=tier)
    return RecipientResolution(users=[], tier=None)


def eligible_recipients(acting_user: Any, all_users: Iterable[Any]) -> list:
    return resolve_recipients(acting_user, all_users).users


# --- subordinates / recall ---------------------------------------------------

def subordinates_of(acting_user: Any, all_users: Iterable[Any]) -> list:
    """Direct and indirect subordinates of acting_user."""
    users = list(all_users or [])
    role = _role(acting_user)
    me = user_key(acting_user)

    if role == UserRole.ADMIN.value:
        lower = {UserRole.REGIONAL_MANAGER.value, UserRole.TEAM_LEADER.value, UserRole.FIELD_OFFICER.value}
        return [u for u in users if _role(u) in lower and user_key(u) != me]

    if role == UserRole.REGIONAL_MANAGER.value:
        leaders = [
            u for u in users
            if _role(u) == UserRole.TEAM_LEADER.value and _link(u, "regional_manager_id") == me
        ]
        leader_ids = {user_key(u) for u in leaders}
        officers = [
            u for u in users
            if _role(u) == UserRole.FIELD_OFFICER.value and _link(u, "team_leader_id") in leader_ids
        ]
        return leaders + officers

    if role == UserRole.TEAM_LEADER.value:
        return [
            u for u in users
            if _role(u) == UserRole.FIELD_OFFICER.value and _link(u, "team_leader_id") == me
        ]

    return []


def is_subordinate(acting_user: Any, candidate: Any, all_users: Iterable[Any]) -> bool:
    key = user_key(candidate)
    if key is None:
        return False
    return any(user_key(u) == key for u in subordinates_of(acting_user, all_users))


def holder_key(imei: Any) -> str | None:
    """Current holder id of an IMEI-like object or mapping."""
    if isinstance(imei, Mapping):
        return _key(_pick(imei, "current_holder_id", "currentHolderId", "currentOwnerId"))
    return _key(getattr(imei, "current_holder_id", None))


def imei_status(imei: Any) -> str | None:
    if isinstance(imei, Mapping):
        return imei.get("status")
    return getattr(imei, "status", None)


def recallable_stock(acting_user: Any, all_users: Iterable[Any], all_imeis: Iterable[Any]) -> list[RecallGroup]:
    """
    One RecallGroup per subordinate currently holding recallable units.

    SOLD and LOCKED units are never recallable; subordinates holding nothing
    recallable are omitted.
    """
    by_holder: dict[str, list] = {}
    for imei in all_imeis or []:
        holder = holder_key(imei)
        if holder is None or imei_status(imei) in FROZEN_STATUSES:
            continue
        by_holder.setdefault(holder, []).append(imei)

    groups: list[RecallGroup] = []
    for sub in subordinates_of(acting_user, all_users):
        held = by_holder.get(user_key(sub))
        if held:
            groups.append(RecallGroup(user=sub, imeis=held))
    return groups
