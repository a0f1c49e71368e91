# Overview: Domain vocabulary shared by models, services, routes and the API client.

"""
Hierarchy, IMEI and ledger vocabulary.

The role tree is strict: admin -> regional_manager -> team_leader -> field_officer.
Stock only moves down the tree by allocation and back up by recall.
"""
from __future__ import annotations

from enum import Enum


class UserRole(str, Enum):
    ADMIN = "admin"
    REGIONAL_MANAGER = "regional_manager"
    TEAM_LEADER = "team_leader"
    FIELD_OFFICER = "field_officer"


# Depth in the hierarchy (0 = root). Lower number = higher authority.
ROLE_LEVELS = {
    UserRole.ADMIN.value: 0,
    UserRole.REGIONAL_MANAGER.value: 1,
    UserRole.TEAM_LEADER.value: 2,
    UserRole.FIELD_OFFICER.value: 3,
}

ROLE_VALUES = tuple(r.value for r in UserRole)


class ImeiStatus(str, Enum):
    IN_STOCK = "IN_STOCK"
    ALLOCATED = "ALLOCATED"
    SOLD = "SOLD"
    LOCKED = "LOCKED"
    LOST = "LOST"


# Excluded from "my stock" and from recallable stock.
FROZEN_STATUSES = frozenset({ImeiStatus.SOLD.value, ImeiStatus.LOCKED.value})

# Allocation and sale refuse these outright.
UNTRANSFERABLE_STATUSES = frozenset({
    ImeiStatus.SOLD.value,
    ImeiStatus.LOCKED.value,
    ImeiStatus.LOST.value,
})


class AllocationEventType(str, Enum):
    ALLOCATION = "ALLOCATION"
    RECALL = "RECALL"


class AllocationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REVERSED = "reversed"


# Descriptive prefix kept on recall notes; event_type is authoritative.
RECALL_NOTE_PREFIX = "RECALL:"
DEFAULT_RECALL_NOTE = "Stock recalled"
DEFAULT_BULK_RECALL_NOTE = "Bulk recall"


class PhoneSource(str, Enum):
    WATU = "watu"
    MOGO = "mogo"
    ONFON = "onfon"


SOURCE_VALUES = tuple(s.value for s in PhoneSource)


class PaymentMethod(str, Enum):
    CASH = "cash"
    MPESA = "mpesa"


class CommissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"


PRODUCT_CATEGORIES = (
    "Smartphones",
    "Feature Phones",
    "Tablets",
    "Accessories",
    "SIM Cards",
    "Airtime",
)

IMEI_LENGTH = 15


def readable_role(role: str | None) -> str:
    """'team_leader' -> 'team leader'; empty -> 'Unknown role'."""
    if not role:
        return "Unknown role"
    return str(role).replace("_", " ")
