# Overview: httpx client for the stock allocation API plus a single-owner session store.

"""
Client side of the stock allocation API.

InventoryApiClient is a thin httpx wrapper that unwraps the response
envelope. AllocationStore owns the state one signed-in user works with
(users, IMEIs, ledger) and is the only thing that mutates it:

- users are normalized once, in refresh()
- commands run one at a time (a second command while one is in flight
  fails fast instead of queueing)
- local checks (unknown recipient, ineligible recipient, sold/locked unit)
  run before any network call
- local collections change only after the server accepted the command
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

import httpx

from .constants import ImeiStatus
from .services.hierarchy_service import (
    HierarchyUser,
    eligible_recipients,
    holder_key,
    imei_status,
    is_subordinate,
    normalize_user_record,
    normalize_users,
    recallable_stock,
    user_key,
)
from .services.journey_service import JourneyStep, build_journey
from .services.stock_view_service import my_stock


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
LIST_KEYS = ("imeis", "users", "allocations", "items", "data")
BUSY_MESSAGE = "Another stock operation is already in progress"


class ApiError(Exception):
    """The API refused a request, or it could not be reached or parsed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def unwrap_envelope(payload: Any) -> Any:
    """Return data from {success, data, message}; raise ApiError when success is false."""
    if not isinstance(payload, Mapping):
        raise ApiError("Malformed response from server")
    if not payload.get("success"):
        raise ApiError(payload.get("message") or "Request failed")
    return payload.get("data")


def unwrap_list(data: Any, *keys: str) -> list:
    """
    Accept a bare list or a dict nesting the list under one of keys.

    Anything else yields [].
    """
    if isinstance(data, list):
        return data
    if isinstance(data, Mapping):
        for key in keys or LIST_KEYS:
            value = data.get(key)
            if isinstance(value, list):
                return value
    return []


class InventoryApiClient:
    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.token = token
        self._http = httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    @classmethod
    def from_config(cls, config_object=None, token: str | None = None) -> "InventoryApiClient":
        """Build a client from FIELDSTOCK_API_URL / FIELDSTOCK_API_TIMEOUT."""
        if config_object is None:
            from .config import Config as config_object
        return cls(
            config_object.FIELDSTOCK_API_URL,
            token=token,
            timeout=config_object.FIELDSTOCK_API_TIMEOUT,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "InventoryApiClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = self._http.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise ApiError(f"Network error: {exc}") from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise ApiError(f"Invalid response from server (HTTP {response.status_code})", response.status_code) from exc
        try:
            return unwrap_envelope(payload)
        except ApiError as exc:
            exc.status_code = response.status_code
            raise

    # --- session ----------------------------------------------------------

    def login(self, email: str, password: str) -> dict:
        data = self._request("POST", "/api/auth/login", json={"email": email, "password": password})
        self.token = data.get("token")
        return data.get("user") or {}

    # --- reads ------------------------------------------------------------

    def fetch_users(self, **filters) -> list:
        params = {k: v for k, v in filters.items() if v is not None}
        return unwrap_list(self._request("GET", "/api/users", params=params), "users", "data")

    def fetch_available_stock(self) -> list:
        return unwrap_list(self._request("GET", "/api/stock-allocations/available-stock"), "imeis", "data")

    def fetch_allocations(self, **filters) -> list:
        params = {k: v for k, v in filters.items() if v is not None}
        data = self._request("GET", "/api/stock-allocations", params=params)
        return unwrap_list(data, "allocations", "data")

    def fetch_recallable_stock(self) -> list:
        return unwrap_list(self._request("GET", "/api/stock-allocations/recallable-stock"), "items", "data")

    def find_imei(self, ref: Any) -> dict:
        data = self._request("GET", f"/api/imeis/{ref}")
        return data.get("imei") if isinstance(data, Mapping) and "imei" in data else data

    def journey(self, ref: Any) -> dict:
        return self._request("GET", f"/api/stock-allocations/journey/{ref}")

    # --- commands ---------------------------------------------------------

    def allocate(self, imei_id: Any, to_user_id: Any, notes: str | None = None, **extra) -> dict:
        body = {"imei_id": imei_id, "to_user_id": to_user_id, "notes": notes, **extra}
        return self._request("POST", "/api/stock-allocations", json=body)

    def bulk_allocate(self, imei_ids: list, to_user_id: Any, notes: str | None = None) -> dict:
        body = {"imei_ids": list(imei_ids), "to_user_id": to_user_id, "notes": notes}
        return self._request("POST", "/api/stock-allocations/bulk", json=body)

    def recall(self, imei_id: Any, from_user_id: Any = None, reason: str | None = None) -> dict:
        body = {"imei_id": imei_id, "from_user_id": from_user_id, "reason": reason}
        return self._request("POST", "/api/stock-allocations/recall", json=body)

    def bulk_recall(self, items: list[dict], reason: str | None = None) -> dict:
        return self._request("POST", "/api/stock-allocations/bulk-recall", json={"items": items, "reason": reason})


@dataclass
class StoreResult:
    success: bool
    message: str | None = None
    error: str | None = None
    data: Any = None
    failed: list = field(default_factory=list)

    @classmethod
    def failure(cls, error: str) -> "StoreResult":
        return cls(success=False, error=error)


class AllocationStore:
    """Session state for one acting user. Read the projections; mutate only through commands."""

    def __init__(self, client: InventoryApiClient, current_user: Any):
        self._client = client
        self._me: HierarchyUser = normalize_user_record(current_user)
        self._users: list[HierarchyUser] = []
        self._imeis: list[dict] = []
        self._allocations: list[dict] = []
        self._busy = threading.Lock()

    # --- read-only projections ------------------------------------------

    @property
    def current_user(self) -> HierarchyUser:
        return self._me

    @property
    def users(self) -> tuple:
        return tuple(self._users)

    @property
    def imeis(self) -> tuple:
        return tuple(self._imeis)

    @property
    def allocations(self) -> tuple:
        return tuple(self._allocations)

    def my_stock(self) -> list[dict]:
        return my_stock(self._me, self._imeis)

    def eligible_recipients(self) -> list[HierarchyUser]:
        active = [u for u in self._users if u.is_active]
        return eligible_recipients(self._me, active)

    def recallable_stock(self) -> list:
        return recallable_stock(self._me, self._users, self._imeis)

    def journey(self, imei: Any) -> list[JourneyStep]:
        record = self._find_imei(imei) if not isinstance(imei, Mapping) else imei
        if record is None:
            return []
        return build_journey(record, self._allocations, self._users)

    # --- lookups ----------------------------------------------------------

    def _find_user(self, user_id: Any) -> HierarchyUser | None:
        key = user_key(user_id) if isinstance(user_id, Mapping) else (str(user_id) if user_id is not None else None)
        return next((u for u in self._users if u.id == key), None)

    def _find_imei(self, ref: Any) -> dict | None:
        text = str(ref)
        for record in self._imeis:
            if str(record.get("id")) == text or record.get("imei") == text:
                return record
        return None

    def _replace_imei(self, record: Mapping) -> None:
        for index, existing in enumerate(self._imeis):
            if existing.get("id") == record.get("id"):
                self._imeis[index] = dict(record)
                return
        self._imeis.append(dict(record))

    def _apply_ledger_rows(self, rows: Iterable[Mapping]) -> None:
        """Append accepted ledger rows and move each unit to the row's recipient."""
        for row in rows or []:
            self._allocations.append(dict(row))
            record = self._find_imei(row.get("imei_id")) if row.get("imei_id") is not None else None
            if record is None:
                continue
            updated = dict(record)
            updated["current_holder_id"] = row.get("to_user_id")
            updated["current_holder_role"] = row.get("to_level")
            updated["status"] = ImeiStatus.ALLOCATED.value
            self._replace_imei(updated)

    def _check_recipient(self, to_user_id: Any) -> HierarchyUser:
        recipient = self._find_user(to_user_id)
        if recipient is None:
            raise ApiError("Recipient user not found")
        if recipient.id == self._me.id:
            raise ApiError("Cannot allocate stock to yourself")
        if recipient.id not in {u.id for u in self.eligible_recipients()}:
            raise ApiError(f"{recipient.name} is not an eligible recipient")
        return recipient

    def _check_movable(self, record: Mapping | None, verb: str) -> None:
        if record is None:
            return
        status = imei_status(record)
        if status == ImeiStatus.SOLD.value:
            raise ApiError(f"Cannot {verb} a sold device")
        if status == ImeiStatus.LOCKED.value:
            raise ApiError(f"Cannot {verb} a locked device")

    def _run(self, name: str, command) -> StoreResult:
        if not self._busy.acquire(blocking=False):
            return StoreResult.failure(BUSY_MESSAGE)
        try:
            return command()
        except ApiError as exc:
            logger.info("%s refused: %s", name, exc.message)
            return StoreResult.failure(exc.message)
        finally:
            self._busy.release()

    # --- commands ---------------------------------------------------------

    def refresh(self) -> StoreResult:
        """Reload users, visible stock and ledger."""
        def _op():
            users = normalize_users(self._client.fetch_users(include_inactive="true"))
            imeis = [dict(i) for i in self._client.fetch_available_stock()]
            for group in self._client.fetch_recallable_stock():
                imeis.extend(dict(i) for i in unwrap_list(group, "imeis"))
            allocations = [dict(a) for a in self._client.fetch_allocations(limit=500)]

            seen: set = set()
            unique = []
            for record in imeis:
                if record.get("id") in seen:
                    continue
                seen.add(record.get("id"))
                unique.append(record)

            self._users, self._imeis, self._allocations = users, unique, allocations
            return StoreResult(success=True, message=f"Loaded {len(unique)} IMEIs")

        return self._run("refresh", _op)

    def allocate(self, imei_id: Any, to_user_id: Any, notes: str | None = None) -> StoreResult:
        def _op():
            recipient = self._check_recipient(to_user_id)
            record = self._find_imei(imei_id)
            self._check_movable(record, "allocate")
            extra = {}
            if record is not None:
                extra["expected_holder_id"] = record.get("current_holder_id")
            data = self._client.allocate(imei_id, recipient.id, notes, **extra) or {}
            if data.get("imei"):
                self._replace_imei(data["imei"])
            if data.get("allocation"):
                self._allocations.append(dict(data["allocation"]))
            return StoreResult(success=True, message=f"Allocated to {recipient.name}", data=data)

        return self._run("allocate", _op)

    def bulk_allocate(self, imei_ids: list, to_user_id: Any, notes: str | None = None) -> StoreResult:
        def _op():
            if not imei_ids:
                raise ApiError("No IMEIs provided")
            recipient = self._check_recipient(to_user_id)
            for ref in imei_ids:
                self._check_movable(self._find_imei(ref), "allocate")
            data = self._client.bulk_allocate(imei_ids, recipient.id, notes) or {}
            self._apply_ledger_rows(data.get("allocations"))
            succeeded = data.get("success") or []
            return StoreResult(
                success=True,
                message=f"{len(succeeded)} IMEIs allocated to {recipient.name}",
                data=data,
                failed=list(data.get("failed") or []),
            )

        return self._run("bulk_allocate", _op)

    def recall(self, imei_id: Any, reason: str | None = None) -> StoreResult:
        def _op():
            record = self._find_imei(imei_id)
            self._check_movable(record, "recall")
            holder = holder_key(record) if record is not None else None
            if record is not None and holder is None:
                raise ApiError("Device is not allocated to anyone")
            if holder is not None:
                holder_user = self._find_user(holder)
                if holder_user is None or not is_subordinate(self._me, holder_user, self._users):
                    raise ApiError("You can only recall stock from your subordinates")
            data = self._client.recall(imei_id, holder, reason) or {}
            if data.get("imei"):
                self._replace_imei(data["imei"])
            if data.get("allocation"):
                self._allocations.append(dict(data["allocation"]))
            return StoreResult(success=True, message="Stock recalled", data=data)

        return self._run("recall", _op)

    def bulk_recall(self, imei_ids: list, reason: str | None = None) -> StoreResult:
        def _op():
            if not imei_ids:
                raise ApiError("No IMEIs provided")
            items = []
            for ref in imei_ids:
                record = self._find_imei(ref)
                self._check_movable(record, "recall")
                items.append({"imei_id": ref, "from_user_id": holder_key(record) if record else None})
            data = self._client.bulk_recall(items, reason) or {}
            self._apply_ledger_rows(data.get("allocations"))
            succeeded = data.get("success") or []
            return StoreResult(
                success=True,
                message=f"{len(succeeded)} IMEIs recalled",
                data=data,
                failed=list(data.get("failed") or []),
            )

        return self._run("bulk_recall", _op)

