"""
API client and session store, driven through httpx.MockTransport.
"""

import json

import httpx
import pytest

from fieldstock.client import (
    BUSY_MESSAGE,
    AllocationStore,
    ApiError,
    InventoryApiClient,
    unwrap_envelope,
    unwrap_list,
)
from fieldstock.config import TestConfig


TL = {"_id": 2, "name": "Tom", "role": "team_leader"}

USERS = [
    {"_id": 1, "name": "Rita", "role": "regional_manager"},
    TL,
    {"_id": 3, "name": "Faith", "role": "field_officer", "teamLeaderId": {"_id": 2}},
    {"_id": 4, "name": "Felix", "role": "field_officer", "team_leader_id": 2},
    {"_id": 5, "name": "Fatma", "role": "field_officer", "team_leader_id": 9},
    {"name": "Ghost", "role": "field_officer"},
]

AVAILABLE = [
    {"id": 10, "imei": "351234567890010", "status": "ALLOCATED", "current_holder_id": 2},
    {"id": 11, "imei": "351234567890011", "status": "SOLD", "current_holder_id": 2},
]

RECALLABLE = [
    {"user": {"id": 3}, "count": 1, "imeis": [
        {"id": 12, "imei": "351234567890012", "status": "ALLOCATED", "current_holder_id": 3},
    ]},
]


def envelope(data=None, success=True, message=None, status=200):
    body = {"success": success, "data": data}
    if message:
        body["message"] = message
    return httpx.Response(status, json=body)


class FakeApi:
    """Routes requests to canned envelopes and records what was sent."""

    def __init__(self):
        self.requests = []
        self.routes = {
            ("GET", "/api/users"): lambda req: envelope({"users": USERS}),
            ("GET", "/api/stock-allocations/available-stock"): lambda req: envelope({"imeis": AVAILABLE}),
            ("GET", "/api/stock-allocations/recallable-stock"): lambda req: envelope({"items": RECALLABLE}),
            ("GET", "/api/stock-allocations"): lambda req: envelope({"allocations": []}),
        }

    def __call__(self, request):
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return envelope(None, success=False, message="Not found", status=404)
        return handler(request)

    def sent(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def client(api):
    return InventoryApiClient("http://fieldstock.test", token="t0k3n", transport=httpx.MockTransport(api))


@pytest.fixture
def store(client):
    store = AllocationStore(client, TL)
    assert store.refresh().success
    return store


# =============================================================================
# ENVELOPE
# =============================================================================


class TestEnvelope:

    def test_unwrap_success_and_failure(self):
        assert unwrap_envelope({"success": True, "data": {"x": 1}}) == {"x": 1}
        with pytest.raises(ApiError, match="nope"):
            unwrap_envelope({"success": False, "message": "nope"})
        with pytest.raises(ApiError):
            unwrap_envelope(["not", "an", "envelope"])

    def test_unwrap_list_accepts_both_shapes(self):
        assert unwrap_list([1, 2]) == [1, 2]
        assert unwrap_list({"imeis": [1]}, "imeis") == [1]
        assert unwrap_list({"data": [3]}) == [3]
        assert unwrap_list({"count": 0}) == []
        assert unwrap_list(None) == []


class TestClient:

    def test_from_config(self):
        with InventoryApiClient.from_config(TestConfig, token="abc") as api_client:
            assert str(api_client._http.base_url).rstrip("/") == TestConfig.FIELDSTOCK_API_URL
            assert api_client.token == "abc"

    def test_bearer_token_is_sent(self, api, client):
        client.fetch_users()
        assert api.requests[0].headers["Authorization"] == "Bearer t0k3n"

    def test_login_stores_token(self, api, client):
        api.routes[("POST", "/api/auth/login")] = lambda req: envelope({"token": "new", "user": {"id": 2}})
        assert client.login("tl@fieldstock.local", "Password123!") == {"id": 2}
        assert client.token == "new"

    def test_refusal_carries_status_code(self, api, client):
        api.routes[("POST", "/api/stock-allocations")] = lambda req: envelope(
            None, success=False, message="This IMEI was moved by another user; refresh and try again", status=409,
        )
        with pytest.raises(ApiError) as info:
            client.allocate(10, 3)
        assert info.value.status_code == 409

    def test_non_json_response(self, api, client):
        api.routes[("GET", "/api/users")] = lambda req: httpx.Response(502, text="<html>Bad gateway</html>")
        with pytest.raises(ApiError, match="Invalid response"):
            client.fetch_users()

    def test_network_error(self, api, client):
        def boom(req):
            raise httpx.ConnectError("connection refused", request=req)

        api.routes[("GET", "/api/users")] = boom
        with pytest.raises(ApiError, match="Network error"):
            client.fetch_users()


# =============================================================================
# STORE
# =============================================================================


class TestStoreProjections:

    def test_users_normalized_once_and_idless_dropped(self, store):
        assert [u.id for u in store.users] == ["1", "2", "3", "4", "5"]
        assert store.users[2].team_leader_id == "2"

    def test_my_stock_excludes_sold(self, store):
        assert [i["id"] for i in store.my_stock()] == [10]

    def test_eligible_recipients_are_linked_officers(self, store):
        assert [u.name for u in store.eligible_recipients()] == ["Faith", "Felix"]

    def test_recallable_stock(self, store):
        groups = store.recallable_stock()
        assert [(g.user.id, g.count) for g in groups] == [("3", 1)]

    def test_journey_from_local_state(self, store):
        steps = store.journey(10)
        assert [s.kind for s in steps] == ["registered"]
        assert store.journey(999) == []


class TestStoreCommands:

    def test_unknown_recipient_never_hits_network(self, api, store):
        before = len(api.requests)
        result = store.allocate(10, 77)
        assert not result.success
        assert result.error == "Recipient user not found"
        assert len(api.requests) == before

    def test_ineligible_recipient_never_hits_network(self, api, store):
        result = store.allocate(10, 5)
        assert not result.success
        assert "not an eligible recipient" in result.error
        assert api.sent("POST", "/api/stock-allocations") == []

    def test_sold_unit_never_hits_network(self, api, store):
        result = store.allocate(11, 3)
        assert result.error == "Cannot allocate a sold device"
        assert api.sent("POST", "/api/stock-allocations") == []

    def test_allocate_updates_local_state(self, api, store):
        moved = {**AVAILABLE[0], "current_holder_id": 3}
        allocation = {"id": 1, "imei_id": 10, "imei": moved["imei"], "from_user_id": 2, "to_user_id": 3,
                      "event_type": "ALLOCATION", "to_level": "field_officer"}
        api.routes[("POST", "/api/stock-allocations")] = lambda req: envelope(
            {"imei": moved, "allocation": allocation}, status=201,
        )

        result = store.allocate(10, 3, notes="Weekend")

        assert result.success, result.error
        body = json.loads(api.sent("POST", "/api/stock-allocations")[0].content)
        assert body["expected_holder_id"] == 2
        assert body["to_user_id"] == "3"
        assert [i["id"] for i in store.my_stock()] == []
        assert store.allocations[-1]["id"] == 1

    def test_server_refusal_leaves_state_untouched(self, api, store):
        api.routes[("POST", "/api/stock-allocations")] = lambda req: envelope(
            None, success=False, message="This IMEI was moved by another user; refresh and try again", status=409,
        )
        before = store.imeis

        result = store.allocate(10, 3)

        assert not result.success
        assert result.error.startswith("This IMEI was moved")
        assert store.imeis == before
        assert store.allocations == ()

    def test_one_command_at_a_time(self, api, store):
        store._busy.acquire()
        try:
            result = store.allocate(10, 3)
        finally:
            store._busy.release()
        assert result.error == BUSY_MESSAGE
        assert api.sent("POST", "/api/stock-allocations") == []

    def test_bulk_allocate_applies_returned_rows(self, api, store):
        api.routes[("POST", "/api/stock-allocations/bulk")] = lambda req: envelope({
            "success": ["351234567890010"],
            "failed": [],
            "allocations": [{"id": 5, "imei_id": 10, "to_user_id": 4, "to_level": "field_officer",
                             "event_type": "ALLOCATION"}],
        })

        result = store.bulk_allocate([10], 4)

        assert result.success
        record = next(i for i in store.imeis if i["id"] == 10)
        assert record["current_holder_id"] == 4

    def test_recall_requires_subordinate_holder(self, api, store):
        store._imeis.append({"id": 20, "imei": "351234567890020", "status": "ALLOCATED", "current_holder_id": 5})
        result = store.recall(20)
        assert result.error == "You can only recall stock from your subordinates"
        assert api.sent("POST", "/api/stock-allocations/recall") == []

    def test_recall_sends_current_holder(self, api, store):
        recalled = {"id": 12, "imei": "351234567890012", "status": "ALLOCATED", "current_holder_id": 2}
        api.routes[("POST", "/api/stock-allocations/recall")] = lambda req: envelope(
            {"imei": recalled, "allocation": {"id": 9, "imei_id": 12, "event_type": "RECALL",
                                              "notes": "RECALL: Stock recalled"}},
            status=201,
        )

        result = store.recall(12)

        assert result.success
        body = json.loads(api.sent("POST", "/api/stock-allocations/recall")[0].content)
        assert body["from_user_id"] == "3"
        assert [i["id"] for i in store.my_stock()] == [10, 12]

    def test_success_without_data_is_not_a_crash(self, api, store):
        api.routes[("POST", "/api/stock-allocations")] = lambda req: envelope(None, status=201)
        before = store.imeis

        result = store.allocate(10, 3)

        assert result.success, result.error
        assert store.imeis == before
        assert store.allocations == ()

    def test_bulk_recall_sends_holders_and_applies_rows(self, api, store):
        api.routes[("POST", "/api/stock-allocations/bulk-recall")] = lambda req: envelope({
            "success": ["351234567890012"],
            "failed": [],
            "allocations": [{"id": 7, "imei_id": 12, "from_user_id": 3, "to_user_id": 2,
                             "to_level": "team_leader", "event_type": "RECALL"}],
        })

        result = store.bulk_recall([12], reason="Audit")

        assert result.success, result.error
        assert result.message == "1 IMEIs recalled"
        body = json.loads(api.sent("POST", "/api/stock-allocations/bulk-recall")[0].content)
        assert body["items"] == [{"imei_id": 12, "from_user_id": "3"}]
        assert body["reason"] == "Audit"
        record = next(i for i in store.imeis if i["id"] == 12)
        assert record["current_holder_id"] == 2
        assert store.allocations[-1]["event_type"] == "RECALL"
