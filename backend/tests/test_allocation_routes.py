"""
HTTP API for stock allocation.

Verifies:
- Unauthenticated requests return 401
- Every response uses the {success, data, message} envelope
- Allocate / recall / bulk endpoints map refusals to 400/403/404/409
- Read endpoints are scoped to the caller
"""

import pytest

from fieldstock.constants import ImeiStatus
from fieldstock.models import Imei, SessionToken


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/stock-allocations"),
            ("POST", "/api/stock-allocations"),
            ("POST", "/api/stock-allocations/bulk"),
            ("POST", "/api/stock-allocations/recall"),
            ("POST", "/api/stock-allocations/bulk-recall"),
            ("GET", "/api/stock-allocations/available-stock"),
            ("GET", "/api/stock-allocations/recallable-stock"),
            ("GET", "/api/stock-allocations/allocatable-users"),
            ("GET", "/api/stock-allocations/journey/1"),
            ("GET", "/api/users"),
            ("GET", "/api/imeis"),
            ("POST", "/api/sales"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"
        assert resp.json["success"] is False


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json["success"] is True


class TestAuth:

    def test_login_and_me(self, client, hierarchy, headers_for):
        resp = client.get("/api/auth/me", headers=headers_for("tl"))
        assert resp.status_code == 200
        assert resp.json["data"]["user"]["id"] == hierarchy.tl.id

    def test_bad_password(self, client, hierarchy):
        resp = client.post("/api/auth/login", json={"email": hierarchy.tl.email, "password": "wrong"})
        assert resp.status_code == 401

    def test_logout_revokes_token(self, client, hierarchy, headers_for):
        headers = headers_for("fo")
        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_deactivation_revokes_sessions(self, client, db_session, hierarchy, headers_for):
        fo_headers = headers_for("fo")

        resp = client.patch(f"/api/users/{hierarchy.fo.id}", json={"is_active": False}, headers=headers_for("admin"))

        assert resp.status_code == 200, resp.json
        db_session.expire_all()
        sessions = db_session.query(SessionToken).filter_by(user_id=hierarchy.fo.id).all()
        assert sessions and all(s.is_revoked for s in sessions)
        assert client.get("/api/auth/me", headers=fo_headers).status_code == 401


# =============================================================================
# MUTATIONS
# =============================================================================


class TestAllocateEndpoint:

    def test_allocate_returns_201_and_ledger_row(self, client, db_session, hierarchy, make_imei, headers_for):
        imei = make_imei("351234567890123")

        resp = client.post(
            "/api/stock-allocations",
            json={"imei": "351234567890123", "to_user_id": hierarchy.rm.id},
            headers=headers_for("admin"),
        )

        assert resp.status_code == 201, resp.json
        body = resp.json
        assert body["success"] is True
        assert body["data"]["allocation"]["event_type"] == "ALLOCATION"
        assert body["data"]["imei"]["current_holder_id"] == hierarchy.rm.id

        db_session.expire_all()
        assert db_session.get(Imei, imei.id).current_holder_id == hierarchy.rm.id

    def test_missing_reference_is_400(self, client, hierarchy, headers_for):
        resp = client.post("/api/stock-allocations", json={"to_user_id": hierarchy.rm.id}, headers=headers_for("admin"))
        assert resp.status_code == 400
        assert resp.json["message"] == "imei_id or imei is required"

    def test_ineligible_recipient_is_403(self, client, hierarchy, make_imei, headers_for):
        imei = make_imei(holder=hierarchy.tl)
        resp = client.post(
            "/api/stock-allocations",
            json={"imei_id": imei.id, "to_user_id": hierarchy.fo3.id},
            headers=headers_for("tl"),
        )
        assert resp.status_code == 403
        assert resp.json["success"] is False

    def test_stale_expected_holder_is_409(self, client, hierarchy, make_imei, headers_for):
        imei = make_imei(holder=hierarchy.tl)
        resp = client.post(
            "/api/stock-allocations",
            json={"imei_id": imei.id, "to_user_id": hierarchy.fo.id, "expected_holder_id": hierarchy.rm.id},
            headers=headers_for("tl"),
        )
        assert resp.status_code == 409
        assert resp.json["message"] == "This IMEI was moved by another user; refresh and try again"

    def test_bulk_allocate_partial(self, client, hierarchy, make_imei, headers_for):
        good = make_imei(holder=hierarchy.tl)
        sold = make_imei(holder=hierarchy.tl, status=ImeiStatus.SOLD.value)

        resp = client.post(
            "/api/stock-allocations/bulk",
            json={"imei_ids": [good.id, sold.id], "to_user_id": hierarchy.fo.id},
            headers=headers_for("tl"),
        )

        assert resp.status_code == 200
        data = resp.json["data"]
        assert data["success"] == [good.imei]
        assert data["failed"][0]["imei"] == sold.imei
        assert resp.json["message"] == "1 allocated, 1 failed"

    def test_bulk_requires_list(self, client, hierarchy, headers_for):
        resp = client.post(
            "/api/stock-allocations/bulk",
            json={"imei_ids": "1,2", "to_user_id": hierarchy.fo.id},
            headers=headers_for("tl"),
        )
        assert resp.status_code == 400


class TestRecallEndpoints:

    def test_recall(self, client, db_session, hierarchy, make_imei, headers_for):
        imei = make_imei(holder=hierarchy.fo)

        resp = client.post(
            "/api/stock-allocations/recall",
            json={"imei_id": imei.id, "from_user_id": hierarchy.fo.id, "reason": "Audit"},
            headers=headers_for("tl"),
        )

        assert resp.status_code == 201
        allocation = resp.json["data"]["allocation"]
        assert allocation["event_type"] == "RECALL"
        assert allocation["notes"] == "RECALL: Audit"

    def test_recall_from_wrong_holder_is_409(self, client, hierarchy, make_imei, headers_for):
        imei = make_imei(holder=hierarchy.fo2)
        resp = client.post(
            "/api/stock-allocations/recall",
            json={"imei_id": imei.id, "from_user_id": hierarchy.fo.id},
            headers=headers_for("tl"),
        )
        assert resp.status_code == 409

    def test_bulk_recall(self, client, hierarchy, make_imei, headers_for):
        a = make_imei(holder=hierarchy.fo)
        b = make_imei(holder=hierarchy.fo2)
        resp = client.post(
            "/api/stock-allocations/bulk-recall",
            json={"items": [
                {"imei_id": a.id, "from_user_id": hierarchy.fo.id},
                {"imei_id": b.id, "from_user_id": hierarchy.fo2.id},
            ]},
            headers=headers_for("tl"),
        )
        assert resp.status_code == 200
        assert sorted(resp.json["data"]["success"]) == sorted([a.imei, b.imei])


# =============================================================================
# READS
# =============================================================================


class TestReadEndpoints:

    def test_available_stock(self, client, hierarchy, make_imei, headers_for):
        mine = make_imei(holder=hierarchy.tl)
        make_imei(holder=hierarchy.fo)

        resp = client.get("/api/stock-allocations/available-stock", headers=headers_for("tl"))

        assert resp.status_code == 200
        assert [i["id"] for i in resp.json["data"]["imeis"]] == [mine.id]

    def test_recallable_stock(self, client, hierarchy, make_imei, headers_for):
        make_imei(holder=hierarchy.fo)
        resp = client.get("/api/stock-allocations/recallable-stock", headers=headers_for("tl"))
        items = resp.json["data"]["items"]
        assert len(items) == 1
        assert items[0]["user"]["id"] == hierarchy.fo.id

    def test_allocatable_users(self, client, hierarchy, headers_for):
        resp = client.get("/api/stock-allocations/allocatable-users", headers=headers_for("rm"))
        data = resp.json["data"]
        assert data["tier"] == "linked"
        assert [u["id"] for u in data["users"]] == [hierarchy.tl.id]

    def test_ledger_listing_is_scoped(self, client, hierarchy, make_imei, headers_for):
        imei = make_imei(holder=hierarchy.tl)
        client.post(
            "/api/stock-allocations",
            json={"imei_id": imei.id, "to_user_id": hierarchy.fo.id},
            headers=headers_for("tl"),
        )

        mine = client.get("/api/stock-allocations", headers=headers_for("fo")).json["data"]
        theirs = client.get("/api/stock-allocations", headers=headers_for("fo2")).json["data"]
        assert mine["total"] == 1
        assert theirs["total"] == 0

    def test_bad_event_type_is_400(self, client, hierarchy, headers_for):
        resp = client.get("/api/stock-allocations?event_type=MOVE", headers=headers_for("admin"))
        assert resp.status_code == 400

    def test_journey(self, client, hierarchy, make_imei, headers_for):
        imei = make_imei("351234567890123")
        client.post(
            "/api/stock-allocations",
            json={"imei_id": imei.id, "to_user_id": hierarchy.rm.id},
            headers=headers_for("admin"),
        )

        resp = client.get("/api/stock-allocations/journey/351234567890123", headers=headers_for("rm"))

        assert resp.status_code == 200
        steps = resp.json["data"]["steps"]
        assert [s["kind"] for s in steps] == ["registered", "allocated"]

    def test_journey_unknown_imei_is_404(self, client, hierarchy, headers_for):
        resp = client.get("/api/stock-allocations/journey/359999999999999", headers=headers_for("admin"))
        assert resp.status_code == 404

    def test_ownership_audit_is_admin_only(self, client, hierarchy, headers_for):
        assert client.get("/api/stock-allocations/ownership-audit", headers=headers_for("rm")).status_code == 403
        resp = client.get("/api/stock-allocations/ownership-audit", headers=headers_for("admin"))
        assert resp.json["data"]["conflicts"] == {}

    def test_workflow_stats(self, client, hierarchy, make_imei, headers_for):
        make_imei()
        resp = client.get("/api/stock-allocations/workflow-stats", headers=headers_for("admin"))
        assert resp.json["data"]["pipeline"]["unallocated"] == 1


class TestSaleEndpoint:

    def test_sale_and_commissions(self, client, hierarchy, make_imei, headers_for):
        imei = make_imei(holder=hierarchy.fo)
        resp = client.post(
            "/api/sales",
            json={"imei_id": imei.id, "payment_method": "mpesa"},
            headers=headers_for("fo"),
        )
        assert resp.status_code == 201
        assert len(resp.json["data"]["commissions"]) == 3

        again = client.post("/api/sales", json={"imei_id": imei.id}, headers=headers_for("fo"))
        assert again.status_code == 400
