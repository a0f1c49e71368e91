"""
Recall engine: pulling stock back up the hierarchy.

Verifies:
- A recall appends one RECALL row (from holder, to recaller) and returns the unit
- Recall rows carry "RECALL: <reason>" notes; allocation rows never do
- Only subordinates' unsold, unlocked stock can be recalled
- A stale from_user_id is reported as a conflict
- Bulk recall across several holders with per-item failures
"""

import pytest

from fieldstock.constants import AllocationEventType, ImeiStatus
from fieldstock.models import StockAllocation
from fieldstock.services import allocation_service


def _rows(session, imei=None):
    q = session.query(StockAllocation)
    if imei is not None:
        q = q.filter(StockAllocation.imei_id == imei.id)
    return q.order_by(StockAllocation.id.asc()).all()


class TestRecall:

    def test_team_leader_recalls_from_field_officer(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.tl)
        assert allocation_service.allocate(hierarchy.tl, imei.id, hierarchy.fo.id).success

        result = allocation_service.recall(hierarchy.tl, imei.id, reason="Officer on leave")

        assert result.success, result.error
        db_session.refresh(imei)
        assert imei.current_holder_id == hierarchy.tl.id
        assert imei.status == ImeiStatus.ALLOCATED.value

        allocation, recall = _rows(db_session, imei)
        assert allocation.event_type == AllocationEventType.ALLOCATION.value
        assert recall.event_type == AllocationEventType.RECALL.value
        assert recall.from_user_id == hierarchy.fo.id
        assert recall.to_user_id == hierarchy.tl.id
        assert recall.notes == "RECALL: Officer on leave"
        assert recall.recall_reason == "Officer on leave"
        assert recall.is_recall

    def test_default_recall_note(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.fo)
        result = allocation_service.recall(hierarchy.tl, imei.id)
        assert result.allocation.notes == "RECALL: Stock recalled"
        assert result.allocation.recall_reason is None

    def test_regional_manager_reaches_field_officers(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.fo2)
        result = allocation_service.recall(hierarchy.rm, imei.id)
        assert result.success
        assert result.imei.current_holder_id == hierarchy.rm.id

    def test_admin_recall_lands_with_admin(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.fo3)
        result = allocation_service.recall(hierarchy.admin, imei.id)
        assert result.success
        db_session.refresh(imei)
        assert imei.current_holder_id == hierarchy.admin.id
        assert imei.status == ImeiStatus.ALLOCATED.value

    def test_not_a_subordinate(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.fo3)
        result = allocation_service.recall(hierarchy.tl, imei.id)
        assert not result.success
        assert result.error == "You can only recall stock from your subordinates"
        assert result.error_code == 403
        assert _rows(db_session) == []

    def test_field_officer_cannot_recall(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.fo2)
        result = allocation_service.recall(hierarchy.fo, imei.id)
        assert not result.success
        assert result.error_code == 403

    @pytest.mark.parametrize(
        "status,message",
        [
            (ImeiStatus.SOLD.value, "Cannot recall a sold device"),
            (ImeiStatus.LOCKED.value, "Cannot recall a locked device"),
        ],
    )
    def test_frozen_units_stay_put(self, db_session, hierarchy, make_imei, status, message):
        imei = make_imei(holder=hierarchy.fo, status=status)
        result = allocation_service.recall(hierarchy.tl, imei.id)
        assert result.error == message
        db_session.refresh(imei)
        assert imei.current_holder_id == hierarchy.fo.id
        assert imei.status == status
        assert _rows(db_session) == []

    def test_lost_unit_can_be_recalled(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.fo, status=ImeiStatus.LOST.value)
        assert allocation_service.recall(hierarchy.tl, imei.id).success

    def test_pool_unit_is_not_recallable(self, db_session, hierarchy, make_imei):
        imei = make_imei()
        result = allocation_service.recall(hierarchy.admin, imei.id)
        assert result.error == "Device is not allocated to anyone"

    def test_stale_source_is_a_conflict(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.fo2)
        result = allocation_service.recall(hierarchy.tl, imei.id, from_user_id=hierarchy.fo.id)
        assert not result.success
        assert result.error_code == 409
        assert result.error == f"This IMEI is no longer held by {hierarchy.fo.name}"

    def test_deactivated_subordinate_stock_is_recallable(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.fo)
        hierarchy.fo.is_active = False
        db_session.commit()
        assert allocation_service.recall(hierarchy.tl, imei.id).success

    def test_allocate_then_recall_restores_holder(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.rm)
        allocation_service.allocate(hierarchy.rm, imei.id, hierarchy.tl.id)
        allocation_service.recall(hierarchy.rm, imei.id)

        db_session.refresh(imei)
        assert imei.current_holder_id == hierarchy.rm.id
        rows = _rows(db_session, imei)
        assert [r.event_type for r in rows] == ["ALLOCATION", "RECALL"]

    def test_allocation_rows_never_carry_recall_prefix(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.tl)
        allocation_service.allocate(hierarchy.tl, imei.id, hierarchy.fo.id, notes="Weekend stock")
        allocation_service.recall(hierarchy.tl, imei.id, reason="Audit")
        for row in _rows(db_session, imei):
            assert row.notes.startswith("RECALL:") == (row.event_type == AllocationEventType.RECALL.value)


class TestBulkRecall:

    def test_recall_from_several_holders(self, db_session, hierarchy, make_imei):
        a = make_imei(holder=hierarchy.fo)
        b = make_imei(holder=hierarchy.fo2)
        c = make_imei(holder=hierarchy.tl)
        sold = make_imei(holder=hierarchy.fo, status=ImeiStatus.SOLD.value)
        other_region = make_imei(holder=hierarchy.fo3)

        items = [
            {"imei_id": a.id, "from_user_id": hierarchy.fo.id},
            {"imei_id": b.id, "from_user_id": hierarchy.fo2.id},
            {"imei": c.imei},
            {"imei_id": sold.id, "from_user_id": hierarchy.fo.id},
            {"imei_id": other_region.id},
        ]
        result = allocation_service.bulk_recall(hierarchy.rm, items, reason="Quarter end")

        assert result.ok
        assert sorted(result.succeeded) == sorted([a.imei, b.imei, c.imei])
        errors = {row["imei"]: row["error"] for row in result.failed}
        assert errors == {
            sold.imei: "Cannot recall a sold device",
            other_region.imei: "You can only recall stock from your subordinates",
        }

        for imei in (a, b, c):
            db_session.refresh(imei)
            assert imei.current_holder_id == hierarchy.rm.id
        recalls = [r for r in _rows(db_session) if r.is_recall]
        assert len(recalls) == 3
        assert all(r.notes == "RECALL: Quarter end" for r in recalls)

    def test_id_and_number_for_same_unit_are_recalled_once(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.fo)
        items = [
            {"imei_id": imei.id, "from_user_id": hierarchy.fo.id},
            {"imei": imei.imei},
        ]

        result = allocation_service.bulk_recall(hierarchy.tl, items)

        assert result.succeeded == [imei.imei]
        assert result.failed == []
        assert result.message == "1 recalled, 0 failed"
        assert len([r for r in _rows(db_session) if r.is_recall]) == 1

    def test_default_bulk_note(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.fo)
        result = allocation_service.bulk_recall(hierarchy.tl, [{"imei_id": imei.id}])
        assert result.allocations[0].notes == "RECALL: Bulk recall"

    def test_item_without_reference_refuses_call(self, db_session, hierarchy):
        result = allocation_service.bulk_recall(hierarchy.tl, [{"from_user_id": hierarchy.fo.id}])
        assert not result.ok
        assert result.error == "Each item needs an imei_id or imei"

    def test_empty_items_refused(self, db_session, hierarchy):
        result = allocation_service.bulk_recall(hierarchy.tl, [])
        assert not result.ok
        assert result.error == "No IMEIs provided"
