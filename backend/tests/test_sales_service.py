"""
Sales close the IMEI lifecycle and produce commission rows.
"""

from types import SimpleNamespace

import pytest

from fieldstock.constants import CommissionStatus, ImeiStatus, UserRole
from fieldstock.models import Commission, DocumentSequence, Sale, StockAllocation
from fieldstock.services import allocation_service, sales_service
from fieldstock.validation import (
    ConflictError,
    PermissionDeniedError,
    ValidationError,
)


class TestPaymentMethod:

    @pytest.mark.parametrize("raw,expected", [
        ("M-Pesa", "mpesa"),
        ("mpesa", "mpesa"),
        ("card", "cash"),
        (None, "cash"),
    ])
    def test_normalize(self, raw, expected):
        assert sales_service.normalize_payment_method(raw) == expected


class TestCommissionSplit:

    def _users(self):
        rm = SimpleNamespace(id=1, role=UserRole.REGIONAL_MANAGER.value, region="Nairobi",
                             team_leader_id=None, regional_manager_id=None, is_active=True)
        tl = SimpleNamespace(id=2, role=UserRole.TEAM_LEADER.value, region="Nairobi",
                             team_leader_id=None, regional_manager_id=1, is_active=True)
        fo = SimpleNamespace(id=3, role=UserRole.FIELD_OFFICER.value, region="Nairobi",
                             team_leader_id=2, regional_manager_id=None, is_active=True)
        return rm, tl, fo

    def test_field_officer_sale_pays_three_levels(self):
        rm, tl, fo = self._users()
        imei = SimpleNamespace(fo_commission_cents=500, tl_commission_cents=200, rm_commission_cents=100)

        rows = sales_service.commission_split(imei, fo, [rm, tl, fo])

        assert rows == [
            {"user_id": 3, "role": "field_officer", "amount_cents": 500},
            {"user_id": 2, "role": "team_leader", "amount_cents": 200},
            {"user_id": 1, "role": "regional_manager", "amount_cents": 100},
        ]

    def test_manager_selling_is_paid_once(self):
        rm, tl, fo = self._users()
        imei = SimpleNamespace(fo_commission_cents=500, tl_commission_cents=200, rm_commission_cents=100)
        rows = sales_service.commission_split(imei, rm, [rm, tl, fo])
        assert rows == [{"user_id": 1, "role": "regional_manager", "amount_cents": 100}]

    def test_zero_amounts_produce_no_rows(self):
        rm, tl, fo = self._users()
        imei = SimpleNamespace(fo_commission_cents=0, tl_commission_cents=0, rm_commission_cents=0)
        assert sales_service.commission_split(imei, fo, [rm, tl, fo]) == []


class TestRecordSale:

    def test_field_officer_sells_held_unit(self, db_session, hierarchy, make_imei, product):
        imei = make_imei(holder=hierarchy.fo)

        sale = sales_service.record_sale(hierarchy.fo, imei.id, "M-Pesa", customer_name="Jane")

        assert sale.receipt_number.startswith("RCP-")
        assert sale.payment_method == "mpesa"
        assert sale.sale_amount_cents == product.price_cents
        db_session.refresh(imei)
        assert imei.status == ImeiStatus.SOLD.value
        assert imei.sold_by_user_id == hierarchy.fo.id
        assert imei.sale_id == sale.id

        commissions = db_session.query(Commission).filter_by(sale_id=sale.id).all()
        assert {c.user_id for c in commissions} == {hierarchy.fo.id, hierarchy.tl.id, hierarchy.rm.id}
        assert all(c.status == CommissionStatus.PENDING.value for c in commissions)

    def test_receipt_numbers_are_sequential(self, db_session, hierarchy, make_imei):
        first = sales_service.record_sale(hierarchy.fo, make_imei(holder=hierarchy.fo).id)
        second = sales_service.record_sale(hierarchy.fo, make_imei(holder=hierarchy.fo).id)
        assert int(second.receipt_number[4:]) == int(first.receipt_number[4:]) + 1

    def test_receipt_numbers_come_from_the_counter_not_row_ids(self, db_session, hierarchy, make_imei):
        db_session.add(DocumentSequence(document_type=sales_service.RECEIPT_SEQUENCE, next_number=41))
        db_session.commit()

        first = sales_service.record_sale(hierarchy.fo, make_imei(holder=hierarchy.fo).id)
        second = sales_service.record_sale(hierarchy.fo, make_imei(holder=hierarchy.fo).id)

        assert [first.receipt_number, second.receipt_number] == ["RCP-002041", "RCP-002042"]
        counter = db_session.query(DocumentSequence).filter_by(document_type="RECEIPT").one()
        db_session.refresh(counter)
        assert counter.next_number == 43

    def test_first_receipt_starts_the_counter(self, db_session, hierarchy, make_imei):
        sale = sales_service.record_sale(hierarchy.fo, make_imei(holder=hierarchy.fo).id)
        assert sale.receipt_number == "RCP-002001"

    def test_receipt_collision_is_a_conflict_with_nothing_written(self, db_session, hierarchy, make_imei, product):
        db_session.add(Sale(
            receipt_number="RCP-002001",
            product_id=product.id,
            unit_price_cents=product.price_cents,
            sale_amount_cents=product.price_cents,
            sold_by_user_id=hierarchy.admin.id,
        ))
        db_session.commit()
        imei = make_imei(holder=hierarchy.fo)

        with pytest.raises(ConflictError, match="receipt number"):
            sales_service.record_sale(hierarchy.fo, imei.id)

        db_session.refresh(imei)
        assert imei.status == ImeiStatus.ALLOCATED.value
        assert imei.sale_id is None
        assert db_session.query(Sale).count() == 1
        assert db_session.query(Commission).count() == 0

    def test_sold_unit_cannot_be_sold_or_moved_again(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.fo)
        sales_service.record_sale(hierarchy.fo, imei.id)
        ledger_before = db_session.query(StockAllocation).count()

        with pytest.raises(ValidationError, match="already been sold"):
            sales_service.record_sale(hierarchy.fo, imei.id)
        assert not allocation_service.recall(hierarchy.tl, imei.id).success
        assert db_session.query(StockAllocation).count() == ledger_before

    def test_field_officer_cannot_sell_others_stock(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.fo2)
        with pytest.raises(PermissionDeniedError, match="not allocated to you"):
            sales_service.record_sale(hierarchy.fo, imei.id)

    def test_team_leader_sells_team_stock(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.fo2)
        assert sales_service.record_sale(hierarchy.tl, imei.id).sold_by_user_id == hierarchy.tl.id

    def test_team_leader_cannot_sell_other_team_stock(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.fo3)
        with pytest.raises(PermissionDeniedError):
            sales_service.record_sale(hierarchy.tl, imei.id)

    def test_regional_manager_limited_to_region(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.fo3)
        with pytest.raises(PermissionDeniedError, match="your region"):
            sales_service.record_sale(hierarchy.rm, imei.id)

    def test_locked_unit_cannot_be_sold(self, db_session, hierarchy, make_imei):
        imei = make_imei(holder=hierarchy.fo, status=ImeiStatus.LOCKED.value)
        with pytest.raises(ValidationError, match="locked"):
            sales_service.record_sale(hierarchy.fo, imei.id)


class TestCommissions:

    def _sale(self, hierarchy, make_imei):
        return sales_service.record_sale(hierarchy.fo, make_imei(holder=hierarchy.fo).id)

    def test_approve_then_pay(self, db_session, hierarchy, make_imei):
        sale = self._sale(hierarchy, make_imei)
        commission = sale.commissions[0]

        sales_service.approve_commission(hierarchy.admin, commission.id)
        assert commission.status == CommissionStatus.APPROVED.value
        sales_service.mark_commission_paid(hierarchy.admin, commission.id, "MPESA-REF")
        assert commission.status == CommissionStatus.PAID.value
        assert commission.payment_reference == "MPESA-REF"

        with pytest.raises(ConflictError):
            sales_service.mark_commission_paid(hierarchy.admin, commission.id)

    def test_rejected_cannot_be_paid(self, db_session, hierarchy, make_imei):
        commission = self._sale(hierarchy, make_imei).commissions[0]
        sales_service.reject_commission(hierarchy.admin, commission.id, "Returned device")
        with pytest.raises(ConflictError):
            sales_service.mark_commission_paid(hierarchy.admin, commission.id)

    def test_only_admin_manages(self, db_session, hierarchy, make_imei):
        commission = self._sale(hierarchy, make_imei).commissions[0]
        with pytest.raises(PermissionDeniedError):
            sales_service.approve_commission(hierarchy.tl, commission.id)

    def test_members_see_their_own(self, db_session, hierarchy, make_imei):
        self._sale(hierarchy, make_imei)
        mine = sales_service.list_commissions(hierarchy.tl)
        assert [c.user_id for c in mine] == [hierarchy.tl.id]
        assert len(sales_service.list_commissions(hierarchy.admin)) == 3
