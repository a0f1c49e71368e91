from __future__ import annotations

from ..extensions import db
from ..constants import CommissionStatus, PaymentMethod
from fieldstock.time_utils import to_utc_z, utcnow


class Sale(db.Model):
    """
    Point-of-sale record for one IMEI.

    receipt_number is sequential ("RCP-002001", ...). Amounts are in cents and
    snapshot the IMEI price at the time of sale.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_seller_created", "sold_by_user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receipt_number = db.Column(db.String(32), nullable=False, unique=True)

    imei_id = db.Column(db.Integer, db.ForeignKey("imeis.id"), nullable=True, index=True)
    imei = db.Column(db.String(15), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    sale_amount_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(16), nullable=False, default=PaymentMethod.CASH.value)
    payment_reference = db.Column(db.String(64), nullable=True)

    sold_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    customer_name = db.Column(db.String(120), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_id_number = db.Column(db.String(32), nullable=True)

    source = db.Column(db.String(16), nullable=True)
    region = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product")
    sold_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_number": self.receipt_number,
            "imei_id": self.imei_id,
            "imei": self.imei,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "sale_amount_cents": self.sale_amount_cents,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "sold_by_user_id": self.sold_by_user_id,
            "sold_by_name": self.sold_by.name if self.sold_by else None,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_email": self.customer_email,
            "customer_id_number": self.customer_id_number,
            "source": self.source,
            "region": self.region,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class Commission(db.Model):
    """
    Commission owed to one hierarchy member for one sale.

    A sale produces up to three rows (field officer, team leader,
    regional manager). Status moves pending -> approved -> paid, or
    pending -> rejected.
    """
    __tablename__ = "commissions"
    __table_args__ = (
        db.Index("ix_commissions_user_status", "user_id", "status"),
        db.UniqueConstraint("sale_id", "user_id", "role", name="uq_commissions_sale_user_role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    role = db.Column(db.String(32), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=CommissionStatus.PENDING.value, index=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_reference = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", backref=db.backref("commissions", lazy=True))
    user = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "user_id": self.user_id,
            "user_name": self.user.name if self.user else None,
            "role": self.role,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at),
            "paid_at": to_utc_z(self.paid_at),
            "payment_reference": self.payment_reference,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic document counters (one row per document type).

    Receipt numbers are allocated here, never derived from row ids.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
