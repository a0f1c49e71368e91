from __future__ import annotations

from ..extensions import db
from ..constants import AllocationEventType, AllocationStatus
from fieldstock.time_utils import to_utc_z, utcnow


class StockAllocation(db.Model):
    """
    Stock allocation ledger: one directed custody transfer per row.

    LEDGER INVARIANTS (authoritative):
    - Append-only. Rows are never updated or deleted by the service layer.
    - A recall is a new row in the reverse direction (from = previous holder,
      to = recaller) with event_type=RECALL; earlier rows stay untouched.
    - event_type is the discriminator. notes are descriptive only; recall
      rows carry "RECALL: <reason>" for display compatibility.
    - Written in the same DB transaction as the IMEI holder/status change.
    - created_at is the business time used for journey ordering; ties are
      broken by id.
    """
    __tablename__ = "stock_allocations"
    __table_args__ = (
        db.Index("ix_alloc_from_created", "from_user_id", "created_at"),
        db.Index("ix_alloc_to_created", "to_user_id", "created_at"),
        db.Index("ix_alloc_imei_created", "imei_id", "created_at"),
        db.Index("ix_alloc_type_status", "event_type", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    imei_id = db.Column(db.Integer, db.ForeignKey("imeis.id"), nullable=True)
    imei = db.Column(db.String(15), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    # Phones always move one unit; quantity exists for non-serialized stock
    quantity = db.Column(db.Integer, nullable=False, default=1)

    from_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    from_level = db.Column(db.String(32), nullable=False)
    to_level = db.Column(db.String(32), nullable=False)

    event_type = db.Column(db.String(16), nullable=False, default=AllocationEventType.ALLOCATION.value)
    status = db.Column(db.String(16), nullable=False, default=AllocationStatus.COMPLETED.value)

    notes = db.Column(db.String(500), nullable=True)
    recall_reason = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    imei_record = db.relationship("Imei", backref=db.backref("allocations", lazy=True))
    product = db.relationship("Product")
    from_user = db.relationship("User", foreign_keys=[from_user_id])
    to_user = db.relationship("User", foreign_keys=[to_user_id])

    @property
    def level(self) -> str:
        """Hierarchy tier the transfer lands at."""
        return self.to_level

    @property
    def is_recall(self) -> bool:
        return self.event_type == AllocationEventType.RECALL.value

    def __repr__(self) -> str:
        return (
            f"<StockAllocation id={self.id} {self.event_type} imei={self.imei} "
            f"{self.from_user_id}->{self.to_user_id}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "imei_id": self.imei_id,
            "imei": self.imei,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "from_user_id": self.from_user_id,
            "from_user_name": self.from_user.name if self.from_user else None,
            "to_user_id": self.to_user_id,
            "to_user_name": self.to_user.name if self.to_user else None,
            "from_level": self.from_level,
            "to_level": self.to_level,
            "level": self.level,
            "event_type": self.event_type,
            "status": self.status,
            "notes": self.notes,
            "recall_reason": self.recall_reason,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
        }
