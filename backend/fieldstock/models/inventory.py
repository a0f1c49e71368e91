from __future__ import annotations

from ..extensions import db
from ..constants import ImeiStatus
from fieldstock.time_utils import to_utc_z, utcnow


class Product(db.Model):
    """
    Product reference data (name, category, price, default commission split).

    The allocation core never mutates products; it only reads prices and
    commission defaults when IMEIs are registered or sold.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("name", "brand", name="uq_products_name_brand"),
        db.Index("ix_products_category_active", "category", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    brand = db.Column(db.String(64), nullable=True)
    category = db.Column(db.String(64), nullable=False, default="Smartphones")

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    # Default three-way commission split copied onto newly registered IMEIs
    fo_commission_cents = db.Column(db.Integer, nullable=False, default=0)
    tl_commission_cents = db.Column(db.Integer, nullable=False, default=0)
    rm_commission_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "brand": self.brand,
            "category": self.category,
            "price_cents": self.price_cents,
            "commission_config": {
                "fo_commission_cents": self.fo_commission_cents,
                "tl_commission_cents": self.tl_commission_cents,
                "rm_commission_cents": self.rm_commission_cents,
            },
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Imei(db.Model):
    """
    One serialized phone: the unit of inventory.

    OWNERSHIP:
    - current_holder_id NULL means the unit sits in the unallocated pool,
      which belongs to the root (admin) of the hierarchy.
    - At most one holder at any time; only allocation_service,
      sales_service and imei_service write holder/status.

    STATUS:
    - SOLD is terminal.
    - LOCKED freezes allocation, recall and sale.
    - LOST blocks allocation and sale.

    CONCURRENCY:
    version_id is an optimistic version counter. A flush that updates a row
    whose version changed underneath it raises StaleDataError, which
    run_with_retry() retries against fresh state.
    """
    __tablename__ = "imeis"
    __table_args__ = (
        db.Index("ix_imeis_holder_status", "current_holder_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    imei = db.Column(db.String(15), nullable=False, unique=True, index=True)
    imei2 = db.Column(db.String(15), nullable=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    capacity = db.Column(db.String(32), nullable=True)

    # Selling price for this unit (overrides product price when set)
    price_cents = db.Column(db.Integer, nullable=True)

    fo_commission_cents = db.Column(db.Integer, nullable=False, default=0)
    tl_commission_cents = db.Column(db.Integer, nullable=False, default=0)
    rm_commission_cents = db.Column(db.Integer, nullable=False, default=0)

    source = db.Column(db.String(16), nullable=False, default="watu")

    status = db.Column(db.String(16), nullable=False, default=ImeiStatus.IN_STOCK.value, index=True)
    current_holder_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    current_holder_role = db.Column(db.String(32), nullable=True)
    region = db.Column(db.String(64), nullable=True)

    registered_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    registered_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    allocated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    sold_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sold_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", use_alter=True), nullable=True)

    notes = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product", backref=db.backref("imeis", lazy=True))
    current_holder = db.relationship("User", foreign_keys=[current_holder_id])
    registered_by = db.relationship("User", foreign_keys=[registered_by_user_id])
    sold_by = db.relationship("User", foreign_keys=[sold_by_user_id])

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Imei id={self.id} imei={self.imei} status={self.status} holder={self.current_holder_id}>"

    @property
    def effective_price_cents(self) -> int:
        if self.price_cents is not None:
            return self.price_cents
        return self.product.price_cents if self.product else 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "imei": self.imei,
            "imei2": self.imei2,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "capacity": self.capacity,
            "price_cents": self.effective_price_cents,
            "commission_config": {
                "fo_commission_cents": self.fo_commission_cents,
                "tl_commission_cents": self.tl_commission_cents,
                "rm_commission_cents": self.rm_commission_cents,
            },
            "source": self.source,
            "status": self.status,
            "current_holder_id": self.current_holder_id,
            "current_holder_role": self.current_holder_role,
            "region": self.region,
            "registered_by_user_id": self.registered_by_user_id,
            "registered_at": to_utc_z(self.registered_at),
            "allocated_at": to_utc_z(self.allocated_at),
            "sold_at": to_utc_z(self.sold_at),
            "sold_by_user_id": self.sold_by_user_id,
            "sale_id": self.sale_id,
            "notes": self.notes,
            "version_id": self.version_id,
        }
