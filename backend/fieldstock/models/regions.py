from __future__ import annotations

from ..extensions import db
from fieldstock.time_utils import to_utc_z, utcnow


class Region(db.Model):
    """
    Sales region registry.

    Users and IMEIs carry the region by name (users.region, imeis.region);
    this table owns the name and the regional manager assigned to it.
    Deleting a region only deactivates it.
    """
    __tablename__ = "regions"
    __table_args__ = (
        db.Index("ix_regions_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(64), nullable=False, unique=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    description = db.Column(db.String(255), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    manager = db.relationship("User", foreign_keys=[manager_id])

    def __repr__(self) -> str:
        return f"<Region id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "manager_id": self.manager_id,
            "manager": self.manager.to_summary() if self.manager is not None else None,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
