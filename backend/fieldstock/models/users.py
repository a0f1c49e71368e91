from __future__ import annotations

from ..extensions import db
from fieldstock.time_utils import to_utc_z, utcnow


class User(db.Model):
    """
    A node in the sales hierarchy.

    HIERARCHY LINKS:
    - field_officer.team_leader_id -> team_leader
    - team_leader.regional_manager_id -> regional_manager
    - field_officer.regional_manager_id is optional (commission routing only)
    Links are validated when users are created or updated, but readers must
    tolerate missing links (see services/hierarchy_service.py fallbacks).
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_role_region", "role", "region"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(32), nullable=False, index=True)
    region = db.Column(db.String(64), nullable=True, index=True)
    phone = db.Column(db.String(32), nullable=True)

    # Field officer code printed on receipts; unique when present
    fo_code = db.Column(db.String(32), nullable=True, unique=True)

    team_leader_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    regional_manager_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    team_leader = db.relationship("User", foreign_keys=[team_leader_id], remote_side=[id])
    regional_manager = db.relationship("User", foreign_keys=[regional_manager_id], remote_side=[id])

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.name!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "region": self.region,
            "phone": self.phone,
            "fo_code": self.fo_code,
            "team_leader_id": self.team_leader_id,
            "regional_manager_id": self.regional_manager_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at),
        }

    def to_summary(self) -> dict:
        return {"id": self.id, "name": self.name, "role": self.role, "region": self.region}


class SessionToken(db.Model):
    """
    Opaque bearer token for the acting user.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - Absolute and idle timeouts come from Config
    - Revocable on logout or account deactivation
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(255), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
