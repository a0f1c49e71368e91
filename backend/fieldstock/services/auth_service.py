# Overview: Service-layer operations for auth; password hashing and credential checks.

"""
Authentication service.

WHY: Every stock movement must be attributable to a hierarchy member.
Passwords are hashed with bcrypt; session tokens live in session_service.py.

SECURITY NOTES:
- Minimum 8 characters with upper, lower, digit and special character
- Inactive users cannot authenticate
"""
from __future__ import annotations

import logging
import re

import bcrypt
from flask import current_app, has_app_context

from ..extensions import db
from ..models import User
from ..time_utils import utcnow
from ..validation import ValidationError


logger = logging.getLogger(__name__)


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")
    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def _rounds() -> int:
    if has_app_context():
        return int(current_app.config.get("BCRYPT_ROUNDS", 12))
    return 12


def hash_password(password: str) -> str:
    """Validate strength, then bcrypt-hash (stored as str)."""
    validate_password_strength(password)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=_rounds()))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """bcrypt.checkpw is timing-safe; malformed hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def authenticate(email: str, password: str) -> User | None:
    """Return the active user for these credentials, or None."""
    email = (email or "").strip().lower()
    user = db.session.query(User).filter(User.email == email).first()
    if user is None or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        logger.info("Failed login for %s", email)
        return None
    user.last_login_at = utcnow()
    return user
