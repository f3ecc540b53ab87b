"""
Operator accounts and credential checks.

Passwords are stored as bcrypt hashes. There are no sessions or tokens:
a successful login hands back the operator identity (id + display name)
that the POS sends along with every sale.
"""

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User
from ..time_utils import utcnow

MIN_PASSWORD_LENGTH = 8


class PasswordValidationError(Exception):
    """Raised when a password is unusable."""


def hash_password(password: str) -> str:
    """Hash password with bcrypt (cost from BCRYPT_ROUNDS, default 12)."""
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check; malformed hashes simply fail."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(username: str, password: str, full_name: str | None = None, role: str = "cashier") -> User:
    """
    Create an operator account.

    Raises:
        ValueError: If the username is taken
        PasswordValidationError: If the password is too short
    """
    username = (username or "").strip()
    if not username:
        raise ValueError("username is required")

    if db.session.query(User).filter_by(username=username).first():
        raise ValueError("Username already exists")

    user = User(
        username=username,
        password_hash=hash_password(password),
        full_name=(full_name or "").strip() or None,
        role=role,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Return the active user matching the credentials, or None.

    Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        User.username == username,
        User.is_active.is_(True),
    ).first()
    if not user or not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
