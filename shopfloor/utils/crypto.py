"""
Crypto utilities — bcrypt password hashing and the password policy.

Supports both bcrypt ($2b$) and legacy werkzeug (scrypt/pbkdf2) hashes
so users imported from older systems can still be verified.

The bcrypt cost comes from ``BCRYPT_ROUNDS`` in the app config (12 outside
an app context); the test config lowers it.
"""

import bcrypt
from flask import current_app, has_app_context
from werkzeug.security import check_password_hash

from shopfloor.core.exceptions import ValidationError

DEFAULT_BCRYPT_ROUNDS = 12
MIN_PASSWORD_LENGTH = 8


def _rounds() -> int:
    if has_app_context():
        return int(current_app.config.get("BCRYPT_ROUNDS", DEFAULT_BCRYPT_ROUNDS))
    return DEFAULT_BCRYPT_ROUNDS


def check_password_policy(plain_password: str) -> None:
    """Reject passwords shorter than MIN_PASSWORD_LENGTH or without a digit."""
    if len(plain_password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            details={"password": f"min {MIN_PASSWORD_LENGTH}"},
        )
    if not any(ch.isdigit() for ch in plain_password):
        raise ValidationError(
            "Password must contain at least one digit", details={"password": "digit"},
        )


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt."""
    salt = bcrypt.gensalt(rounds=_rounds())
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against its hash.

    Handles both bcrypt ($2b$/$2a$) and legacy werkzeug (scrypt/pbkdf2) formats.
    """
    if not password_hash:
        return False

    if password_hash.startswith(("$2b$", "$2a$")):
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )

    return check_password_hash(password_hash, plain_password)

