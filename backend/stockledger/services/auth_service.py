# Overview: Service-layer operations for auth; user creation and credential checks.

"""
Authentication Service

WHY: Every stock movement and status change must be attributable to a user.
Passwords are hashed with bcrypt; session tokens are handled separately
(see session_service.py).
"""

import re

import bcrypt

from ..extensions import db
from ..errors import DuplicateError, ValidationError
from ..models import User
from ..models.auth import ROLE_VIEWER, VALID_ROLES
from ..time_utils import utcnow


BCRYPT_ROUNDS = 12
MIN_PASSWORD_LENGTH = 8


class PasswordValidationError(ValidationError):
    """Raised when a password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Minimum 8 characters with at least one letter and one digit.

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

    if not re.search(r'[A-Za-z]', password):
        raise PasswordValidationError("Password must contain at least one letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison; malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    role: str = ROLE_VIEWER,
    full_name: str = "",
    rounds: int = BCRYPT_ROUNDS,
) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises:
        ValidationError: unknown role or missing username/email
        PasswordValidationError: weak password
        DuplicateError: username or email already taken
    """
    if not username or not email:
        raise ValidationError("username and email are required")
    if role not in VALID_ROLES:
        raise ValidationError(f"Invalid role: {role}. Must be one of {list(VALID_ROLES)}")

    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise DuplicateError("Username or email already exists")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password, rounds=rounds),
        role=role,
        full_name=full_name or "",
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(identifier: str, password: str) -> User | None:
    """
    Look up an active user by username or email and verify the password.

    Returns the User and stamps last_login_at on success, None otherwise.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == identifier, User.email == identifier),
        User.is_active.is_(True),
    ).first()

    if not user or not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
