# Overview: Staff accounts; bcrypt password hashing and credential checks.

"""
Authentication Service

MULTI-TENANT: Users belong to exactly one organization (org_id).
Username/email uniqueness is tenant-scoped.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, with upper, lower, digit and special characters
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt

from ..extensions import db
from ..models import Organization, User
from ..models.auth import ROLE_STAFF, VALID_ROLES
from washbay.time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """Raise PasswordValidationError unless the password is strong enough."""
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe check of a password against its bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    org_id: int,
    role: str = ROLE_STAFF,
) -> User:
    """
    Create a staff account.

    Raises:
        ValueError: org missing/inactive, unknown role, or username/email taken in the org
        PasswordValidationError: weak password
    """
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if not org:
        raise ValueError("Organization not found")
    if not org.is_active:
        raise ValueError("Organization is not active")

    if role not in VALID_ROLES:
        raise ValueError(f"Invalid role '{role}'. Must be one of: {', '.join(VALID_ROLES)}")

    existing = db.session.query(User).filter(
        User.org_id == org_id,
        db.or_(User.username == username, User.email == email)
    ).first()

    if existing:
        raise ValueError("Username or email already exists in this organization")

    user = User(
        org_id=org_id,
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
    )

    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str, org_id: int | None = None) -> User | None:
    """
    Return the user for valid credentials, else None.

    username may also be the email. With org_id the lookup is scoped to that
    organization. Inactive users and users of inactive organizations never
    authenticate.
    """
    query = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    )
    if org_id is not None:
        query = query.filter(User.org_id == org_id)

    user = query.first()
    if not user:
        return None

    org = db.session.query(Organization).filter_by(id=user.org_id).first()
    if not org or not org.is_active:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
