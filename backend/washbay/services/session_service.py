# Overview: Bearer session tokens; the tenant context of every authenticated request.

"""
Session Token Management

- Cryptographically secure random tokens (32 bytes), stored only as SHA-256
- Absolute timeout (SESSION_TTL_HOURS) and idle timeout (SESSION_IDLE_HOURS)
- Revocable on logout
- org_id is captured at login and is immutable for the session lifetime
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import Organization, SessionToken, User
from washbay.time_utils import utcnow


@dataclass
class SessionContext:
    """User identity plus tenant context, as returned by validate_session."""
    user: User
    session: SessionToken
    org_id: int


def _absolute_timeout() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_TTL_HOURS", 24))


def _idle_timeout() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_IDLE_HOURS", 2))


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 is enough here: tokens are already high-entropy."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """
    Create a session for a user.

    Returns (session_record, plaintext_token); only the hash is stored.

    Raises ValueError if the user or its organization is missing or inactive.
    """
    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise ValueError("User not found")

    org = db.session.query(Organization).filter_by(id=user.org_id).first()
    if not org or not org.is_active:
        raise ValueError("Organization is not active")

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user.id,
        org_id=user.org_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _absolute_timeout(),
        is_revoked=False,
    )

    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Return the SessionContext for a live token, else None.

    Expired, idle, revoked tokens and tokens of deactivated users or
    organizations are rejected (idle and deactivated ones are also revoked).
    Updates last_used_at on success.
    """
    now = utcnow()

    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return None

    if session.expires_at < now:
        return None

    if now - session.last_used_at > _idle_timeout():
        _revoke(session, "Idle timeout")
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session, "User account deactivated")
        return None

    org = session.organization
    if not org or not org.is_active:
        _revoke(session, "Organization deactivated")
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(user=user, session=session, org_id=session.org_id)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Revoke a token. Returns False if it was unknown or already revoked."""
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return False

    _revoke(session, reason)
    return True
