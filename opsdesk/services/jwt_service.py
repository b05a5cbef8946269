"""
JWT Service — token generation and verification.

Access token:          24 hours (configurable via JWT_ACCESS_EXPIRES)
Password-reset token:   1 hour  (configurable via PASSWORD_RESET_EXPIRES)
Algorithm:             HS256

Token payload (access):
{
    "sub": "<admin_id>",
    "email": "<admin email>",
    "type": "access",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from opsdesk.core.exceptions import AuthError
from opsdesk.utils.errors import E

# ─── Defaults ────────────────────────────────────────────────
DEFAULT_ACCESS_EXPIRES = 86400     # 24 hours
DEFAULT_RESET_EXPIRES = 3600       # 1 hour
ALGORITHM = "HS256"

ACCESS = "access"
PASSWORD_RESET = "password-reset"


def _get_secret():
    """Get the JWT secret key from app config."""
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _get_access_expires():
    return current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)


def reset_token_lifetime():
    return current_app.config.get("PASSWORD_RESET_EXPIRES", DEFAULT_RESET_EXPIRES)


# ═══════════════════════════════════════════════════════════════
# Token Generation
# ═══════════════════════════════════════════════════════════════
def _encode(admin_id: int, email: str, token_type: str, lifetime: int, **claims) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        # RFC 7519 wants a string subject; PyJWT enforces it
        "sub": str(admin_id),
        "email": email,
        "type": token_type,
        "iat": now,
        "exp": now + timedelta(seconds=lifetime),
        "jti": str(uuid.uuid4()),
        **claims,
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


def generate_access_token(admin_id: int, email: str) -> str:
    return _encode(admin_id, email, ACCESS, _get_access_expires())


def generate_reset_token(admin_id: int, email: str, fingerprint: str) -> str:
    """Reset token bound to the current password hash via *fingerprint*,
    so it stops working once the password changes."""
    return _encode(admin_id, email, PASSWORD_RESET, reset_token_lifetime(), pwh=fingerprint)


# ═══════════════════════════════════════════════════════════════
# Token Verification
# ═══════════════════════════════════════════════════════════════
def decode_token(token: str, expected_type: str = ACCESS) -> dict:
    """
    Decode and verify a JWT token.

    Returns the payload dict on success.  Raises AuthError whose ``code``
    says why verification failed.
    """
    if not token:
        raise AuthError(E.AUTH_MISSING, "Authentication token is required")
    try:
        payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthError(E.AUTH_EXPIRED, "Token has expired") from None
    except jwt.InvalidSignatureError:
        raise AuthError(E.AUTH_INVALID_SIGNATURE, "Token signature is invalid") from None
    except jwt.DecodeError:
        raise AuthError(E.AUTH_MALFORMED, "Token is malformed") from None
    except jwt.InvalidTokenError as exc:
        raise AuthError(E.AUTH_INVALID, f"Invalid token: {exc}") from None

    if payload.get("type") != expected_type:
        raise AuthError(E.AUTH_INVALID, f"Expected {expected_type} token")
    try:
        payload["sub"] = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise AuthError(E.AUTH_INVALID, "Token subject is invalid") from None
    return payload


def decode_access_token(token: str) -> dict:
    return decode_token(token, expected_type=ACCESS)


def decode_reset_token(token: str) -> dict:
    return decode_token(token, expected_type=PASSWORD_RESET)
