"""
Auth Service — admin registration, login, token verification, password reset.

Registration is open only while no admin exists (bootstrap); afterwards an
authenticated admin must create further accounts.  Login and reset requests
never reveal whether an email is registered.
"""

import hashlib
import logging
import re
from datetime import datetime, timezone

from opsdesk.core.exceptions import AuthError, ConflictError
from opsdesk.models import db
from opsdesk.models.auth import AdminUser
from opsdesk.services import jwt_service
from opsdesk.services.notifications import Message, frontend_url, get_dispatcher
from opsdesk.utils.crypto import hash_password, verify_password
from opsdesk.utils.errors import E
from opsdesk.utils.helpers import atomic
from opsdesk.utils.validation import Validator, normalize_email

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
_INVALID_CREDENTIALS = "Invalid email or password"
RESET_REQUESTED_MESSAGE = "If an account exists for that email, a reset link has been sent."


def _check_password_strength(v: Validator, name: str = "password"):
    password = v.data.get(name)
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        v.add_error(name, f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return None
    if not (re.search(r"[a-z]", password) and re.search(r"[A-Z]", password) and re.search(r"\d", password)):
        v.add_error(name, "Password must contain uppercase, lowercase and a number")
        return None
    return password


def _fingerprint(admin: AdminUser) -> str:
    return hashlib.sha256(admin.password_hash.encode("utf-8")).hexdigest()[:16]


def _find_by_email(email: str) -> AdminUser | None:
    return db.session.execute(
        db.select(AdminUser).where(AdminUser.email == email)
    ).scalar_one_or_none()


def admin_count() -> int:
    return db.session.execute(db.select(db.func.count(AdminUser.id))).scalar_one()


# ═══════════════════════════════════════════════════════════════
# Registration & login
# ═══════════════════════════════════════════════════════════════

def register_admin(data: dict, *, acting_admin: AdminUser | None = None) -> AdminUser:
    """Create an admin account.

    Raises:
        AuthError: admins already exist and no authenticated admin is acting.
        ValidationError: bad email / weak password.
        ConflictError: email already registered.
    """
    if acting_admin is None and admin_count() > 0:
        raise AuthError(E.AUTH_MISSING, "Admin authentication required to register users")

    v = Validator(data)
    email = v.email("email")
    password = _check_password_strength(v)
    full_name = v.text("full_name", max_len=255)
    v.raise_if_invalid()

    if _find_by_email(email):
        raise ConflictError("AdminUser", "email", email)

    admin = AdminUser(email=email, password_hash=hash_password(password), full_name=full_name)
    with atomic(conflict=ConflictError("AdminUser", "email", email)):
        db.session.add(admin)

    logger.info("Admin registered: id=%s email=%s bootstrap=%s", admin.id, email, acting_admin is None)
    return admin


def authenticate(email: str, password: str) -> dict:
    """Check credentials and return ``{"token", "user"}``."""
    try:
        email = normalize_email(email or "")
    except ValueError:
        raise AuthError(E.AUTH_INVALID, _INVALID_CREDENTIALS) from None

    admin = _find_by_email(email)
    if admin is None or not admin.is_active or not verify_password(password or "", admin.password_hash):
        logger.info("Failed login for email=%s", email)
        raise AuthError(E.AUTH_INVALID, _INVALID_CREDENTIALS)

    with atomic():
        admin.last_login_at = datetime.now(timezone.utc)

    return {
        "token": jwt_service.generate_access_token(admin.id, admin.email),
        "user": admin.to_dict(),
    }


def load_admin(token: str) -> AdminUser:
    """Resolve a bearer token to an active admin or raise AuthError."""
    payload = jwt_service.decode_access_token(token)
    admin = db.session.get(AdminUser, payload["sub"])
    if admin is None or not admin.is_active:
        raise AuthError(E.AUTH_INVALID, "User no longer exists")
    return admin


# ═══════════════════════════════════════════════════════════════
# Password reset
# ═══════════════════════════════════════════════════════════════

def request_password_reset(email: str, *, dispatcher=None) -> str:
    """Email a reset link when the account exists.  Always returns the same message."""
    try:
        email = normalize_email(email or "")
    except ValueError:
        return RESET_REQUESTED_MESSAGE

    admin = _find_by_email(email)
    if admin is None or not admin.is_active:
        logger.info("Password reset requested for unknown email")
        return RESET_REQUESTED_MESSAGE

    token = jwt_service.generate_reset_token(admin.id, admin.email, _fingerprint(admin))
    (dispatcher or get_dispatcher()).dispatch("auth.password_reset", Message(
        template="password_reset",
        recipient=admin.email,
        payload={
            "full_name": admin.full_name or admin.email,
            "reset_url": frontend_url(f"/admin/reset-password?token={token}"),
            "expires_minutes": jwt_service.reset_token_lifetime() // 60,
        },
    ))
    return RESET_REQUESTED_MESSAGE


def reset_password(token: str, new_password: str) -> AdminUser:
    """Set a new password from a reset token.  Each token works once."""
    payload = jwt_service.decode_reset_token(token)
    admin = db.session.get(AdminUser, payload["sub"])
    if admin is None or not admin.is_active or payload.get("pwh") != _fingerprint(admin):
        raise AuthError(E.AUTH_INVALID, "Reset link is invalid or has already been used")

    v = Validator({"password": new_password})
    password = _check_password_strength(v)
    v.raise_if_invalid()

    with atomic():
        admin.password_hash = hash_password(password)
    logger.info("Password reset completed for admin id=%s", admin.id)
    return admin
