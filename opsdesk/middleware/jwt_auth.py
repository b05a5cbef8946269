"""
JWT Auth — bearer-token gate for dashboard routes.

Public routes (request submission, ticket lookup, applications) stay open;
admin routes are wrapped with ``@require_admin``, which resolves
``Authorization: Bearer <token>`` to an active AdminUser and sets:

    g.admin       AdminUser instance
    g.admin_id    its id
    g.admin_email its email

Failures return a uniform 401 whose ``code`` is one of
AUTH_MISSING | AUTH_MALFORMED | AUTH_EXPIRED | AUTH_INVALID_SIGNATURE | AUTH_INVALID.
"""

from functools import wraps

from flask import g, request

from opsdesk.core.exceptions import AuthError
from opsdesk.services import auth_service
from opsdesk.utils.errors import E, api_error


def bearer_token() -> str | None:
    """Extract the raw token; raise AuthError for a malformed header."""
    header = request.headers.get("Authorization", "")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError(E.AUTH_MALFORMED, "Authorization header must be 'Bearer <token>'")
    return token.strip()


def current_admin_or_none():
    """Authenticated admin for this request, or None when no header is sent."""
    token = bearer_token()
    if token is None:
        return None
    admin = auth_service.load_admin(token)
    g.admin, g.admin_id, g.admin_email = admin, admin.id, admin.email
    return admin


def require_admin(fn):
    """Reject the request with 401 unless a valid admin token is present."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            admin = current_admin_or_none()
        except AuthError as exc:
            return api_error(exc.code, str(exc), status=401)
        if admin is None:
            return api_error(E.AUTH_MISSING, "Authentication token is required", status=401)
        return fn(*args, **kwargs)

    return wrapper
