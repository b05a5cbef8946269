"""Standardised API error responses.

Usage
-----
    from opsdesk.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Ticket not found")
    return api_error(E.VALIDATION_REQUIRED, "No fields to update")

Blueprints call ``register_error_handlers(bp)`` once so that the core
exceptions map to the same JSON body and status everywhere.
"""

from __future__ import annotations

import logging

from flask import jsonify, request

from opsdesk.core.exceptions import (
    AuthError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    TransitionError,
    ValidationError,
)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
     • AUTH_ prefix for 401 reasons
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Authentication – HTTP 401
    AUTH_MISSING = "AUTH_MISSING"
    AUTH_MALFORMED = "AUTH_MALFORMED"
    AUTH_EXPIRED = "AUTH_EXPIRED"
    AUTH_INVALID_SIGNATURE = "AUTH_INVALID_SIGNATURE"
    AUTH_INVALID = "AUTH_INVALID"

    # Throttling – HTTP 429
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.FORBIDDEN: 403,
    E.AUTH_MISSING: 401,
    E.AUTH_MALFORMED: 401,
    E.AUTH_EXPIRED: 401,
    E.AUTH_INVALID_SIGNATURE: 401,
    E.AUTH_INVALID: 401,
    E.RATE_LIMITED: 429,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Field-level breakdown or other structured payload.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(bp, logger: logging.Logger | None = None):
    """Attach the core-exception → HTTP mapping to a blueprint."""
    log = logger or logging.getLogger(bp.import_name)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        log.info("Not found: %s", error)
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error), details={"field": error.field})

    @bp.errorhandler(TransitionError)
    def _handle_transition(error: TransitionError):
        return api_error(
            E.CONFLICT_STATE,
            str(error),
            details={"current_status": error.current_status, "target_status": error.target_status},
        )

    @bp.errorhandler(AuthError)
    def _handle_auth(error: AuthError):
        return api_error(error.code, str(error), status=401)

    @bp.errorhandler(PersistenceError)
    def _handle_persistence(error: PersistenceError):
        return api_error(E.DATABASE, "Database error")

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        from werkzeug.exceptions import HTTPException

        if isinstance(error, HTTPException):
            return error
        log.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
