"""
Rate limiting configuration.

Applies per-blueprint limits using Flask-Limiter.  The Limiter instance is
created in opsdesk/__init__.py with no default limits; this module decides
which routes are throttled.

Limits (per remote IP):
    - Public intake (POST request / ticket / application):  PUBLIC_SUBMIT_RATE_LIMIT
    - Auth endpoints (login, register, password reset):     AUTH_RATE_LIMIT
    - Health checks:                                         exempt

Usage:
    from opsdesk.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request

logger = logging.getLogger(__name__)

# Anonymous endpoints that create rows and send email
PUBLIC_SUBMIT_ENDPOINTS = frozenset({
    "request_bp.submit_request",
    "support_bp.submit_ticket",
    "support_bp.add_client_message",
    "talent_bp.apply",
    "talent_bp.submit_assessment",
})


def _not_public_submit() -> bool:
    return flask_request.endpoint not in PUBLIC_SUBMIT_ENDPOINTS


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    submit_limit = app.config.get("PUBLIC_SUBMIT_RATE_LIMIT", "20/hour")
    auth_limit = app.config.get("AUTH_RATE_LIMIT", "10/minute")

    for bp_name in ("request_bp", "support_bp", "talent_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(submit_limit, methods=["POST"], exempt_when=_not_public_submit)(bp)

    bp = app.blueprints.get("auth_bp")
    if bp:
        limiter.limit(auth_limit, methods=["POST"])(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: public submit %s, auth %s", submit_limit, auth_limit)
