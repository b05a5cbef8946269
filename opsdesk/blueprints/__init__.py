"""
OpsDesk
Blueprint registry and shared request helpers.
"""

from flask import request


def page_args(default_limit=50, max_limit=200):
    """Read limit/offset pagination from the query string.

    Query params:
        limit  — max items (default 50, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (limit, offset)
    """
    try:
        limit = min(max(int(request.args.get("limit", default_limit)), 1), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return limit, offset


def pagination_block(total, limit, offset):
    return {
        "total": total,
        "limit": limit,
        "offset": offset,
        "hasMore": offset + limit < total,
    }


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def all_blueprints():
    from opsdesk.blueprints.auth_bp import auth_bp
    from opsdesk.blueprints.health_bp import health_bp
    from opsdesk.blueprints.quote_bp import quote_bp
    from opsdesk.blueprints.request_bp import request_bp
    from opsdesk.blueprints.support_bp import support_bp
    from opsdesk.blueprints.talent_bp import talent_bp

    return (auth_bp, request_bp, quote_bp, support_bp, talent_bp, health_bp)
