"""
Health probes.

    GET /api/health         database round trip + notification backlog (503 when degraded)
    GET /api/health/live    same as above
    GET /api/health/ready   static 200 for the load balancer
"""

import logging
import time
from datetime import UTC, datetime, timedelta

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from opsdesk.models import db
from opsdesk.models.notification import NotificationLog

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/health")


def _check_database() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check: database unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _check_notifications(database_ok: bool) -> dict:
    dispatcher = current_app.extensions.get("notifications")
    if dispatcher is None:
        return {"status": "missing"}
    result = {"status": "ok", "async": dispatcher.run_async}
    if database_ok:
        since = datetime.now(UTC) - timedelta(hours=24)
        result["failed_last_24h"] = db.session.execute(
            db.select(db.func.count(NotificationLog.id)).where(
                NotificationLog.status.in_(("failed", "timeout")),
                NotificationLog.created_at >= since,
            )
        ).scalar_one()
    return result


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("", methods=["GET"])
@health_bp.route("/live", methods=["GET"])
def live():
    database = _check_database()
    database_ok = database["status"] == "ok"
    notifications = _check_notifications(database_ok)
    healthy = database_ok and notifications["status"] == "ok"

    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": {
            "database": database,
            "notifications": notifications,
            "app": {
                "name": current_app.config.get("COMPANY_NAME", "OpsDesk"),
                "testing": current_app.testing,
            },
        },
    }), 200 if healthy else 503
