"""
OpsDesk
Activity domain model.

Models:
    - ActivityLog: append-only history for project requests, support
      tickets and talent applications.
"""

import json
from datetime import UTC, datetime

from opsdesk.models import db

# ── Constants ────────────────────────────────────────────────────────────────

ACTIVITY_ENTITY_TYPES = {"project_request", "support_ticket", "talent_application"}

ACTIVITY_ACTIONS = {
    "created",
    "updated",
    "status_changed",
    "message_added",
    "quotation_issued",
    "assessment_assigned",
    "assessment_submitted",
    "interview_scheduled",
    "deleted",
}

ACTOR_TYPES = {"client", "admin", "system", "quotation"}


class ActivityLog(db.Model):
    """
    Immutable activity trail.

    One row per mutation, written in the same transaction as the mutation.
    ``details_json`` carries the changed fields.
    """

    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("idx_activity_entity", "entity_type", "entity_id"),
        db.Index("idx_activity_action", "action"),
        db.Index("idx_activity_ts", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="project_request | support_ticket | talent_application",
    )
    entity_id = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(40), nullable=False)
    actor_type = db.Column(db.String(20), nullable=False, default="system")
    actor_id = db.Column(
        db.Integer,
        db.ForeignKey("admin_users.id", ondelete="SET NULL"),
        nullable=True,
    )
    actor_name = db.Column(db.String(255), nullable=True)
    details_json = db.Column(db.Text, default="{}")
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @property
    def details(self) -> dict:
        try:
            return json.loads(self.details_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_type": self.actor_type,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "details": self.details,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ActivityLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_activity(
    *,
    entity_type: str,
    entity_id: int,
    action: str,
    actor=None,
    details: dict | None = None,
) -> ActivityLog:
    """
    Append a single activity row.  Uses ``flush`` so callers keep
    transaction control.

    ``actor`` is an ``opsdesk.core.lifecycle.Actor``; ``None`` means system.
    """
    log = ActivityLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_type=getattr(actor, "kind", None) or "system",
        actor_id=getattr(actor, "id", None),
        actor_name=getattr(actor, "name", None),
        details_json=json.dumps(details or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log


def activity_for(entity_type: str, entity_id: int) -> list[ActivityLog]:
    """Return the activity trail of one entity, oldest first."""
    stmt = (
        db.select(ActivityLog)
        .where(ActivityLog.entity_type == entity_type, ActivityLog.entity_id == entity_id)
        .order_by(ActivityLog.created_at.asc(), ActivityLog.id.asc())
    )
    return list(db.session.execute(stmt).scalars())
