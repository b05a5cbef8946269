"""
OpsDesk
Notification log model.

One row per dispatched message.  Rows are the history shown as an
applicant's "communications" and the trail staff use to resend anything
that failed.
"""

from datetime import UTC, datetime

from opsdesk.models import db
from opsdesk.utils.helpers import iso

NOTIFICATION_STATUSES = ("queued", "sent", "failed", "timeout")


class NotificationLog(db.Model):
    __tablename__ = "notification_logs"
    __table_args__ = (
        db.Index("idx_notification_entity", "entity_type", "entity_id"),
        db.Index("idx_notification_status", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    template = db.Column(db.String(60), nullable=False)
    recipient = db.Column(db.String(255), nullable=False)
    subject = db.Column(db.String(500))
    entity_type = db.Column(db.String(30))
    entity_id = db.Column(db.Integer)
    policy = db.Column(db.String(30), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="queued")
    error_message = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))
    sent_at = db.Column(db.DateTime(timezone=True))

    def to_dict(self):
        return {
            "id": self.id,
            "template": self.template,
            "recipient": self.recipient,
            "subject": self.subject,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "policy": self.policy,
            "status": self.status,
            "error_message": self.error_message,
            "created_at": iso(self.created_at),
            "sent_at": iso(self.sent_at),
        }

    def __repr__(self):
        return f"<NotificationLog {self.id}: {self.template} → {self.recipient} [{self.status}]>"
