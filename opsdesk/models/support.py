"""
OpsDesk
Support domain models.

Models:
    - SupportClient: a ticket submitter, keyed by email, carrying a plan.
    - SupportTicket: one support case with an SLA snapshot.
    - TicketMessage: append-only conversation entries (client or admin).

Ticket lifecycle (admin unless noted):
    open           → in_progress (admin, system), waiting_client, resolved, closed
    in_progress    → waiting_client, resolved, closed, open
    waiting_client → in_progress (admin, client), resolved, closed
    resolved       → closed, in_progress, open
    closed         → open, in_progress
"""

from datetime import UTC, datetime

from opsdesk.core.lifecycle import Actor, LifecycleMachine, edges, merge_edges
from opsdesk.models import db
from opsdesk.utils.helpers import iso

# ── Constants ────────────────────────────────────────────────────────────────

PLAN_TYPES = ("basic", "standard", "premium")

SLA_HOURS_BY_PLAN = {
    "basic": 48,
    "standard": 24,
    "premium": 4,
}

TICKET_CATEGORIES = ("bug", "feature_request", "technical_issue", "billing", "general")
TICKET_PRIORITIES = ("low", "medium", "high", "urgent")
TICKET_STATUSES = ("open", "in_progress", "waiting_client", "resolved", "closed")

TICKET_NUMBER_PREFIX = "ST-"

TICKET_MACHINE = LifecycleMachine(
    entity_type="support_ticket",
    initial="open",
    transitions={
        "open": merge_edges(
            edges("in_progress", by=(Actor.ADMIN, Actor.SYSTEM)),
            edges("waiting_client", "resolved", "closed"),
        ),
        "in_progress": edges("waiting_client", "resolved", "closed", "open"),
        "waiting_client": merge_edges(
            edges("in_progress", by=(Actor.ADMIN, Actor.CLIENT)),
            edges("resolved", "closed"),
        ),
        "resolved": edges("closed", "in_progress", "open"),
        "closed": edges("open", "in_progress"),
    },
    noop_actors=frozenset({Actor.ADMIN}),
)


def format_ticket_number(seq: int) -> str:
    return f"{TICKET_NUMBER_PREFIX}{seq:05d}"


class SupportClient(db.Model):
    """A support customer.  One row per email; the plan drives SLA hours."""

    __tablename__ = "support_clients"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    phone = db.Column(db.String(20))
    company_name = db.Column(db.String(255))
    plan_type = db.Column(db.String(20), nullable=False, default="basic")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))

    tickets = db.relationship("SupportTicket", back_populates="client", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "company_name": self.company_name,
            "plan_type": self.plan_type,
            "created_at": iso(self.created_at),
        }


class SupportTicket(db.Model):
    """A support case.  ``client_plan`` and ``response_sla_hours`` are
    snapshots taken at submission and never follow later plan changes."""

    __tablename__ = "support_tickets"
    __table_args__ = (
        db.Index("idx_support_tickets_status", "status"),
        db.Index("idx_support_tickets_priority", "priority"),
        db.Index("idx_support_tickets_created", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    ticket_seq = db.Column(db.Integer, nullable=False, unique=True)
    ticket_number = db.Column(db.String(20), nullable=False, unique=True, index=True)
    client_id = db.Column(
        db.Integer,
        db.ForeignKey("support_clients.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    client_name = db.Column(db.String(255), nullable=False)
    client_email = db.Column(db.String(255), nullable=False)
    client_phone = db.Column(db.String(20))
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("project_requests.id", ondelete="SET NULL"),
        nullable=True,
    )
    subject = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(30), nullable=False, default="general")
    priority = db.Column(db.String(20), nullable=False, default="medium")
    status = db.Column(db.String(20), nullable=False, default=TICKET_MACHINE.initial)
    client_plan = db.Column(db.String(20), nullable=False, default="basic")
    response_sla_hours = db.Column(db.Integer, nullable=False, default=48)
    assigned_to = db.Column(
        db.Integer,
        db.ForeignKey("admin_users.id", ondelete="SET NULL"),
        nullable=True,
    )
    assigned_at = db.Column(db.DateTime(timezone=True))
    resolution_notes = db.Column(db.Text)
    resolved_at = db.Column(db.DateTime(timezone=True))
    resolved_by = db.Column(
        db.Integer,
        db.ForeignKey("admin_users.id", ondelete="SET NULL"),
        nullable=True,
    )
    closed_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    client = db.relationship("SupportClient", back_populates="tickets")
    messages = db.relationship(
        "TicketMessage",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="TicketMessage.id",
    )

    def to_dict(self, include_messages=False, include_internal=False):
        d = {
            "id": self.id,
            "ticket_number": self.ticket_number,
            "client_id": self.client_id,
            "client_name": self.client_name,
            "client_email": self.client_email,
            "client_phone": self.client_phone,
            "project_id": self.project_id,
            "subject": self.subject,
            "description": self.description,
            "category": self.category,
            "priority": self.priority,
            "status": self.status,
            "client_plan": self.client_plan,
            "response_sla_hours": self.response_sla_hours,
            "assigned_to": self.assigned_to,
            "assigned_at": iso(self.assigned_at),
            "resolution_notes": self.resolution_notes,
            "resolved_at": iso(self.resolved_at),
            "resolved_by": self.resolved_by,
            "closed_at": iso(self.closed_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_messages:
            d["messages"] = [
                m.to_dict() for m in self.messages
                if include_internal or not m.is_internal_note
            ]
        return d

    def to_public_dict(self):
        """Client-facing view: no internal notes, no staff assignment fields."""
        return {
            "ticket_number": self.ticket_number,
            "subject": self.subject,
            "description": self.description,
            "category": self.category,
            "priority": self.priority,
            "status": self.status,
            "response_sla_hours": self.response_sla_hours,
            "resolution_notes": self.resolution_notes,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "resolved_at": iso(self.resolved_at),
            "messages": [
                m.to_dict(public=True) for m in self.messages if not m.is_internal_note
            ],
        }

    def __repr__(self):
        return f"<SupportTicket {self.ticket_number}: {self.status}>"


class TicketMessage(db.Model):
    """One entry in a ticket conversation.  Never updated or deleted alone."""

    __tablename__ = "ticket_messages"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(
        db.Integer,
        db.ForeignKey("support_tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sender_type = db.Column(db.String(20), nullable=False, comment="client | admin")
    sender_id = db.Column(db.Integer, nullable=True)
    sender_name = db.Column(db.String(255))
    sender_email = db.Column(db.String(255))
    message = db.Column(db.Text, nullable=False)
    is_internal_note = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))

    ticket = db.relationship("SupportTicket", back_populates="messages")

    def to_dict(self, public=False):
        d = {
            "id": self.id,
            "sender_type": self.sender_type,
            "sender_name": self.sender_name,
            "message": self.message,
            "created_at": iso(self.created_at),
        }
        if not public:
            d.update({
                "ticket_id": self.ticket_id,
                "sender_id": self.sender_id,
                "sender_email": self.sender_email,
                "is_internal_note": self.is_internal_note,
            })
        return d
