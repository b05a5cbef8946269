"""
OpsDesk
Project quote domain models.

Models:
    - ProjectRequest: a prospective client's request for a quote.
    - Quotation: a priced offer issued against a request.

Lifecycle:
    Pending → Quoted (quotation composer only), Approved, Rejected
    Quoted  → Quoted (re-quote), Approved, Rejected, Pending
    Approved → Pending, Rejected
    Rejected → Pending, Approved
"""

import json
from datetime import UTC, datetime
from decimal import Decimal

from opsdesk.core.lifecycle import Actor, LifecycleMachine, edges, merge_edges
from opsdesk.models import db
from opsdesk.utils.helpers import iso

# ── Constants ────────────────────────────────────────────────────────────────

PROJECT_TYPES = (
    "E-commerce Website",
    "Business Website",
    "Web Application",
    "AI Chatbot Integration",
    "Business Automation",
    "Data Analytics Dashboard",
    "Custom Solution",
    "Other",
)

BUDGET_RANGES = (
    "Under KES 50,000",
    "KES 50,000 - 100,000",
    "KES 100,000 - 250,000",
    "KES 250,000 - 500,000",
    "Above KES 500,000",
    "Not Sure",
)

REQUEST_STATUSES = ("Pending", "Quoted", "Approved", "Rejected")

RECURRING_PERIODS = ("monthly", "quarterly", "yearly", "none")

_QUOTE = (Actor.QUOTATION,)

REQUEST_MACHINE = LifecycleMachine(
    entity_type="project_request",
    initial="Pending",
    transitions={
        "Pending": merge_edges(edges("Quoted", by=_QUOTE), edges("Approved", "Rejected")),
        "Quoted": merge_edges(edges("Quoted", by=_QUOTE), edges("Approved", "Rejected", "Pending")),
        "Approved": edges("Pending", "Rejected"),
        "Rejected": edges("Pending", "Approved"),
    },
    noop_actors=frozenset({Actor.ADMIN}),
)


def _money(value):
    return float(value) if value is not None else None


class ProjectRequest(db.Model):
    """A client's request for a project quote."""

    __tablename__ = "project_requests"
    __table_args__ = (
        db.Index("idx_project_requests_status", "status"),
        db.Index("idx_project_requests_created", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    client_name = db.Column(db.String(255), nullable=False)
    client_email = db.Column(db.String(255), nullable=False, index=True)
    client_phone = db.Column(db.String(20), nullable=False)
    company_name = db.Column(db.String(255))
    project_type = db.Column(db.String(50), nullable=False)
    requirements = db.Column(db.Text, nullable=False)
    budget_range = db.Column(db.String(50))
    status = db.Column(
        db.String(20), nullable=False, default=REQUEST_MACHINE.initial,
        comment="Pending | Quoted | Approved | Rejected",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    quotations = db.relationship(
        "Quotation",
        back_populates="request",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Quotation.id",
    )

    @property
    def active_quotation(self):
        live = [q for q in self.quotations if q.voided_at is None]
        return live[-1] if live else None

    def to_dict(self, include_quotations=False):
        d = {
            "id": self.id,
            "client_name": self.client_name,
            "client_email": self.client_email,
            "client_phone": self.client_phone,
            "company_name": self.company_name,
            "project_type": self.project_type,
            "requirements": self.requirements,
            "budget_range": self.budget_range,
            "status": self.status,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_quotations:
            d["quotations"] = [q.to_dict() for q in self.quotations]
        return d

    def __repr__(self):
        return f"<ProjectRequest {self.id}: {self.status}>"


class Quotation(db.Model):
    """A priced offer.  Issuing one moves its request to *Quoted*."""

    __tablename__ = "quotations"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer,
        db.ForeignKey("project_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    total_cost = db.Column(db.Numeric(12, 2), nullable=False)
    timeline_weeks = db.Column(db.Integer, nullable=False)
    cost_breakdown_json = db.Column(
        db.Text, default="{}",
        comment="JSON: {category: amount}",
    )
    notes = db.Column(db.Text)
    recurring_cost = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    recurring_period = db.Column(db.String(20), nullable=False, default="none")
    recurring_description = db.Column(db.String(500))
    issued_by = db.Column(
        db.Integer,
        db.ForeignKey("admin_users.id", ondelete="SET NULL"),
        nullable=True,
    )
    sent_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))
    voided_at = db.Column(
        db.DateTime(timezone=True),
        comment="Set when the request is reset to Pending; row kept for history",
    )

    request = db.relationship("ProjectRequest", back_populates="quotations")

    @property
    def cost_breakdown(self) -> dict:
        try:
            return json.loads(self.cost_breakdown_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    @cost_breakdown.setter
    def cost_breakdown(self, value: dict):
        self.cost_breakdown_json = json.dumps(
            {k: str(v) for k, v in (value or {}).items()}
        )

    @property
    def invoice_number(self) -> str:
        return f"PM-{self.id:05d}" if self.id else None

    def to_dict(self):
        return {
            "id": self.id,
            "request_id": self.request_id,
            "invoice_number": self.invoice_number,
            "total_cost": _money(self.total_cost),
            "timeline_weeks": self.timeline_weeks,
            "cost_breakdown": {k: float(v) for k, v in self.cost_breakdown.items()},
            "notes": self.notes,
            "recurring_cost": _money(self.recurring_cost),
            "recurring_period": self.recurring_period,
            "recurring_description": self.recurring_description,
            "issued_by": self.issued_by,
            "sent_at": iso(self.sent_at),
            "voided_at": iso(self.voided_at),
        }

    def __repr__(self):
        return f"<Quotation {self.id} request={self.request_id} total={self.total_cost}>"
