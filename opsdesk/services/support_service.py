"""
Support Service — ticket intake, conversation and admin handling.

Public side (no login; ticket number + email act as the credential):
    submit_ticket, get_public_ticket, add_client_message

Admin side:
    add_admin_response, update_ticket, get_ticket_detail, list_tickets,
    ticket_stats, list_clients, update_client_plan

Ticket numbers come from ``MAX(ticket_seq) + 1`` inserted inside a
savepoint against a unique constraint; a concurrent insert that wins the
same number makes ours fail, and we retry with the next one.

Plan and SLA hours are snapshotted onto the ticket at submission.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from opsdesk.core.exceptions import NotFoundError, PersistenceError, ValidationError
from opsdesk.core.lifecycle import Actor, apply_transition
from opsdesk.models import db
from opsdesk.models.activity import activity_for, write_activity
from opsdesk.models.auth import AdminUser
from opsdesk.models.project_request import ProjectRequest
from opsdesk.models.support import (
    PLAN_TYPES,
    SLA_HOURS_BY_PLAN,
    TICKET_CATEGORIES,
    TICKET_MACHINE,
    TICKET_PRIORITIES,
    TICKET_STATUSES,
    SupportClient,
    SupportTicket,
    TicketMessage,
    format_ticket_number,
)
from opsdesk.services.notifications import Message, admin_recipient, frontend_url, get_dispatcher
from opsdesk.utils.helpers import atomic, get_or_raise
from opsdesk.utils.validation import Validator, normalize_email

logger = logging.getLogger(__name__)

ENTITY = TICKET_MACHINE.entity_type
UPDATABLE_FIELDS = ("status", "priority", "assigned_to", "resolution_notes")
_REOPEN_TARGETS = {"open", "in_progress", "waiting_client"}


def _status_label(status: str) -> str:
    return status.replace("_", " ").title()


def _ticket_url(ticket: SupportTicket) -> str:
    return frontend_url(f"/support/ticket/{ticket.ticket_number}")


# ═══════════════════════════════════════════════════════════════════════════
#  Client records
# ═══════════════════════════════════════════════════════════════════════════


def _find_client(email: str) -> SupportClient | None:
    return db.session.execute(
        db.select(SupportClient).where(SupportClient.email == email)
    ).scalar_one_or_none()


def get_or_create_client(*, full_name: str, email: str, phone=None, company_name=None) -> SupportClient:
    """Look up a client by email, creating it on first contact.

    Two first-time submissions racing on the same email both try the insert;
    the loser's savepoint rolls back and it reads the winner's row.
    """
    client = _find_client(email)
    if client is not None:
        return client
    try:
        with db.session.begin_nested():
            client = SupportClient(
                full_name=full_name, email=email, phone=phone,
                company_name=company_name, plan_type="basic",
            )
            db.session.add(client)
            db.session.flush()
        return client
    except IntegrityError:
        logger.info("Support client %s created concurrently; reusing existing row", email)
        client = _find_client(email)
        if client is None:
            raise
        return client


# ═══════════════════════════════════════════════════════════════════════════
#  Ticket numbering
# ═══════════════════════════════════════════════════════════════════════════


def _next_ticket_seq() -> int:
    current = db.session.execute(db.select(db.func.max(SupportTicket.ticket_seq))).scalar()
    return (current or 0) + 1


def _insert_with_ticket_number(ticket: SupportTicket) -> None:
    attempts = current_app.config.get("TICKET_NUMBER_MAX_ATTEMPTS", 5)
    for attempt in range(1, attempts + 1):
        seq = _next_ticket_seq()
        try:
            with db.session.begin_nested():
                ticket.ticket_seq = seq
                ticket.ticket_number = format_ticket_number(seq)
                db.session.add(ticket)
                db.session.flush()
            return
        except IntegrityError:
            logger.warning("Ticket number %s taken (attempt %d/%d); retrying", format_ticket_number(seq), attempt, attempts)
    raise PersistenceError(f"Could not allocate a ticket number after {attempts} attempts")


# ═══════════════════════════════════════════════════════════════════════════
#  Public operations
# ═══════════════════════════════════════════════════════════════════════════


def validate_ticket_fields(data: dict) -> dict:
    v = Validator(data)
    fields = {
        "full_name": v.text("full_name", required=True, min_len=2, max_len=255),
        "email": v.email("email"),
        "phone": v.phone("phone"),
        "company_name": v.text("company_name", max_len=255),
        "subject": v.text("subject", required=True, min_len=3, max_len=255),
        "description": v.text("description", required=True, min_len=10, max_len=10000),
        "category": v.choice("category", TICKET_CATEGORIES, default="general"),
        "project_id": v.integer("project_id", min_value=1),
    }
    if fields["project_id"] is not None and db.session.get(ProjectRequest, fields["project_id"]) is None:
        v.add_error("project_id", "Project not found")
    v.raise_if_invalid()
    return fields


def submit_ticket(data: dict, *, dispatcher=None) -> SupportTicket:
    """Open a ticket for the submitting client and notify both sides."""
    fields = validate_ticket_fields(data)

    with atomic():
        client = get_or_create_client(
            full_name=fields["full_name"], email=fields["email"],
            phone=fields["phone"], company_name=fields["company_name"],
        )
        plan = client.plan_type if client.plan_type in SLA_HOURS_BY_PLAN else "basic"
        ticket = SupportTicket(
            client_id=client.id,
            client_name=fields["full_name"],
            client_email=fields["email"],
            client_phone=fields["phone"],
            project_id=fields["project_id"],
            subject=fields["subject"],
            description=fields["description"],
            category=fields["category"],
            priority="medium",
            status=TICKET_MACHINE.initial,
            client_plan=plan,
            response_sla_hours=SLA_HOURS_BY_PLAN[plan],
        )
        _insert_with_ticket_number(ticket)
        write_activity(
            entity_type=ENTITY,
            entity_id=ticket.id,
            action="created",
            actor=Actor.client(ticket.client_name, ticket.client_email),
            details={"category": ticket.category, "plan": plan},
        )

    logger.info(
        "Support ticket %s created (plan=%s sla=%sh)",
        ticket.ticket_number, ticket.client_plan, ticket.response_sla_hours,
        extra={"entity_type": ENTITY, "entity_id": ticket.id},
    )

    payload = {
        "ticket_number": ticket.ticket_number,
        "client_name": ticket.client_name,
        "client_email": ticket.client_email,
        "subject": ticket.subject,
        "description": ticket.description,
        "category": ticket.category,
        "plan": ticket.client_plan,
        "sla_hours": ticket.response_sla_hours,
        "ticket_url": _ticket_url(ticket),
    }
    (dispatcher or get_dispatcher()).dispatch("ticket.submitted", [
        Message("ticket_created_client", ticket.client_email, payload, ENTITY, ticket.id),
        Message("ticket_created_admin", admin_recipient(), payload, ENTITY, ticket.id),
    ])
    return ticket


def _find_owned_ticket(ticket_number: str, email: str | None) -> SupportTicket:
    """Ticket whose number and email both match.  Any mismatch is a 404."""
    if not email:
        raise ValidationError("Email is required", details={"email": "email is required"})
    number = (ticket_number or "").strip().upper()
    ticket = db.session.execute(
        db.select(SupportTicket).where(SupportTicket.ticket_number == number)
    ).scalar_one_or_none()
    try:
        email = normalize_email(email)
    except ValueError:
        email = None
    if ticket is None or email is None or ticket.client_email.lower() != email:
        logger.info("Public ticket lookup failed for %s", number)
        raise NotFoundError("SupportTicket", number)
    return ticket


def get_public_ticket(ticket_number: str, email: str | None) -> SupportTicket:
    return _find_owned_ticket(ticket_number, email)


def add_client_message(ticket_number: str, email: str | None, data: dict, *, dispatcher=None) -> TicketMessage:
    """Append a client reply.  A ticket waiting on the client goes back to in_progress."""
    v = Validator(data)
    body = v.text("message", required=True, max_len=10000)
    sender_name = v.text("sender_name", max_len=255)
    v.raise_if_invalid()

    ticket = _find_owned_ticket(ticket_number, email)
    actor = Actor.client(sender_name or ticket.client_name, ticket.client_email)

    with atomic():
        msg = TicketMessage(
            ticket_id=ticket.id,
            sender_type="client",
            sender_name=actor.name,
            sender_email=ticket.client_email,
            message=body,
            is_internal_note=False,
        )
        db.session.add(msg)
        db.session.flush()
        if ticket.status == "waiting_client":
            apply_transition(ticket, TICKET_MACHINE, "in_progress", actor)
        else:
            ticket.updated_at = datetime.now(UTC)
        write_activity(
            entity_type=ENTITY, entity_id=ticket.id, action="message_added",
            actor=actor, details={"message_id": msg.id, "sender_type": "client"},
        )

    (dispatcher or get_dispatcher()).dispatch("ticket.client_message", Message(
        "ticket_client_message_admin", admin_recipient(),
        {
            "ticket_number": ticket.ticket_number,
            "sender_name": actor.name,
            "status": ticket.status,
            "message": body,
        },
        ENTITY, ticket.id,
    ))
    return msg


# ═══════════════════════════════════════════════════════════════════════════
#  Admin operations
# ═══════════════════════════════════════════════════════════════════════════


def get_ticket(ticket_id: int) -> SupportTicket:
    return get_or_raise(SupportTicket, ticket_id)


def add_admin_response(ticket_id: int, data: dict, admin, *, dispatcher=None) -> TicketMessage:
    """Append a staff reply or internal note.  An open ticket moves to in_progress."""
    v = Validator(data)
    body = v.text("message", required=True, max_len=10000)
    is_internal = v.boolean("is_internal_note", default=False)
    v.raise_if_invalid()

    ticket = get_ticket(ticket_id)
    actor = Actor.admin(admin)

    with atomic():
        msg = TicketMessage(
            ticket_id=ticket.id,
            sender_type="admin",
            sender_id=admin.id,
            sender_name=actor.name,
            sender_email=admin.email,
            message=body,
            is_internal_note=is_internal,
        )
        db.session.add(msg)
        db.session.flush()
        if ticket.status == "open":
            apply_transition(ticket, TICKET_MACHINE, "in_progress", actor)
        else:
            ticket.updated_at = datetime.now(UTC)
        write_activity(
            entity_type=ENTITY, entity_id=ticket.id, action="message_added",
            actor=actor,
            details={"message_id": msg.id, "sender_type": "admin", "is_internal_note": is_internal},
        )

    if not is_internal:
        (dispatcher or get_dispatcher()).dispatch("ticket.admin_response", Message(
            "ticket_admin_response_client", ticket.client_email,
            {
                "ticket_number": ticket.ticket_number,
                "client_name": ticket.client_name,
                "sender_name": actor.name,
                "message": body,
                "ticket_url": _ticket_url(ticket),
            },
            ENTITY, ticket.id,
        ))
    return msg


def update_ticket(ticket_id: int, data: dict, admin, *, dispatcher=None) -> SupportTicket:
    """Partial admin update of status, priority, assignee and resolution notes.

    Raises:
        ValidationError: no updatable field given, or a value is invalid.
        TransitionError: the status edge is not allowed.
    """
    data = data or {}
    present = [f for f in UPDATABLE_FIELDS if f in data]
    if not present:
        raise ValidationError(
            "No fields to update",
            details={"fields": f"Provide at least one of: {', '.join(UPDATABLE_FIELDS)}"},
        )

    v = Validator(data)
    status = v.choice("status", TICKET_STATUSES) if "status" in data else None
    priority = v.choice("priority", TICKET_PRIORITIES) if "priority" in data else None
    assignee = v.integer("assigned_to", min_value=1) if "assigned_to" in data else None
    notes = v.text("resolution_notes", max_len=10000) if "resolution_notes" in data else None
    if "status" in data and status is None:
        v.add_error("status", "status is required")
    if "priority" in data and priority is None:
        v.add_error("priority", "priority is required")
    if assignee is not None and db.session.get(AdminUser, assignee) is None:
        v.add_error("assigned_to", "Assignee not found")
    v.raise_if_invalid()

    ticket = get_ticket(ticket_id)
    status_changed = False
    if status is not None:
        status_changed = TICKET_MACHINE.check(ticket.status, status, Actor.ADMIN, entity_id=ticket.id)

    now = datetime.now(UTC)
    changes: dict[str, dict] = {}

    def _set(field, value):
        old = getattr(ticket, field)
        if old != value:
            changes[field] = {"old": old, "new": value}
            setattr(ticket, field, value)

    with atomic():
        if status_changed:
            _set("status", status)
            if status == "resolved":
                ticket.resolved_at = now
                ticket.resolved_by = admin.id
            elif status == "closed":
                ticket.closed_at = now
            elif status in _REOPEN_TARGETS:
                ticket.resolved_at = None
                ticket.resolved_by = None
                ticket.closed_at = None
        if priority is not None:
            _set("priority", priority)
        if "assigned_to" in data:
            _set("assigned_to", assignee)
            if "assigned_to" in changes:
                ticket.assigned_at = now if assignee is not None else None
        if "resolution_notes" in data:
            _set("resolution_notes", notes)
        if changes:
            ticket.updated_at = now
            write_activity(
                entity_type=ENTITY, entity_id=ticket.id, action="updated",
                actor=Actor.admin(admin), details=changes,
            )

    logger.info("Ticket %s updated by admin %s: %s", ticket.ticket_number, admin.id, sorted(changes))

    if status_changed:
        (dispatcher or get_dispatcher()).dispatch("ticket.updated", Message(
            "ticket_status_client", ticket.client_email,
            {
                "ticket_number": ticket.ticket_number,
                "client_name": ticket.client_name,
                "status": ticket.status,
                "status_label": _status_label(ticket.status),
                "resolution_notes": ticket.resolution_notes or "",
                "ticket_url": _ticket_url(ticket),
            },
            ENTITY, ticket.id,
        ))
    return ticket


def get_ticket_detail(ticket_id: int) -> dict:
    ticket = get_ticket(ticket_id)
    d = ticket.to_dict(include_messages=True, include_internal=True)
    d["client"] = ticket.client.to_dict() if ticket.client else None
    d["activity"] = [a.to_dict() for a in activity_for(ENTITY, ticket.id)]
    return d


def list_tickets(filters: dict, *, limit: int = 50, offset: int = 0) -> tuple[list, int]:
    v = Validator(filters)
    status = v.choice("status", TICKET_STATUSES)
    priority = v.choice("priority", TICKET_PRIORITIES)
    plan = v.choice("plan", PLAN_TYPES)
    category = v.choice("category", TICKET_CATEGORIES)
    assigned_to = v.integer("assigned_to", min_value=1)
    v.raise_if_invalid("Invalid filter")

    stmt = db.select(SupportTicket)
    if status:
        stmt = stmt.where(SupportTicket.status == status)
    if priority:
        stmt = stmt.where(SupportTicket.priority == priority)
    if plan:
        stmt = stmt.where(SupportTicket.client_plan == plan)
    if category:
        stmt = stmt.where(SupportTicket.category == category)
    if assigned_to:
        stmt = stmt.where(SupportTicket.assigned_to == assigned_to)

    total = db.session.execute(
        db.select(db.func.count()).select_from(stmt.subquery())
    ).scalar_one()
    rows = db.session.execute(
        stmt.order_by(SupportTicket.created_at.desc(), SupportTicket.id.desc())
        .limit(limit).offset(offset)
    ).scalars().all()
    return list(rows), total


def ticket_stats() -> dict:
    def _grouped(column):
        rows = db.session.execute(
            db.select(column, db.func.count(SupportTicket.id)).group_by(column)
        ).all()
        return {key: count for key, count in rows}

    since = datetime.now(UTC) - timedelta(days=7)
    total = db.session.execute(db.select(db.func.count(SupportTicket.id))).scalar_one()
    recent = db.session.execute(
        db.select(db.func.count(SupportTicket.id)).where(SupportTicket.created_at >= since)
    ).scalar_one()
    unassigned = db.session.execute(
        db.select(db.func.count(SupportTicket.id)).where(
            SupportTicket.assigned_to.is_(None),
            SupportTicket.status.in_(("open", "in_progress", "waiting_client")),
        )
    ).scalar_one()
    return {
        "total": total,
        "by_status": {s: 0 for s in TICKET_STATUSES} | _grouped(SupportTicket.status),
        "by_priority": {p: 0 for p in TICKET_PRIORITIES} | _grouped(SupportTicket.priority),
        "by_plan": {p: 0 for p in PLAN_TYPES} | _grouped(SupportTicket.client_plan),
        "last_7_days": recent,
        "unassigned_active": unassigned,
    }


def list_clients() -> list[SupportClient]:
    return list(db.session.execute(
        db.select(SupportClient).order_by(SupportClient.created_at.desc())
    ).scalars())


def update_client_plan(client_id: int, data: dict, admin) -> SupportClient:
    """Change a client's plan.  Existing tickets keep their SLA snapshot."""
    v = Validator(data)
    plan = v.choice("plan_type", PLAN_TYPES, required=True)
    v.raise_if_invalid()

    client = get_or_raise(SupportClient, client_id)
    previous = client.plan_type
    with atomic():
        client.plan_type = plan
    logger.info("Support client %s plan %s → %s by admin %s", client.id, previous, plan, admin.id)
    return client
