"""
Project Request Service — quote requests from prospective clients.

Operations:
    submit_request          public; creates a Pending request, alerts staff, confirms to client
    get_request             admin; request with its quotations
    list_requests           admin; filter by status, paginated
    update_request_status   admin; status edits checked against REQUEST_MACHINE
    delete_request          admin; cascades to quotations

Entering *Quoted* is reserved for ``quotation_service.issue_quotation``.
Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from opsdesk.core.exceptions import ValidationError
from opsdesk.core.lifecycle import Actor, apply_transition
from opsdesk.models import db
from opsdesk.models.activity import activity_for, write_activity
from opsdesk.models.project_request import (
    BUDGET_RANGES,
    PROJECT_TYPES,
    REQUEST_MACHINE,
    REQUEST_STATUSES,
    ProjectRequest,
)
from opsdesk.services.notifications import Message, admin_recipient, frontend_url, get_dispatcher
from opsdesk.utils.helpers import atomic, get_or_raise
from opsdesk.utils.validation import Validator

logger = logging.getLogger(__name__)


def validate_request_fields(data: dict) -> dict:
    v = Validator(data)
    fields = {
        "client_name": v.text("client_name", required=True, min_len=2, max_len=255),
        "client_email": v.email("client_email"),
        "client_phone": v.phone("client_phone", required=True),
        "company_name": v.text("company_name", max_len=255),
        "project_type": v.choice("project_type", PROJECT_TYPES, required=True),
        "requirements": v.text("requirements", required=True, min_len=20, max_len=5000),
        "budget_range": v.choice("budget_range", BUDGET_RANGES),
    }
    v.raise_if_invalid()
    return fields


def submit_request(data: dict, *, dispatcher=None) -> ProjectRequest:
    """Create a Pending request and fire both notifications.

    Notification failures are logged and never affect the 201 response.
    """
    fields = validate_request_fields(data)
    req = ProjectRequest(status=REQUEST_MACHINE.initial, **fields)

    with atomic():
        db.session.add(req)
        db.session.flush()
        write_activity(
            entity_type=REQUEST_MACHINE.entity_type,
            entity_id=req.id,
            action="created",
            actor=Actor.client(req.client_name, req.client_email),
            details={"project_type": req.project_type, "budget_range": req.budget_range},
        )

    logger.info(
        "Project request submitted: id=%s type=%s",
        req.id, req.project_type,
        extra={"entity_type": "project_request", "entity_id": req.id},
    )

    payload = {
        "request_id": req.id,
        "client_name": req.client_name,
        "client_email": req.client_email,
        "client_phone": req.client_phone,
        "client_company": req.company_name or "N/A",
        "project_type": req.project_type,
        "budget_range": req.budget_range or "Not specified",
        "requirements": req.requirements,
        "dashboard_url": frontend_url(f"/admin/requests/{req.id}"),
    }
    (dispatcher or get_dispatcher()).dispatch("request.submitted", [
        Message("request_received_admin", admin_recipient(), payload, "project_request", req.id),
        Message("request_received_client", req.client_email, payload, "project_request", req.id),
    ])
    return req


def get_request(request_id: int) -> ProjectRequest:
    return get_or_raise(ProjectRequest, request_id)


def get_request_detail(request_id: int) -> dict:
    req = get_request(request_id)
    d = req.to_dict(include_quotations=True)
    d["activity"] = [a.to_dict() for a in activity_for(REQUEST_MACHINE.entity_type, req.id)]
    return d


def list_requests(*, status: str | None = None, limit: int = 50, offset: int = 0) -> tuple[list, int]:
    if status and status not in REQUEST_STATUSES:
        raise ValidationError("Invalid status filter", details={"status": f"Must be one of: {', '.join(REQUEST_STATUSES)}"})

    stmt = db.select(ProjectRequest)
    if status:
        stmt = stmt.where(ProjectRequest.status == status)
    total = db.session.execute(
        db.select(db.func.count()).select_from(stmt.subquery())
    ).scalar_one()
    rows = db.session.execute(
        stmt.order_by(ProjectRequest.created_at.desc(), ProjectRequest.id.desc())
        .limit(limit).offset(offset)
    ).scalars().all()
    return list(rows), total


def update_request_status(request_id: int, status, admin) -> ProjectRequest:
    """Admin status edit.

    Raises:
        ValidationError: status missing, unknown, or ``Quoted`` (only issuing
            a quotation enters Quoted).
        TransitionError: edge not allowed from the current status.
    """
    if status not in REQUEST_STATUSES:
        raise ValidationError(
            "Invalid status",
            details={"status": f"Must be one of: {', '.join(REQUEST_STATUSES)}"},
        )
    if status == "Quoted":
        raise ValidationError(
            "Status 'Quoted' is set by issuing a quotation",
            details={"status": "Use POST /api/quotes to quote a request"},
        )

    req = get_request(request_id)
    actor = Actor.admin(admin)
    with atomic():
        previous = apply_transition(req, REQUEST_MACHINE, status, actor)
        if status == "Pending" and previous != "Pending":
            voided = _void_quotations(req)
            if voided:
                write_activity(
                    entity_type=REQUEST_MACHINE.entity_type,
                    entity_id=req.id,
                    action="updated",
                    actor=actor,
                    details={"voided_quotations": voided},
                )

    # "request.status_updated" is DURABLE_ONLY: nothing is sent
    logger.info("Project request %s status %s → %s by admin %s", req.id, previous, status, admin.id)
    return req


def _void_quotations(req: ProjectRequest) -> list[int]:
    now = datetime.now(UTC)
    voided = []
    for quote in req.quotations:
        if quote.voided_at is None:
            quote.voided_at = now
            voided.append(quote.id)
    return voided


def delete_request(request_id: int, admin) -> None:
    req = get_request(request_id)
    quote_count = len(req.quotations)
    with atomic():
        write_activity(
            entity_type=REQUEST_MACHINE.entity_type,
            entity_id=req.id,
            action="deleted",
            actor=Actor.admin(admin),
            details={"client_email": req.client_email, "quotations": quote_count},
        )
        db.session.delete(req)
    logger.info("Project request %s deleted with %d quotation(s) by admin %s", request_id, quote_count, admin.id)
