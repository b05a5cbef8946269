"""
Quotation Service — priced offers against project requests.

Issuing a quotation is the only way a request enters *Quoted*: the
quotation row, the status change and the activity entry commit together,
then the priced document is emailed with a bounded wait
(``QUOTE_EMAIL_TIMEOUT``).  The caller learns whether the email went out;
the quotation stands either way.

Invoice numbers are ``PM-`` + the zero-padded quotation id (``PM-00042``).
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal

from flask import current_app
from markupsafe import escape

from opsdesk.core.exceptions import ValidationError
from opsdesk.core.lifecycle import Actor
from opsdesk.models import db
from opsdesk.models.activity import write_activity
from opsdesk.models.project_request import (
    RECURRING_PERIODS,
    REQUEST_MACHINE,
    ProjectRequest,
    Quotation,
)
from opsdesk.services.notifications import Message, get_dispatcher
from opsdesk.utils.helpers import as_utc, atomic, get_or_raise
from opsdesk.utils.validation import MAX_AMOUNT, Validator, to_amount

logger = logging.getLogger(__name__)

MAX_TIMELINE_WEEKS = 104
MAX_BREAKDOWN_ITEMS = 50


def format_money(amount, currency: str | None = None) -> str:
    """``KES 75,000.00``"""
    if currency is None:
        currency = current_app.config.get("CURRENCY", "KES")
    return f"{currency} {Decimal(amount or 0):,.2f}"


def _validate_breakdown(v: Validator) -> dict[str, Decimal]:
    raw = v.mapping("cost_breakdown")
    if raw is None:
        return {}
    if len(raw) > MAX_BREAKDOWN_ITEMS:
        v.add_error("cost_breakdown", f"At most {MAX_BREAKDOWN_ITEMS} items allowed")
        return {}
    clean: dict[str, Decimal] = {}
    for category, value in raw.items():
        label = str(category).strip()
        amount = to_amount(value)
        if not label or len(label) > 100:
            v.add_error("cost_breakdown", "Item names must be 1-100 characters")
            return {}
        if amount is None or amount < 0 or amount > MAX_AMOUNT:
            v.add_error("cost_breakdown", f"Amount for '{label}' must be a non-negative number")
            return {}
        clean[label] = amount
    return clean


def validate_pricing(data: dict) -> dict:
    v = Validator(data)
    fields = {
        "request_id": v.integer("request_id", required=True, min_value=1),
        "total_cost": v.amount("total_cost", required=True),
        "timeline_weeks": v.integer("timeline_weeks", required=True, min_value=1, max_value=MAX_TIMELINE_WEEKS),
        "cost_breakdown": _validate_breakdown(v),
        "notes": v.text("notes", max_len=2000),
        "recurring_cost": v.amount("recurring_cost", default=Decimal("0.00")),
        "recurring_period": v.choice("recurring_period", RECURRING_PERIODS, default="none"),
        "recurring_description": v.text("recurring_description", max_len=500),
    }
    v.raise_if_invalid()
    return fields


# ═══════════════════════════════════════════════════════════════════════════
#  Issue
# ═══════════════════════════════════════════════════════════════════════════


def issue_quotation(data: dict, admin, *, dispatcher=None) -> dict:
    """Price a request and send the quotation.

    Returns ``{"quote", "email_sent"}`` plus ``"email_error"`` when the
    email failed or timed out.

    Raises:
        ValidationError: bad pricing payload.
        NotFoundError: the request does not exist (checked before any write).
        TransitionError: the request is Approved or Rejected.
    """
    fields = validate_pricing(data)
    req = get_or_raise(ProjectRequest, fields.pop("request_id"), "ProjectRequest")
    actor = Actor.admin(admin).as_kind(Actor.QUOTATION)
    REQUEST_MACHINE.check(req.status, "Quoted", actor.kind, entity_id=req.id)

    breakdown = fields.pop("cost_breakdown")
    quote = Quotation(request_id=req.id, issued_by=admin.id, sent_at=datetime.now(UTC), **fields)
    quote.cost_breakdown = breakdown

    with atomic():
        db.session.add(quote)
        db.session.flush()
        previous = req.status
        req.status = "Quoted"
        write_activity(
            entity_type=REQUEST_MACHINE.entity_type,
            entity_id=req.id,
            action="quotation_issued",
            actor=actor,
            details={
                "from": previous,
                "to": "Quoted",
                "quotation_id": quote.id,
                "total_cost": str(quote.total_cost),
                "timeline_weeks": quote.timeline_weeks,
            },
        )

    logger.info(
        "Quotation %s issued for request %s (total=%s) by admin %s",
        quote.id, req.id, quote.total_cost, admin.id,
        extra={"entity_type": "project_request", "entity_id": req.id},
    )

    document = compose_quote_document(quote, req)
    outcomes = (dispatcher or get_dispatcher()).dispatch(
        "quotation.issued",
        Message("quotation_issued", req.client_email, _email_payload(document), "project_request", req.id),
        timeout=current_app.config.get("QUOTE_EMAIL_TIMEOUT"),
    )
    outcome = outcomes[0] if outcomes else None

    result = {
        "quote": {
            "id": quote.id,
            "request_id": req.id,
            "invoice_number": quote.invoice_number,
            "total_cost": float(quote.total_cost),
            "timeline_weeks": quote.timeline_weeks,
            "sent_at": document["issued_at"],
        },
        "email_sent": bool(outcome and outcome.delivered),
    }
    if not result["email_sent"]:
        result["email_error"] = outcome.error if outcome else "No recipient"
    return result


# ═══════════════════════════════════════════════════════════════════════════
#  Document
# ═══════════════════════════════════════════════════════════════════════════


def compose_quote_document(quote: Quotation, req: ProjectRequest) -> dict:
    """Build the priced document shown to the client and emailed to them."""
    currency = current_app.config.get("CURRENCY", "KES")
    sent_at = as_utc(quote.sent_at)
    line_items = [
        {"description": label, "amount": float(amount), "amount_formatted": format_money(amount, currency)}
        for label, amount in ((k, Decimal(v)) for k, v in quote.cost_breakdown.items())
    ]
    recurring = None
    if quote.recurring_period != "none" and quote.recurring_cost and Decimal(quote.recurring_cost) > 0:
        recurring = {
            "amount": float(quote.recurring_cost),
            "amount_formatted": format_money(quote.recurring_cost, currency),
            "period": quote.recurring_period,
            "description": quote.recurring_description,
        }
    return {
        "invoice_number": quote.invoice_number,
        "issued_at": sent_at.isoformat() if sent_at else None,
        "issued_on": sent_at.strftime("%d %B %Y") if sent_at else None,
        "currency": currency,
        "client": {
            "name": req.client_name,
            "email": req.client_email,
            "phone": req.client_phone,
            "company": req.company_name,
        },
        "project": {
            "request_id": req.id,
            "type": req.project_type,
            "requirements": req.requirements,
        },
        "line_items": line_items,
        "total": float(quote.total_cost),
        "total_formatted": format_money(quote.total_cost, currency),
        "recurring": recurring,
        "timeline_weeks": quote.timeline_weeks,
        "notes": quote.notes,
        "voided": quote.voided_at is not None,
    }


def _email_payload(document: dict) -> dict:
    rows = "".join(
        '<tr><td style="padding: 8px;">{}</td>'
        '<td style="padding: 8px; text-align: right;">{}</td></tr>'.format(
            escape(item["description"]), escape(item["amount_formatted"]),
        )
        for item in document["line_items"]
    )
    recurring = document["recurring"]
    recurring_html = ""
    if recurring:
        recurring_html = "<p><strong>Recurring:</strong> {} {}{}</p>".format(
            escape(recurring["amount_formatted"]),
            escape(recurring["period"]),
            f" ({escape(recurring['description'])})" if recurring["description"] else "",
        )
    return {
        "client_name": document["client"]["name"],
        "project_type": document["project"]["type"],
        "invoice_number": document["invoice_number"],
        "issued_on": document["issued_on"],
        "line_items_html": rows,
        "recurring_html": recurring_html,
        "total_formatted": document["total_formatted"],
        "timeline_weeks": document["timeline_weeks"],
        "notes": document["notes"] or "",
    }


# ═══════════════════════════════════════════════════════════════════════════
#  Read / delete
# ═══════════════════════════════════════════════════════════════════════════


def get_quote(quote_id: int) -> Quotation:
    return get_or_raise(Quotation, quote_id)


def get_quote_document(quote_id: int) -> dict:
    quote = get_quote(quote_id)
    return compose_quote_document(quote, quote.request)


def list_quotes(*, request_id: int | None = None, include_voided: bool = True) -> list[Quotation]:
    stmt = db.select(Quotation)
    if request_id is not None:
        get_or_raise(ProjectRequest, request_id)
        stmt = stmt.where(Quotation.request_id == request_id)
    if not include_voided:
        stmt = stmt.where(Quotation.voided_at.is_(None))
    return list(db.session.execute(stmt.order_by(Quotation.id.desc())).scalars())


def delete_quote(quote_id: int, admin) -> None:
    quote = get_quote(quote_id)
    request_id = quote.request_id
    with atomic():
        write_activity(
            entity_type=REQUEST_MACHINE.entity_type,
            entity_id=request_id,
            action="updated",
            actor=Actor.admin(admin),
            details={"deleted_quotation": quote.id},
        )
        db.session.delete(quote)
    logger.info("Quotation %s deleted by admin %s", quote_id, admin.id)
