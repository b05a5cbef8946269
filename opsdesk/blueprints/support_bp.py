"""
Support Blueprint — client tickets and the staff desk.

Public (ticket number + email is the client's credential):
  POST  /api/support/submit
  GET   /api/support/ticket/<ticket_number>?email=
  POST  /api/support/ticket/<ticket_number>/message

Admin:
  GET   /api/support/admin/tickets          (?status=&priority=&plan=&category=&assigned_to=)
  GET   /api/support/admin/tickets/<id>
  PATCH /api/support/admin/tickets/<id>     status / priority / assigned_to / resolution_notes
  POST  /api/support/admin/tickets/<id>/respond
  GET   /api/support/admin/stats
  GET   /api/support/admin/clients
  PATCH /api/support/admin/clients/<id>/plan
"""

import logging

from flask import Blueprint, g, jsonify, request

from opsdesk.blueprints import json_body, page_args, pagination_block
from opsdesk.middleware.jwt_auth import require_admin
from opsdesk.services import support_service
from opsdesk.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

support_bp = Blueprint("support_bp", __name__, url_prefix="/api/support")
register_error_handlers(support_bp, logger)


# ═══════════════════════════════════════════════════════════════
# Public
# ═══════════════════════════════════════════════════════════════

@support_bp.route("/submit", methods=["POST"])
def submit_ticket():
    ticket = support_service.submit_ticket(json_body())
    return jsonify({
        "message": "Support ticket created successfully",
        "ticket": {
            "id": ticket.id,
            "ticketNumber": ticket.ticket_number,
            "status": ticket.status,
            "slaHours": ticket.response_sla_hours,
        },
    }), 201


@support_bp.route("/ticket/<ticket_number>", methods=["GET"])
def get_public_ticket(ticket_number):
    ticket = support_service.get_public_ticket(ticket_number, request.args.get("email"))
    return jsonify({"ticket": ticket.to_public_dict()}), 200


@support_bp.route("/ticket/<ticket_number>/message", methods=["POST"])
def add_client_message(ticket_number):
    data = json_body()
    msg = support_service.add_client_message(ticket_number, data.get("email"), data)
    return jsonify({"message": "Message added", "data": msg.to_dict(public=True)}), 201


# ═══════════════════════════════════════════════════════════════
# Admin
# ═══════════════════════════════════════════════════════════════

@support_bp.route("/admin/tickets", methods=["GET"])
@require_admin
def list_tickets():
    limit, offset = page_args()
    rows, total = support_service.list_tickets(request.args.to_dict(), limit=limit, offset=offset)
    return jsonify({
        "tickets": [t.to_dict() for t in rows],
        "pagination": pagination_block(total, limit, offset),
    }), 200


@support_bp.route("/admin/tickets/<int:ticket_id>", methods=["GET"])
@require_admin
def get_ticket(ticket_id):
    return jsonify({"ticket": support_service.get_ticket_detail(ticket_id)}), 200


@support_bp.route("/admin/tickets/<int:ticket_id>", methods=["PATCH"])
@require_admin
def update_ticket(ticket_id):
    ticket = support_service.update_ticket(ticket_id, json_body(), g.admin)
    return jsonify({"message": "Ticket updated", "ticket": ticket.to_dict()}), 200


@support_bp.route("/admin/tickets/<int:ticket_id>/respond", methods=["POST"])
@require_admin
def respond(ticket_id):
    msg = support_service.add_admin_response(ticket_id, json_body(), g.admin)
    label = "Internal note added" if msg.is_internal_note else "Response sent"
    return jsonify({"message": label, "data": msg.to_dict()}), 201


@support_bp.route("/admin/stats", methods=["GET"])
@require_admin
def stats():
    return jsonify({"stats": support_service.ticket_stats()}), 200


@support_bp.route("/admin/clients", methods=["GET"])
@require_admin
def list_clients():
    return jsonify({"clients": [c.to_dict() for c in support_service.list_clients()]}), 200


@support_bp.route("/admin/clients/<int:client_id>/plan", methods=["PATCH"])
@require_admin
def update_client_plan(client_id):
    client = support_service.update_client_plan(client_id, json_body(), g.admin)
    return jsonify({"message": "Client plan updated", "client": client.to_dict()}), 200
