"""
Quotation Blueprint.

Endpoints (admin):
  POST   /api/quotes                  — issue a quotation; request → Quoted
  GET    /api/quotes                  — list (?include_voided=false)
  GET    /api/quotes/<id>             — one quotation
  GET    /api/quotes/<id>/document    — priced document as sent to the client
  GET    /api/quotes/request/<rid>    — quotations for one request
  DELETE /api/quotes/<id>             — remove a quotation
"""

import logging

from flask import Blueprint, g, jsonify, request

from opsdesk.blueprints import json_body
from opsdesk.middleware.jwt_auth import require_admin
from opsdesk.services import quotation_service
from opsdesk.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

quote_bp = Blueprint("quote_bp", __name__, url_prefix="/api/quotes")
register_error_handlers(quote_bp, logger)


def _include_voided() -> bool:
    return request.args.get("include_voided", "true").lower() not in ("0", "false", "no")


@quote_bp.route("", methods=["POST"])
@require_admin
def issue_quote():
    result = quotation_service.issue_quotation(json_body(), g.admin)
    message = (
        "Quotation issued and emailed to client"
        if result["email_sent"]
        else "Quotation issued; email could not be delivered"
    )
    return jsonify({"message": message, **result}), 201


@quote_bp.route("", methods=["GET"])
@require_admin
def list_quotes():
    quotes = quotation_service.list_quotes(include_voided=_include_voided())
    return jsonify({"quotes": [q.to_dict() for q in quotes]}), 200


@quote_bp.route("/<int:quote_id>", methods=["GET"])
@require_admin
def get_quote(quote_id):
    return jsonify({"quote": quotation_service.get_quote(quote_id).to_dict()}), 200


@quote_bp.route("/<int:quote_id>/document", methods=["GET"])
@require_admin
def get_quote_document(quote_id):
    return jsonify({"document": quotation_service.get_quote_document(quote_id)}), 200


@quote_bp.route("/request/<int:request_id>", methods=["GET"])
@require_admin
def quotes_for_request(request_id):
    quotes = quotation_service.list_quotes(request_id=request_id, include_voided=_include_voided())
    return jsonify({"quotes": [q.to_dict() for q in quotes]}), 200


@quote_bp.route("/<int:quote_id>", methods=["DELETE"])
@require_admin
def delete_quote(quote_id):
    quotation_service.delete_quote(quote_id, g.admin)
    return jsonify({"message": "Quotation deleted"}), 200
