"""
Project Request Blueprint.

Endpoints:
  POST   /api/requests        — public quote request
  GET    /api/requests        — admin list (?status=&limit=&offset=)
  GET    /api/requests/<id>   — admin detail with quotations and activity
  PUT    /api/requests/<id>   — admin status change
  DELETE /api/requests/<id>   — admin delete (quotations cascade)
"""

import logging

from flask import Blueprint, g, jsonify, request

from opsdesk.blueprints import json_body, page_args, pagination_block
from opsdesk.middleware.jwt_auth import require_admin
from opsdesk.services import request_service
from opsdesk.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

request_bp = Blueprint("request_bp", __name__, url_prefix="/api/requests")
register_error_handlers(request_bp, logger)


@request_bp.route("", methods=["POST"])
def submit_request():
    req = request_service.submit_request(json_body())
    return jsonify({
        "message": "Project request submitted successfully! We will review your request and get back to you within 24 hours.",
        "request": {
            "id": req.id,
            "client_name": req.client_name,
            "project_type": req.project_type,
            "status": req.status,
            "created_at": req.to_dict()["created_at"],
        },
    }), 201


@request_bp.route("", methods=["GET"])
@require_admin
def list_requests():
    limit, offset = page_args()
    rows, total = request_service.list_requests(
        status=request.args.get("status") or None, limit=limit, offset=offset,
    )
    return jsonify({
        "requests": [r.to_dict() for r in rows],
        "pagination": pagination_block(total, limit, offset),
    }), 200


@request_bp.route("/<int:request_id>", methods=["GET"])
@require_admin
def get_request(request_id):
    return jsonify({"request": request_service.get_request_detail(request_id)}), 200


@request_bp.route("/<int:request_id>", methods=["PUT", "PATCH"])
@require_admin
def update_request(request_id):
    req = request_service.update_request_status(request_id, json_body().get("status"), g.admin)
    return jsonify({"message": "Request status updated", "request": req.to_dict()}), 200


@request_bp.route("/<int:request_id>", methods=["DELETE"])
@require_admin
def delete_request(request_id):
    request_service.delete_request(request_id, g.admin)
    return jsonify({"message": "Request deleted"}), 200
