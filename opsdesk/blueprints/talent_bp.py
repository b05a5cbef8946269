"""
Talent Blueprint — careers applications.

Public:
  POST  /api/talent/apply
  POST  /api/talent/applications/<id>/assessment/submit   (email must match)

Admin:
  GET   /api/talent/applications        (?status=&role=&experience_level=)
  GET   /api/talent/applications/<id>
  PATCH /api/talent/applications/<id>/status
  POST  /api/talent/applications/<id>/assessment
  POST  /api/talent/applications/<id>/interview
"""

import logging

from flask import Blueprint, g, jsonify, request

from opsdesk.blueprints import json_body, page_args, pagination_block
from opsdesk.middleware.jwt_auth import require_admin
from opsdesk.services import talent_service
from opsdesk.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

talent_bp = Blueprint("talent_bp", __name__, url_prefix="/api/talent")
register_error_handlers(talent_bp, logger)


@talent_bp.route("/apply", methods=["POST"])
def apply():
    application = talent_service.apply(json_body())
    return jsonify({
        "message": "Application submitted successfully",
        "application": {
            "id": application.id,
            "full_name": application.full_name,
            "role": application.role,
            "status": application.status,
            "needs_assessment": application.needs_assessment,
        },
    }), 201


@talent_bp.route("/applications/<int:application_id>/assessment/submit", methods=["POST"])
def submit_assessment(application_id):
    assessment = talent_service.submit_assessment(application_id, json_body())
    return jsonify({
        "message": "Assessment submitted",
        "assessment": {
            "id": assessment.id,
            "task_title": assessment.task_title,
            "submitted_at": assessment.to_dict()["submitted_at"],
        },
    }), 200


@talent_bp.route("/applications", methods=["GET"])
@require_admin
def list_applications():
    limit, offset = page_args()
    rows, total = talent_service.list_applications(request.args.to_dict(), limit=limit, offset=offset)
    return jsonify({
        "applications": [a.to_dict() for a in rows],
        "pagination": pagination_block(total, limit, offset),
    }), 200


@talent_bp.route("/applications/<int:application_id>", methods=["GET"])
@require_admin
def get_application(application_id):
    return jsonify({"application": talent_service.get_application_detail(application_id)}), 200


@talent_bp.route("/applications/<int:application_id>/status", methods=["PATCH"])
@require_admin
def update_status(application_id):
    application = talent_service.update_status(application_id, json_body(), g.admin)
    return jsonify({"message": "Application status updated", "application": application.to_dict()}), 200


@talent_bp.route("/applications/<int:application_id>/assessment", methods=["POST"])
@require_admin
def assign_assessment(application_id):
    assessment = talent_service.assign_assessment(application_id, json_body(), g.admin)
    return jsonify({"message": "Assessment assigned", "assessment": assessment.to_dict()}), 201


@talent_bp.route("/applications/<int:application_id>/interview", methods=["POST"])
@require_admin
def schedule_interview(application_id):
    interview = talent_service.schedule_interview(application_id, json_body(), g.admin)
    return jsonify({"message": "Interview scheduled", "interview": interview.to_dict()}), 201
