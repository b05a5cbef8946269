"""
Auth Blueprint — admin accounts and JWT sessions.

Endpoints:
  POST /api/auth/login           — Email + password → access token
  POST /api/auth/register        — First admin (bootstrap) or admin-created account
  POST /api/auth/verify          — Check a token, return its user
  GET  /api/auth/me              — Current admin profile
  POST /api/auth/request-reset   — Email a one-time reset link
  POST /api/auth/reset-password  — Set a new password from a reset token
"""

import logging

from flask import Blueprint, g, jsonify

from opsdesk.blueprints import json_body
from opsdesk.core.exceptions import AuthError
from opsdesk.middleware.jwt_auth import current_admin_or_none, require_admin
from opsdesk.services import auth_service
from opsdesk.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/auth")
register_error_handlers(auth_bp, logger)


@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Body: { "email": "...", "password": "..." }
    """
    data = json_body()
    email = data.get("email") or ""
    password = data.get("password") or ""
    if not email or not password:
        return api_error(E.VALIDATION_REQUIRED, "Email and password are required")

    result = auth_service.authenticate(email, password)
    return jsonify({"message": "Login successful", **result}), 200


@auth_bp.route("/register", methods=["POST"])
def register():
    """Open only while no admin exists; afterwards an admin token is required."""
    acting = current_admin_or_none()
    admin = auth_service.register_admin(json_body(), acting_admin=acting)
    return jsonify({"message": "Admin account created", "user": admin.to_dict()}), 201


@auth_bp.route("/verify", methods=["POST"])
def verify():
    token = json_body().get("token")
    if not token:
        return api_error(E.VALIDATION_REQUIRED, "Token is required", details={"token": "token is required"})
    try:
        admin = auth_service.load_admin(token)
    except AuthError as exc:
        return jsonify({"valid": False, "error": str(exc), "code": exc.code}), 401
    return jsonify({"valid": True, "user": {"id": admin.id, "email": admin.email}}), 200


@auth_bp.route("/me", methods=["GET"])
@require_admin
def me():
    return jsonify({"user": g.admin.to_dict()}), 200


@auth_bp.route("/request-reset", methods=["POST"])
def request_reset():
    message = auth_service.request_password_reset(json_body().get("email") or "")
    return jsonify({"message": message}), 200


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    data = json_body()
    token = data.get("token")
    new_password = data.get("new_password") or data.get("newPassword")
    if not token or not new_password:
        return api_error(
            E.VALIDATION_REQUIRED,
            "Token and new password are required",
            details={k: f"{k} is required" for k, v in (("token", token), ("new_password", new_password)) if not v},
        )
    auth_service.reset_password(token, new_password)
    return jsonify({"message": "Password has been reset. You can now log in."}), 200
