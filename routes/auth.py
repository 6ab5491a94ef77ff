"""Authentication routes."""

from flask import Blueprint, jsonify, request, session
from flask_wtf.csrf import generate_csrf

from extensions import csrf, limiter
from services.auth import authenticate, get_current_user, login_required, user_permissions

auth_bp = Blueprint("auth", __name__)


def _session_payload(user) -> dict:
    company = user.company
    return {
        "user": {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "role": user.role,
            "permissions": sorted(user_permissions(user)),
        },
        "company": {
            "id": company.id,
            "name": company.name,
            "subdomain": company.subdomain,
        },
        # Sent back as the X-CSRFToken header on writes
        "csrfToken": generate_csrf(),
    }


@auth_bp.route("/api/auth/login", methods=["POST"])
@csrf.exempt
@limiter.limit("10 per minute", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    user = authenticate(data.get("email", ""), data.get("password", ""))
    return jsonify(_session_payload(user))


@auth_bp.route("/api/auth/logout", methods=["POST"])
def logout():
    session.clear()
    return jsonify({"ok": True})


@auth_bp.route("/api/auth/session")
@login_required
def current_session():
    return jsonify(_session_payload(get_current_user()))
