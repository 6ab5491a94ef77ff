"""Photographer and editor (staff) routes."""

from flask import Blueprint, jsonify, request
from sqlalchemy import func

from errors import ValidationError
from extensions import db
from models import Order, User
from services.audit import log_action
from services.auth import create_user, role_required
from services.tenant import get_current_tenant, tenant_query

photographers_bp = Blueprint("photographers", __name__)

STAFF_ROLES = ("photographer", "editor")


def photographer_to_dict(user: User, total_orders: int = 0, completed_orders: int = 0) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
        "role": user.role,
        "isActive": user.is_active,
        "totalOrders": total_orders,
        "completedOrders": completed_orders,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


def _order_counts(status=None) -> dict[int, int]:
    query = tenant_query(Order).with_entities(Order.photographer_id, func.count(Order.id))
    if status:
        query = query.filter(Order.status == status)
    rows = query.filter(Order.photographer_id.isnot(None)).group_by(Order.photographer_id)
    return dict(rows.all())


@photographers_bp.route("/api/photographers", methods=["GET"])
@role_required("manage_orders")
def list_photographers():
    users = (
        tenant_query(User)
        .filter(User.role.in_(STAFF_ROLES))
        .order_by(User.created_at.desc(), User.id.desc())
        .all()
    )
    totals = _order_counts()
    completed = _order_counts("COMPLETED")
    return jsonify([
        photographer_to_dict(u, totals.get(u.id, 0), completed.get(u.id, 0))
        for u in users
    ])


@photographers_bp.route("/api/photographers", methods=["POST"])
@role_required("manage_users")
def create_photographer():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Name is required.")
    role = data.get("role") or "photographer"
    if role not in STAFF_ROLES:
        raise ValidationError(f"Role must be one of: {', '.join(STAFF_ROLES)}.")
    user = create_user(
        get_current_tenant(),
        data.get("email", ""),
        name,
        data.get("password", ""),
        role=role,
        phone=data.get("phone") or None,
    )
    db.session.flush()
    log_action("create", "user", user.id, f"{role} {user.email}")
    db.session.commit()
    return jsonify(photographer_to_dict(user)), 201
