"""Order routes."""

from flask import Blueprint, jsonify, request

from errors import NotFoundError, ValidationError
from models import Order
from services.auth import get_current_user, has_permission, login_required, role_required
from services.orders import (
    assign_photographer,
    create_order,
    replace_order_lines,
    update_order_status,
)
from services.pricing import parse_selections
from services.reporting import get_profit_projection
from services.tenant import tenant_get, tenant_query
from utils import parse_datetime, safe_int

orders_bp = Blueprint("orders", __name__)


def order_to_dict(order: Order, include_financials: bool = True) -> dict:
    payload = {
        "id": order.id,
        "orderNumber": order.order_number,
        "customerId": order.customer_id,
        "customerName": order.customer.name if order.customer else None,
        "photographerId": order.photographer_id,
        "propertyAddress": order.property_address,
        "propertyType": order.property_type,
        "scheduledDate": order.scheduled_date.isoformat() if order.scheduled_date else None,
        "status": order.status,
        "priority": order.priority,
        "invoiceId": order.invoice_id,
        "isEditable": order.is_editable,
        "lines": [
            {
                "productId": line.product_id,
                "name": line.product.name,
                "quantity": line.quantity,
                "unitPrice": str(line.unit_price),
                "totalPrice": str(line.total_price),
                "vatRate": str(line.vat_rate),
            }
            for line in order.lines
        ],
    }
    if include_financials:
        payload.update(
            totalAmount=str(order.total_amount),
            vatAmount=str(order.vat_amount),
            photographerFee=str(order.photographer_fee),
            companyProfit=str(order.company_profit),
        )
    else:
        payload["photographerFee"] = str(order.photographer_fee)
    return payload


def _visible_order(order_id: int) -> Order:
    """Fetch an order; photographers only see their own assignments."""
    order = tenant_get(Order, order_id, "Order")
    user = get_current_user()
    if not has_permission(user, "manage_orders") and order.photographer_id != user.id:
        raise NotFoundError(f"Order {order_id} not found.")
    return order


def _can_see_financials() -> bool:
    return has_permission(get_current_user(), "manage_orders")


@orders_bp.route("/api/orders", methods=["GET"])
@login_required
def list_orders():
    user = get_current_user()
    query = tenant_query(Order)
    if not has_permission(user, "manage_orders"):
        query = query.filter(Order.photographer_id == user.id)
    status = request.args.get("status")
    if status:
        query = query.filter(Order.status == status)
    customer_id = safe_int(request.args.get("customerId"), default=0)
    if customer_id:
        query = query.filter(Order.customer_id == customer_id)
    orders = query.order_by(Order.scheduled_date.desc(), Order.id.desc()).all()
    financials = _can_see_financials()
    return jsonify([order_to_dict(o, financials) for o in orders])


@orders_bp.route("/api/orders", methods=["POST"])
@role_required("manage_orders")
def create_order_route():
    data = request.get_json(silent=True) or {}
    scheduled = parse_datetime(data.get("scheduledDate"))
    if data.get("scheduledDate") and scheduled is None:
        raise ValidationError("Scheduled date must be ISO formatted (YYYY-MM-DDTHH:MM).")
    order = create_order(
        safe_int(data.get("customerId"), default=0),
        parse_selections(data.get("products")),
        data.get("propertyAddress", ""),
        scheduled,
        property_type=data.get("propertyType"),
        priority=data.get("priority") or "NORMAL",
        photographer_id=safe_int(data.get("photographerId"), default=0) or None,
    )
    return jsonify(order_to_dict(order)), 201


@orders_bp.route("/api/orders/<int:order_id>", methods=["GET"])
@login_required
def get_order(order_id: int):
    return jsonify(order_to_dict(_visible_order(order_id), _can_see_financials()))


@orders_bp.route("/api/orders/<int:order_id>", methods=["PATCH"])
@login_required
def update_order(order_id: int):
    """Change the status of an order.

    Photographers may move their own assignments along; everything else
    needs ``manage_orders``.
    """
    order = _visible_order(order_id)
    data = request.get_json(silent=True) or {}
    status = data.get("status")
    if not status:
        raise ValidationError("Status is required.")
    order = update_order_status(order.id, status)
    return jsonify(order_to_dict(order, _can_see_financials()))


@orders_bp.route("/api/orders/<int:order_id>/lines", methods=["PUT"])
@role_required("manage_orders")
def replace_lines(order_id: int):
    data = request.get_json(silent=True) or {}
    order = replace_order_lines(order_id, parse_selections(data.get("products")))
    return jsonify(order_to_dict(order))


@orders_bp.route("/api/orders/<int:order_id>/assign", methods=["POST"])
@role_required("manage_orders")
def assign(order_id: int):
    data = request.get_json(silent=True) or {}
    photographer_id = safe_int(data.get("photographerId"), default=0)
    if not photographer_id:
        raise ValidationError("photographerId is required.")
    return jsonify(order_to_dict(assign_photographer(order_id, photographer_id)))


@orders_bp.route("/api/orders/<int:order_id>/profit", methods=["GET"])
@role_required("view_reports")
def order_profit(order_id: int):
    order = tenant_get(Order, order_id, "Order")
    return jsonify(get_profit_projection(order).to_dict())
