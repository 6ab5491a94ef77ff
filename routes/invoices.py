"""Invoice routes."""

from flask import Blueprint, jsonify, request

from errors import ValidationError
from models import Invoice
from services.auth import role_required
from services.invoice import (
    create_order_invoice,
    create_period_invoice,
    update_invoice_status,
)
from services.tenant import tenant_get, tenant_query
from utils import parse_date, safe_int

invoices_bp = Blueprint("invoices", __name__)


def invoice_to_dict(invoice: Invoice, with_lines: bool = True) -> dict:
    payload = {
        "id": invoice.id,
        "invoiceNumber": invoice.invoice_number,
        "customerId": invoice.customer_id,
        "customerName": invoice.customer.name if invoice.customer else None,
        "status": invoice.status,
        "subtotal": str(invoice.subtotal),
        "vatAmount": str(invoice.vat_amount),
        "total": str(invoice.total),
        "dueDate": invoice.due_date.isoformat() if invoice.due_date else None,
        "periodStart": invoice.period_start.date().isoformat() if invoice.period_start else None,
        "periodEnd": invoice.period_end.date().isoformat() if invoice.period_end else None,
        "orderCount": invoice.order_count,
        "orderId": invoice.order.id if invoice.order else None,
        "orderIds": [order.id for order in invoice.orders],
        "sentAt": invoice.sent_at.isoformat() if invoice.sent_at else None,
        "paidAt": invoice.paid_at.isoformat() if invoice.paid_at else None,
    }
    if with_lines:
        payload["lines"] = [
            {
                "productId": line.product_id,
                "description": line.description,
                "quantity": line.quantity,
                "unitPrice": str(line.unit_price),
                "totalPrice": str(line.total_price),
                "vatRate": str(line.vat_rate),
            }
            for line in invoice.lines
        ]
    return payload


def _issued_on(data: dict):
    raw = data.get("issuedOn")
    issued_on = parse_date(raw)
    if raw and issued_on is None:
        raise ValidationError("issuedOn must be a date (YYYY-MM-DD).")
    return issued_on


@invoices_bp.route("/api/invoices", methods=["GET"])
@role_required("manage_invoices")
def list_invoices():
    query = tenant_query(Invoice)
    status = request.args.get("status")
    if status:
        query = query.filter(Invoice.status == status)
    customer_id = safe_int(request.args.get("customerId"), default=0)
    if customer_id:
        query = query.filter(Invoice.customer_id == customer_id)
    invoices = query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()
    return jsonify([invoice_to_dict(i, with_lines=False) for i in invoices])


@invoices_bp.route("/api/invoices", methods=["POST"])
@role_required("manage_invoices")
def create_invoice():
    data = request.get_json(silent=True) or {}
    order_id = safe_int(data.get("orderId"), default=0)
    if not order_id:
        raise ValidationError("orderId is required.")
    invoice = create_order_invoice(order_id, issued_on=_issued_on(data))
    return jsonify(invoice_to_dict(invoice)), 201


@invoices_bp.route("/api/invoices/period", methods=["POST"])
@role_required("manage_invoices")
def create_period():
    data = request.get_json(silent=True) or {}
    customer_id = safe_int(data.get("customerId"), default=0)
    if not customer_id:
        raise ValidationError("customerId is required.")
    invoice = create_period_invoice(
        customer_id,
        data.get("year"),
        data.get("month"),
        issued_on=_issued_on(data),
    )
    return jsonify(invoice_to_dict(invoice)), 201


@invoices_bp.route("/api/invoices/<int:invoice_id>", methods=["GET"])
@role_required("manage_invoices")
def get_invoice(invoice_id: int):
    return jsonify(invoice_to_dict(tenant_get(Invoice, invoice_id, "Invoice")))


@invoices_bp.route("/api/invoices/<int:invoice_id>", methods=["PATCH"])
@role_required("manage_invoices")
def update_invoice(invoice_id: int):
    data = request.get_json(silent=True) or {}
    status = data.get("status")
    if not status:
        raise ValidationError("Status is required.")
    return jsonify(invoice_to_dict(update_invoice_status(invoice_id, status)))


@invoices_bp.route("/api/invoices/<int:invoice_id>/send", methods=["POST"])
@role_required("manage_invoices")
def send_invoice(invoice_id: int):
    return jsonify(invoice_to_dict(update_invoice_status(invoice_id, "SENT")))
