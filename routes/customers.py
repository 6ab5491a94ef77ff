"""Customer routes."""

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import IntegrityError

from errors import ValidationError
from extensions import db
from models import Customer, Invoice, Order
from services.audit import log_action
from services.auth import login_required, role_required
from services.tenant import stamp_tenant, tenant_get, tenant_query
from utils import safe_int

customers_bp = Blueprint("customers", __name__)

_EDITABLE_FIELDS = {
    "name": "name",
    "orgNumber": "org_number",
    "email": "email",
    "phone": "phone",
    "invoiceEmail": "invoice_email",
}


def customer_to_dict(customer: Customer) -> dict:
    return {
        "id": customer.id,
        "name": customer.name,
        "orgNumber": customer.org_number,
        "email": customer.email,
        "phone": customer.phone,
        "invoiceEmail": customer.invoice_email,
        "paymentTerms": customer.payment_terms,
        "isActive": customer.is_active,
    }


def _apply_fields(customer: Customer, data: dict) -> None:
    for key, attr in _EDITABLE_FIELDS.items():
        if key in data:
            value = data.get(key)
            setattr(customer, attr, value.strip() if isinstance(value, str) else value)
    if "paymentTerms" in data:
        raw = data.get("paymentTerms")
        terms = None if raw in (None, "") else safe_int(raw, default=-1)
        if terms is not None and terms < 0:
            raise ValidationError("Payment terms must be a non-negative number of days.")
        customer.payment_terms = terms
    if "isActive" in data:
        customer.is_active = bool(data.get("isActive"))
    if not customer.name:
        raise ValidationError("Customer name is required.")
    if not customer.email:
        raise ValidationError("Customer email is required.")
    customer.email = customer.email.lower()


def _email_taken(email: str, exclude_id=None) -> bool:
    query = tenant_query(Customer).filter(Customer.email == email)
    if exclude_id is not None:
        query = query.filter(Customer.id != exclude_id)
    return db.session.query(query.exists()).scalar()


@customers_bp.route("/api/customers", methods=["GET"])
@login_required
def list_customers():
    query = tenant_query(Customer)
    if request.args.get("all") != "1":
        query = query.filter(Customer.is_active.is_(True))
    customers = query.order_by(Customer.name).all()
    return jsonify([customer_to_dict(c) for c in customers])


@customers_bp.route("/api/customers", methods=["POST"])
@role_required("manage_catalog")
def create_customer():
    data = request.get_json(silent=True) or {}
    customer = Customer()
    _apply_fields(customer, data)
    if _email_taken(customer.email):
        raise ValidationError(f"A customer with email {customer.email} already exists.")
    stamp_tenant(customer)
    db.session.add(customer)
    db.session.flush()
    log_action("create", "customer", customer.id, customer.name)
    db.session.commit()
    return jsonify(customer_to_dict(customer)), 201


@customers_bp.route("/api/customers/<int:customer_id>", methods=["GET"])
@login_required
def get_customer(customer_id: int):
    return jsonify(customer_to_dict(tenant_get(Customer, customer_id, "Customer")))


@customers_bp.route("/api/customers/<int:customer_id>", methods=["PATCH"])
@role_required("manage_catalog")
def update_customer(customer_id: int):
    customer = tenant_get(Customer, customer_id, "Customer")
    data = request.get_json(silent=True) or {}
    try:
        with db.session.no_autoflush:
            _apply_fields(customer, data)
            if _email_taken(customer.email, exclude_id=customer.id):
                raise ValidationError(
                    f"A customer with email {customer.email} already exists."
                )
    except ValidationError:
        db.session.rollback()
        raise
    log_action("edit", "customer", customer.id, ",".join(sorted(data)))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError("Customer could not be saved.")
    return jsonify(customer_to_dict(customer))


@customers_bp.route("/api/customers/<int:customer_id>", methods=["DELETE"])
@role_required("manage_catalog")
def delete_customer(customer_id: int):
    """Deactivate a customer that has no orders or invoices yet."""
    customer = tenant_get(Customer, customer_id, "Customer")
    has_history = (
        tenant_query(Order).filter_by(customer_id=customer.id).first()
        or tenant_query(Invoice).filter_by(customer_id=customer.id).first()
    )
    if has_history:
        raise ValidationError(
            "Cannot delete a customer with existing orders or invoices. "
            "Deactivate the customer instead."
        )
    customer.is_active = False
    log_action("deactivate", "customer", customer.id, customer.name)
    db.session.commit()
    return jsonify({"deleted": False, "deactivated": True, "customer": customer_to_dict(customer)})
