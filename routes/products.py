"""Product catalog routes."""

from flask import Blueprint, jsonify, request

from extensions import db
from models import OrderLine, Product
from services.audit import log_action
from services.auth import get_current_user, has_permission, login_required, role_required
from services.pricing import validate_product_fields
from services.tenant import stamp_tenant, tenant_get, tenant_query

products_bp = Blueprint("products", __name__)


def product_to_dict(product: Product, include_costs: bool = True) -> dict:
    payload = {
        "id": product.id,
        "name": product.name,
        "description": product.description,
        "sku": product.sku,
        "priceExVat": str(product.price_ex_vat),
        "vatRate": str(product.vat_rate),
        "isActive": bool(product.is_active),
    }
    if include_costs:
        payload.update(
            pke=str(product.pke),
            pki=str(product.pki),
            photographerFee=str(product.photographer_fee),
        )
    return payload


@products_bp.route("/api/products", methods=["GET"])
@login_required
def list_products():
    query = tenant_query(Product)
    if request.args.get("all") != "1":
        query = query.filter(Product.is_active.is_(True))
    # Cost attributes are internal figures
    include_costs = has_permission(get_current_user(), "manage_catalog")
    return jsonify(
        [product_to_dict(p, include_costs) for p in query.order_by(Product.name).all()]
    )


@products_bp.route("/api/products", methods=["POST"])
@role_required("manage_catalog")
def create_product():
    fields = validate_product_fields(request.get_json(silent=True) or {})
    product = Product(**fields)
    stamp_tenant(product)
    db.session.add(product)
    db.session.flush()
    log_action("create", "product", product.id, product.name)
    db.session.commit()
    return jsonify(product_to_dict(product)), 201


@products_bp.route("/api/products/<int:product_id>", methods=["PATCH"])
@role_required("manage_catalog")
def update_product(product_id: int):
    product = tenant_get(Product, product_id, "Product")
    fields = validate_product_fields(request.get_json(silent=True) or {}, partial=True)
    for attr, value in fields.items():
        setattr(product, attr, value)
    log_action("edit", "product", product.id, ",".join(sorted(fields)))
    db.session.commit()
    return jsonify(product_to_dict(product))


@products_bp.route("/api/products/<int:product_id>", methods=["DELETE"])
@role_required("manage_catalog")
def delete_product(product_id: int):
    """Delete a product, or deactivate it when order lines still reference it."""
    product = tenant_get(Product, product_id, "Product")
    in_use = tenant_query(OrderLine).filter_by(product_id=product.id).first()
    if in_use:
        product.is_active = False
        log_action("deactivate", "product", product.id, "referenced by orders")
        db.session.commit()
        return jsonify({"deleted": False, "deactivated": True, "product": product_to_dict(product)})
    name = product.name
    log_action("delete", "product", product.id, f"deleted: {name}")
    db.session.delete(product)
    db.session.commit()
    return jsonify({"deleted": True, "deactivated": False})
