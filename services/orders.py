"""Order business logic: creation, line replacement and status changes.

Every write here follows the same shape: validate (raising before any
mutation), mutate, ``log_action``, one ``commit``.  A storage error between
the first mutation and the commit rolls the whole session back.
"""

from __future__ import annotations

import datetime
import logging
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from errors import ValidationError
from extensions import db
from models import (
    ORDER_PRIORITIES,
    ORDER_STATUSES,
    Customer,
    Order,
    OrderLine,
    Product,
    User,
)
from services.audit import log_action
from services.auth import get_current_user
from services.notifications import notify_order_confirmed, notify_photographer_assigned
from services.numbering import next_order_number
from services.pricing import LineSelection, OrderTotals, compute_order_totals
from services.tenant import require_tenant, stamp_tenant, tenant_get, tenant_query

logger = logging.getLogger(__name__)


def _vat_settings() -> dict:
    cfg = current_app.config["APP_CONFIG"]
    return {"vat_mode": cfg.vat_mode, "flat_vat_rate": cfg.default_vat_rate}


def price_selections(selections: Iterable[LineSelection]) -> OrderTotals:
    """Load the referenced active products and run the aggregator."""
    selections = list(selections)
    ids = [s.product_id for s in selections]
    products = (
        tenant_query(Product)
        .filter(Product.id.in_(ids), Product.is_active.is_(True))
        .all()
        if ids
        else []
    )
    return compute_order_totals(selections, products, **_vat_settings())


def _apply_totals(order: Order, totals: OrderTotals) -> None:
    """Attach fresh lines and write the snapshot fields onto *order*."""
    for priced in totals.lines:
        line = OrderLine(
            product_id=priced.product_id,
            quantity=priced.quantity,
            unit_price=priced.unit_price,
            total_price=priced.total_price,
            vat_rate=priced.vat_rate,
        )
        stamp_tenant(line)
        order.lines.append(line)
    order.total_amount = totals.subtotal
    order.vat_amount = totals.vat_amount
    order.photographer_fee = totals.photographer_fee
    order.company_profit = totals.company_profit


def _commit(what: str) -> None:
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Rolled back %s", what)
        raise


def create_order(
    customer_id: int,
    selections: Iterable[LineSelection],
    property_address: str,
    scheduled_date: Optional[datetime.datetime],
    *,
    property_type: Optional[str] = None,
    priority: str = "NORMAL",
    photographer_id: Optional[int] = None,
) -> Order:
    """Create an order with its lines and financial snapshot in one commit."""
    customer = tenant_get(Customer, customer_id, "Customer")
    if customer.is_active is False:
        raise ValidationError(f"Customer {customer.name} is deactivated.")
    if not (property_address or "").strip():
        raise ValidationError("Property address is required.")
    if scheduled_date is None:
        raise ValidationError("Scheduled date is required.")
    if priority not in ORDER_PRIORITIES:
        raise ValidationError(f"Unknown priority '{priority}'.")
    photographer = _get_photographer(photographer_id) if photographer_id else None
    totals = price_selections(selections)

    user = get_current_user()
    try:
        order = Order(
            customer_id=customer.id,
            property_address=property_address.strip(),
            property_type=property_type,
            scheduled_date=scheduled_date,
            priority=priority,
            status="ASSIGNED" if photographer else "PENDING",
            photographer_id=photographer.id if photographer else None,
            created_by_id=user.id if user else None,
            order_number=next_order_number(),
        )
        stamp_tenant(order)
        _apply_totals(order, totals)
        db.session.add(order)
        db.session.flush()
        log_action(
            "create", "order", order.id,
            f"customer={customer.id} total={totals.subtotal}",
        )
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Rolled back order creation for customer %s", customer_id)
        raise
    _commit(f"order creation for customer {customer_id}")

    notify_order_confirmed(order)
    if photographer:
        notify_photographer_assigned(order)
    return order


def replace_order_lines(order_id: int, selections: Iterable[LineSelection]) -> Order:
    """Replace an order's lines and rewrite its snapshot atomically."""
    order = tenant_get(Order, order_id, "Order")
    if order.is_invoiced:
        raise ValidationError(
            f"Order {order.order_number} is already invoiced and cannot be edited.",
            details={"status": order.status, "invoiceId": order.invoice_id},
        )
    if not order.is_editable:
        raise ValidationError(
            f"Order {order.order_number} cannot be edited in status {order.status}.",
            details={"status": order.status},
        )
    totals = price_selections(selections)

    try:
        order.lines.clear()
        # Deletes must hit the table before the re-inserted (order, product) pairs.
        db.session.flush()
        _apply_totals(order, totals)
        log_action(
            "update_lines", "order", order.id,
            f"lines={len(totals.lines)} total={totals.subtotal}",
        )
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Rolled back line replacement for order %s", order_id)
        raise
    _commit(f"line replacement for order {order_id}")
    return order


def update_order_status(order_id: int, status: str) -> Order:
    order = tenant_get(Order, order_id, "Order")
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Unknown order status '{status}'.")
    if order.is_invoiced:
        raise ValidationError(
            f"Order {order.order_number} is invoiced and can no longer change status."
        )
    if order.status == status:
        return order
    old = order.status
    order.status = status
    log_action("status", "order", order.id, f"{old}->{status}")
    _commit(f"status change for order {order_id}")
    return order


def _get_photographer(user_id: int) -> User:
    tid = require_tenant()
    user = db.session.get(User, user_id)
    if (
        user is None
        or user.company_id != tid
        or user.role != "photographer"
        or not user.is_active
    ):
        raise ValidationError(f"User {user_id} is not an active photographer.")
    return user


def assign_photographer(order_id: int, photographer_id: int) -> Order:
    """Assign a photographer; a pending order moves to ASSIGNED."""
    order = tenant_get(Order, order_id, "Order")
    if order.status in ("COMPLETED", "CANCELLED") or order.is_invoiced:
        raise ValidationError(
            f"Cannot assign a photographer to order {order.order_number} "
            f"in status {order.status}."
        )
    photographer = _get_photographer(photographer_id)
    order.photographer_id = photographer.id
    if order.status == "PENDING":
        order.status = "ASSIGNED"
    log_action("assign", "order", order.id, f"photographer={photographer.id}")
    _commit(f"photographer assignment for order {order_id}")
    notify_photographer_assigned(order)
    return order
