"""Invoice business logic.

Two ways to bill orders:

* ``create_order_invoice``: one invoice for one order, totals copied from
  the order's snapshot.
* ``create_period_invoice``: one invoice consolidating every eligible,
  uninvoiced order of a customer in a calendar month.

Both build their lines with ``build_invoice_lines`` and link orders with
``_link_orders``; only the description policy differs.  An order is linked to
at most one invoice: ``Order.invoice_id`` is a single column and linking is a
guarded ``UPDATE ... WHERE invoice_id IS NULL`` inside the invoice's own
transaction.
"""

from __future__ import annotations

import datetime
import logging
from decimal import Decimal
from typing import Callable, Iterable, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from errors import ValidationError
from extensions import db
from models import (
    INVOICE_STATUSES,
    INVOICE_TRANSITIONS,
    INVOICEABLE_ORDER_STATUSES,
    Customer,
    Invoice,
    InvoiceLine,
    Order,
    OrderLine,
)
from services.audit import log_action
from services.notifications import notify_invoice_sent
from services.numbering import generate_invoice_number
from services.tenant import require_tenant, stamp_tenant, tenant_get, tenant_query
from utils import money, month_bounds, safe_int, utc_now

logger = logging.getLogger(__name__)

DescriptionPolicy = Callable[[Order, OrderLine], str]


class OrdersAlreadyLinked(Exception):
    """Another transaction linked one of the selected orders first."""


# ---------------------------------------------------------------------------
# Line building
# ---------------------------------------------------------------------------

def describe_product(order: Order, line: OrderLine) -> str:
    return line.product.name


def describe_product_at_address(order: Order, line: OrderLine) -> str:
    return f"{line.product.name} - {order.property_address}"


def build_invoice_lines(
    orders: Iterable[Order], describe: DescriptionPolicy
) -> list[InvoiceLine]:
    """Build invoice lines, one per product across *orders*.

    The first occurrence of a product fixes description, unit price and VAT
    rate; later occurrences only add quantity and total price.
    """
    merged: dict[int, InvoiceLine] = {}
    for order in orders:
        for line in order.lines:
            existing = merged.get(line.product_id)
            if existing is not None:
                existing.quantity += line.quantity
                existing.total_price = money(existing.total_price) + money(line.total_price)
                continue
            merged[line.product_id] = InvoiceLine(
                product_id=line.product_id,
                description=describe(order, line),
                quantity=line.quantity,
                unit_price=money(line.unit_price),
                total_price=money(line.total_price),
                vat_rate=line.vat_rate,
            )
    return list(merged.values())


def due_date_for(customer: Customer, issued_on: datetime.date) -> datetime.date:
    terms = customer.payment_terms
    if terms is None:
        terms = current_app.config["APP_CONFIG"].default_payment_terms
    return issued_on + datetime.timedelta(days=terms)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def _link_orders(invoice: Invoice, orders: list[Order]) -> None:
    order_ids = [order.id for order in orders]
    linked = (
        Order.query.filter(
            Order.company_id == require_tenant(),
            Order.id.in_(order_ids),
            Order.invoice_id.is_(None),
        )
        .update({Order.invoice_id: invoice.id}, synchronize_session="fetch")
    )
    if linked != len(order_ids):
        raise OrdersAlreadyLinked(
            f"linked {linked} of {len(order_ids)} orders to invoice {invoice.id}"
        )


def _persist_invoice(
    invoice: Invoice, lines: list[InvoiceLine], orders: list[Order], details: str
) -> Invoice:
    """Insert *invoice* with *lines* and link *orders*, all in one commit."""
    try:
        invoice.invoice_number = generate_invoice_number()
        stamp_tenant(invoice)
        for line in lines:
            stamp_tenant(line)
            invoice.lines.append(line)
        db.session.add(invoice)
        db.session.flush()
        _link_orders(invoice, orders)
        log_action("create", "invoice", invoice.id, details)
        db.session.commit()
    except OrdersAlreadyLinked as exc:
        db.session.rollback()
        logger.warning("Invoice creation aborted: %s", exc)
        raise ValidationError(
            "One or more of the orders were invoiced in the meantime. Try again."
        )
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Rolled back invoice creation (%s)", details)
        raise
    logger.info(
        "Created invoice %s (%s lines, total %s)",
        invoice.invoice_number, len(lines), invoice.total,
    )
    return invoice


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------

def create_order_invoice(
    order_id: int, issued_on: Optional[datetime.date] = None
) -> Invoice:
    """Create an invoice for a single order from its stored snapshot."""
    order = tenant_get(Order, order_id, "Order")
    if order.invoice_id is not None:
        raise ValidationError(
            f"Invoice already exists for order {order.order_number}.",
            details={"invoiceId": order.invoice_id},
        )
    if not order.lines:
        raise ValidationError("Cannot invoice an order with no products.")

    issued_on = issued_on or datetime.date.today()
    subtotal = money(order.total_amount)
    vat_amount = money(order.vat_amount)
    invoice = Invoice(
        customer_id=order.customer_id,
        status="DRAFT",
        subtotal=subtotal,
        vat_amount=vat_amount,
        total=subtotal + vat_amount,
        due_date=due_date_for(order.customer, issued_on),
    )
    lines = build_invoice_lines([order], describe_product)
    return _persist_invoice(invoice, lines, [order], f"order={order.id}")


def eligible_period_orders(customer_id: int, year: int, month: int) -> list[Order]:
    """Uninvoiced, finished orders of *customer_id* scheduled in the month."""
    period_start, period_end = month_bounds(year, month)
    return (
        tenant_query(Order)
        .filter(
            Order.customer_id == customer_id,
            Order.scheduled_date >= period_start,
            Order.scheduled_date <= period_end,
            Order.status.in_(sorted(INVOICEABLE_ORDER_STATUSES)),
            Order.invoice_id.is_(None),
        )
        .order_by(Order.scheduled_date, Order.id)
        .all()
    )


def create_period_invoice(
    customer_id: int,
    year: int,
    month: int,
    issued_on: Optional[datetime.date] = None,
) -> Invoice:
    """Consolidate a customer's eligible orders in one month into one invoice."""
    year = safe_int(year)
    month = safe_int(month)
    if year < 1 or not 1 <= month <= 12:
        raise ValidationError("A valid year and a month between 1 and 12 are required.")
    customer = tenant_get(Customer, customer_id, "Customer")

    orders = eligible_period_orders(customer.id, year, month)
    if not orders:
        raise ValidationError(
            f"Nothing to invoice for {customer.name} in {year}-{month:02d}."
        )

    subtotal = Decimal("0.00")
    vat_amount = Decimal("0.00")
    for order in orders:
        subtotal += money(order.total_amount)
        vat_amount += money(order.vat_amount)

    period_start, period_end = month_bounds(year, month)
    issued_on = issued_on or datetime.date.today()
    invoice = Invoice(
        customer_id=customer.id,
        status="DRAFT",
        subtotal=subtotal,
        vat_amount=vat_amount,
        total=subtotal + vat_amount,
        due_date=due_date_for(customer, issued_on),
        period_start=period_start,
        period_end=period_end,
        order_count=len(orders),
    )
    lines = build_invoice_lines(orders, describe_product_at_address)
    return _persist_invoice(
        invoice, lines, orders,
        f"customer={customer.id} period={year}-{month:02d} orders={len(orders)}",
    )


def update_invoice_status(
    invoice_id: int, status: str, now: Optional[datetime.datetime] = None
) -> Invoice:
    """Move an invoice along DRAFT→SENT→PAID (or OVERDUE/CANCELLED).

    Cancelling does not release the linked orders.  Sending a draft mails
    the customer (best effort).
    """
    invoice = tenant_get(Invoice, invoice_id, "Invoice")
    if status not in INVOICE_STATUSES:
        raise ValidationError(f"Unknown invoice status '{status}'.")
    if status not in INVOICE_TRANSITIONS.get(invoice.status, set()):
        raise ValidationError(
            f"Invoice {invoice.invoice_number} cannot go from {invoice.status} to {status}."
        )
    now = now or utc_now()
    old = invoice.status
    invoice.status = status
    if status == "SENT":
        invoice.sent_at = now
    elif status == "PAID":
        invoice.paid_at = now
    log_action("status", "invoice", invoice.id, f"{old}->{status}")
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Rolled back status change for invoice %s", invoice_id)
        raise
    if old == "DRAFT" and status == "SENT":
        notify_invoice_sent(invoice)
    return invoice


def mark_overdue_invoices(today: Optional[datetime.date] = None) -> int:
    """Flag sent invoices past their due date as OVERDUE.  Returns the count."""
    today = today or datetime.date.today()
    overdue = (
        tenant_query(Invoice)
        .filter(Invoice.status == "SENT", Invoice.due_date < today)
        .all()
    )
    for invoice in overdue:
        invoice.status = "OVERDUE"
        log_action("status", "invoice", invoice.id, "SENT->OVERDUE")
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Rolled back overdue sweep")
        raise
    if overdue:
        logger.info("Marked %s invoices overdue", len(overdue))
    return len(overdue)
