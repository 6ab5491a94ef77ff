"""Order and invoice notification emails.

Best effort: a failed email is logged and swallowed so it never undoes or
blocks the write that triggered it.
"""

from __future__ import annotations

import logging

from flask import current_app

from mailer import MailerError, send_email

logger = logging.getLogger(__name__)


def _deliver(subject: str, recipient: str, body: str, **headers) -> bool:
    config = current_app.config["EMAIL_CONFIG"]
    if not config.enabled:
        logger.debug("Email disabled, skipping '%s' to %s", subject, recipient)
        return False
    try:
        return send_email(config, subject, recipient, body, **headers)
    except MailerError as exc:
        logger.warning("Could not send '%s' to %s: %s", subject, recipient, exc)
        return False


def notify_order_confirmed(order) -> bool:
    customer = order.customer
    when = order.scheduled_date.strftime("%d.%m.%Y %H:%M")
    body = (
        f"Hello {customer.name},\n\n"
        f"We have registered order #{order.order_number} for "
        f"{order.property_address}, scheduled {when}.\n"
    )
    if order.photographer:
        body += f"Photographer: {order.photographer.name}\n"
    return _deliver(
        f"Order confirmation #{order.order_number}",
        customer.email,
        body,
        reply_to=order.created_by.email if order.created_by else None,
    )


def notify_photographer_assigned(order) -> bool:
    photographer = order.photographer
    if photographer is None:
        return False
    when = order.scheduled_date.strftime("%d.%m.%Y %H:%M")
    body = (
        f"Hello {photographer.name},\n\n"
        f"You have been assigned order #{order.order_number}.\n"
        f"Address: {order.property_address}\n"
        f"Scheduled: {when}\n"
        f"Customer: {order.customer.name}"
    )
    if order.customer.phone:
        body += f" ({order.customer.phone})"
    return _deliver(
        f"New assignment #{order.order_number}", photographer.email, body + "\n"
    )


def notify_invoice_sent(invoice) -> bool:
    """Mail the invoice summary to the customer's invoice address."""
    customer = invoice.customer
    recipient = customer.invoice_email or customer.email
    if invoice.is_period_invoice:
        about = f"period {invoice.period_start:%Y-%m} ({invoice.order_count} orders)"
    else:
        order = invoice.order
        about = order.property_address if order else "your order"
    currency = current_app.config["APP_CONFIG"].currency
    body = (
        f"Hello {customer.name},\n\n"
        f"Invoice #{invoice.invoice_number} for {about}.\n"
        f"Amount due: {invoice.total} {currency}\n"
        f"Due date: {invoice.due_date:%d.%m.%Y}\n"
    )
    return _deliver(
        f"Invoice #{invoice.invoice_number} - {about}",
        recipient,
        body,
        cc=customer.email,
    )
