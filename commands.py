"""Flask CLI commands (``flask create-company``, ``flask bill-period`` ...)."""

from __future__ import annotations

import datetime
import logging

import click
from flask import current_app
from flask.cli import with_appcontext

from errors import AppError
from extensions import db
from models import Company, Customer
from services.auth import create_user
from services.invoice import create_period_invoice, eligible_period_orders, mark_overdue_invoices
from services.tenant import activate_tenant, tenant_query

logger = logging.getLogger(__name__)


def _activate_company(subdomain: str) -> Company:
    company = Company.query.filter_by(subdomain=subdomain).first()
    if company is None:
        raise click.ClickException(f"No company with subdomain '{subdomain}'.")
    activate_tenant(company)
    return company


def _previous_month() -> tuple[int, int]:
    first = datetime.date.today().replace(day=1)
    last_month = first - datetime.timedelta(days=1)
    return last_month.year, last_month.month


@click.command("create-company")
@with_appcontext
@click.argument("name")
@click.argument("subdomain")
@click.option("--admin-email", required=True, help="Email of the first admin user")
@click.option("--admin-password", required=True, help="Password of the first admin user")
@click.option("--admin-name", default="Administrator", show_default=True)
def create_company_command(name, subdomain, admin_email, admin_password, admin_name):
    """Create a company with its first admin user."""
    subdomain = subdomain.strip().lower()
    if Company.query.filter_by(subdomain=subdomain).first():
        raise click.ClickException(f"Subdomain '{subdomain}' is already taken.")
    company = Company(name=name.strip(), subdomain=subdomain)
    db.session.add(company)
    db.session.flush()
    try:
        create_user(company, admin_email, admin_name, admin_password, role="admin")
    except AppError as exc:
        db.session.rollback()
        raise click.ClickException(exc.message)
    db.session.commit()
    logger.info("Created company %s (%s)", company.id, subdomain)
    click.echo(f"Created company {company.name} ({subdomain}) with admin {admin_email}")


@click.command("bill-period")
@with_appcontext
@click.option("--company", "subdomain", required=True, help="Company subdomain")
@click.option("--year", type=int, help="Defaults to the previous month's year")
@click.option("--month", type=click.IntRange(1, 12), help="Defaults to the previous month")
def bill_period_command(subdomain, year, month):
    """Create period invoices for every customer with billable orders."""
    _activate_company(subdomain)
    if year is None or month is None:
        default_year, default_month = _previous_month()
        year = year or default_year
        month = month or default_month

    created = 0
    for customer in tenant_query(Customer).order_by(Customer.name).all():
        if not eligible_period_orders(customer.id, year, month):
            continue
        try:
            invoice = create_period_invoice(customer.id, year, month)
        except AppError as exc:
            click.echo(f"Skipped {customer.name}: {exc.message}", err=True)
            continue
        created += 1
        click.echo(
            f"{invoice.invoice_number}  {customer.name}  "
            f"{invoice.order_count} orders  {invoice.total} "
            f"{current_app.config['APP_CONFIG'].currency}"
        )
    click.echo(f"Created {created} invoices for {year}-{month:02d}")


@click.command("mark-overdue")
@with_appcontext
@click.option("--company", "subdomain", required=True, help="Company subdomain")
def mark_overdue_command(subdomain):
    """Flag sent invoices past their due date as overdue."""
    _activate_company(subdomain)
    count = mark_overdue_invoices()
    click.echo(f"Marked {count} invoices overdue")


def register_commands(app):
    """Attach the CLI commands to *app*."""
    for command in (create_company_command, bill_period_command, mark_overdue_command):
        app.cli.add_command(command)
