"""Tests for pricing, order snapshots, invoicing, reporting and numbering."""

import datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import SQLAlchemyError

from conftest import at, make_product, set_order_status
from errors import NotFoundError, PermissionDeniedError, ValidationError
from extensions import db
from models import AuditLog, Company, Customer, Invoice, NumberingConfig, Order, User
from services import invoice as invoice_service
from services.invoice import (
    build_invoice_lines,
    create_order_invoice,
    create_period_invoice,
    describe_product,
    mark_overdue_invoices,
    update_invoice_status,
)
from services.numbering import generate_invoice_number, next_order_number, render_pattern
from services.orders import (
    assign_photographer,
    create_order,
    replace_order_lines,
    update_order_status,
)
from services.pricing import (
    LineSelection,
    compute_order_totals,
    margin_percent,
    parse_selections,
    validate_product_fields,
)
from services.reporting import (
    chart_buckets,
    get_profit_projection,
    photographer_income,
    summarize_orders,
)
from services.tenant import TenantSecurityError, activate_tenant, tenant_get


def _product(pid, price, vat="25", pke="0", pki="0", fee="0", active=True, name=None):
    return SimpleNamespace(
        id=pid,
        name=name or f"Product {pid}",
        price_ex_vat=Decimal(price),
        vat_rate=Decimal(vat),
        pke=Decimal(pke),
        pki=Decimal(pki),
        photographer_fee=Decimal(fee),
        is_active=active,
    )


def _order(customer, products, when=None, address="Storgata 1, Oslo", **kwargs):
    selections = [LineSelection(products[key].id, qty) for key, qty in kwargs.pop("lines")]
    return create_order(
        customer.id, selections, address, when or at(2025, 1, 5), **kwargs
    )


# ---------------------------------------------------------------------------
# Order line aggregator
# ---------------------------------------------------------------------------


class TestComputeOrderTotals:
    def test_subtotal_is_exact_across_many_lines(self):
        catalog = [_product(i, "19.99") for i in range(1, 51)]
        selections = [LineSelection(i, 3) for i in range(1, 51)]
        totals = compute_order_totals(selections, catalog)
        assert totals.subtotal == Decimal("2998.50")
        assert totals.subtotal == sum(line.total_price for line in totals.lines)

    def test_standard_photo_example(self):
        catalog = [_product(1, "3500", pke="500", pki="200", fee="1200")]
        totals = compute_order_totals([LineSelection(1, 1)], catalog)
        assert totals.subtotal == Decimal("3500.00")
        assert totals.vat_amount == Decimal("875.00")
        assert totals.photographer_fee == Decimal("1200.00")
        assert totals.external_cost == Decimal("500.00")
        assert totals.internal_cost == Decimal("200.00")
        assert totals.company_profit == Decimal("1600.00")
        assert totals.profit_margin_percent == Decimal("45.71")
        assert totals.total_inc_vat == Decimal("4375.00")

    def test_quantities_multiply_costs(self):
        catalog = [_product(1, "1000", pke="100", pki="50", fee="300")]
        totals = compute_order_totals([LineSelection(1, 3)], catalog)
        assert totals.subtotal == Decimal("3000.00")
        assert totals.photographer_fee == Decimal("900.00")
        assert totals.company_profit == Decimal("1650.00")

    def test_empty_selection_rejected(self):
        with pytest.raises(ValidationError, match="No products selected"):
            compute_order_totals([], [_product(1, "100")])

    def test_missing_product_is_identified(self):
        with pytest.raises(ValidationError) as excinfo:
            compute_order_totals([LineSelection(7, 1)], [_product(1, "100")])
        assert excinfo.value.details == {"productId": 7}
        assert "7" in excinfo.value.message

    def test_inactive_product_rejected(self):
        catalog = [_product(1, "100", active=False)]
        with pytest.raises(ValidationError):
            compute_order_totals([LineSelection(1, 1)], catalog)

    def test_per_line_vat_uses_each_product_rate(self):
        catalog = [_product(1, "3500", vat="25"), _product(2, "900", vat="0")]
        selections = [LineSelection(1, 1), LineSelection(2, 1)]
        per_line = compute_order_totals(selections, catalog)
        flat = compute_order_totals(
            selections, catalog, vat_mode="flat", flat_vat_rate=Decimal("25")
        )
        assert per_line.vat_amount == Decimal("875.00")
        assert flat.vat_amount == Decimal("1100.00")

    def test_modes_agree_when_all_rates_equal_flat_rate(self):
        catalog = [_product(1, "100"), _product(2, "12.40")]
        selections = [LineSelection(1, 3), LineSelection(2, 5)]
        per_line = compute_order_totals(selections, catalog)
        flat = compute_order_totals(selections, catalog, vat_mode="flat")
        assert per_line.vat_amount == flat.vat_amount


class TestMargin:
    def test_zero_revenue_gives_zero_margin(self):
        assert margin_percent(Decimal("0"), Decimal("0")) == Decimal("0.00")
        assert margin_percent(Decimal("-150"), Decimal("0")) == Decimal("0.00")
        assert margin_percent(None, None) == Decimal("0.00")

    def test_zero_priced_order_has_zero_margin(self):
        totals = compute_order_totals([LineSelection(1, 2)], [_product(1, "0")])
        assert totals.subtotal == Decimal("0.00")
        assert totals.profit_margin_percent == Decimal("0.00")

    def test_negative_margin(self):
        assert margin_percent(Decimal("-50"), Decimal("200")) == Decimal("-25.00")


class TestParsing:
    def test_duplicate_products_are_merged(self):
        selections = parse_selections(
            [{"productId": 1, "quantity": 2}, {"productId": 2}, {"productId": 1, "quantity": 3}]
        )
        assert selections == [LineSelection(1, 5), LineSelection(2, 1)]

    @pytest.mark.parametrize("raw", [None, [], "1,2", [{"quantity": 1}], [{"productId": 1, "quantity": 0}]])
    def test_invalid_selections(self, raw):
        with pytest.raises(ValidationError):
            parse_selections(raw)

    def test_product_fields_validation(self):
        fields = validate_product_fields(
            {"name": " Video ", "priceExVat": "4990", "vatRate": 25, "photographerFee": "1500"}
        )
        assert fields["name"] == "Video"
        assert fields["price_ex_vat"] == Decimal("4990.00")
        assert fields["pke"] == Decimal("0.00")
        with pytest.raises(ValidationError):
            validate_product_fields({"name": "Video", "priceExVat": "0"})
        with pytest.raises(ValidationError):
            validate_product_fields({"vatRate": "120"}, partial=True)
        assert validate_product_fields({"sku": "V-1"}, partial=True) == {"sku": "V-1"}

    @pytest.mark.parametrize(
        "data",
        [
            {"name": "X", "priceExVat": "NaN"},
            {"name": "X", "priceExVat": "Infinity"},
            {"name": "X", "priceExVat": "abc"},
            {"name": "X", "priceExVat": True},
            {"name": "X", "priceExVat": "100", "vatRate": "abc"},
            {"name": "X", "priceExVat": "100", "pke": "abc"},
            {"name": "X", "priceExVat": "100", "photographerFee": "-Infinity"},
        ],
    )
    def test_product_fields_reject_non_numbers(self, data):
        with pytest.raises(ValidationError):
            validate_product_fields(data)

    def test_empty_cost_fields_use_defaults(self):
        fields = validate_product_fields(
            {"name": "X", "priceExVat": "100", "vatRate": "", "pke": ""}
        )
        assert fields["vat_rate"] == Decimal("25")
        assert fields["pke"] == Decimal("0.00")


# ---------------------------------------------------------------------------
# Orders and the financial snapshot
# ---------------------------------------------------------------------------


class TestOrders:
    def test_create_order_writes_snapshot(self, customer, products):
        order = _order(customer, products, lines=[("standard", 1)])
        assert order.order_number == 1
        assert order.status == "PENDING"
        assert order.total_amount == Decimal("3500.00")
        assert order.vat_amount == Decimal("875.00")
        assert order.photographer_fee == Decimal("1200.00")
        assert order.company_profit == Decimal("1600.00")
        assert len(order.lines) == 1
        assert order.lines[0].vat_rate == Decimal("25")
        assert AuditLog.query.filter_by(entity_type="order", action="create").count() == 1

    def test_order_numbers_are_sequential_per_company(self, customer, products):
        first = _order(customer, products, lines=[("standard", 1)])
        second = _order(customer, products, lines=[("drone", 1)])
        assert (first.order_number, second.order_number) == (1, 2)

        other = Company(name="Fjord Media", subdomain="fjord")
        db.session.add(other)
        db.session.commit()
        activate_tenant(other)
        assert next_order_number() == 1

    def test_create_order_with_photographer_is_assigned(self, customer, products):
        photographer = User.query.filter_by(role="photographer").first()
        order = _order(
            customer, products, lines=[("standard", 1)], photographer_id=photographer.id
        )
        assert order.status == "ASSIGNED"
        assert order.photographer_id == photographer.id

    def test_create_order_requires_address_and_date(self, customer, products):
        selections = [LineSelection(products["standard"].id, 1)]
        with pytest.raises(ValidationError, match="address"):
            create_order(customer.id, selections, "  ", at(2025, 1, 5))
        with pytest.raises(ValidationError, match="Scheduled date"):
            create_order(customer.id, selections, "Storgata 1", None)
        assert Order.query.count() == 0

    def test_create_order_unknown_customer(self, company, products):
        with pytest.raises(NotFoundError):
            create_order(999, [LineSelection(products["standard"].id, 1)], "X", at(2025, 1, 5))

    def test_failed_email_does_not_block_order(self, app, customer, products, monkeypatch):
        from mailer import MailerError

        def boom(*args, **kwargs):
            raise MailerError("smtp down")

        app.config["EMAIL_CONFIG"].enabled = True
        monkeypatch.setattr("services.notifications.send_email", boom)
        try:
            order = _order(customer, products, lines=[("standard", 1)])
        finally:
            app.config["EMAIL_CONFIG"].enabled = False
        assert db.session.get(Order, order.id) is not None

    def test_replace_lines_rewrites_snapshot(self, customer, products):
        order = _order(customer, products, lines=[("standard", 1)])
        updated = replace_order_lines(
            order.id,
            [LineSelection(products["standard"].id, 2), LineSelection(products["drone"].id, 1)],
        )
        assert updated.total_amount == Decimal("8500.00")
        assert updated.vat_amount == Decimal("2125.00")
        assert updated.photographer_fee == Decimal("2800.00")
        assert updated.company_profit == Decimal("8500.00") - Decimal("1500.00") - Decimal("2800.00")
        assert sorted((l.product_id, l.quantity) for l in updated.lines) == sorted(
            [(products["standard"].id, 2), (products["drone"].id, 1)]
        )

    def test_replace_lines_with_mixed_vat(self, customer, products):
        order = _order(customer, products, lines=[("standard", 1)])
        updated = replace_order_lines(
            order.id,
            [LineSelection(products["standard"].id, 1), LineSelection(products["plan"].id, 1)],
        )
        assert updated.total_amount == Decimal("4400.00")
        assert updated.vat_amount == Decimal("875.00")

    def test_replace_lines_refused_once_in_production(self, customer, products):
        order = _order(customer, products, lines=[("standard", 1)])
        set_order_status(order.id, "IN_PROGRESS")
        with pytest.raises(ValidationError, match="IN_PROGRESS") as excinfo:
            replace_order_lines(order.id, [LineSelection(products["drone"].id, 1)])
        assert excinfo.value.details["status"] == "IN_PROGRESS"
        order = db.session.get(Order, order.id)
        assert [line.product_id for line in order.lines] == [products["standard"].id]
        assert order.total_amount == Decimal("3500.00")

    def test_replace_lines_refused_when_invoiced(self, customer, products):
        order = _order(customer, products, lines=[("standard", 1)])
        set_order_status(order.id, "COMPLETED")
        create_order_invoice(order.id)
        with pytest.raises(ValidationError, match="invoiced"):
            replace_order_lines(order.id, [LineSelection(products["drone"].id, 1)])

    def test_replace_lines_with_unknown_product_leaves_order_alone(self, customer, products):
        order = _order(customer, products, lines=[("standard", 1)])
        with pytest.raises(ValidationError):
            replace_order_lines(order.id, [LineSelection(999, 1)])
        order = db.session.get(Order, order.id)
        assert len(order.lines) == 1
        assert order.total_amount == Decimal("3500.00")

    def test_storage_failure_during_replace_keeps_old_lines(self, customer, products, monkeypatch):
        order = _order(customer, products, lines=[("standard", 1)])

        def disk_full(*args, **kwargs):
            raise SQLAlchemyError("disk full")

        # Fails after the old lines were deleted and the new ones attached
        monkeypatch.setattr("services.orders.log_action", disk_full)
        with pytest.raises(SQLAlchemyError):
            replace_order_lines(order.id, [LineSelection(products["drone"].id, 2)])

        order = db.session.get(Order, order.id)
        assert [(l.product_id, l.quantity) for l in order.lines] == [(products["standard"].id, 1)]
        assert order.total_amount == Decimal("3500.00")
        assert order.vat_amount == Decimal("875.00")
        assert order.company_profit == Decimal("1600.00")

    def test_deactivated_customer_cannot_order(self, customer, products):
        customer.is_active = False
        db.session.commit()
        with pytest.raises(ValidationError, match="deactivated"):
            _order(customer, products, lines=[("standard", 1)])

    def test_inactive_product_cannot_be_ordered(self, customer, products):
        products["drone"].is_active = False
        db.session.commit()
        with pytest.raises(ValidationError):
            _order(customer, products, lines=[("drone", 1)])

    def test_status_update(self, customer, products):
        order = _order(customer, products, lines=[("standard", 1)])
        assert update_order_status(order.id, "COMPLETED").status == "COMPLETED"
        with pytest.raises(ValidationError, match="Unknown order status"):
            update_order_status(order.id, "LOST")

    def test_assign_photographer(self, customer, products):
        order = _order(customer, products, lines=[("standard", 1)])
        photographer = User.query.filter_by(role="photographer").first()
        admin = User.query.filter_by(role="admin").first()
        order = assign_photographer(order.id, photographer.id)
        assert order.status == "ASSIGNED"
        assert order.photographer_id == photographer.id
        with pytest.raises(ValidationError, match="not an active photographer"):
            assign_photographer(order.id, admin.id)


# ---------------------------------------------------------------------------
# Single-order invoices
# ---------------------------------------------------------------------------


class TestOrderInvoice:
    def test_invoice_copies_snapshot(self, customer, products):
        order = _order(customer, products, lines=[("standard", 1), ("drone", 2)])
        set_order_status(order.id, "COMPLETED")
        invoice = create_order_invoice(order.id, issued_on=datetime.date(2025, 1, 10))
        assert invoice.status == "DRAFT"
        assert invoice.subtotal == order.total_amount
        assert invoice.vat_amount == order.vat_amount
        assert invoice.total == Decimal("6500.00") + Decimal("1625.00")
        assert invoice.due_date == datetime.date(2025, 1, 24)
        assert invoice.order.id == order.id
        assert not invoice.is_period_invoice
        assert [line.description for line in invoice.lines] == ["Standard boligfoto", "Dronefoto"]
        assert [line.quantity for line in invoice.lines] == [1, 2]
        assert db.session.get(Order, order.id).invoice_id == invoice.id

    def test_second_invoice_for_same_order_refused(self, customer, products):
        order = _order(customer, products, lines=[("standard", 1)])
        first = create_order_invoice(order.id)
        with pytest.raises(ValidationError, match="already exists"):
            create_order_invoice(order.id)
        assert Invoice.query.count() == 1
        assert db.session.get(Order, order.id).invoice_id == first.id

    def test_order_without_lines_refused(self, company, customer):
        order = Order(
            company_id=company.id,
            order_number=99,
            customer_id=customer.id,
            property_address="Tom gate 1",
            scheduled_date=at(2025, 1, 5),
            status="COMPLETED",
        )
        db.session.add(order)
        db.session.commit()
        with pytest.raises(ValidationError, match="no products"):
            create_order_invoice(order.id)
        assert Invoice.query.count() == 0

    def test_missing_order(self, company):
        with pytest.raises(NotFoundError):
            create_order_invoice(12345)

    def test_default_payment_terms(self, company, products):
        customer = Customer(company_id=company.id, name="Privat", email="ola@example.no")
        db.session.add(customer)
        db.session.commit()
        order = _order(customer, products, lines=[("drone", 1)])
        invoice = create_order_invoice(order.id, issued_on=datetime.date(2025, 3, 1))
        assert invoice.due_date == datetime.date(2025, 3, 15)

    def test_zero_payment_terms_are_due_on_issue(self, company, products):
        customer = Customer(
            company_id=company.id, name="Kontant", email="kontant@example.no", payment_terms=0
        )
        db.session.add(customer)
        db.session.commit()
        order = _order(customer, products, lines=[("drone", 1)])
        invoice = create_order_invoice(order.id, issued_on=datetime.date(2025, 3, 1))
        assert invoice.due_date == datetime.date(2025, 3, 1)


# ---------------------------------------------------------------------------
# Period invoices
# ---------------------------------------------------------------------------


class TestPeriodInvoice:
    def test_lines_merge_by_product(self, company, customer):
        photo = make_product(company, "Boligfoto", "100")
        first = create_order(customer.id, [LineSelection(photo.id, 2)], "Storgata 1", at(2025, 1, 3))
        second = create_order(customer.id, [LineSelection(photo.id, 3)], "Kirkeveien 9", at(2025, 1, 20))
        for order in (first, second):
            set_order_status(order.id, "COMPLETED")

        invoice = create_period_invoice(customer.id, 2025, 1, issued_on=datetime.date(2025, 2, 1))
        assert len(invoice.lines) == 1
        line = invoice.lines[0]
        assert line.quantity == 5
        assert line.total_price == Decimal("500.00")
        assert line.unit_price == Decimal("100.00")
        assert line.description == "Boligfoto - Storgata 1"
        assert invoice.subtotal == Decimal("500.00")
        assert invoice.vat_amount == Decimal("125.00")
        assert invoice.total == Decimal("625.00")
        assert invoice.order_count == 2
        assert invoice.period_start == datetime.datetime(2025, 1, 1, 0, 0, 0)
        assert invoice.period_end == datetime.datetime(2025, 1, 31, 23, 59, 59)
        assert invoice.is_period_invoice
        assert invoice.order is None

    def test_due_date_from_customer_terms(self, customer, products):
        order = _order(customer, products, lines=[("standard", 1)], when=at(2024, 12, 12))
        set_order_status(order.id, "DELIVERED")
        invoice = create_period_invoice(customer.id, 2024, 12, issued_on=datetime.date(2025, 1, 10))
        assert invoice.due_date == datetime.date(2025, 1, 24)

    def test_invoiced_orders_are_never_selected_again(self, customer, products):
        first = _order(customer, products, lines=[("standard", 1)], when=at(2025, 1, 5))
        set_order_status(first.id, "COMPLETED")
        create_period_invoice(customer.id, 2025, 1)

        with pytest.raises(ValidationError, match="Nothing to invoice"):
            create_period_invoice(customer.id, 2025, 1)

        late = _order(customer, products, lines=[("drone", 1)], when=at(2025, 1, 28))
        set_order_status(late.id, "READY_FOR_DELIVERY")
        second = create_period_invoice(customer.id, 2025, 1)
        assert second.order_count == 1
        assert [o.id for o in second.orders] == [late.id]
        assert [line.product_id for line in second.lines] == [products["drone"].id]

    def test_single_order_invoice_excludes_order_from_period(self, customer, products):
        invoiced = _order(customer, products, lines=[("standard", 1)])
        open_order = _order(customer, products, lines=[("drone", 1)], when=at(2025, 1, 6))
        for order in (invoiced, open_order):
            set_order_status(order.id, "COMPLETED")
        create_order_invoice(invoiced.id)

        invoice = create_period_invoice(customer.id, 2025, 1)
        assert [o.id for o in invoice.orders] == [open_order.id]
        assert invoice.subtotal == Decimal("1500.00")

    def test_selection_rules(self, customer, products):
        in_progress = _order(customer, products, lines=[("standard", 1)])
        set_order_status(in_progress.id, "IN_PROGRESS")
        last_month = _order(customer, products, lines=[("standard", 1)], when=at(2024, 12, 31, 23))
        set_order_status(last_month.id, "COMPLETED")
        month_end = _order(customer, products, lines=[("drone", 1)], when=at(2025, 1, 31, 23))
        set_order_status(month_end.id, "COMPLETED")

        invoice = create_period_invoice(customer.id, 2025, 1)
        assert [o.id for o in invoice.orders] == [month_end.id]

    def test_empty_period_fails(self, customer):
        with pytest.raises(ValidationError, match="Nothing to invoice"):
            create_period_invoice(customer.id, 2025, 1)
        assert Invoice.query.count() == 0

    def test_invalid_month(self, customer):
        with pytest.raises(ValidationError):
            create_period_invoice(customer.id, 2025, 13)

    def test_concurrently_linked_order_aborts_whole_invoice(self, customer, products, monkeypatch):
        stale = _order(customer, products, lines=[("standard", 1)])
        fresh = _order(customer, products, lines=[("drone", 1)], when=at(2025, 1, 9))
        for order in (stale, fresh):
            set_order_status(order.id, "COMPLETED")
        selected = invoice_service.eligible_period_orders(customer.id, 2025, 1)
        # Another request invoices one of them after the selection was read
        create_order_invoice(stale.id)
        monkeypatch.setattr(
            invoice_service, "eligible_period_orders", lambda *args: selected
        )
        audit_rows = AuditLog.query.count()

        with pytest.raises(ValidationError, match="invoiced in the meantime"):
            create_period_invoice(customer.id, 2025, 1)

        assert Invoice.query.count() == 1
        assert db.session.get(Order, fresh.id).invoice_id is None
        assert AuditLog.query.count() == audit_rows

    def test_build_lines_keeps_first_description(self):
        product = SimpleNamespace(name="Video")
        line_a = SimpleNamespace(product_id=1, product=product, quantity=1,
                                 unit_price=Decimal("10"), total_price=Decimal("10"),
                                 vat_rate=Decimal("25"))
        line_b = SimpleNamespace(product_id=1, product=product, quantity=4,
                                 unit_price=Decimal("10"), total_price=Decimal("40"),
                                 vat_rate=Decimal("25"))
        orders = [SimpleNamespace(lines=[line_a]), SimpleNamespace(lines=[line_b])]
        lines = build_invoice_lines(orders, describe_product)
        assert len(lines) == 1
        assert (lines[0].quantity, lines[0].total_price) == (5, Decimal("50.00"))


# ---------------------------------------------------------------------------
# Invoice lifecycle
# ---------------------------------------------------------------------------


class TestInvoiceLifecycle:
    @pytest.fixture
    def invoice(self, customer, products):
        order = _order(customer, products, lines=[("standard", 1)])
        set_order_status(order.id, "COMPLETED")
        return create_order_invoice(order.id, issued_on=datetime.date(2025, 1, 10))

    def test_send_and_pay(self, invoice):
        sent = update_invoice_status(invoice.id, "SENT")
        assert sent.status == "SENT"
        assert sent.sent_at is not None
        paid = update_invoice_status(invoice.id, "PAID")
        assert paid.paid_at is not None

    def test_sending_a_draft_mails_the_customer(self, app, invoice, monkeypatch):
        sent = []

        def record(config, subject, recipient, body, **headers):
            sent.append((subject, recipient, headers))
            return True

        monkeypatch.setattr("services.notifications.send_email", record)
        app.config["EMAIL_CONFIG"].enabled = True
        try:
            update_invoice_status(invoice.id, "SENT")
            update_invoice_status(invoice.id, "PAID")
        finally:
            app.config["EMAIL_CONFIG"].enabled = False

        assert len(sent) == 1
        subject, recipient, headers = sent[0]
        assert subject == f"Invoice #{invoice.invoice_number} - Storgata 1, Oslo"
        assert recipient == "post@meglerhuset.no"
        assert headers == {"cc": "post@meglerhuset.no"}

    def test_failed_invoice_mail_keeps_status(self, app, invoice, monkeypatch):
        from mailer import MailerError

        def boom(*args, **kwargs):
            raise MailerError("smtp down")

        monkeypatch.setattr("services.notifications.send_email", boom)
        app.config["EMAIL_CONFIG"].enabled = True
        try:
            update_invoice_status(invoice.id, "SENT")
        finally:
            app.config["EMAIL_CONFIG"].enabled = False
        assert db.session.get(Invoice, invoice.id).status == "SENT"

    def test_illegal_transition(self, invoice):
        with pytest.raises(ValidationError, match="cannot go from DRAFT to PAID"):
            update_invoice_status(invoice.id, "PAID")
        with pytest.raises(ValidationError, match="Unknown invoice status"):
            update_invoice_status(invoice.id, "LOST")

    def test_cancel_keeps_orders_linked(self, invoice):
        order_id = invoice.orders[0].id
        update_invoice_status(invoice.id, "CANCELLED")
        assert db.session.get(Order, order_id).invoice_id == invoice.id
        with pytest.raises(ValidationError):
            update_invoice_status(invoice.id, "SENT")

    def test_mark_overdue(self, invoice):
        update_invoice_status(invoice.id, "SENT")
        assert mark_overdue_invoices(today=datetime.date(2025, 1, 24)) == 0
        assert mark_overdue_invoices(today=datetime.date(2025, 1, 25)) == 1
        assert db.session.get(Invoice, invoice.id).status == "OVERDUE"
        assert update_invoice_status(invoice.id, "PAID").status == "PAID"


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


class TestReporting:
    def test_profit_projection_matches_aggregator(self, customer, products):
        order = _order(customer, products, lines=[("standard", 1)])
        projection = get_profit_projection(order)
        assert projection.total_inc_vat == Decimal("4375.00")
        assert projection.profit_margin_percent == Decimal("45.71")
        catalog = [_product(1, "3500", pke="500", pki="200", fee="1200")]
        totals = compute_order_totals([LineSelection(1, 1)], catalog)
        assert projection.profit_margin_percent == totals.profit_margin_percent

    def test_projection_on_empty_order(self):
        empty = SimpleNamespace(
            total_amount=Decimal("0"), vat_amount=Decimal("0"), company_profit=Decimal("0")
        )
        projection = get_profit_projection(empty)
        assert projection.total_inc_vat == Decimal("0.00")
        assert projection.profit_margin_percent == Decimal("0.00")

    def test_summary(self, customer, products):
        first = _order(customer, products, lines=[("standard", 1)])
        second = _order(customer, products, lines=[("drone", 2)], when=at(2025, 1, 15))
        set_order_status(first.id, "COMPLETED")
        summary = summarize_orders([first, second])
        assert summary["totalOrders"] == 2
        assert summary["completedOrders"] == 1
        assert summary["totalRevenue"] == "6500.00"
        assert summary["totalVat"] == "1625.00"
        assert summary["totalPke"] == "700.00"
        assert summary["totalPki"] == "200.00"
        assert summary["averageOrderValue"] == "3250.00"
        assert summary["profitMargin"] == str(margin_percent(Decimal("3600.00"), Decimal("6500.00")))
        assert summary["topProducts"][0]["name"] == "Standard boligfoto"

    def test_empty_summary(self):
        summary = summarize_orders([])
        assert summary["averageOrderValue"] == "0.00"
        assert summary["profitMargin"] == "0.00"

    def test_chart_buckets(self, customer, products):
        order = _order(customer, products, lines=[("standard", 1)], when=at(2024, 2, 29))
        month = chart_buckets([order], "month", 2024, 2)
        assert len(month) == 29
        assert month[28]["revenue"] == "3500.00"
        year = chart_buckets([order], "year", 2024, 2)
        assert len(year) == 12
        assert year[1]["orders"] == 1

    def test_photographer_income(self, customer, products):
        photographer = User.query.filter_by(role="photographer").first()
        done = _order(customer, products, lines=[("standard", 1)], photographer_id=photographer.id)
        _order(customer, products, lines=[("drone", 1)], photographer_id=photographer.id)
        set_order_status(done.id, "COMPLETED")
        income = photographer_income(photographer.id, 2025, 1)
        assert income["totalOrders"] == 1
        assert income["totalEarned"] == "1200.00"


# ---------------------------------------------------------------------------
# Numbering and company isolation
# ---------------------------------------------------------------------------


class TestNumbering:
    def test_fallback_invoice_pattern(self, company):
        now = datetime.datetime(2025, 1, 10)
        assert generate_invoice_number(now) == "F-2025-0001"
        assert generate_invoice_number(now) == "F-2025-0002"
        assert generate_invoice_number(datetime.datetime(2026, 1, 2)) == "F-2026-0001"

    def test_configured_pattern(self, company):
        db.session.add(
            NumberingConfig(company_id=company.id, entity_type="invoice", pattern="INV[YY][MM]-[CCC]")
        )
        db.session.commit()
        assert generate_invoice_number(datetime.datetime(2025, 3, 1)) == "INV2503-001"

    def test_unknown_tags_are_literal(self, company):
        assert render_pattern("test", "X[FOO]-[CC]", datetime.datetime(2025, 1, 1)) == "X[FOO]-01"


class TestCompanyIsolation:
    def test_other_company_rows_are_not_found(self, customer):
        other = Company(name="Fjord Media", subdomain="fjord")
        db.session.add(other)
        db.session.commit()
        activate_tenant(other)
        with pytest.raises(NotFoundError):
            tenant_get(Customer, customer.id)

    def test_cross_company_write_is_blocked(self, company):
        other = Company(name="Fjord Media", subdomain="fjord")
        db.session.add(other)
        db.session.commit()
        db.session.add(Customer(company_id=other.id, name="X", email="x@example.no"))
        with pytest.raises(TenantSecurityError):
            db.session.flush()
        db.session.rollback()

    def test_no_company_selected(self, ctx):
        activate_tenant(None)
        with pytest.raises(PermissionDeniedError):
            create_order_invoice(1)
