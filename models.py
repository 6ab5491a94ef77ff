"""SQLAlchemy models and role-permission mapping."""

from __future__ import annotations

from extensions import db
from utils import utc_now

# ---------------------------------------------------------------------------
# Role / Permission mapping
# ---------------------------------------------------------------------------

ROLE_PERMISSIONS: dict[str, set[str]] = {
    "admin": {"manage_all"},
    "editor": {"manage_orders", "view_reports"},
    "photographer": {"view_own"},
}

VALID_ROLES = list(ROLE_PERMISSIONS.keys())


# ---------------------------------------------------------------------------
# Company (tenant)
# ---------------------------------------------------------------------------

class Company(db.Model):
    """A photography agency.  Every business row is scoped to one company."""
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    org_number = db.Column(db.String(20))
    subdomain = db.Column(db.String(60), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utc_now)


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------

class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("company.id"), nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(60))
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(30), nullable=False, default="photographer")
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    company = db.relationship("Company")


# ---------------------------------------------------------------------------
# Customer
# ---------------------------------------------------------------------------

class Customer(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("company.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    org_number = db.Column(db.String(20))
    email = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(60))
    invoice_email = db.Column(db.String(120))
    payment_terms = db.Column(db.Integer)  # days, NULL = company default
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        db.UniqueConstraint("company_id", "email", name="uq_customer_email_company"),
    )


# ---------------------------------------------------------------------------
# Product catalog
# ---------------------------------------------------------------------------

class Product(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("company.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.String(255))
    sku = db.Column(db.String(60))
    price_ex_vat = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False)
    vat_rate = db.Column(db.Numeric(5, 2, asdecimal=True), nullable=False, default=25)
    pke = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False, default=0)
    pki = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False, default=0)
    photographer_fee = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False, default=0)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        db.CheckConstraint("price_ex_vat > 0", name="ck_product_price_positive"),
        db.CheckConstraint("vat_rate >= 0 AND vat_rate <= 100", name="ck_product_vat_rate"),
    )


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

ORDER_STATUSES = (
    "PENDING",
    "ASSIGNED",
    "IN_PROGRESS",
    "EDITING",
    "QUALITY_CONTROL",
    "READY_FOR_DELIVERY",
    "DELIVERED",
    "COMPLETED",
    "CANCELLED",
)
# Lines may only change before production starts.
EDITABLE_ORDER_STATUSES = {"PENDING", "ASSIGNED"}
INVOICEABLE_ORDER_STATUSES = {"COMPLETED", "DELIVERED", "READY_FOR_DELIVERY"}
ORDER_PRIORITIES = ("NORMAL", "HIGH", "URGENT")


class Order(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("company.id"), nullable=False, index=True)
    order_number = db.Column(db.Integer, nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customer.id"), nullable=False)
    photographer_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    property_address = db.Column(db.String(255), nullable=False)
    property_type = db.Column(db.String(60))
    scheduled_date = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(30), nullable=False, default="PENDING")
    priority = db.Column(db.String(20), nullable=False, default="NORMAL")

    # Denormalised financial snapshot, rewritten whenever the lines change
    total_amount = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False, default=0)
    vat_amount = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False, default=0)
    photographer_fee = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False, default=0)
    company_profit = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False, default=0)

    # A single column: an order can point at one invoice at most.
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoice.id"), index=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    customer = db.relationship("Customer")
    photographer = db.relationship("User", foreign_keys=[photographer_id])
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    lines = db.relationship(
        "OrderLine",
        backref="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.id",
    )
    invoice = db.relationship("Invoice", back_populates="orders")

    __table_args__ = (
        db.UniqueConstraint("company_id", "order_number", name="uq_order_number_company"),
        db.Index("ix_order_status", "status"),
        db.Index("ix_order_customer_scheduled", "customer_id", "scheduled_date"),
    )

    @property
    def is_invoiced(self) -> bool:
        return self.invoice_id is not None

    @property
    def is_editable(self) -> bool:
        return not self.is_invoiced and self.status in EDITABLE_ORDER_STATUSES


class OrderLine(db.Model):
    """Order×product join.  Prices are copied from the product at write time."""
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("company.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("order.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False)
    total_price = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False)
    vat_rate = db.Column(db.Numeric(5, 2, asdecimal=True), nullable=False, default=25)

    product = db.relationship("Product")

    __table_args__ = (
        db.UniqueConstraint("order_id", "product_id", name="uq_order_line_product"),
        db.CheckConstraint("quantity >= 1", name="ck_order_line_quantity"),
    )


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------

INVOICE_STATUSES = ("DRAFT", "SENT", "PAID", "OVERDUE", "CANCELLED")
INVOICE_TRANSITIONS: dict[str, set[str]] = {
    "DRAFT": {"SENT", "CANCELLED"},
    "SENT": {"PAID", "OVERDUE", "CANCELLED"},
    "OVERDUE": {"PAID", "CANCELLED"},
    "PAID": set(),
    "CANCELLED": set(),
}


class Invoice(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("company.id"), nullable=False, index=True)
    invoice_number = db.Column(db.String(30), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customer.id"), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="DRAFT")
    subtotal = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False, default=0)
    vat_amount = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False, default=0)
    due_date = db.Column(db.Date, nullable=False)
    period_start = db.Column(db.DateTime)
    period_end = db.Column(db.DateTime)
    order_count = db.Column(db.Integer)
    sent_at = db.Column(db.DateTime)
    paid_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    customer = db.relationship("Customer")
    lines = db.relationship(
        "InvoiceLine",
        backref="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLine.id",
    )
    orders = db.relationship("Order", back_populates="invoice", order_by="Order.id")

    __table_args__ = (
        db.UniqueConstraint("company_id", "invoice_number", name="uq_invoice_number_company"),
        db.Index("ix_invoice_status", "status"),
        db.Index("ix_invoice_customer_id", "customer_id"),
    )

    @property
    def is_period_invoice(self) -> bool:
        return self.period_start is not None

    @property
    def order(self):
        """The source order of a single-order invoice, else None."""
        if self.is_period_invoice or len(self.orders) != 1:
            return None
        return self.orders[0]


class InvoiceLine(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("company.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoice.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"))
    description = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False)
    total_price = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False)
    vat_rate = db.Column(db.Numeric(5, 2, asdecimal=True), nullable=False, default=25)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

class AuditLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("company.id"), index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    action = db.Column(db.String(80), nullable=False)
    entity_type = db.Column(db.String(80), nullable=False)
    entity_id = db.Column(db.Integer)
    details = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utc_now)

    user = db.relationship("User")

    __table_args__ = (
        db.Index("ix_audit_log_created_at", "created_at"),
        db.Index("ix_audit_log_entity", "entity_type", "entity_id"),
    )


# ---------------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------------

class NumberingConfig(db.Model):
    """Tag-based numbering pattern per entity type per company.

    Pattern example: ``F[YYYY]-[CCCC]`` -> ``F2025-0001``
    Tags: [YYYY] [YY] [MM] [C+]
    Counter resets when preceding scope-tags change.
    """
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("company.id"), index=True)
    entity_type = db.Column(db.String(40), nullable=False)
    pattern = db.Column(db.String(120), default="")

    __table_args__ = (
        db.UniqueConstraint("company_id", "entity_type", name="uq_numbering_config_company"),
    )


class NumberSequence(db.Model):
    """Sequence counters per entity type, scope, and company."""
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("company.id"), index=True)
    entity_type = db.Column(db.String(40), nullable=False)
    scope_key = db.Column(db.String(120), default="")
    last_value = db.Column(db.Integer, default=0)

    __table_args__ = (
        db.UniqueConstraint("company_id", "entity_type", "scope_key", name="uq_number_sequence"),
    )
