"""Order pricing: product cost attributes and order-level totals.

``compute_order_totals`` is a pure function over the selection and the
products handed to it, with no session access, so the same numbers come out of
order creation, line edits and tests.

VAT is computed per line at each product's own rate and summed
(``vat_mode="per_line"``).  ``vat_mode="flat"`` applies one rate to the
whole subtotal instead; the two agree whenever every product carries the
flat rate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Mapping, Optional

from errors import ValidationError
from utils import CENT, money, safe_int, to_decimal

DEFAULT_VAT_RATE = Decimal("25")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LineSelection:
    product_id: int
    quantity: int


@dataclass
class PricedLine:
    product_id: int
    name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    vat_rate: Decimal
    vat_amount: Decimal
    external_cost: Decimal
    internal_cost: Decimal
    photographer_fee: Decimal


@dataclass
class OrderTotals:
    lines: list[PricedLine] = field(default_factory=list)
    subtotal: Decimal = Decimal("0.00")
    vat_amount: Decimal = Decimal("0.00")
    photographer_fee: Decimal = Decimal("0.00")
    external_cost: Decimal = Decimal("0.00")
    internal_cost: Decimal = Decimal("0.00")
    company_profit: Decimal = Decimal("0.00")
    profit_margin_percent: Decimal = Decimal("0.00")

    @property
    def total_inc_vat(self) -> Decimal:
        return self.subtotal + self.vat_amount


def margin_percent(profit, revenue) -> Decimal:
    """Profit as a percentage of revenue, two decimals; 0 when revenue is 0.

    The only margin formula in the code base. Dashboards, order detail and
    the aggregator all call this.
    """
    revenue = to_decimal(revenue, Decimal("0"))
    if not revenue:
        return Decimal("0.00")
    profit = to_decimal(profit, Decimal("0"))
    return (profit / revenue * HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


def vat_for(amount, rate) -> Decimal:
    return money(to_decimal(amount, Decimal("0")) * to_decimal(rate, Decimal("0")) / HUNDRED)


def _number_field(data: Mapping, key: str, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """Read *key* as a finite Decimal; *default* only when absent or empty."""
    raw = data.get(key)
    if raw is None or raw == "":
        return default
    value = None if isinstance(raw, bool) else to_decimal(raw)
    if value is None or not value.is_finite():
        raise ValidationError(f"{key} must be a number.", details={"field": key})
    return value


def validate_product_fields(data: Mapping, partial: bool = False) -> dict:
    """Validate and normalise product input.

    Returns a dict of model attribute names → values containing only the
    keys present in *data* (all required keys when ``partial`` is False).
    Numbers that are present must parse to a finite value.
    """
    cleaned: dict = {}

    if "name" in data or not partial:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Product name is required.")
        cleaned["name"] = name

    if "priceExVat" in data or not partial:
        price = _number_field(data, "priceExVat")
        if price is None or price <= 0:
            raise ValidationError("Price ex. VAT must be greater than 0.")
        cleaned["price_ex_vat"] = money(price)

    if "vatRate" in data or not partial:
        rate = _number_field(data, "vatRate", DEFAULT_VAT_RATE)
        if rate < 0 or rate > HUNDRED:
            raise ValidationError("VAT rate must be between 0 and 100.")
        cleaned["vat_rate"] = rate

    for key, attr in (("pke", "pke"), ("pki", "pki"), ("photographerFee", "photographer_fee")):
        if key in data or not partial:
            amount = _number_field(data, key, Decimal("0"))
            if amount < 0:
                raise ValidationError(f"{key} cannot be negative.")
            cleaned[attr] = money(amount)

    for key, attr in (("description", "description"), ("sku", "sku")):
        if key in data:
            cleaned[attr] = data.get(key) or None

    if "isActive" in data:
        cleaned["is_active"] = bool(data.get("isActive"))

    return cleaned


def parse_selections(raw) -> list[LineSelection]:
    """Turn request JSON (``[{"productId": 1, "quantity": 2}, ...]``) into selections.

    Duplicate product ids are merged by summing their quantities.
    """
    if not isinstance(raw, list) or not raw:
        raise ValidationError("No products selected.")
    merged: dict[int, int] = {}
    for entry in raw:
        if not isinstance(entry, Mapping):
            raise ValidationError("Each product selection must be an object.")
        product_id = safe_int(entry.get("productId"), default=0)
        quantity = safe_int(entry.get("quantity", 1), default=0)
        if product_id <= 0:
            raise ValidationError("Product selection is missing productId.")
        if quantity < 1:
            raise ValidationError(
                f"Quantity for product {product_id} must be at least 1."
            )
        merged[product_id] = merged.get(product_id, 0) + quantity
    return [LineSelection(pid, qty) for pid, qty in merged.items()]


def compute_order_totals(
    selections: Iterable[LineSelection],
    products: Iterable,
    *,
    vat_mode: str = "per_line",
    flat_vat_rate: Optional[Decimal] = None,
) -> OrderTotals:
    """Aggregate selected product lines into order-level totals.

    *products* are the live, active ``Product`` rows (anything exposing the
    same attributes works).  A selection referring to a product that is not
    among them is a ``ValidationError``.
    """
    selections = list(selections)
    if not selections:
        raise ValidationError("No products selected.")

    catalog = {product.id: product for product in products}
    flat_rate = to_decimal(flat_vat_rate, DEFAULT_VAT_RATE)
    totals = OrderTotals()

    for selection in selections:
        if selection.quantity < 1:
            raise ValidationError(
                f"Quantity for product {selection.product_id} must be at least 1."
            )
        product = catalog.get(selection.product_id)
        if product is None or product.is_active is False:
            raise ValidationError(
                f"Product {selection.product_id} does not exist or is inactive.",
                details={"productId": selection.product_id},
            )

        qty = Decimal(selection.quantity)
        unit_price = money(product.price_ex_vat)
        line_total = unit_price * qty
        rate = to_decimal(product.vat_rate, DEFAULT_VAT_RATE)
        line = PricedLine(
            product_id=product.id,
            name=product.name,
            quantity=selection.quantity,
            unit_price=unit_price,
            total_price=line_total,
            vat_rate=rate,
            vat_amount=vat_for(line_total, rate),
            external_cost=money(product.pke) * qty,
            internal_cost=money(product.pki) * qty,
            photographer_fee=money(product.photographer_fee) * qty,
        )
        totals.lines.append(line)
        totals.subtotal += line.total_price
        totals.external_cost += line.external_cost
        totals.internal_cost += line.internal_cost
        totals.photographer_fee += line.photographer_fee

    if vat_mode == "flat":
        totals.vat_amount = vat_for(totals.subtotal, flat_rate)
    else:
        totals.vat_amount = sum((line.vat_amount for line in totals.lines), Decimal("0.00"))

    totals.company_profit = totals.subtotal - (
        totals.external_cost + totals.internal_cost + totals.photographer_fee
    )
    totals.profit_margin_percent = margin_percent(totals.company_profit, totals.subtotal)
    return totals
