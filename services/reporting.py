"""Read-side projections over stored order snapshots.

Nothing here re-prices an order; figures come from the snapshot fields
written by ``services.orders``.  Margins always go through
``services.pricing.margin_percent``.
"""

from __future__ import annotations

import calendar
import datetime
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from models import Order
from services.pricing import margin_percent
from services.tenant import tenant_query
from utils import money, month_bounds

TOP_PRODUCT_LIMIT = 5


@dataclass(frozen=True)
class ProfitProjection:
    total_inc_vat: Decimal
    profit_margin_percent: Decimal

    def to_dict(self) -> dict:
        return {
            "totalIncVat": str(self.total_inc_vat),
            "profitMarginPercent": str(self.profit_margin_percent),
        }


def get_profit_projection(order) -> ProfitProjection:
    """Project an order snapshot to total inc. VAT and margin."""
    total_amount = money(order.total_amount)
    return ProfitProjection(
        total_inc_vat=total_amount + money(order.vat_amount),
        profit_margin_percent=margin_percent(order.company_profit, total_amount),
    )


def period_bounds(period: str, year: int, month: int) -> tuple[datetime.datetime, datetime.datetime]:
    if period == "year":
        return datetime.datetime(year, 1, 1), datetime.datetime(year, 12, 31, 23, 59, 59)
    return month_bounds(year, month)


def orders_in_period(start: datetime.datetime, end: datetime.datetime) -> list[Order]:
    """Non-cancelled orders of the current company scheduled in [start, end]."""
    return (
        tenant_query(Order)
        .filter(
            Order.scheduled_date >= start,
            Order.scheduled_date <= end,
            Order.status != "CANCELLED",
        )
        .order_by(Order.scheduled_date)
        .all()
    )


def summarize_orders(orders: Iterable[Order]) -> dict:
    orders = list(orders)
    revenue = Decimal("0.00")
    vat = Decimal("0.00")
    profit = Decimal("0.00")
    photographer_fee = Decimal("0.00")
    pke = Decimal("0.00")
    pki = Decimal("0.00")
    by_status: dict[str, int] = {}
    products: dict[int, dict] = {}

    for order in orders:
        revenue += money(order.total_amount)
        vat += money(order.vat_amount)
        profit += money(order.company_profit)
        photographer_fee += money(order.photographer_fee)
        by_status[order.status] = by_status.get(order.status, 0) + 1
        for line in order.lines:
            pke += money(line.product.pke) * line.quantity
            pki += money(line.product.pki) * line.quantity
            stats = products.setdefault(
                line.product_id,
                {"productId": line.product_id, "name": line.product.name,
                 "quantity": 0, "revenue": Decimal("0.00")},
            )
            stats["quantity"] += line.quantity
            stats["revenue"] += money(line.total_price)

    top_products = sorted(products.values(), key=lambda s: s["revenue"], reverse=True)
    average = money(revenue / len(orders)) if orders else Decimal("0.00")

    return {
        "totalOrders": len(orders),
        "completedOrders": by_status.get("COMPLETED", 0),
        "totalRevenue": str(revenue),
        "totalVat": str(vat),
        "totalRevenueIncVat": str(revenue + vat),
        "totalProfit": str(profit),
        "totalPhotographerFee": str(photographer_fee),
        "totalPke": str(pke),
        "totalPki": str(pki),
        "averageOrderValue": str(average),
        "profitMargin": str(margin_percent(profit, revenue)),
        "ordersByStatus": [
            {"status": status, "count": count} for status, count in sorted(by_status.items())
        ],
        "topProducts": [
            {**stats, "revenue": str(stats["revenue"])}
            for stats in top_products[:TOP_PRODUCT_LIMIT]
        ],
    }


def chart_buckets(orders: Iterable[Order], period: str, year: int, month: int) -> list[dict]:
    """Daily buckets for a month, monthly buckets for a year."""
    if period == "year":
        keys = range(1, 13)
        key_of = lambda order: order.scheduled_date.month  # noqa: E731
    else:
        keys = range(1, calendar.monthrange(year, month)[1] + 1)
        key_of = lambda order: order.scheduled_date.day  # noqa: E731

    buckets = {
        key: {"key": key, "revenue": Decimal("0.00"), "profit": Decimal("0.00"), "orders": 0}
        for key in keys
    }
    for order in orders:
        bucket = buckets.get(key_of(order))
        if bucket is None:
            continue
        bucket["revenue"] += money(order.total_amount)
        bucket["profit"] += money(order.company_profit)
        bucket["orders"] += 1

    return [
        {**bucket, "revenue": str(bucket["revenue"]), "profit": str(bucket["profit"])}
        for bucket in buckets.values()
    ]


def photographer_income(photographer_id: int, year: int, month: int) -> dict:
    """Completed orders of a photographer in a month and the fees earned."""
    start, end = month_bounds(year, month)
    orders = (
        tenant_query(Order)
        .filter(
            Order.photographer_id == photographer_id,
            Order.status == "COMPLETED",
            Order.scheduled_date >= start,
            Order.scheduled_date <= end,
        )
        .order_by(Order.scheduled_date.desc())
        .all()
    )
    total = sum((money(order.photographer_fee) for order in orders), Decimal("0.00"))
    return {
        "totalEarned": str(total),
        "totalOrders": len(orders),
        "orderDetails": [
            {
                "orderNumber": order.order_number,
                "propertyAddress": order.property_address,
                "completedDate": order.scheduled_date.isoformat(),
                "photographerFee": str(money(order.photographer_fee)),
            }
            for order in orders
        ],
    }
