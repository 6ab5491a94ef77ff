"""Dashboard and income routes."""

import datetime

from flask import Blueprint, jsonify, request

from errors import ValidationError
from services.auth import get_current_user, login_required, role_required
from services.reporting import (
    chart_buckets,
    orders_in_period,
    period_bounds,
    photographer_income,
    summarize_orders,
)
from utils import safe_int

dashboard_bp = Blueprint("dashboard", __name__)


def _year_month():
    today = datetime.date.today()
    year = safe_int(request.args.get("year"), default=today.year)
    month = safe_int(request.args.get("month"), default=today.month)
    if year < 1 or not 1 <= month <= 12:
        raise ValidationError("A valid year and a month between 1 and 12 are required.")
    return year, month


@dashboard_bp.route("/api/dashboard")
@role_required("view_reports")
def dashboard():
    period = request.args.get("period", "month")
    if period not in ("month", "year"):
        raise ValidationError("Period must be 'month' or 'year'.")
    year, month = _year_month()
    start, end = period_bounds(period, year, month)
    orders = orders_in_period(start, end)
    return jsonify(
        {
            "period": period,
            "year": year,
            "month": month if period == "month" else None,
            "summary": summarize_orders(orders),
            "chart": chart_buckets(orders, period, year, month),
        }
    )


@dashboard_bp.route("/api/my-income")
@login_required
def my_income():
    year, month = _year_month()
    income = photographer_income(get_current_user().id, year, month)
    return jsonify({"year": year, "month": month, **income})
