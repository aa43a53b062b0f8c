# Overview: Flask API routes for income reporting; reads the per-owner daily summaries and paid sale lines.

# backend/shopledger/routes/income.py
"""
Income reporting routes.

income_summary rows are maintained by the sale lifecycle; these endpoints
only read them. Amounts are integer cents.
"""
from flask import Blueprint, jsonify, request

from ..decorators import ledger_errors
from ..errors import ValidationError
from ..services import income_service, report_service
from ..time_utils import business_date, parse_iso_date


income_bp = Blueprint("income", __name__, url_prefix="/api/income")


def _report_filters():
    """start_date / end_date (YYYY-MM-DD, inclusive) and owner_id query params."""
    try:
        start = parse_iso_date(request.args.get("start_date"))
        end = parse_iso_date(request.args.get("end_date"))
    except ValueError:
        raise ValidationError("Dates must be YYYY-MM-DD")
    if start and end and start > end:
        raise ValidationError("start_date must not be after end_date")
    return start, end, request.args.get("owner_id", type=int)


@income_bp.get("/daily")
@ledger_errors("load daily income")
def daily_income_route():
    """Daily income rows, newest first."""
    start, end, owner_id = _report_filters()
    rows = income_service.list_daily(start=start, end=end, owner_id=owner_id)
    data = [r.to_dict() for r in rows]

    return jsonify({
        "items": data,
        "count": len(data),
        "totals": {
            "total_sales_cents": sum(r["total_sales_cents"] for r in data),
            "total_profit_cents": sum(r["total_profit_cents"] for r in data),
            "total_items_sold": sum(r["total_items_sold"] for r in data),
        },
    }), 200


@income_bp.get("/monthly")
@ledger_errors("load monthly income")
def monthly_income_route():
    """Per-owner monthly totals for a year (defaults to the current business year)."""
    year = request.args.get("year", type=int) or business_date().year
    if year < 1900 or year > 9999:
        raise ValidationError("year out of range")

    months = income_service.monthly_totals(year, owner_id=request.args.get("owner_id", type=int))
    return jsonify({"year": year, "months": months}), 200


@income_bp.get("/summary")
@ledger_errors("load income summary")
def income_summary_route():
    period = request.args.get("period", "daily")
    rows = report_service.income_summary(period)
    return jsonify({
        "period": period,
        "since": report_service.summary_window_start(period).isoformat(),
        "items": [r.to_dict() for r in rows],
    }), 200


@income_bp.get("/by-category")
@ledger_errors("load income by category")
def income_by_category_route():
    start, end, owner_id = _report_filters()
    rows = report_service.income_by_category(start=start, end=end, owner_id=owner_id)
    return jsonify({"items": rows, "count": len(rows)}), 200


@income_bp.get("/top-items")
@ledger_errors("load top selling items")
def top_selling_items_route():
    start, end, owner_id = _report_filters()
    raw_limit = request.args.get("limit")
    try:
        limit = int(raw_limit) if raw_limit else report_service.DEFAULT_TOP_ITEMS
    except ValueError:
        raise ValidationError("limit must be an integer")

    rows = report_service.top_selling_items(start=start, end=end, owner_id=owner_id, limit=limit)
    return jsonify({"items": rows, "count": len(rows)}), 200


@income_bp.get("/stats")
@ledger_errors("load sales statistics")
def overall_stats_route():
    start, end, owner_id = _report_filters()
    return jsonify({"stats": report_service.overall_stats(start=start, end=end, owner_id=owner_id)}), 200
