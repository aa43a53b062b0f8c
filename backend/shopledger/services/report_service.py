# Overview: Income reports over paid sale lines and the daily income summaries.

from __future__ import annotations

from datetime import date, timedelta

from sqlalchemy import func

from ..errors import ValidationError
from ..extensions import db
from ..models import IncomeSummary, InventoryItem, Owner, Sale, SaleItem
from shopledger.time_utils import business_date, business_day_bounds

SUMMARY_PERIODS = ("daily", "monthly", "yearly")
SUMMARY_ROW_LIMIT = 100
DEFAULT_TOP_ITEMS = 10
MAX_TOP_ITEMS = 100


def _years_back(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        # 29 February in a non-leap target year
        return day.replace(year=day.year - years, day=28)


def summary_window_start(period: str, today: date | None = None) -> date:
    """First day covered by the daily (30 days), monthly (12 months) or yearly (5 years) summary."""
    today = today or business_date()
    if period == "daily":
        return today - timedelta(days=30)
    if period == "monthly":
        return _years_back(today, 1)
    if period == "yearly":
        return _years_back(today, 5)
    raise ValidationError(f"period must be one of: {', '.join(SUMMARY_PERIODS)}")


def income_summary(period: str = "daily") -> list[IncomeSummary]:
    start = summary_window_start(period)
    return (
        db.session.query(IncomeSummary)
        .filter(IncomeSummary.date >= start)
        .order_by(IncomeSummary.date.desc(), IncomeSummary.owner_id)
        .limit(SUMMARY_ROW_LIMIT)
        .all()
    )


def _paid_lines(query, start: date | None, end: date | None, owner_id: int | None):
    query = query.filter(Sale.is_paid.is_(True))
    if start is not None:
        query = query.filter(Sale.sale_date >= business_day_bounds(start)[0])
    if end is not None:
        query = query.filter(Sale.sale_date <= business_day_bounds(end)[1])
    if owner_id is not None:
        query = query.filter(SaleItem.owner_id == owner_id)
    return query


def income_by_category(
    start: date | None = None,
    end: date | None = None,
    owner_id: int | None = None,
) -> list[dict]:
    profit = (SaleItem.unit_price_cents - SaleItem.unit_cost_cents) * SaleItem.quantity
    query = (
        db.session.query(
            InventoryItem.category.label("category"),
            SaleItem.owner_id.label("owner_id"),
            Owner.full_name.label("owner_name"),
            func.sum(SaleItem.total_price_cents).label("total_sales_cents"),
            func.sum(profit).label("total_profit_cents"),
            func.sum(SaleItem.quantity).label("total_items_sold"),
        )
        .select_from(SaleItem)
        .join(Sale, SaleItem.sale_id == Sale.id)
        .join(InventoryItem, SaleItem.inventory_item_id == InventoryItem.id)
        .join(Owner, SaleItem.owner_id == Owner.id)
    )
    rows = (
        _paid_lines(query, start, end, owner_id)
        .group_by(InventoryItem.category, SaleItem.owner_id, Owner.full_name)
        .order_by(func.sum(SaleItem.total_price_cents).desc(), SaleItem.owner_id)
        .all()
    )
    return [
        {
            "category": row.category,
            "owner_id": row.owner_id,
            "owner_name": row.owner_name,
            "total_sales_cents": int(row.total_sales_cents or 0),
            "total_profit_cents": int(row.total_profit_cents or 0),
            "total_items_sold": int(row.total_items_sold or 0),
        }
        for row in rows
    ]


def top_selling_items(
    start: date | None = None,
    end: date | None = None,
    owner_id: int | None = None,
    limit: int = DEFAULT_TOP_ITEMS,
) -> list[dict]:
    if limit < 1 or limit > MAX_TOP_ITEMS:
        raise ValidationError(f"limit must be between 1 and {MAX_TOP_ITEMS}")

    quantity = func.sum(SaleItem.quantity)
    query = (
        db.session.query(
            InventoryItem.id.label("item_id"),
            InventoryItem.name.label("name"),
            InventoryItem.category.label("category"),
            SaleItem.owner_id.label("owner_id"),
            Owner.full_name.label("owner_name"),
            quantity.label("total_quantity_sold"),
            func.sum(SaleItem.total_price_cents).label("total_sales_cents"),
            func.avg(SaleItem.unit_price_cents).label("avg_selling_price_cents"),
        )
        .select_from(SaleItem)
        .join(Sale, SaleItem.sale_id == Sale.id)
        .join(InventoryItem, SaleItem.inventory_item_id == InventoryItem.id)
        .join(Owner, SaleItem.owner_id == Owner.id)
    )
    rows = (
        _paid_lines(query, start, end, owner_id)
        .group_by(InventoryItem.id, InventoryItem.name, InventoryItem.category, SaleItem.owner_id, Owner.full_name)
        .order_by(quantity.desc(), InventoryItem.id)
        .limit(limit)
        .all()
    )
    return [
        {
            "item_id": row.item_id,
            "name": row.name,
            "category": row.category,
            "owner_id": row.owner_id,
            "owner_name": row.owner_name,
            "total_quantity_sold": int(row.total_quantity_sold or 0),
            "total_sales_cents": int(row.total_sales_cents or 0),
            "avg_selling_price_cents": int(round(row.avg_selling_price_cents or 0)),
        }
        for row in rows
    ]


def overall_stats(
    start: date | None = None,
    end: date | None = None,
    owner_id: int | None = None,
) -> dict:
    """
    Headline numbers for a date range.

    With an owner filter, revenue and the average sale only count that
    owner's lines of each sale.
    """
    query = (
        db.session.query(
            func.count(func.distinct(Sale.id)).label("total_sales"),
            func.coalesce(func.sum(SaleItem.total_price_cents), 0).label("total_revenue_cents"),
            func.coalesce(func.sum(SaleItem.quantity), 0).label("total_items_sold"),
            func.count(func.distinct(SaleItem.owner_id)).label("active_owners"),
            func.count(func.distinct(SaleItem.inventory_item_id)).label("unique_items_sold"),
        )
        .select_from(SaleItem)
        .join(Sale, SaleItem.sale_id == Sale.id)
    )
    row = _paid_lines(query, start, end, owner_id).one()

    total_sales = int(row.total_sales or 0)
    revenue = int(row.total_revenue_cents or 0)
    return {
        "total_sales": total_sales,
        "total_revenue_cents": revenue,
        "total_items_sold": int(row.total_items_sold or 0),
        "active_owners": int(row.active_owners or 0),
        "unique_items_sold": int(row.unique_items_sold or 0),
        "avg_sale_amount_cents": round(revenue / total_sales) if total_sales else 0,
    }
