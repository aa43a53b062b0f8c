"""
Sales Service - sale lifecycle against the stock ledger and income aggregator

Every transition (create, edit, mark-paid, delete) is one atomic unit of
work: stock, sale rows and income_summary either all change or none do.
Notifications are published only after the unit of work has committed.

Lifecycle:
    create(credit)      -> unpaid          (stock reserved, no income)
    create(cash|mobile) -> paid            (stock reserved, income booked today)
    unpaid --mark-paid--> paid             (income booked on the ORIGINAL sale day)
    unpaid --edit-------> unpaid           (old lines released, new lines reserved)
    any    --delete-----> gone             (stock released, booked income reversed)
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import AlreadyPaid, CannotEditPaid, SaleNotFound, ValidationError
from ..extensions import db, notifications
from ..models import Sale, SaleItem, SETTLED_PAYMENT_METHODS
from ..validation import CustomerInfo, normalize_lines, validate_payment_method
from shopledger.time_utils import business_date, utcnow
from . import income_service, stock_service
from .concurrency import lock_for_update, run_in_transaction
from .income_service import IncomeDelta
from .notification_service import LowStockCrossing, Recipients, SaleCompleted
from .stock_service import StockSnapshot


@dataclass(frozen=True)
class _ReservedLine:
    snapshot: StockSnapshot
    quantity: int


def _load_sale(sale_id: int) -> Sale:
    sale = (
        lock_for_update(db.session.query(Sale).filter_by(id=sale_id))
        .populate_existing()
        .first()
    )
    if sale is None:
        raise SaleNotFound("Sale not found", details={"sale_id": sale_id})
    return sale


def _reserve_lines(lines) -> list[_ReservedLine]:
    # Any failure here propagates and rolls back every earlier reservation
    return [
        _ReservedLine(
            snapshot=stock_service.check_and_reserve(line.inventory_item_id, line.quantity),
            quantity=line.quantity,
        )
        for line in lines
    ]


def _attach_items(sale: Sale, reserved: list[_ReservedLine]) -> None:
    """Price every line from the item's current selling price, never from the client."""
    total = 0
    for r in reserved:
        line_total = r.snapshot.selling_price_cents * r.quantity
        sale.items.append(
            SaleItem(
                inventory_item_id=r.snapshot.item_id,
                owner_id=r.snapshot.owner_id,
                quantity=r.quantity,
                unit_price_cents=r.snapshot.selling_price_cents,
                total_price_cents=line_total,
                unit_cost_cents=r.snapshot.unit_cost_cents,
            )
        )
        total += line_total
    sale.total_amount_cents = total


def _apply_customer(sale: Sale, customer: CustomerInfo | None) -> None:
    if customer is None:
        return
    sale.customer_name = customer.name
    sale.customer_phone = customer.phone
    sale.notes = customer.notes


def income_deltas(items) -> dict[int, IncomeDelta]:
    """
    Per-owner income contribution of ``items``.

    Profit is (unit price - booked unit cost) * quantity per line, summed;
    never derived from sale totals.
    """
    deltas: dict[int, IncomeDelta] = {}
    for item in items:
        line = IncomeDelta(
            sales_cents=item.total_price_cents,
            profit_cents=(item.unit_price_cents - item.unit_cost_cents) * item.quantity,
            items=item.quantity,
        )
        deltas[item.owner_id] = deltas.get(item.owner_id, IncomeDelta()) + line
    return deltas


def _low_stock_events(reserved: list[_ReservedLine]) -> list[LowStockCrossing]:
    # One event per item, using the quantity left after the last line touching it
    final: dict[int, StockSnapshot] = {}
    for r in reserved:
        final[r.snapshot.item_id] = r.snapshot
    return [
        LowStockCrossing(
            item_id=snap.item_id,
            owner_id=snap.owner_id,
            name=snap.name,
            current_quantity=snap.quantity_after,
            minimum_stock=snap.minimum_stock,
        )
        for snap in final.values()
        if snap.is_low_stock
    ]


def _publish_after_commit(events, recipients: Recipients | None) -> None:
    try:
        notifications.publish(events, recipients)
    except Exception:
        current_app.logger.exception("Failed to publish sale notifications")


def create_sale(
    items,
    payment_method: str = "cash",
    customer: CustomerInfo | None = None,
    recipients: Recipients | None = None,
) -> Sale:
    """
    Record a sale: reserve stock for every line, write the sale, and for
    cash/mobile sales book per-owner income for today. All or nothing.
    """
    lines = normalize_lines(items)
    payment_method = validate_payment_method(payment_method)

    def _op():
        reserved = _reserve_lines(lines)

        now = utcnow()
        sale = Sale(sale_date=now, payment_method=payment_method, is_paid=False)
        _apply_customer(sale, customer)
        _attach_items(sale, reserved)

        if payment_method in SETTLED_PAYMENT_METHODS:
            sale.is_paid = True
            sale.paid_at = now
            income_service.apply_deltas(income_deltas(sale.items), business_date(now))

        db.session.add(sale)
        db.session.flush()
        return sale, reserved

    sale, reserved = run_in_transaction(_op)

    events = _low_stock_events(reserved)
    events.append(
        SaleCompleted(
            sale_id=sale.id,
            total_amount_cents=sale.total_amount_cents,
            items_count=len(reserved),
            payment_method=sale.payment_method,
            is_paid=sale.is_paid,
        )
    )
    _publish_after_commit(events, recipients)
    return sale


def mark_as_paid(sale_id: int) -> Sale:
    """
    Settle a credit sale.

    Income is booked against the day the sale happened. Profit uses each
    line's frozen unit price and the item's unit cost as it stands now; that
    cost is recorded on the line so a later delete reverses the same amount.
    """
    def _op():
        sale = _load_sale(sale_id)
        if sale.is_paid:
            raise AlreadyPaid("Sale is already marked as paid", details={"sale_id": sale_id})

        for item in sale.items:
            item.unit_cost_cents = stock_service.current_cost_cents(item.inventory_item_id)

        sale.is_paid = True
        sale.paid_at = utcnow()
        income_service.apply_deltas(income_deltas(sale.items), business_date(sale.sale_date))
        db.session.flush()
        return sale

    return run_in_transaction(_op)


def update_sale(
    sale_id: int,
    items,
    customer: CustomerInfo | None = None,
    recipients: Recipients | None = None,
) -> Sale:
    """
    Replace the lines of an unpaid sale.

    Old quantities go back to stock before the new set is reserved, so a
    line may reuse stock it held before. If the new set cannot be reserved
    the sale keeps its original lines and stock is untouched.
    """
    lines = normalize_lines(items)

    def _op():
        sale = _load_sale(sale_id)
        if sale.is_paid:
            raise CannotEditPaid("Paid sales cannot be edited", details={"sale_id": sale_id})

        for item in sale.items:
            stock_service.release(item.inventory_item_id, item.quantity)
        sale.items.clear()
        db.session.flush()

        reserved = _reserve_lines(lines)
        _attach_items(sale, reserved)
        _apply_customer(sale, customer)
        db.session.flush()
        return sale, reserved

    sale, reserved = run_in_transaction(_op)
    _publish_after_commit(_low_stock_events(reserved), recipients)
    return sale


def delete_sale(sale_id: int) -> dict:
    """
    Delete a sale and undo its effects: every line's quantity returns to
    stock and, for a paid sale, the income booked for it is subtracted from
    the original sale day. Returns the deleted sale as a dict.
    """
    def _op():
        sale = _load_sale(sale_id)
        snapshot = sale.to_dict()

        for item in sale.items:
            stock_service.release(item.inventory_item_id, item.quantity)

        if sale.is_paid:
            income_service.apply_deltas(
                income_deltas(sale.items),
                business_date(sale.sale_date),
                sign=-1,
            )

        db.session.delete(sale)
        db.session.flush()
        return snapshot

    return run_in_transaction(_op)


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id, populate_existing=True)
    if sale is None:
        raise SaleNotFound("Sale not found", details={"sale_id": sale_id})
    return sale


def list_sales(
    *,
    start=None,
    end=None,
    owner_id: int | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Sales newest first. ``start``/``end`` are UTC-naive datetimes (inclusive).
    ``owner_id`` keeps sales with at least one line from that owner.
    """
    q = db.session.query(Sale)
    if start is not None:
        q = q.filter(Sale.sale_date >= start)
    if end is not None:
        q = q.filter(Sale.sale_date <= end)
    if owner_id is not None:
        q = q.filter(Sale.items.any(SaleItem.owner_id == owner_id))
    q = q.order_by(Sale.sale_date.desc(), Sale.id.desc())

    per_page = min(per_page or 20, 100)
    page = max(page or 1, 1)
    if per_page <= 0:
        raise ValidationError("per_page must be positive")

    total = q.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    sales = q.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [s.to_dict() for s in sales],
        "count": len(sales),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
