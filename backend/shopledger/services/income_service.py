# Overview: Income aggregator; maintains the per-owner, per-day income_summary rows.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import IncomeSummary, Sale, SaleItem
from shopledger.time_utils import business_day_bounds

"""
Income Aggregator Invariants (authoritative)

- One row per (owner_id, date); enforced by uq_income_summary_owner_date.
- Rows change only by signed deltas. Never replaced wholesale, never deleted.
- apply_delta is a single INSERT ... ON CONFLICT DO UPDATE (SQLite and
  PostgreSQL), so concurrent sales for the same owner/day cannot lose an
  update. Other dialects fall back to an optimistic compare-and-swap on
  version_id, looped until it lands.
- Runs inside the caller's unit of work; never commits.
"""

OPTIMISTIC_ATTEMPTS = 10


@dataclass(frozen=True)
class IncomeDelta:
    sales_cents: int = 0
    profit_cents: int = 0
    items: int = 0

    def __add__(self, other: "IncomeDelta") -> "IncomeDelta":
        return IncomeDelta(
            sales_cents=self.sales_cents + other.sales_cents,
            profit_cents=self.profit_cents + other.profit_cents,
            items=self.items + other.items,
        )

    def __neg__(self) -> "IncomeDelta":
        return IncomeDelta(-self.sales_cents, -self.profit_cents, -self.items)

    @property
    def is_zero(self) -> bool:
        return self.sales_cents == 0 and self.profit_cents == 0 and self.items == 0

    def to_dict(self) -> dict:
        return {
            "total_sales_cents": self.sales_cents,
            "total_profit_cents": self.profit_cents,
            "total_items_sold": self.items,
        }


def _upsert_increment(insert_fn, owner_id: int, day: date, delta: IncomeDelta) -> None:
    table = IncomeSummary.__table__
    insert_stmt = insert_fn(table).values(
        owner_id=owner_id,
        date=day,
        total_sales_cents=delta.sales_cents,
        total_profit_cents=delta.profit_cents,
        total_items_sold=delta.items,
        version_id=1,
    )
    # Column.onupdate is not applied to ON CONFLICT DO UPDATE; set it here
    upsert = insert_stmt.on_conflict_do_update(
        index_elements=[table.c.owner_id, table.c.date],
        set_={
            "total_sales_cents": table.c.total_sales_cents + insert_stmt.excluded.total_sales_cents,
            "total_profit_cents": table.c.total_profit_cents + insert_stmt.excluded.total_profit_cents,
            "total_items_sold": table.c.total_items_sold + insert_stmt.excluded.total_items_sold,
            "version_id": table.c.version_id + 1,
            "updated_at": func.now(),
        },
    )
    db.session.execute(upsert)


def _current_version(owner_id: int, day: date):
    table = IncomeSummary.__table__
    return db.session.execute(
        select(table.c.id, table.c.version_id).where(
            table.c.owner_id == owner_id,
            table.c.date == day,
        )
    ).first()


def _apply_delta_optimistic(owner_id: int, day: date, delta: IncomeDelta) -> None:
    table = IncomeSummary.__table__
    for _ in range(OPTIMISTIC_ATTEMPTS):
        row = _current_version(owner_id, day)

        if row is None:
            try:
                with db.session.begin_nested():
                    db.session.execute(
                        table.insert().values(
                            owner_id=owner_id,
                            date=day,
                            total_sales_cents=delta.sales_cents,
                            total_profit_cents=delta.profit_cents,
                            total_items_sold=delta.items,
                            version_id=1,
                        )
                    )
                return
            except IntegrityError:
                # Someone inserted the row first; increment it instead
                continue

        result = db.session.execute(
            table.update()
            .where(table.c.id == row.id, table.c.version_id == row.version_id)
            .values(
                total_sales_cents=table.c.total_sales_cents + delta.sales_cents,
                total_profit_cents=table.c.total_profit_cents + delta.profit_cents,
                total_items_sold=table.c.total_items_sold + delta.items,
                version_id=row.version_id + 1,
                updated_at=func.now(),
            )
        )
        if result.rowcount == 1:
            return

    raise StaleDataError(
        f"income_summary row for owner {owner_id} on {day} kept changing"
    )


def apply_delta(owner_id: int, day: date, delta: IncomeDelta) -> None:
    """
    Create the (owner, day) row with ``delta`` as its initial values, or add
    ``delta`` to the existing row. Deltas may be negative (reversals).
    """
    if delta.is_zero:
        return

    dialect = db.engine.dialect.name
    if dialect == "sqlite":
        _upsert_increment(sqlite_insert, owner_id, day, delta)
    elif dialect == "postgresql":
        _upsert_increment(pg_insert, owner_id, day, delta)
    else:
        _apply_delta_optimistic(owner_id, day, delta)


def apply_deltas(deltas: dict[int, IncomeDelta], day: date, *, sign: int = 1) -> None:
    """Apply one delta per owner, in owner order to keep lock order stable."""
    for owner_id in sorted(deltas):
        delta = deltas[owner_id]
        apply_delta(owner_id, day, delta if sign > 0 else -delta)


def get_summary(owner_id: int, day: date) -> IncomeSummary | None:
    return (
        db.session.query(IncomeSummary)
        .filter_by(owner_id=owner_id, date=day)
        .populate_existing()
        .first()
    )


def list_daily(
    start: date | None = None,
    end: date | None = None,
    owner_id: int | None = None,
) -> list[IncomeSummary]:
    q = db.session.query(IncomeSummary)
    if start is not None:
        q = q.filter(IncomeSummary.date >= start)
    if end is not None:
        q = q.filter(IncomeSummary.date <= end)
    if owner_id is not None:
        q = q.filter(IncomeSummary.owner_id == owner_id)
    return q.order_by(IncomeSummary.date.desc(), IncomeSummary.total_sales_cents.desc()).all()


def monthly_totals(year: int, owner_id: int | None = None) -> list[dict]:
    month = func.extract("month", IncomeSummary.date)
    q = db.session.query(
        month.label("month"),
        IncomeSummary.owner_id,
        func.sum(IncomeSummary.total_sales_cents).label("total_sales_cents"),
        func.sum(IncomeSummary.total_profit_cents).label("total_profit_cents"),
        func.sum(IncomeSummary.total_items_sold).label("total_items_sold"),
    ).filter(func.extract("year", IncomeSummary.date) == year)
    if owner_id is not None:
        q = q.filter(IncomeSummary.owner_id == owner_id)
    rows = q.group_by(month, IncomeSummary.owner_id).order_by(month, IncomeSummary.owner_id).all()
    return [
        {
            "year": year,
            "month": int(r.month),
            "owner_id": r.owner_id,
            "total_sales_cents": int(r.total_sales_cents or 0),
            "total_profit_cents": int(r.total_profit_cents or 0),
            "total_items_sold": int(r.total_items_sold or 0),
        }
        for r in rows
    ]


def replay_day(day: date) -> dict[int, IncomeDelta]:
    """
    Recompute what income_summary should hold for ``day`` from paid sale
    lines, using each line's booked cost basis.
    """
    start, end = business_day_bounds(day)
    rows = (
        db.session.query(SaleItem)
        .join(Sale, SaleItem.sale_id == Sale.id)
        .filter(Sale.is_paid.is_(True), Sale.sale_date >= start, Sale.sale_date <= end)
        .all()
    )
    totals: dict[int, IncomeDelta] = {}
    for line in rows:
        totals[line.owner_id] = totals.get(line.owner_id, IncomeDelta()) + IncomeDelta(
            sales_cents=line.total_price_cents,
            profit_cents=line.profit_cents,
            items=line.quantity,
        )
    return totals


def find_drift(day: date) -> dict[int, IncomeDelta]:
    """Per-owner correction (expected - stored) for ``day``; empty when consistent."""
    expected = replay_day(day)
    stored = {
        s.owner_id: IncomeDelta(s.total_sales_cents, s.total_profit_cents, s.total_items_sold)
        for s in db.session.query(IncomeSummary).filter_by(date=day).populate_existing().all()
    }
    drift: dict[int, IncomeDelta] = {}
    for owner_id in set(expected) | set(stored):
        correction = expected.get(owner_id, IncomeDelta()) + -stored.get(owner_id, IncomeDelta())
        if not correction.is_zero:
            drift[owner_id] = correction
    return drift
