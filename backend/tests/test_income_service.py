from datetime import date, datetime

import pytest
from sqlalchemy.orm.exc import StaleDataError

from shopledger.extensions import db
from shopledger.models import IncomeSummary, Sale, SaleItem
from shopledger.services import income_service
from shopledger.services.concurrency import run_in_transaction
from shopledger.services.income_service import IncomeDelta


DAY = date(2026, 3, 14)


def _apply(owner_id, day, delta):
    run_in_transaction(lambda: income_service.apply_delta(owner_id, day, delta))


def _apply_optimistic(owner_id, day, delta, **kwargs):
    run_in_transaction(lambda: income_service._apply_delta_optimistic(owner_id, day, delta), **kwargs)


def _totals(row):
    return row.total_sales_cents, row.total_profit_cents, row.total_items_sold


def test_income_delta_arithmetic():
    a = IncomeDelta(100, 40, 2)
    b = IncomeDelta(50, 10, 1)
    assert a + b == IncomeDelta(150, 50, 3)
    assert -a == IncomeDelta(-100, -40, -2)
    assert (a + -a).is_zero
    assert a.to_dict() == {"total_sales_cents": 100, "total_profit_cents": 40, "total_items_sold": 2}


def test_first_delta_creates_row(owner_a):
    _apply(owner_a.id, DAY, IncomeDelta(120000, 60000, 6))

    row = income_service.get_summary(owner_a.id, DAY)
    assert (row.total_sales_cents, row.total_profit_cents, row.total_items_sold) == (120000, 60000, 6)


def test_deltas_accumulate_on_one_row(owner_a):
    _apply(owner_a.id, DAY, IncomeDelta(1000, 400, 1))
    _apply(owner_a.id, DAY, IncomeDelta(2500, 900, 3))

    rows = db.session.query(IncomeSummary).filter_by(owner_id=owner_a.id, date=DAY).all()
    assert len(rows) == 1
    assert rows[0].total_sales_cents == 3500
    assert rows[0].total_profit_cents == 1300
    assert rows[0].total_items_sold == 4
    assert rows[0].version_id == 2


def test_negative_delta_keeps_zero_row(owner_a):
    _apply(owner_a.id, DAY, IncomeDelta(1000, 400, 1))
    _apply(owner_a.id, DAY, IncomeDelta(-1000, -400, -1))

    row = income_service.get_summary(owner_a.id, DAY)
    assert row is not None
    assert (row.total_sales_cents, row.total_profit_cents, row.total_items_sold) == (0, 0, 0)


def test_zero_delta_writes_nothing(owner_a):
    _apply(owner_a.id, DAY, IncomeDelta())
    assert income_service.get_summary(owner_a.id, DAY) is None


def test_rows_are_per_owner_and_day(owner_a, owner_b):
    run_in_transaction(lambda: income_service.apply_deltas(
        {owner_a.id: IncomeDelta(100, 50, 1), owner_b.id: IncomeDelta(300, 100, 2)},
        DAY,
    ))
    _apply(owner_a.id, date(2026, 3, 15), IncomeDelta(700, 200, 1))

    assert income_service.get_summary(owner_a.id, DAY).total_sales_cents == 100
    assert income_service.get_summary(owner_b.id, DAY).total_sales_cents == 300
    assert len(income_service.list_daily(start=DAY, end=DAY)) == 2
    assert len(income_service.list_daily(owner_id=owner_a.id)) == 2


def test_apply_deltas_negative_sign(owner_a):
    deltas = {owner_a.id: IncomeDelta(500, 200, 2)}
    run_in_transaction(lambda: income_service.apply_deltas(deltas, DAY))
    run_in_transaction(lambda: income_service.apply_deltas(deltas, DAY, sign=-1))
    assert income_service.get_summary(owner_a.id, DAY).total_sales_cents == 0


def test_monthly_totals(owner_a):
    _apply(owner_a.id, date(2026, 1, 5), IncomeDelta(100, 10, 1))
    _apply(owner_a.id, date(2026, 1, 20), IncomeDelta(200, 20, 2))
    _apply(owner_a.id, date(2026, 2, 1), IncomeDelta(400, 40, 4))
    _apply(owner_a.id, date(2025, 12, 31), IncomeDelta(800, 80, 8))

    months = income_service.monthly_totals(2026)

    assert [(m["month"], m["total_sales_cents"], m["total_items_sold"]) for m in months] == [
        (1, 300, 3),
        (2, 400, 4),
    ]


def test_find_drift_reports_correction(owner_a, make_item):
    item = make_item(owner_a)
    sale = Sale(sale_date=datetime(2026, 3, 14, 10, 0), payment_method="cash", is_paid=True,
                total_amount_cents=40000)
    sale.items.append(SaleItem(inventory_item_id=item.id, owner_id=owner_a.id, quantity=2,
                               unit_price_cents=20000, total_price_cents=40000, unit_cost_cents=10000))
    db.session.add(sale)
    db.session.commit()

    assert income_service.find_drift(DAY) == {owner_a.id: IncomeDelta(40000, 20000, 2)}

    _apply(owner_a.id, DAY, IncomeDelta(40000, 20000, 2))
    assert income_service.find_drift(DAY) == {}


def test_replay_ignores_unpaid_sales(owner_a, make_item):
    item = make_item(owner_a)
    sale = Sale(sale_date=datetime(2026, 3, 14, 10, 0), payment_method="credit", is_paid=False,
                total_amount_cents=20000)
    sale.items.append(SaleItem(inventory_item_id=item.id, owner_id=owner_a.id, quantity=1,
                               unit_price_cents=20000, total_price_cents=20000, unit_cost_cents=10000))
    db.session.add(sale)
    db.session.commit()

    assert income_service.replay_day(DAY) == {}


def test_optimistic_fallback_creates_then_increments(owner_a):
    _apply_optimistic(owner_a.id, DAY, IncomeDelta(5000, 2000, 3))
    _apply_optimistic(owner_a.id, DAY, IncomeDelta(-5000, -2000, -3))
    _apply_optimistic(owner_a.id, DAY, IncomeDelta(5, 1, 1))

    rows = db.session.query(IncomeSummary).filter_by(owner_id=owner_a.id, date=DAY).populate_existing().all()
    assert len(rows) == 1
    assert _totals(rows[0]) == (5, 1, 1)
    assert rows[0].version_id == 3


def test_optimistic_fallback_retries_on_version_conflict(owner_a, monkeypatch):
    _apply_optimistic(owner_a.id, DAY, IncomeDelta(1000, 400, 1))
    table = IncomeSummary.__table__
    real_lookup = income_service._current_version
    seen_versions = []

    def lookup_then_concurrent_write(owner_id, day):
        row = real_lookup(owner_id, day)
        seen_versions.append(row.version_id)
        if len(seen_versions) == 1:
            # Another writer lands between the read and the compare-and-swap
            db.session.execute(
                table.update().where(table.c.id == row.id).values(
                    total_items_sold=table.c.total_items_sold + 10,
                    version_id=table.c.version_id + 1,
                )
            )
        return row

    monkeypatch.setattr(income_service, "_current_version", lookup_then_concurrent_write)
    _apply_optimistic(owner_a.id, DAY, IncomeDelta(500, 100, 2))

    row = income_service.get_summary(owner_a.id, DAY)
    assert seen_versions == [1, 2]
    assert _totals(row) == (1500, 500, 13)
    assert row.version_id == 3


def test_optimistic_fallback_gives_up_when_row_keeps_changing(owner_a, monkeypatch):
    _apply_optimistic(owner_a.id, DAY, IncomeDelta(1000, 400, 1))
    table = IncomeSummary.__table__
    real_lookup = income_service._current_version
    lookups = []

    def always_stale(owner_id, day):
        row = real_lookup(owner_id, day)
        lookups.append(row.version_id)
        db.session.execute(
            table.update().where(table.c.id == row.id).values(version_id=table.c.version_id + 1)
        )
        return row

    monkeypatch.setattr(income_service, "OPTIMISTIC_ATTEMPTS", 3)
    monkeypatch.setattr(income_service, "_current_version", always_stale)

    with pytest.raises(StaleDataError):
        _apply_optimistic(owner_a.id, DAY, IncomeDelta(500, 100, 2), attempts=1)

    row = income_service.get_summary(owner_a.id, DAY)
    assert lookups == [1, 2, 3]
    assert _totals(row) == (1000, 400, 1)
    assert row.version_id == 1
