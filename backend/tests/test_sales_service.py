"""
Sale lifecycle tests: create, mark-paid, edit and delete against the stock
ledger and the income aggregator.
"""
from datetime import date, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pytest

from shopledger.errors import (
    AlreadyPaid,
    CannotEditPaid,
    InsufficientStock,
    ItemInactive,
    ItemNotFound,
    SaleNotFound,
    ValidationError,
)
from shopledger.extensions import db
from shopledger.models import IncomeSummary, InventoryItem, Sale, SaleItem
from shopledger.services import income_service, sales_service
from shopledger.services.notification_service import SaleCompleted
from shopledger.time_utils import business_date
from shopledger.validation import CustomerInfo


def _quantity(item_id):
    return db.session.get(InventoryItem, item_id, populate_existing=True).quantity


def _income(owner_id, day):
    row = income_service.get_summary(owner_id, day)
    if row is None:
        return None
    return row.total_sales_cents, row.total_profit_cents, row.total_items_sold


def _backdate(sale_id, when):
    sale = db.session.get(Sale, sale_id)
    sale.sale_date = when
    db.session.commit()


@pytest.fixture
def rice(owner_a, make_item):
    return make_item(owner_a, name="Rice", quantity=10, minimum_stock=5,
                     unit_cost_cents=10000, selling_price_cents=20000)


def test_cash_sale_reserves_stock_books_income_and_alerts(rice, owner_a, notifier, recipients):
    sale = sales_service.create_sale([(rice.id, 6)], payment_method="cash", recipients=recipients)

    assert sale.is_paid is True
    assert sale.paid_at is not None
    assert sale.total_amount_cents == 120000
    assert _quantity(rice.id) == 4
    assert _income(owner_a.id, business_date()) == (120000, 60000, 6)

    low = notifier.of_kind("low_stock")
    assert len(low) == 1
    assert low[0].item_id == rice.id
    assert low[0].current_quantity == 4
    assert low[0].minimum_stock == 5

    completed = notifier.of_kind("sale_completed")
    assert completed == [SaleCompleted(
        sale_id=sale.id, total_amount_cents=120000, items_count=1, payment_method="cash", is_paid=True,
    )]


def test_mobile_sale_is_paid(rice, owner_a):
    sale = sales_service.create_sale([(rice.id, 1)], payment_method="mobile")
    assert sale.is_paid is True
    assert _income(owner_a.id, business_date()) == (20000, 10000, 1)


def test_no_low_stock_alert_above_minimum(rice, notifier, recipients):
    sales_service.create_sale([(rice.id, 2)], recipients=recipients)
    assert notifier.of_kind("low_stock") == []
    assert len(notifier.of_kind("sale_completed")) == 1


def test_line_prices_come_from_inventory(rice):
    sale = sales_service.create_sale([{"inventory_item_id": rice.id, "quantity": 2}])

    line = sale.items[0]
    assert line.unit_price_cents == 20000
    assert line.total_price_cents == 40000
    assert line.unit_cost_cents == 10000
    assert line.owner_id == rice.owner_id


def test_price_change_does_not_touch_existing_lines(rice):
    sale = sales_service.create_sale([(rice.id, 1)])
    rice.selling_price_cents = 99900
    db.session.commit()

    reloaded = sales_service.get_sale(sale.id)
    assert reloaded.items[0].unit_price_cents == 20000
    assert reloaded.total_amount_cents == 20000


def test_credit_sale_books_no_income(rice, owner_a):
    sale = sales_service.create_sale([(rice.id, 3)], payment_method="credit")

    assert sale.is_paid is False
    assert sale.paid_at is None
    assert _quantity(rice.id) == 7
    assert _income(owner_a.id, business_date()) is None


def test_mark_paid_books_income_on_original_sale_day(rice, owner_a):
    sale = sales_service.create_sale([(rice.id, 3)], payment_method="credit")
    _backdate(sale.id, datetime(2026, 1, 2, 12, 0))

    paid = sales_service.mark_as_paid(sale.id)

    assert paid.is_paid is True
    assert paid.paid_at is not None
    assert _income(owner_a.id, date(2026, 1, 2)) == (60000, 30000, 3)
    assert _income(owner_a.id, business_date()) is None


def test_mark_paid_uses_current_cost_and_delete_reverses_it(rice, owner_a):
    sale = sales_service.create_sale([(rice.id, 2)], payment_method="credit")
    rice.unit_cost_cents = 15000
    db.session.commit()

    sales_service.mark_as_paid(sale.id)
    today = business_date()
    assert _income(owner_a.id, today) == (40000, 10000, 2)
    assert sales_service.get_sale(sale.id).items[0].unit_cost_cents == 15000

    sales_service.delete_sale(sale.id)
    assert _income(owner_a.id, today) == (0, 0, 0)


def test_mark_paid_twice_is_rejected(rice):
    sale = sales_service.create_sale([(rice.id, 1)], payment_method="credit")
    sales_service.mark_as_paid(sale.id)

    with pytest.raises(AlreadyPaid):
        sales_service.mark_as_paid(sale.id)

    cash = sales_service.create_sale([(rice.id, 1)], payment_method="cash")
    with pytest.raises(AlreadyPaid):
        sales_service.mark_as_paid(cash.id)


def test_mark_paid_unknown_sale(db_session):
    with pytest.raises(SaleNotFound):
        sales_service.mark_as_paid(424242)


def test_delete_paid_sale_restores_stock_and_income(rice, owner_a):
    sale = sales_service.create_sale([(rice.id, 6)], payment_method="cash")
    today = business_date()

    deleted = sales_service.delete_sale(sale.id)

    assert deleted["id"] == sale.id
    assert _quantity(rice.id) == 10
    assert _income(owner_a.id, today) == (0, 0, 0)
    assert db.session.get(Sale, sale.id) is None
    assert db.session.query(SaleItem).count() == 0


def test_delete_unpaid_sale_leaves_income_alone(rice, owner_a):
    sale = sales_service.create_sale([(rice.id, 4)], payment_method="credit")
    sales_service.delete_sale(sale.id)

    assert _quantity(rice.id) == 10
    assert db.session.query(IncomeSummary).count() == 0


def test_delete_backdated_sale_reverses_original_day(rice, owner_a):
    sale = sales_service.create_sale([(rice.id, 1)], payment_method="credit")
    _backdate(sale.id, datetime(2026, 2, 10, 9, 0))
    sales_service.mark_as_paid(sale.id)

    sales_service.delete_sale(sale.id)

    assert _income(owner_a.id, date(2026, 2, 10)) == (0, 0, 0)


def test_delete_unknown_sale(db_session):
    with pytest.raises(SaleNotFound):
        sales_service.delete_sale(424242)


def test_multi_item_sale_is_all_or_nothing(owner_a, make_item):
    plenty = make_item(owner_a, name="Plenty", quantity=10)
    scarce = make_item(owner_a, name="Scarce", quantity=1)

    with pytest.raises(InsufficientStock) as exc:
        sales_service.create_sale([(plenty.id, 2), (scarce.id, 5)], payment_method="cash")

    assert exc.value.details["inventory_item_id"] == scarce.id
    assert _quantity(plenty.id) == 10
    assert _quantity(scarce.id) == 1
    assert db.session.query(Sale).count() == 0
    assert db.session.query(IncomeSummary).count() == 0


def test_unknown_or_inactive_item_aborts_sale(rice, owner_a, make_item):
    gone = make_item(owner_a, name="Gone", quantity=5)
    gone.is_active = False
    db.session.commit()

    with pytest.raises(ItemNotFound):
        sales_service.create_sale([(rice.id, 1), (99999, 1)])
    with pytest.raises(ItemInactive):
        sales_service.create_sale([(rice.id, 1), (gone.id, 1)])

    assert _quantity(rice.id) == 10
    assert db.session.query(Sale).count() == 0


def test_same_item_on_two_lines_counts_against_one_stock(rice):
    with pytest.raises(InsufficientStock):
        sales_service.create_sale([(rice.id, 6), (rice.id, 6)])
    assert _quantity(rice.id) == 10

    sale = sales_service.create_sale([(rice.id, 4), (rice.id, 3)])
    assert len(sale.items) == 2
    assert _quantity(rice.id) == 3


def test_invalid_requests_rejected_before_storage(rice):
    with pytest.raises(ValidationError):
        sales_service.create_sale([])
    with pytest.raises(ValidationError):
        sales_service.create_sale([(rice.id, 0)])
    with pytest.raises(ValidationError):
        sales_service.create_sale([(rice.id, 1)], payment_method="barter")
    for not_a_list in (5, None, "rice", {"inventory_item_id": rice.id, "quantity": 1}):
        with pytest.raises(ValidationError, match="items must be a non-empty list"):
            sales_service.create_sale(not_a_list)
    assert _quantity(rice.id) == 10


def test_income_is_split_per_owner(owner_a, owner_b, make_item):
    a_item = make_item(owner_a, name="A", quantity=5, unit_cost_cents=1000, selling_price_cents=1500)
    b_item = make_item(owner_b, name="B", quantity=5, unit_cost_cents=3000, selling_price_cents=5000)

    sale = sales_service.create_sale([(a_item.id, 2), (b_item.id, 1)], payment_method="cash")

    today = business_date()
    assert sale.total_amount_cents == 8000
    assert _income(owner_a.id, today) == (3000, 1000, 2)
    assert _income(owner_b.id, today) == (5000, 2000, 1)


def test_update_unpaid_sale_swaps_lines(owner_a, make_item):
    first = make_item(owner_a, name="First", quantity=10)
    second = make_item(owner_a, name="Second", quantity=10, selling_price_cents=5000)
    sale = sales_service.create_sale([(first.id, 2)], payment_method="credit")

    updated = sales_service.update_sale(
        sale.id,
        [(first.id, 1), (second.id, 3)],
        customer=CustomerInfo(name="Ko Ko", phone="0912345", notes="pay Friday"),
    )

    assert _quantity(first.id) == 9
    assert _quantity(second.id) == 7
    assert [(i.inventory_item_id, i.quantity) for i in updated.items] == [(first.id, 1), (second.id, 3)]
    assert updated.total_amount_cents == 20000 + 15000
    assert updated.customer_name == "Ko Ko"
    assert updated.is_paid is False


def test_update_may_reuse_stock_it_held(owner_a, make_item):
    item = make_item(owner_a, quantity=5)
    sale = sales_service.create_sale([(item.id, 5)], payment_method="credit")

    sales_service.update_sale(sale.id, [(item.id, 4)])

    assert _quantity(item.id) == 1


def test_failed_update_keeps_original_lines(owner_a, make_item):
    first = make_item(owner_a, name="First", quantity=10)
    scarce = make_item(owner_a, name="Scarce", quantity=2)
    sale = sales_service.create_sale([(first.id, 2)], payment_method="credit")

    with pytest.raises(InsufficientStock):
        sales_service.update_sale(sale.id, [(scarce.id, 50)])

    reloaded = sales_service.get_sale(sale.id)
    assert [(i.inventory_item_id, i.quantity) for i in reloaded.items] == [(first.id, 2)]
    assert reloaded.total_amount_cents == 40000
    assert _quantity(first.id) == 8
    assert _quantity(scarce.id) == 2


def test_paid_sale_cannot_be_edited(rice):
    sale = sales_service.create_sale([(rice.id, 1)], payment_method="cash")

    with pytest.raises(CannotEditPaid):
        sales_service.update_sale(sale.id, [(rice.id, 2)])

    assert _quantity(rice.id) == 9


def test_update_low_stock_alert(rice, notifier, recipients):
    sale = sales_service.create_sale([(rice.id, 1)], payment_method="credit")
    notifier.calls.clear()

    sales_service.update_sale(sale.id, [(rice.id, 8)], recipients=recipients)

    low = notifier.of_kind("low_stock")
    assert [e.current_quantity for e in low] == [2]


def test_notification_failure_does_not_fail_sale(rice, notifier, recipients):
    notifier.fail = True

    sale = sales_service.create_sale([(rice.id, 6)], payment_method="cash", recipients=recipients)

    assert sale.id is not None
    assert sales_service.get_sale(sale.id).is_paid is True
    assert _quantity(rice.id) == 4
    assert len(notifier.calls) == 2


def test_no_recipients_means_no_delivery(rice, notifier):
    sales_service.create_sale([(rice.id, 6)])
    assert notifier.calls == []


def test_income_day_follows_business_timezone(app, rice, owner_a):
    try:
        ZoneInfo("Asia/Yangon")
    except ZoneInfoNotFoundError:
        pytest.skip("tz database not available")
    app.config["BUSINESS_TIMEZONE"] = "Asia/Yangon"

    sale = sales_service.create_sale([(rice.id, 1)], payment_method="credit")
    # 20:00 UTC is 02:30 the next day in Yangon (UTC+06:30)
    _backdate(sale.id, datetime(2026, 1, 1, 20, 0))
    sales_service.mark_as_paid(sale.id)

    assert _income(owner_a.id, date(2026, 1, 2)) == (20000, 10000, 1)
    assert _income(owner_a.id, date(2026, 1, 1)) is None


def test_list_sales_newest_first_and_owner_filter(owner_a, owner_b, make_item):
    a_item = make_item(owner_a, name="A", quantity=10)
    b_item = make_item(owner_b, name="B", quantity=10)
    first = sales_service.create_sale([(a_item.id, 1)])
    second = sales_service.create_sale([(b_item.id, 1)])

    listing = sales_service.list_sales()
    assert [s["id"] for s in listing["items"]] == [second.id, first.id]
    assert listing["pagination"]["total"] == 2

    only_a = sales_service.list_sales(owner_id=owner_a.id)
    assert [s["id"] for s in only_a["items"]] == [first.id]
