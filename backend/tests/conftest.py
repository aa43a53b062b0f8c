"""
Pytest fixtures for shopledger backend tests.

Provides the app on an in-memory database, a per-test table wipe, owner and
inventory factories, and a notifier that records deliveries instead of
pushing them.
"""

import pytest

from shopledger import create_app
from shopledger.extensions import db, notifications
from shopledger.models import Owner, InventoryItem
from shopledger.services.notification_service import DeliveryReceipt, PushNotifier, Recipients


class RecordingNotifier(PushNotifier):
    """Collects (kind, tokens, event) tuples; optionally fails every call."""

    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    def _record(self, kind, tokens, event):
        self.calls.append((kind, list(tokens), event))
        if self.fail:
            raise RuntimeError("push provider unreachable")
        return DeliveryReceipt(success=True, tickets=[{"status": "ok"} for _ in tokens])

    def notify_low_stock(self, tokens, item):
        return self._record("low_stock", tokens, item)

    def notify_sale_completed(self, tokens, summary):
        return self._record("sale_completed", tokens, summary)

    def notify_message(self, tokens, message):
        return self._record("test", tokens, message)

    def of_kind(self, kind):
        return [event for k, _, event in self.calls if k == kind]


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'NOTIFICATION_BACKEND': 'null',
        'NOTIFICATIONS_ASYNC': False,
        'BUSINESS_TIMEZONE': 'UTC',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        app.config['BUSINESS_TIMEZONE'] = 'UTC'

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def notifier(app):
    """Swap in a recording notifier for the duration of a test."""
    recorder = RecordingNotifier()
    previous = notifications.notifier
    notifications.set_notifier(recorder)
    yield recorder
    notifications.set_notifier(previous)


@pytest.fixture
def recipients():
    return Recipients(low_stock_tokens=("ExponentPushToken[low]",), sales_tokens=("ExponentPushToken[sales]",))


@pytest.fixture(scope='function')
def make_owner(db_session):
    """Factory: make_owner("mya") -> committed Owner."""
    def _make(username="owner", full_name=None):
        owner = Owner(username=username, full_name=full_name or username.title(), is_active=True)
        db_session.add(owner)
        db_session.commit()
        return owner

    return _make


@pytest.fixture(scope='function')
def make_item(db_session):
    """Factory for committed inventory items. Prices are in cents."""
    def _make(owner, name="Item", quantity=10, minimum_stock=0,
              unit_cost_cents=10000, selling_price_cents=20000, **extra):
        item = InventoryItem(
            owner_id=owner.id,
            name=name,
            quantity=quantity,
            minimum_stock=minimum_stock,
            unit_cost_cents=unit_cost_cents,
            selling_price_cents=selling_price_cents,
            is_active=True,
            **extra,
        )
        db_session.add(item)
        db_session.commit()
        return item

    return _make


@pytest.fixture(scope='function')
def owner_a(make_owner):
    return make_owner("owner_a", "Owner A")


@pytest.fixture(scope='function')
def owner_b(make_owner):
    return make_owner("owner_b", "Owner B")


def owner_headers(owner) -> dict:
    """Helper to create X-Owner-Id headers."""
    return {'X-Owner-Id': str(owner.id)}
