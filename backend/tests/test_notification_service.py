import json
import logging

import httpx
import pytest

from shopledger.services.notification_service import (
    EXPO_CHUNK_SIZE,
    DeviceTestMessage,
    ExpoPushNotifier,
    LoggingNotifier,
    LowStockCrossing,
    NotificationDispatcher,
    NullNotifier,
    Recipients,
    SaleCompleted,
    build_notifier,
    format_amount,
    is_expo_push_token,
)

EXPO_URL = "https://exp.host/--/api/v2/push/send"

LOW = LowStockCrossing(item_id=1, owner_id=1, name="Rice", current_quantity=4, minimum_stock=5)
DONE = SaleCompleted(sale_id=7, total_amount_cents=120000, items_count=1, payment_method="cash", is_paid=True)


def _expo(handler, **kwargs):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return ExpoPushNotifier(url=EXPO_URL, client=client, **kwargs)


def _token(i):
    return f"ExponentPushToken[device-{i}]"


def test_token_shapes():
    assert is_expo_push_token("ExponentPushToken[abc]")
    assert is_expo_push_token("ExpoPushToken[abc]")
    assert is_expo_push_token("0f6b3c1e-1a2b-4c3d-8e9f-0a1b2c3d4e5f")
    assert not is_expo_push_token("not-a-token")
    assert not is_expo_push_token(None)


def test_format_amount():
    assert format_amount(120000) == "1,200.00"
    assert format_amount(5) == "0.05"


def test_expo_low_stock_message():
    sent = []

    def handler(request):
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"data": [{"status": "ok", "id": "t1"}]})

    receipt = _expo(handler).notify_low_stock([_token(1)], LOW)

    assert receipt.success
    message = sent[0][0]
    assert message["to"] == _token(1)
    assert message["title"] == "Low Stock Alert"
    assert message["body"] == "Rice is running low! Only 4 left (minimum: 5)"
    assert message["data"]["type"] == "low_stock"
    assert message["data"]["item_id"] == 1


def test_expo_sale_message_uses_currency_label():
    sent = []

    def handler(request):
        sent.append(json.loads(request.content))
        assert request.headers["Authorization"] == "Bearer secret"
        return httpx.Response(200, json={"data": [{"status": "ok"}]})

    _expo(handler, access_token="secret", currency_label="Ks").notify_sale_completed([_token(1)], DONE)

    assert sent[0][0]["body"] == "Sale of 1,200.00 Ks completed. 1 item(s) sold."
    assert sent[0][0]["data"]["sale_id"] == 7


def test_expo_chunks_at_one_hundred():
    sizes = []

    def handler(request):
        batch = json.loads(request.content)
        sizes.append(len(batch))
        return httpx.Response(200, json={"data": [{"status": "ok"} for _ in batch]})

    tokens = [_token(i) for i in range(EXPO_CHUNK_SIZE + 30)]
    receipt = _expo(handler).notify_low_stock(tokens, LOW)

    assert sizes == [100, 30]
    assert len(receipt.tickets) == 130


def test_expo_skips_invalid_tokens():
    def handler(request):
        raise AssertionError("nothing should be sent")

    receipt = _expo(handler).notify_low_stock(["bogus"], LOW)
    assert not receipt.success
    assert receipt.error == "No valid push tokens"


def test_expo_http_error_is_reported_not_raised():
    def handler(request):
        return httpx.Response(500, json={"errors": [{"message": "boom"}]})

    receipt = _expo(handler).notify_sale_completed([_token(1)], DONE)

    assert not receipt.success
    assert receipt.error


def test_expo_failed_tickets():
    def handler(request):
        return httpx.Response(200, json={"data": [
            {"status": "ok"},
            {"status": "error", "details": {"error": "DeviceNotRegistered"}},
        ]})

    receipt = _expo(handler).notify_low_stock([_token(1), _token(2)], LOW)
    assert receipt.success
    assert len(receipt.failed_tickets) == 1


def test_build_notifier_backends():
    logger = logging.getLogger("test")
    assert isinstance(build_notifier({"NOTIFICATION_BACKEND": "null"}, logger), NullNotifier)
    assert isinstance(build_notifier({"NOTIFICATION_BACKEND": "log"}, logger), LoggingNotifier)
    expo = build_notifier({"NOTIFICATION_BACKEND": "expo", "EXPO_PUSH_URL": EXPO_URL}, logger)
    assert isinstance(expo, ExpoPushNotifier)
    with pytest.raises(ValueError):
        build_notifier({"NOTIFICATION_BACKEND": "pigeon"}, logger)


class _Boom:
    def notify_low_stock(self, tokens, item):
        raise RuntimeError("down")

    def notify_sale_completed(self, tokens, summary):
        raise RuntimeError("down")


def test_dispatcher_swallows_delivery_errors(caplog):
    dispatcher = NotificationDispatcher()
    dispatcher.set_notifier(_Boom())

    with caplog.at_level(logging.ERROR):
        dispatcher.publish([LOW, DONE], Recipients(("a",), ("b",)))

    assert "Notification delivery failed" in caplog.text


def test_dispatcher_routes_by_preference():
    seen = []

    class Recorder:
        def notify_low_stock(self, tokens, item):
            seen.append(("low", tokens))
            return NullNotifier().notify_low_stock(tokens, item)

        def notify_sale_completed(self, tokens, summary):
            seen.append(("sale", tokens))
            return NullNotifier().notify_sale_completed(tokens, summary)

    dispatcher = NotificationDispatcher()
    dispatcher.set_notifier(Recorder())
    dispatcher.publish([LOW, DONE], Recipients(low_stock_tokens=("x",), sales_tokens=()))

    assert seen == [("low", ["x"])]


def test_device_test_message_goes_through_dispatcher_to_expo():
    sent = []

    def handler(request):
        sent.extend(json.loads(request.content))
        return httpx.Response(200, json={"data": [{"status": "ok", "id": "t9"}]})

    dispatcher = NotificationDispatcher()
    dispatcher.set_notifier(_expo(handler))
    dispatcher.publish(
        [DeviceTestMessage(), LOW],
        Recipients(direct_tokens=(_token(1),)),
    )

    assert len(sent) == 1
    assert sent[0]["to"] == _token(1)
    assert sent[0]["title"] == "Test Notification"
    assert sent[0]["data"] == {"type": "test"}


def test_direct_tokens_alone_count_as_recipients():
    assert Recipients().is_empty
    assert not Recipients(direct_tokens=("x",)).is_empty
