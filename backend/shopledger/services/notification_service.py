# Overview: Post-commit notification fan-out; push delivery adapters and the failure-isolated dispatcher.

"""
Sale processing never talks to a push provider directly. After a unit of
work commits, sales_service hands plain event objects plus the caller's
recipient lists to ``NotificationDispatcher.publish``. Delivery then runs on
a small worker pool (or inline when NOTIFICATIONS_ASYNC is off). Every
delivery failure is logged and dropped: a committed sale is never reported
as failed because a phone could not be reached.

Adapters:
- ExpoPushNotifier: Expo push HTTP API (https://docs.expo.dev/push-notifications/sending-notifications/)
- LoggingNotifier: writes the notification to the app log (development)
- NullNotifier: drops everything
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal

import httpx

EXPO_CHUNK_SIZE = 100

_EXPO_TOKEN_RE = re.compile(r"^(ExponentPushToken|ExpoPushToken)\[.+\]$")
_EXPO_UUID_RE = re.compile(r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$", re.IGNORECASE)


def is_expo_push_token(token) -> bool:
    if not isinstance(token, str):
        return False
    return bool(_EXPO_TOKEN_RE.match(token) or _EXPO_UUID_RE.match(token))


def format_amount(cents: int) -> str:
    return f"{(Decimal(cents) / 100).quantize(Decimal('0.01')):,}"


@dataclass(frozen=True)
class LowStockCrossing:
    """An item's quantity ended at or below its minimum after a committed change."""
    item_id: int
    owner_id: int
    name: str
    current_quantity: int
    minimum_stock: int

    kind = "low_stock"

    def to_payload(self) -> dict:
        return {
            "type": self.kind,
            "item_id": self.item_id,
            "item_name": self.name,
            "current_quantity": self.current_quantity,
            "minimum_stock": self.minimum_stock,
        }


@dataclass(frozen=True)
class SaleCompleted:
    sale_id: int
    total_amount_cents: int
    items_count: int
    payment_method: str
    is_paid: bool

    kind = "sale_completed"

    def to_payload(self) -> dict:
        return {
            "type": self.kind,
            "sale_id": self.sale_id,
            "total_amount_cents": self.total_amount_cents,
            "items_count": self.items_count,
            "payment_method": self.payment_method,
            "is_paid": self.is_paid,
        }


@dataclass(frozen=True)
class DeviceTestMessage:
    """Owner-triggered message used to check that a device receives pushes."""
    title: str = "Test Notification"
    body: str = "This is a test notification from your shop ledger"

    kind = "test"

    def to_payload(self) -> dict:
        return {"type": self.kind}


@dataclass(frozen=True)
class Recipients:
    """Push tokens chosen by the caller, already filtered by device preferences."""
    low_stock_tokens: tuple[str, ...] = ()
    sales_tokens: tuple[str, ...] = ()
    # Devices addressed directly, regardless of preferences
    direct_tokens: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.low_stock_tokens or self.sales_tokens or self.direct_tokens)


@dataclass
class DeliveryReceipt:
    success: bool
    tickets: list[dict] = field(default_factory=list)
    error: str | None = None

    @property
    def failed_tickets(self) -> list[dict]:
        return [t for t in self.tickets if t.get("status") == "error"]


class PushNotifier:
    """Consumed interface. Implementations must not raise for delivery problems."""

    def notify_low_stock(self, tokens: list[str], item: LowStockCrossing) -> DeliveryReceipt:
        raise NotImplementedError

    def notify_sale_completed(self, tokens: list[str], summary: SaleCompleted) -> DeliveryReceipt:
        raise NotImplementedError

    def notify_message(self, tokens: list[str], message: DeviceTestMessage) -> DeliveryReceipt:
        raise NotImplementedError


class NullNotifier(PushNotifier):
    def notify_low_stock(self, tokens, item):
        return DeliveryReceipt(success=False, error="notifications disabled")

    def notify_sale_completed(self, tokens, summary):
        return DeliveryReceipt(success=False, error="notifications disabled")

    def notify_message(self, tokens, message):
        return DeliveryReceipt(success=False, error="notifications disabled")


class LoggingNotifier(PushNotifier):
    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger(__name__)

    def notify_low_stock(self, tokens, item):
        self.logger.info(
            "Low stock: %s (%s/%s) -> %d device(s)",
            item.name, item.current_quantity, item.minimum_stock, len(tokens),
        )
        return DeliveryReceipt(success=True)

    def notify_sale_completed(self, tokens, summary):
        self.logger.info(
            "Sale #%s completed (%s, %d item(s)) -> %d device(s)",
            summary.sale_id, format_amount(summary.total_amount_cents), summary.items_count, len(tokens),
        )
        return DeliveryReceipt(success=True)

    def notify_message(self, tokens, message):
        self.logger.info("%s: %s -> %d device(s)", message.title, message.body, len(tokens))
        return DeliveryReceipt(success=True)


class ExpoPushNotifier(PushNotifier):
    def __init__(
        self,
        *,
        url: str,
        access_token: str | None = None,
        timeout: float = 15.0,
        currency_label: str = "",
        logger: logging.Logger | None = None,
        client: httpx.Client | None = None,
    ):
        self.url = url
        self.access_token = access_token
        self.currency_label = currency_label
        self.logger = logger or logging.getLogger(__name__)
        self._client = client or httpx.Client(timeout=timeout)

    def _headers(self) -> dict:
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def send(self, tokens: list[str], *, title: str, body: str, data: dict) -> DeliveryReceipt:
        valid = [t for t in tokens if is_expo_push_token(t)]
        if not valid:
            return DeliveryReceipt(success=False, error="No valid push tokens")

        messages = [
            {
                "to": token,
                "sound": "default",
                "title": title,
                "body": body,
                "data": data,
                "priority": "high",
                "channelId": "default",
            }
            for token in valid
        ]

        tickets: list[dict] = []
        chunk_errors: list[str] = []
        for i in range(0, len(messages), EXPO_CHUNK_SIZE):
            chunk = messages[i:i + EXPO_CHUNK_SIZE]
            try:
                response = self._client.post(self.url, json=chunk, headers=self._headers())
                response.raise_for_status()
                tickets.extend(response.json().get("data", []))
            except (httpx.HTTPError, ValueError) as exc:
                # Keep going; one bad chunk should not block the rest
                self.logger.error("Expo push chunk failed: %s", exc)
                chunk_errors.append(str(exc))

        receipt = DeliveryReceipt(
            success=bool(tickets),
            tickets=tickets,
            error="; ".join(chunk_errors) or None,
        )
        if receipt.failed_tickets:
            self.logger.warning("Some push notifications failed: %s", receipt.failed_tickets)
        return receipt

    def notify_low_stock(self, tokens, item):
        return self.send(
            tokens,
            title="Low Stock Alert",
            body=(
                f"{item.name} is running low! Only {item.current_quantity} left "
                f"(minimum: {item.minimum_stock})"
            ),
            data=item.to_payload(),
        )

    def notify_sale_completed(self, tokens, summary):
        amount = format_amount(summary.total_amount_cents)
        if self.currency_label:
            amount = f"{amount} {self.currency_label}"
        return self.send(
            tokens,
            title="New Sale Recorded",
            body=f"Sale of {amount} completed. {summary.items_count} item(s) sold.",
            data=summary.to_payload(),
        )

    def notify_message(self, tokens, message):
        return self.send(tokens, title=message.title, body=message.body, data=message.to_payload())


def build_notifier(config, logger: logging.Logger) -> PushNotifier:
    backend = (config.get("NOTIFICATION_BACKEND") or "null").lower()
    if backend == "expo":
        return ExpoPushNotifier(
            url=config["EXPO_PUSH_URL"],
            access_token=config.get("EXPO_ACCESS_TOKEN"),
            timeout=float(config.get("EXPO_TIMEOUT_SECONDS", 15)),
            currency_label=config.get("CURRENCY_LABEL", ""),
            logger=logger,
        )
    if backend == "log":
        return LoggingNotifier(logger)
    if backend == "null":
        return NullNotifier()
    raise ValueError(f"Unknown NOTIFICATION_BACKEND {backend!r}")


class NotificationDispatcher:
    """
    Flask extension that delivers ledger events after commit.

    publish() never raises for delivery problems and never blocks on the
    push provider when running asynchronously.
    """

    def __init__(self, app=None):
        self.notifier: PushNotifier = NullNotifier()
        self.logger = logging.getLogger(__name__)
        self._executor: ThreadPoolExecutor | None = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        self.logger = app.logger
        self.notifier = build_notifier(app.config, app.logger)
        self.shutdown(wait=False)
        if app.config.get("NOTIFICATIONS_ASYNC", True):
            self._executor = ThreadPoolExecutor(
                max_workers=int(app.config.get("NOTIFICATION_WORKERS", 2)),
                thread_name_prefix="shopledger-notify",
            )
        app.extensions["shopledger.notifications"] = self

    def set_notifier(self, notifier: PushNotifier) -> None:
        self.notifier = notifier

    def publish(self, events, recipients: Recipients | None) -> None:
        events = tuple(events)
        if not events:
            return
        if recipients is None or recipients.is_empty:
            self.logger.debug("No notification recipients for %d event(s)", len(events))
            return

        if self._executor is None:
            self._deliver(events, recipients)
            return
        try:
            self._executor.submit(self._deliver, events, recipients)
        except RuntimeError:
            self.logger.exception("Notification worker pool unavailable; %d event(s) dropped", len(events))

    def _deliver(self, events, recipients: Recipients) -> None:
        for event in events:
            try:
                if isinstance(event, LowStockCrossing):
                    if not recipients.low_stock_tokens:
                        continue
                    receipt = self.notifier.notify_low_stock(list(recipients.low_stock_tokens), event)
                elif isinstance(event, SaleCompleted):
                    if not recipients.sales_tokens:
                        continue
                    receipt = self.notifier.notify_sale_completed(list(recipients.sales_tokens), event)
                elif isinstance(event, DeviceTestMessage):
                    if not recipients.direct_tokens:
                        continue
                    receipt = self.notifier.notify_message(list(recipients.direct_tokens), event)
                else:
                    self.logger.warning("Unknown notification event %r", event)
                    continue

                if receipt.success:
                    self.logger.info("%s notification sent (%d ticket(s))", event.kind, len(receipt.tickets))
                else:
                    self.logger.warning("%s notification not delivered: %s", event.kind, receipt.error)
            except Exception:
                self.logger.exception("Notification delivery failed for %r", event)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
