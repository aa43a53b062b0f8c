# Overview: Device registry; picks push recipients for the notification fan-out.

from __future__ import annotations

from datetime import time

from ..errors import NotFound, ValidationError
from ..extensions import db, notifications
from ..models import Device, Owner
from shopledger.time_utils import utcnow
from .concurrency import run_in_transaction
from .notification_service import DeviceTestMessage, Recipients

DEFAULT_ALERT_TIME = time(9, 0)


def register_device(
    *,
    owner_id: int,
    push_token: str,
    device_id: str | None = None,
    device_model: str | None = None,
    low_stock_alerts: bool = True,
    sales_notifications: bool = True,
    low_stock_alert_time: time | None = None,
) -> Device:
    """Register a push token, or re-activate and update it if already known."""
    if not push_token:
        raise ValidationError("Push token is required")

    def _op():
        if db.session.get(Owner, owner_id) is None:
            raise NotFound("Owner not found", details={"owner_id": owner_id})

        device = db.session.query(Device).filter_by(push_token=push_token).first()
        if device is None:
            device = Device(push_token=push_token)
            db.session.add(device)

        device.owner_id = owner_id
        device.device_id = device_id
        device.device_model = device_model
        device.low_stock_alerts = low_stock_alerts
        device.sales_notifications = sales_notifications
        device.low_stock_alert_time = low_stock_alert_time or DEFAULT_ALERT_TIME
        device.is_active = True
        device.last_active = utcnow()
        db.session.flush()
        return device

    return run_in_transaction(_op)


def unregister_device(*, owner_id: int, push_token: str) -> Device:
    if not push_token:
        raise ValidationError("Push token is required")

    def _op():
        device = db.session.query(Device).filter_by(push_token=push_token, owner_id=owner_id).first()
        if device is None:
            raise NotFound("Device not found", details={"push_token": push_token})
        device.is_active = False
        return device

    return run_in_transaction(_op)


def list_devices(owner_id: int) -> list[Device]:
    return (
        db.session.query(Device)
        .filter_by(owner_id=owner_id)
        .order_by(Device.last_active.desc())
        .all()
    )


def list_active_devices() -> list[dict]:
    """Every active device with its owner's name, most recently seen first."""
    rows = (
        db.session.query(Device, Owner)
        .join(Owner, Device.owner_id == Owner.id)
        .filter(Device.is_active.is_(True))
        .order_by(Device.last_active.desc(), Device.id.desc())
        .all()
    )
    return [
        {**device.to_dict(), "username": owner.username, "full_name": owner.full_name}
        for device, owner in rows
    ]


def update_preferences(
    *,
    owner_id: int,
    push_token: str,
    low_stock_alerts: bool | None = None,
    sales_notifications: bool | None = None,
    low_stock_alert_time: time | None = None,
) -> Device:
    """Patch notification preferences; arguments left as None keep their stored value."""

    def _op():
        device = db.session.query(Device).filter_by(push_token=push_token, owner_id=owner_id).first()
        if device is None:
            raise NotFound("Device not found", details={"push_token": push_token})
        if low_stock_alerts is not None:
            device.low_stock_alerts = low_stock_alerts
        if sales_notifications is not None:
            device.sales_notifications = sales_notifications
        if low_stock_alert_time is not None:
            device.low_stock_alert_time = low_stock_alert_time
        db.session.flush()
        return device

    return run_in_transaction(_op)


def send_test_notification(
    *,
    owner_id: int,
    push_token: str,
    title: str | None = None,
    body: str | None = None,
) -> DeviceTestMessage:
    """Queue a test push to one of the owner's active devices."""
    device = (
        db.session.query(Device)
        .filter_by(push_token=push_token, owner_id=owner_id, is_active=True)
        .first()
    )
    if device is None:
        raise NotFound("Device not found", details={"push_token": push_token})

    defaults = DeviceTestMessage()
    message = DeviceTestMessage(title=title or defaults.title, body=body or defaults.body)
    notifications.publish([message], Recipients(direct_tokens=(device.push_token,)))
    return message


def recipients_for_sale(exclude_token: str | None = None) -> Recipients:
    """
    Active devices split by preference. The device that rang up the sale
    already knows about it, so it is left out.
    """
    devices = db.session.query(Device).filter_by(is_active=True).all()
    low_stock, sales = [], []
    for device in devices:
        if exclude_token and device.push_token == exclude_token:
            continue
        if device.low_stock_alerts:
            low_stock.append(device.push_token)
        if device.sales_notifications:
            sales.append(device.push_token)
    return Recipients(low_stock_tokens=tuple(low_stock), sales_tokens=tuple(sales))


def devices_due_for_low_stock(at: time | None = None) -> list[str]:
    """
    Tokens of devices that want the daily low-stock digest.

    With ``at`` given, only devices whose alert time falls in that minute.
    """
    devices = db.session.query(Device).filter_by(is_active=True, low_stock_alerts=True).all()
    if at is None:
        return [d.push_token for d in devices]
    return [
        d.push_token
        for d in devices
        if d.low_stock_alert_time
        and (d.low_stock_alert_time.hour, d.low_stock_alert_time.minute) == (at.hour, at.minute)
    ]
