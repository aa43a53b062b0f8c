# Overview: Flask API routes for push device registration and notification preferences.

# backend/shopledger/routes/devices.py
from flask import Blueprint, jsonify

from ..decorators import json_body, ledger_errors, require_owner_header
from ..models import Device
from ..services import device_service
from ..validation import (
    ModelValidationPolicy,
    parse_push_token,
    parse_test_message,
    validate_payload,
)


devices_bp = Blueprint("devices", __name__, url_prefix="/api/devices")

PREFERENCE_FIELDS = {"low_stock_alerts", "sales_notifications", "low_stock_alert_time"}

DEVICE_POLICY = ModelValidationPolicy(
    writable_fields={"push_token", "device_id", "device_model"} | PREFERENCE_FIELDS,
    required_on_create={"push_token"},
)

PREFERENCES_POLICY = ModelValidationPolicy(writable_fields={"push_token"} | PREFERENCE_FIELDS)


@devices_bp.post("/register")
@require_owner_header
@ledger_errors("register device")
def register_device_route(owner_id: int):
    """
    Register (or refresh) the calling device's push token.

    Body: push_token (required), device_id, device_model, low_stock_alerts,
    sales_notifications, low_stock_alert_time (HH:MM).
    """
    patch = validate_payload(model=Device, payload=json_body(), policy=DEVICE_POLICY, partial=False)

    device = device_service.register_device(
        owner_id=owner_id,
        push_token=patch["push_token"],
        device_id=patch.get("device_id") or None,
        device_model=patch.get("device_model") or None,
        low_stock_alerts=patch.get("low_stock_alerts", True),
        sales_notifications=patch.get("sales_notifications", True),
        low_stock_alert_time=patch.get("low_stock_alert_time"),
    )
    return jsonify({"message": "Device registered successfully", "device": device.to_dict()}), 200


@devices_bp.post("/unregister")
@require_owner_header
@ledger_errors("unregister device")
def unregister_device_route(owner_id: int):
    push_token = parse_push_token(json_body())
    device_service.unregister_device(owner_id=owner_id, push_token=push_token)
    return jsonify({"message": "Device unregistered successfully"}), 200


@devices_bp.put("/preferences")
@require_owner_header
@ledger_errors("update notification preferences")
def update_preferences_route(owner_id: int):
    """Partial update: omitted preferences keep their current value."""
    payload = json_body()
    push_token = parse_push_token(payload)
    patch = validate_payload(model=Device, payload=payload, policy=PREFERENCES_POLICY, partial=True)

    device = device_service.update_preferences(
        owner_id=owner_id,
        push_token=push_token,
        low_stock_alerts=patch.get("low_stock_alerts"),
        sales_notifications=patch.get("sales_notifications"),
        low_stock_alert_time=patch.get("low_stock_alert_time"),
    )
    return jsonify({"message": "Notification preferences updated successfully", "device": device.to_dict()}), 200


@devices_bp.post("/test-notification")
@require_owner_header
@ledger_errors("send test notification")
def send_test_notification_route(owner_id: int):
    payload = json_body()
    push_token = parse_push_token(payload)
    title, body = parse_test_message(payload)

    message = device_service.send_test_notification(
        owner_id=owner_id, push_token=push_token, title=title, body=body,
    )
    return jsonify({
        "message": "Test notification queued",
        "notification": {"title": message.title, "body": message.body, "data": message.to_payload()},
    }), 202


@devices_bp.get("")
@require_owner_header
@ledger_errors("list devices")
def list_devices_route(owner_id: int):
    devices = device_service.list_devices(owner_id)
    return jsonify({"devices": [d.to_dict() for d in devices]}), 200


@devices_bp.get("/all")
@ledger_errors("list all devices")
def list_all_devices_route():
    devices = device_service.list_active_devices()
    return jsonify({"devices": devices, "count": len(devices)}), 200
