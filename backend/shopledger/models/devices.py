from __future__ import annotations

from datetime import time

from ..extensions import db
from shopledger.time_utils import to_utc_z, utcnow


class Device(db.Model):
    """Push-notification endpoint registered by an owner's mobile app."""
    __tablename__ = "devices"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("owners.id"), nullable=False, index=True)
    push_token = db.Column(db.String(255), nullable=False, unique=True)
    device_id = db.Column(db.String(255), nullable=True)
    device_model = db.Column(db.String(100), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    low_stock_alerts = db.Column(db.Boolean, nullable=False, default=True)
    sales_notifications = db.Column(db.Boolean, nullable=False, default=True)
    # Local (business timezone) time of the daily low-stock digest
    low_stock_alert_time = db.Column(db.Time, nullable=False, default=time(9, 0))

    last_active = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    owner = db.relationship("Owner", backref=db.backref("devices", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "push_token": self.push_token,
            "device_id": self.device_id,
            "device_model": self.device_model,
            "is_active": self.is_active,
            "low_stock_alerts": self.low_stock_alerts,
            "sales_notifications": self.sales_notifications,
            "low_stock_alert_time": self.low_stock_alert_time.strftime("%H:%M:%S")
            if self.low_stock_alert_time else None,
            "last_active": to_utc_z(self.last_active),
            "created_at": to_utc_z(self.created_at),
        }
