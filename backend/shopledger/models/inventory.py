from __future__ import annotations

from ..extensions import db
from shopledger.time_utils import to_utc_z


class InventoryItem(db.Model):
    """
    Stock-keeping row for one product owned by one seller.

    QUANTITY: quantity is a mutable counter, never negative. Sale processing
    only touches it through stock_service (check_and_reserve / release),
    which lock the row and rely on version_id for optimistic conflict
    detection.

    DELETION: items are soft-deleted (is_active=False). Sale history keeps a
    reference to them, so rows are never removed.

    MONEY: unit_cost_cents is what the seller paid, selling_price_cents is
    the current shelf price. Sale lines snapshot the selling price.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_inventory_items_quantity_nonneg"),
        db.Index("ix_inventory_items_owner_active", "owner_id", "is_active"),
        db.Index("ix_inventory_items_category", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("owners.id"), nullable=False, index=True)

    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(100), nullable=True)
    unit = db.Column(db.String(50), nullable=False, default="unit")

    unit_cost_cents = db.Column(db.Integer, nullable=False)
    selling_price_cents = db.Column(db.Integer, nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    minimum_stock = db.Column(db.Integer, nullable=False, default=0)

    barcode = db.Column(db.String(100), nullable=True, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    owner = db.relationship("Owner", backref=db.backref("items", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.minimum_stock

    def __repr__(self) -> str:
        return f"<InventoryItem id={self.id} name={self.name!r} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "unit": self.unit,
            "unit_cost_cents": self.unit_cost_cents,
            "selling_price_cents": self.selling_price_cents,
            "quantity": self.quantity,
            "minimum_stock": self.minimum_stock,
            "barcode": self.barcode,
            "is_active": self.is_active,
            "is_low_stock": self.is_low_stock,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
