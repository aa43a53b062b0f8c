from __future__ import annotations

from ..extensions import db
from shopledger.time_utils import to_utc_z, utcnow

PAYMENT_METHODS = ("cash", "mobile", "credit")
# Payment methods settled at the counter; credit waits for mark-as-paid.
SETTLED_PAYMENT_METHODS = ("cash", "mobile")


class Sale(db.Model):
    """
    Sale header.

    LIFECYCLE:
    - credit sales are committed unpaid and contribute no income
    - cash/mobile sales are committed paid (paid_at = commit time)
    - unpaid -> paid through mark-as-paid, which books income against the
      original sale_date, not the settlement date
    - paid sales are immutable except for deletion (full reversal)

    INVARIANT: total_amount_cents == sum(item.total_price_cents).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint(
            "payment_method IN ('cash', 'mobile', 'credit')",
            name="ck_sales_payment_method",
        ),
        db.Index("ix_sales_sale_date", "sale_date"),
        db.Index("ix_sales_paid_date", "is_paid", "sale_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_method = db.Column(db.String(16), nullable=False, default="cash")

    is_paid = db.Column(db.Boolean, nullable=False, default=False)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer_name = db.Column(db.String(100), nullable=True)
    customer_phone = db.Column(db.String(20), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleItem.id",
        lazy="select",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Sale id={self.id} total={self.total_amount_cents} paid={self.is_paid}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "sale_date": to_utc_z(self.sale_date),
            "total_amount_cents": self.total_amount_cents,
            "payment_method": self.payment_method,
            "is_paid": self.is_paid,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    One line of a sale.

    unit_price_cents is frozen at sale time and never follows later price
    edits. owner_id is copied from the inventory item at sale time.
    unit_cost_cents is the cost basis last booked into income_summary for
    this line, so a reversal subtracts exactly what was added.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        db.Index("ix_sale_items_owner", "owner_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(
        db.Integer,
        db.ForeignKey("sales.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("owners.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", back_populates="items")
    inventory_item = db.relationship("InventoryItem")
    owner = db.relationship("Owner")

    @property
    def profit_cents(self) -> int:
        return (self.unit_price_cents - self.unit_cost_cents) * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "inventory_item_id": self.inventory_item_id,
            "item_name": self.inventory_item.name if self.inventory_item else None,
            "owner_id": self.owner_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "created_at": to_utc_z(self.created_at),
        }
