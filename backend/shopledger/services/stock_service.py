# Overview: Stock ledger; the only code path that moves inventory quantities during sale processing.

from __future__ import annotations

from dataclasses import dataclass

from ..errors import InsufficientStock, ItemInactive, ItemNotFound, ValidationError
from ..extensions import db
from ..models import InventoryItem
from .concurrency import lock_for_update

"""
Stock Ledger Invariants (authoritative)

- quantity >= 0 at all times (service check + DB check constraint).
- Both operations run inside the caller's unit of work and never commit.
- The item row is read with SELECT ... FOR UPDATE and written back with an
  optimistic version_id check. A concurrent writer on the same row makes the
  flush raise StaleDataError, which aborts and retries the whole unit of
  work, so two sales can never both see the same pre-decrement quantity.
- Inactive (soft-deleted) items cannot be sold but can still receive
  released stock from an edited or deleted sale.
"""


@dataclass(frozen=True)
class StockSnapshot:
    """Item state captured at reservation time (values before the decrement)."""
    item_id: int
    owner_id: int
    name: str
    unit_cost_cents: int
    selling_price_cents: int
    quantity_before: int
    quantity_after: int
    minimum_stock: int

    @property
    def is_low_stock(self) -> bool:
        return self.quantity_after <= self.minimum_stock


def _load_item(item_id: int) -> InventoryItem | None:
    query = lock_for_update(db.session.query(InventoryItem).filter_by(id=item_id))
    # Always re-read: a retried unit of work must not trust identity-map state
    return query.populate_existing().first()


def check_and_reserve(item_id: int, quantity: int) -> StockSnapshot:
    """
    Assert ``quantity`` units are available and decrement them.

    Raises ItemNotFound, ItemInactive or InsufficientStock; the caller's
    unit of work is expected to roll back on any of them.
    """
    if quantity is None or quantity <= 0:
        raise ValidationError(
            "quantity must be a positive integer",
            details={"inventory_item_id": item_id, "quantity": quantity},
        )

    item = _load_item(item_id)
    if item is None:
        raise ItemNotFound(
            f"Item with ID {item_id} not found",
            details={"inventory_item_id": item_id},
        )
    if not item.is_active:
        raise ItemInactive(
            f"Item {item.name} is no longer active",
            details={"inventory_item_id": item_id},
        )
    if item.quantity < quantity:
        raise InsufficientStock(
            f"Insufficient stock for {item.name}. Available: {item.quantity}, Requested: {quantity}",
            details={
                "inventory_item_id": item_id,
                "available": item.quantity,
                "requested": quantity,
            },
        )

    before = item.quantity
    item.quantity = before - quantity
    db.session.flush()

    return StockSnapshot(
        item_id=item.id,
        owner_id=item.owner_id,
        name=item.name,
        unit_cost_cents=item.unit_cost_cents,
        selling_price_cents=item.selling_price_cents,
        quantity_before=before,
        quantity_after=item.quantity,
        minimum_stock=item.minimum_stock,
    )


def release(item_id: int, quantity: int) -> int:
    """Return ``quantity`` units to stock. Returns the new quantity."""
    if quantity is None or quantity <= 0:
        raise ValidationError(
            "quantity must be a positive integer",
            details={"inventory_item_id": item_id, "quantity": quantity},
        )

    item = _load_item(item_id)
    if item is None:
        raise ItemNotFound(
            f"Item with ID {item_id} not found",
            details={"inventory_item_id": item_id},
        )

    item.quantity = item.quantity + quantity
    db.session.flush()
    return item.quantity


def set_quantity(item_id: int, quantity: int) -> int:
    """Overwrite on-hand quantity after a physical count or restock. Returns the old quantity."""
    if quantity is None or quantity < 0:
        raise ValidationError(
            "quantity must be >= 0",
            details={"inventory_item_id": item_id, "quantity": quantity},
        )

    item = _load_item(item_id)
    if item is None:
        raise ItemNotFound(
            f"Item with ID {item_id} not found",
            details={"inventory_item_id": item_id},
        )

    before = item.quantity
    item.quantity = quantity
    db.session.flush()
    return before


def current_cost_cents(item_id: int) -> int:
    """Unit cost as it stands now (used when a credit sale is settled)."""
    item = db.session.query(InventoryItem).filter_by(id=item_id).first()
    if item is None:
        raise ItemNotFound(
            f"Item with ID {item_id} not found",
            details={"inventory_item_id": item_id},
        )
    return item.unit_cost_cents
