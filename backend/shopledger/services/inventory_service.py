# Overview: Inventory item maintenance (create, edit, soft delete) and inventory read queries.

# backend/shopledger/services/inventory_service.py

from __future__ import annotations

from sqlalchemy import or_

from ..errors import ItemNotFound, ValidationError
from ..extensions import db
from ..models import InventoryItem, Owner
from .concurrency import run_in_transaction
from . import stock_service

"""
Inventory maintenance rules

- Items are soft-deleted (is_active=False); sale history keeps pointing at them.
- quantity edits made here are restock / count corrections and go through
  stock_service.set_quantity so the row lock and version check apply.
- Price and cost edits never touch existing sale lines (those are snapshots).
"""

ITEM_MUTABLE_FIELDS = {
    "name", "description", "category", "unit", "unit_cost_cents", "selling_price_cents",
    "minimum_stock", "barcode", "owner_id",
}

# Closed set of sort keys accepted by list_items
SORT_FIELDS = {
    "name": InventoryItem.name,
    "quantity": InventoryItem.quantity,
    "unit_cost_cents": InventoryItem.unit_cost_cents,
    "selling_price_cents": InventoryItem.selling_price_cents,
    "created_at": InventoryItem.created_at,
    "category": InventoryItem.category,
}


def _require_owner(owner_id: int) -> None:
    owner = db.session.get(Owner, owner_id)
    if owner is None or not owner.is_active:
        raise ValidationError("Owner not found", details={"owner_id": owner_id})


def apply_item_patch(item: InventoryItem, patch: dict) -> None:
    for k, v in patch.items():
        if k not in ITEM_MUTABLE_FIELDS:
            continue
        setattr(item, k, v)


def create_item(*, patch: dict) -> InventoryItem:
    """Create an inventory item from a validated patch dict."""
    def _op():
        _require_owner(patch["owner_id"])
        item = InventoryItem(
            quantity=patch.get("quantity") or 0,
            minimum_stock=patch.get("minimum_stock") or 0,
            is_active=True,
        )
        apply_item_patch(item, patch)
        db.session.add(item)
        db.session.flush()
        return item

    return run_in_transaction(_op)


def update_item(item_id: int, *, patch: dict) -> InventoryItem:
    def _op():
        item = db.session.query(InventoryItem).filter_by(id=item_id, is_active=True).first()
        if item is None:
            raise ItemNotFound("Item not found", details={"inventory_item_id": item_id})
        if "owner_id" in patch:
            _require_owner(patch["owner_id"])

        apply_item_patch(item, patch)
        db.session.flush()
        if patch.get("quantity") is not None:
            stock_service.set_quantity(item_id, patch["quantity"])
        return item

    return run_in_transaction(_op)


def deactivate_item(item_id: int) -> InventoryItem:
    """Soft delete."""
    def _op():
        item = db.session.query(InventoryItem).filter_by(id=item_id, is_active=True).first()
        if item is None:
            raise ItemNotFound("Item not found", details={"inventory_item_id": item_id})
        item.is_active = False
        db.session.flush()
        return item

    return run_in_transaction(_op)


def get_item(item_id: int, *, include_inactive: bool = False) -> InventoryItem:
    q = db.session.query(InventoryItem).filter_by(id=item_id)
    if not include_inactive:
        q = q.filter_by(is_active=True)
    item = q.populate_existing().first()
    if item is None:
        raise ItemNotFound("Item not found", details={"inventory_item_id": item_id})
    return item


def list_items(
    *,
    owner_id: int | None = None,
    category: str | None = None,
    search: str | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    if sort_by not in SORT_FIELDS:
        raise ValidationError(
            f"sort_by must be one of: {', '.join(sorted(SORT_FIELDS))}",
            details={"sort_by": sort_by},
        )
    direction = (sort_order or "desc").lower()
    if direction not in ("asc", "desc"):
        raise ValidationError("sort_order must be asc or desc")

    q = db.session.query(InventoryItem).filter(InventoryItem.is_active.is_(True))
    if owner_id is not None:
        q = q.filter(InventoryItem.owner_id == owner_id)
    if category:
        q = q.filter(InventoryItem.category == category)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(
            InventoryItem.name.ilike(pattern),
            InventoryItem.description.ilike(pattern),
            InventoryItem.barcode.ilike(pattern),
        ))

    column = SORT_FIELDS[sort_by]
    q = q.order_by(column.asc() if direction == "asc" else column.desc(), InventoryItem.id.asc())

    per_page = min(per_page or 20, 100)
    page = max(page or 1, 1)
    total = q.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    items = q.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [i.to_dict() for i in items],
        "count": len(items),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def list_low_stock_items(owner_id: int | None = None) -> list[InventoryItem]:
    """Active items at or below their minimum, most depleted first."""
    q = db.session.query(InventoryItem).filter(
        InventoryItem.is_active.is_(True),
        InventoryItem.quantity <= InventoryItem.minimum_stock,
    )
    if owner_id is not None:
        q = q.filter(InventoryItem.owner_id == owner_id)
    return q.order_by((InventoryItem.quantity - InventoryItem.minimum_stock).asc(), InventoryItem.id.asc()).all()


def list_categories() -> list[str]:
    rows = (
        db.session.query(InventoryItem.category)
        .filter(
            InventoryItem.is_active.is_(True),
            InventoryItem.category.isnot(None),
            InventoryItem.category != "",
        )
        .distinct()
        .order_by(InventoryItem.category)
        .all()
    )
    return [r.category for r in rows]
