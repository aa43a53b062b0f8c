# Overview: Flask API routes for inventory items; parses input and returns JSON responses.

# backend/shopledger/routes/inventory.py
"""
Inventory item management routes.

Items belong to an owner. The acting owner comes from X-Owner-Id and is
used as the item owner unless the payload names another one.
Deletes are soft: the item stays referenced by sale history.
"""
from flask import Blueprint, jsonify, request

from ..decorators import json_body, ledger_errors, require_owner_header
from ..models import InventoryItem
from ..services import inventory_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_inventory_item,
)

ITEM_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "description", "category", "unit", "unit_cost_cents", "selling_price_cents",
        "quantity", "minimum_stock", "barcode", "owner_id",
    },
    required_on_create={"name", "unit_cost_cents", "selling_price_cents", "quantity"},
)

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("")
@ledger_errors("list inventory items")
def list_items_route():
    """
    Query params: owner_id, category, search, sort_by, sort_order, page, per_page.
    sort_by is limited to a fixed set of columns.
    """
    result = inventory_service.list_items(
        owner_id=request.args.get("owner_id", type=int),
        category=request.args.get("category"),
        search=request.args.get("search"),
        sort_by=request.args.get("sort_by", "created_at"),
        sort_order=request.args.get("sort_order", "desc"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return jsonify(result), 200


@inventory_bp.get("/low-stock")
@ledger_errors("list low stock items")
def low_stock_route():
    items = inventory_service.list_low_stock_items(owner_id=request.args.get("owner_id", type=int))
    return jsonify({"items": [i.to_dict() for i in items], "count": len(items)}), 200


@inventory_bp.get("/categories")
@ledger_errors("list categories")
def categories_route():
    return jsonify({"categories": inventory_service.list_categories()}), 200


@inventory_bp.get("/<int:item_id>")
@ledger_errors("load inventory item")
def get_item_route(item_id: int):
    item = inventory_service.get_item(item_id)
    return jsonify({"item": item.to_dict()}), 200


@inventory_bp.post("")
@require_owner_header
@ledger_errors("create inventory item")
def create_item_route(owner_id: int):
    payload = json_body()
    patch = validate_payload(model=InventoryItem, payload=payload, policy=ITEM_POLICY, partial=False)
    enforce_rules_inventory_item(patch)
    patch.setdefault("owner_id", owner_id)

    item = inventory_service.create_item(patch=patch)
    return jsonify({"message": "Item created successfully", "item": item.to_dict()}), 201


@inventory_bp.put("/<int:item_id>")
@ledger_errors("update inventory item")
def update_item_route(item_id: int):
    payload = json_body()
    patch = validate_payload(model=InventoryItem, payload=payload, policy=ITEM_POLICY, partial=True)
    enforce_rules_inventory_item(patch)

    item = inventory_service.update_item(item_id, patch=patch)
    return jsonify({"message": "Item updated successfully", "item": item.to_dict()}), 200


@inventory_bp.delete("/<int:item_id>")
@ledger_errors("delete inventory item")
def delete_item_route(item_id: int):
    inventory_service.deactivate_item(item_id)
    return jsonify({"message": "Item deleted successfully"}), 200
