# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/shopledger/routes/sales.py
"""
Sales API routes.

Request bodies are validated before any database access. Device recipient
lists for post-commit notifications are chosen here and passed to the
sales service; the originating device (device_push_token) is excluded.
"""

from flask import Blueprint, request, jsonify

from ..decorators import json_body, ledger_errors
from ..errors import ValidationError
from ..services import device_service, sales_service
from ..time_utils import business_day_bounds, parse_iso_date
from ..validation import parse_sale_request


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

CUSTOMER_FIELDS = {"customer_name", "customer_phone", "notes"}


def _date_arg(name: str):
    try:
        return parse_iso_date(request.args.get(name))
    except ValueError:
        raise ValidationError(f"{name} must be YYYY-MM-DD")


@sales_bp.post("")
@ledger_errors("create sale")
def create_sale_route():
    """
    Record a sale.

    Body: items[{inventory_item_id, quantity}], payment_method
    (cash | mobile | credit), optional customer_name, customer_phone, notes,
    device_push_token.
    """
    req = parse_sale_request(json_body())
    recipients = device_service.recipients_for_sale(exclude_token=req.device_push_token)

    sale = sales_service.create_sale(
        req.items,
        payment_method=req.payment_method,
        customer=req.customer,
        recipients=recipients,
    )

    return jsonify({"message": "Sale created successfully", "sale": sale.to_dict()}), 201


@sales_bp.get("")
@ledger_errors("list sales")
def list_sales_route():
    """
    List sales, newest first.

    Query params: start_date, end_date (YYYY-MM-DD, business days, inclusive),
    owner_id, page, per_page.
    """
    start_date = _date_arg("start_date")
    end_date = _date_arg("end_date")

    result = sales_service.list_sales(
        start=business_day_bounds(start_date)[0] if start_date else None,
        end=business_day_bounds(end_date)[1] if end_date else None,
        owner_id=request.args.get("owner_id", type=int),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return jsonify(result), 200


@sales_bp.get("/<int:sale_id>")
@ledger_errors("load sale")
def get_sale_route(sale_id: int):
    sale = sales_service.get_sale(sale_id)
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.put("/<int:sale_id>")
@ledger_errors("update sale")
def update_sale_route(sale_id: int):
    """
    Replace the items (and optionally customer fields) of an unpaid sale.

    Paid sales answer 409 cannot_edit_paid.
    """
    payload = json_body()
    req = parse_sale_request(payload, for_update=True)
    recipients = device_service.recipients_for_sale(exclude_token=req.device_push_token)

    sale = sales_service.update_sale(
        sale_id,
        req.items,
        customer=req.customer if CUSTOMER_FIELDS & payload.keys() else None,
        recipients=recipients,
    )
    return jsonify({"message": "Sale updated successfully", "sale": sale.to_dict()}), 200


@sales_bp.delete("/<int:sale_id>")
@ledger_errors("delete sale")
def delete_sale_route(sale_id: int):
    """Delete a sale, returning its stock and reversing any booked income."""
    deleted = sales_service.delete_sale(sale_id)
    return jsonify({"message": "Sale deleted successfully", "sale": deleted}), 200


@sales_bp.patch("/<int:sale_id>/mark-paid")
@ledger_errors("mark sale as paid")
def mark_paid_route(sale_id: int):
    """Settle a credit sale; income is booked on the original sale day."""
    sale = sales_service.mark_as_paid(sale_id)
    return jsonify({"message": "Sale marked as paid", "sale": sale.to_dict()}), 200
