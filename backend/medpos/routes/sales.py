# Overview: Flask API routes for committed sales; read-only lookups.

# backend/medpos/routes/sales.py
"""
Sale lookup routes.

Committed sales are immutable, so there is no update or delete here. The
by-key lookup lets a till that timed out find out whether its request was
applied before it resends.
"""

from flask import Blueprint, jsonify, g

from ..services import payment_service
from ..validation import NotFoundError
from ..decorators import require_owner


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("/<int:sale_id>")
@require_owner
def get_sale_route(sale_id: int):
    try:
        sale = payment_service.get_sale(sale_id, owner_id=g.owner_id)
        return jsonify({"sale": sale.to_dict()}), 200
    except NotFoundError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.get("/by-key/<string:key>")
@require_owner
def get_sale_by_key_route(key: str):
    """Find a sale by the idempotency key it was committed with."""
    sale = payment_service.find_by_idempotency_key(key, owner_id=g.owner_id)

    if not sale:
        return jsonify({"error": "Sale not found", "code": "NOT_FOUND"}), 404

    return jsonify({"sale": sale.to_dict()}), 200
