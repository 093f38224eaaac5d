# Overview: Flask API routes for bulk stock movements between parties.

from flask import Blueprint, jsonify, g

from ..models.accounts import ROLE_RESELLER
from ..services import stock_service
from ..validation import ValidationError
from ..decorators import require_actor, require_role
from .errors import json_error, read_json


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _int_field(data: dict, name: str, *, optional: bool = False):
    value = data.get(name)
    if value is None and optional:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    return value


@stock_bp.post("/transfer")
@require_actor
def transfer_stock():
    """
    Move bulk quantity from the acting user to another party.

    Request body:
    {
        "product_id": int,
        "to_owner_id": int | null,   (null discards the quantity)
        "quantity": int
    }

    Error responses:
        400: Invalid input or insufficient stock (details has available)
        404: Product not found
    """
    try:
        data = read_json()
        product_id = _int_field(data, "product_id")
        to_owner_id = _int_field(data, "to_owner_id", optional=True)
        dest = stock_service.transfer_stock(
            product_id,
            g.current_user.id,
            to_owner_id,
            data.get("quantity"),
        )
        return jsonify({
            "product_id": product_id,
            "from_owner_id": g.current_user.id,
            "from_quantity": stock_service.get_quantity(product_id, g.current_user.id),
            "to": dest.to_dict() if dest is not None else None,
        })
    except Exception as e:
        return json_error(e)


@stock_bp.post("/return-to-producer")
@require_actor
@require_role(ROLE_RESELLER)
def return_to_producer():
    """
    Request body:
    {
        "product_id": int,
        "quantity": int
    }
    """
    try:
        data = read_json()
        product_id = _int_field(data, "product_id")
        dest = stock_service.return_to_producer(product_id, g.current_user.id, data.get("quantity"))
        return jsonify({
            "product_id": product_id,
            "from_quantity": stock_service.get_quantity(product_id, g.current_user.id),
            "producer_stock": dest.to_dict(),
        })
    except Exception as e:
        return json_error(e)
