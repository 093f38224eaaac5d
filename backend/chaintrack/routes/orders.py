# Overview: Flask API routes for carts, checkout and the order lifecycle.

# backend/chaintrack/routes/orders.py
"""
Cart and order routes.

SECURITY:
- The buyer is always the acting user (g.current_user), never a request field
- Order actions check that the acting user is the order's seller or buyer
  (enforced by order_service, 403 otherwise)
"""
from flask import Blueprint, request, jsonify, g

from ..services import cart_service, order_service
from ..decorators import require_actor
from .errors import json_error, read_json


orders_bp = Blueprint("orders", __name__, url_prefix="/api")


@orders_bp.get("/cart")
@require_actor
def get_cart():
    items = cart_service.get_cart(g.current_user.id)
    return jsonify({"items": [i.to_dict() for i in items], "count": len(items)})


@orders_bp.post("/cart")
@require_actor
def add_to_cart():
    """
    Request body:
    {
        "product_id": int,
        "quantity": int,
        "seller_id": int (optional, defaults to the product's producer at checkout),
        "unit_ids": [int] (optional, serialized products only)
    }
    """
    try:
        data = read_json()
        item = cart_service.add_to_cart(
            g.current_user.id,
            data.get("product_id"),
            data.get("quantity"),
            seller_id=data.get("seller_id"),
            unit_ids=data.get("unit_ids"),
        )
        return jsonify(item.to_dict()), 201
    except Exception as e:
        return json_error(e)


@orders_bp.delete("/cart/<int:item_id>")
@require_actor
def remove_from_cart(item_id: int):
    try:
        cart_service.remove_from_cart(g.current_user.id, item_id)
        return jsonify({"ok": True})
    except Exception as e:
        return json_error(e)


@orders_bp.post("/orders/checkout")
@require_actor
def checkout():
    """
    Check out the cart, or explicit items when given.

    Request body (optional):
    {
        "items": [{"product_id": int, "quantity": int, "seller_id": int, "unit_ids": [int]}]
    }

    Error responses:
        400: Empty cart, invalid line, or insufficient stock
             (details.items lists every short line; nothing was changed)
        404: Product not found
    """
    try:
        items = read_json().get("items")
        orders = order_service.checkout(g.current_user.id, items)
        return jsonify({"orders": [o.to_dict() for o in orders], "count": len(orders)}), 201
    except Exception as e:
        return json_error(e)


@orders_bp.get("/orders")
@require_actor
def list_orders():
    """
    Query params:
    - role: "buyer" (default) or "seller"
    - status: order status code (optional)
    """
    role = request.args.get("role", "buyer")
    status = request.args.get("status")
    try:
        if role == "seller":
            orders = order_service.orders_for_seller(g.current_user.id, status=status)
        elif role == "buyer":
            orders = order_service.orders_for_buyer(g.current_user.id, status=status)
        else:
            return jsonify({"error": "role must be buyer or seller"}), 400
        return jsonify({"items": [o.to_dict() for o in orders], "count": len(orders)})
    except Exception as e:
        return json_error(e)


@orders_bp.get("/orders/<int:order_id>")
@require_actor
def get_order(order_id: int):
    try:
        order = order_service.get_order(order_id)
        if g.current_user.id not in (order.buyer_id, order.seller_id):
            return jsonify({"error": "Order not found"}), 404
        return jsonify(order.to_dict())
    except Exception as e:
        return json_error(e)


@orders_bp.post("/orders/<int:order_id>/fulfill")
@require_actor
def fulfill_order(order_id: int):
    """
    Seller confirms the order.

    Request body (optional):
    {
        "unit_ids": [int]   (serialized orders without reserved units)
    }
    """
    try:
        order = order_service.fulfill_order(order_id, g.current_user.id, read_json().get("unit_ids"))
        return jsonify(order.to_dict())
    except Exception as e:
        return json_error(e)


@orders_bp.post("/orders/<int:order_id>/deliver")
@require_actor
def confirm_delivery(order_id: int):
    try:
        order = order_service.confirm_delivery(order_id, g.current_user.id)
        return jsonify(order.to_dict())
    except Exception as e:
        return json_error(e)


@orders_bp.post("/orders/<int:order_id>/cancel")
@require_actor
def cancel_order(order_id: int):
    try:
        order_service.cancel_order(order_id, g.current_user.id)
        return jsonify({"ok": True, "order_id": order_id})
    except Exception as e:
        return json_error(e)


@orders_bp.post("/orders/<int:order_id>/return")
@require_actor
def request_return(order_id: int):
    try:
        order = order_service.request_return(order_id, g.current_user.id)
        return jsonify(order.to_dict())
    except Exception as e:
        return json_error(e)


@orders_bp.post("/orders/<int:order_id>/resolve-return")
@require_actor
def resolve_return(order_id: int):
    """
    Request body:
    {
        "accept": bool
    }
    """
    try:
        order = order_service.resolve_return(order_id, g.current_user.id, read_json().get("accept"))
        return jsonify(order.to_dict())
    except Exception as e:
        return json_error(e)
