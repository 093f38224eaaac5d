# Overview: Flask API routes for products; definitions, production runs and stock views.

# backend/chaintrack/routes/products.py
"""
Product routes.

SECURITY: All routes require an acting user (X-User-Id).
- Product writes and production runs require the PRODUCER role and are
  limited to the producer's own products (enforced by the service layer)
- Product deletion is open to the owning producer and to admins;
  force=true is admin only
"""
from flask import Blueprint, request, jsonify, g

from ..models.accounts import ROLE_ADMIN, ROLE_PRODUCER
from ..services import catalog_service
from ..validation import PermissionDeniedError, require_quantity
from chaintrack.time_utils import parse_iso_date
from ..decorators import require_actor, require_role
from .errors import json_error, read_json


products_bp = Blueprint("products", __name__, url_prefix="/api")


@products_bp.get("/products")
@require_actor
def list_products():
    """
    List products.

    Query params:
    - producer_id: int (optional) - only this producer's products
    """
    producer_id = request.args.get("producer_id", type=int)
    products = catalog_service.list_products(producer_id=producer_id)
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)})


@products_bp.post("/products")
@require_actor
@require_role(ROLE_PRODUCER)
def create_product():
    """
    Request body:
    {
        "name": str,
        "description": str (optional),
        "images": [str] (optional, max 5),
        "is_serialized": bool (optional, default true; fixed after creation)
    }
    """
    try:
        product = catalog_service.create_or_update_product(g.current_user.id, read_json())
        return jsonify(product.to_dict()), 201
    except Exception as e:
        return json_error(e)


@products_bp.get("/products/<int:product_id>")
@require_actor
def get_product(product_id: int):
    try:
        product = catalog_service.get_product(product_id)
        data = product.to_dict()
        data["quantity"] = catalog_service.get_stock_for_owner(product, g.current_user.id)
        return jsonify(data)
    except Exception as e:
        return json_error(e)


@products_bp.patch("/products/<int:product_id>")
@require_actor
@require_role(ROLE_PRODUCER)
def update_product(product_id: int):
    try:
        product = catalog_service.create_or_update_product(
            g.current_user.id, read_json(), product_id=product_id
        )
        return jsonify(product.to_dict())
    except Exception as e:
        return json_error(e)


@products_bp.delete("/products/<int:product_id>")
@require_actor
@require_role(ROLE_PRODUCER, ROLE_ADMIN)
def delete_product(product_id: int):
    """
    Delete a product with its units and stock.

    Query params:
    - force: "true" to delete even with stock out in the chain or orders (admin only)

    Error responses:
        403: Not the product's producer, or force without ADMIN
        404: Product not found
        409: Stock or orders still outstanding (details lists what)
    """
    force = request.args.get("force", "false").lower() == "true"
    try:
        is_admin = g.current_user.role == ROLE_ADMIN
        if force and not is_admin:
            raise PermissionDeniedError("Only admins can force-delete products")
        product = catalog_service.get_product(product_id)
        if not is_admin and product.producer_id != g.current_user.id:
            raise PermissionDeniedError(f"Product {product_id} belongs to another producer")

        result = catalog_service.delete_product(product_id, actor_user_id=g.current_user.id, force=force)
        return jsonify(result)
    except Exception as e:
        return json_error(e)


@products_bp.post("/products/<int:product_id>/batches")
@require_actor
@require_role(ROLE_PRODUCER)
def produce_batch(product_id: int):
    """
    Run production.

    Request body:
    {
        "quantity": int,
        "manufactured_on": "YYYY-MM-DD" (optional, defaults to today)
    }

    Serialized products get new IN_FACTORY units with fresh serials; bulk
    products credit the producer's stock.

    Error responses:
        400: Invalid quantity or date
        409: Serial range exhausted
    """
    try:
        data = read_json()
        quantity = require_quantity(data.get("quantity"))
        try:
            manufactured_on = parse_iso_date(data.get("manufactured_on"))
        except (TypeError, ValueError, AttributeError):
            return jsonify({"error": "manufactured_on must be YYYY-MM-DD"}), 400

        result = catalog_service.produce_batch(
            product_id, g.current_user.id, quantity, manufactured_on=manufactured_on
        )
        return jsonify({
            "product_id": result["product_id"],
            "quantity": result["quantity"],
            "units": [u.to_dict(include_auth_code=True) for u in result["units"]],
        }), 201
    except Exception as e:
        return json_error(e)


@products_bp.get("/stock")
@require_actor
def available_stock():
    """
    Products with the owner's available quantity.

    Query params:
    - owner_id: int (optional, defaults to the acting user)
    """
    owner_id = request.args.get("owner_id", type=int) or g.current_user.id
    try:
        items = catalog_service.list_available_stock(owner_id)
        return jsonify({"owner_id": owner_id, "items": items, "count": len(items)})
    except Exception as e:
        return json_error(e)
