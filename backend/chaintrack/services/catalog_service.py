# Overview: Service-layer operations for products; definitions, production runs and stock views.

"""
Catalog Service

A product's inventory mode (is_serialized) is chosen at creation and never
changes. Production runs go to the ledger that mode selects:
- serialized: allocate serials and create IN_FACTORY units
- bulk: credit the producer's counter
"""

from __future__ import annotations

from datetime import date

from ..extensions import db
from ..models import BulkStock, CartItem, Order, Product, ProductUnit, User
from ..models.accounts import ROLE_PRODUCER
from ..models.units import SELLABLE_STATUSES, UNIT_IN_FACTORY, UNIT_RETURNED_DEFECTIVE
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
    enforce_rules_product,
    require_quantity,
    validate_payload,
)
from .concurrency import lock_for_update, run_write
from .ledger_service import append_event
from . import stock_service, unit_service


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "images", "is_serialized"},
    required_on_create={"name"},
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "images"},
)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def list_products(*, producer_id: int | None = None) -> list[Product]:
    q = db.session.query(Product)
    if producer_id is not None:
        q = q.filter(Product.producer_id == producer_id)
    return q.order_by(Product.id.asc()).all()


def create_or_update_product(producer_id: int, payload: dict, *, product_id: int | None = None) -> Product:
    """
    Create a product for the producer, or update an existing one's metadata.

    is_serialized is accepted on create only; sending it on update is a
    ValidationError ("Field not allowed").
    """
    if product_id is None:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    else:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
    enforce_rules_product(patch)

    def _op():
        producer = db.session.get(User, producer_id)
        if producer is None or producer.role != ROLE_PRODUCER:
            raise PermissionDeniedError("Only producers can manage products")

        if product_id is None:
            product = Product(producer_id=producer_id, **patch)
            db.session.add(product)
            db.session.flush()
            event_type = "product.created"
        else:
            product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
            if product is None:
                raise NotFoundError(f"Product {product_id} not found")
            if product.producer_id != producer_id:
                raise PermissionDeniedError(f"Product {product_id} belongs to another producer")
            for key, value in patch.items():
                setattr(product, key, value)
            event_type = "product.updated"

        append_event(
            event_type=event_type,
            entity_type="product",
            entity_id=product.id,
            actor_user_id=producer_id,
            payload={"fields": sorted(patch.keys())},
        )
        return product

    return run_write(_op)


def produce_batch(
    product_id: int,
    producer_id: int,
    quantity: int,
    *,
    manufactured_on: date | None = None,
) -> dict:
    """
    Run production for a product.

    Returns {"product_id", "quantity", "units"} where units lists the new
    serialized units (empty for bulk products).
    """
    require_quantity(quantity)
    product = get_product(product_id)
    if product.producer_id != producer_id:
        raise PermissionDeniedError(f"Product {product_id} belongs to another producer")

    if product.is_serialized:
        units = unit_service.produce_units(
            product_id, producer_id, quantity, manufactured_on=manufactured_on
        )
        return {"product_id": product_id, "quantity": len(units), "units": units}

    stock_service.grant_stock(product_id, producer_id, quantity)
    return {"product_id": product_id, "quantity": quantity, "units": []}


def get_stock_for_owner(product: Product, owner_id: int) -> int:
    """
    Quantity of a product the owner can move right now.

    Serialized: the producer's IN_FACTORY units plus units the owner holds
    for sale. Bulk: the owner's counter.
    """
    if not product.is_serialized:
        return stock_service.get_quantity(product.id, owner_id)

    return (
        db.session.query(db.func.count(ProductUnit.id))
        .filter(
            ProductUnit.product_id == product.id,
            db.or_(
                db.and_(ProductUnit.producer_id == owner_id, ProductUnit.status == UNIT_IN_FACTORY),
                db.and_(ProductUnit.reseller_id == owner_id, ProductUnit.status.in_(SELLABLE_STATUSES)),
            ),
        )
        .scalar()
    ) or 0


def list_available_stock(owner_id: int) -> list[dict]:
    """
    Products with the owner's quantity.

    Producers see all of their own products, zero stock included. Everyone
    else sees only products they hold a positive quantity of.
    """
    owner = db.session.get(User, owner_id)
    if owner is None:
        raise NotFoundError(f"User {owner_id} not found")

    is_producer = owner.role == ROLE_PRODUCER
    products = list_products(producer_id=owner_id) if is_producer else list_products()

    rows = []
    for product in products:
        quantity = get_stock_for_owner(product, owner_id)
        if is_producer or quantity > 0:
            rows.append({**product.to_dict(), "quantity": quantity})
    return rows


def _outstanding(product: Product) -> dict:
    """What still ties a product to parties other than its producer."""
    units_in_chain = (
        db.session.query(db.func.count(ProductUnit.id))
        .filter(
            ProductUnit.product_id == product.id,
            ProductUnit.status.notin_((UNIT_IN_FACTORY, UNIT_RETURNED_DEFECTIVE)),
        )
        .scalar()
    ) or 0
    foreign_stock = (
        db.session.query(db.func.coalesce(db.func.sum(BulkStock.quantity), 0))
        .filter(BulkStock.product_id == product.id, BulkStock.owner_id != product.producer_id)
        .scalar()
    ) or 0
    orders = db.session.query(db.func.count(Order.id)).filter(Order.product_id == product.id).scalar() or 0
    return {"units_in_chain": int(units_in_chain), "foreign_stock": int(foreign_stock), "orders": int(orders)}


def delete_product(product_id: int, *, actor_user_id: int | None = None, force: bool = False) -> dict:
    """
    Delete a product with its units, stock rows and cart lines.

    Refuses while units are out in the chain, other parties hold bulk
    stock, or orders reference the product. force=True (admin cleanup)
    deletes all of it, orders included. Every deleted unit's serial goes to
    the reclaim pool.

    Returns {"product_id", "deleted_units", "reclaimed_serials"}.
    """
    def _op():
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")

        outstanding = _outstanding(product)
        if not force and any(outstanding.values()):
            raise StateConflictError(
                f"Product {product_id} still has stock or orders in the supply chain",
                details=outstanding,
            )

        # Order deletes cascade to their reserved-unit rows
        for order in db.session.query(Order).filter(Order.product_id == product_id).all():
            db.session.delete(order)
        db.session.flush()

        units = (
            db.session.query(ProductUnit)
            .filter(ProductUnit.product_id == product_id)
            .order_by(ProductUnit.id.asc())
            .all()
        )
        serials = [unit_service._delete_unit(unit, force=True) for unit in units]

        for row in db.session.query(BulkStock).filter(BulkStock.product_id == product_id).all():
            db.session.delete(row)
        for item in db.session.query(CartItem).filter(CartItem.product_id == product_id).all():
            db.session.delete(item)
        db.session.flush()
        # Reload the product's collections so the delete below sees them empty
        db.session.expire(product)

        append_event(
            event_type="product.deleted",
            entity_type="product",
            entity_id=product_id,
            actor_user_id=actor_user_id,
            payload={"name": product.name, "forced": force, "serials": serials, **outstanding},
        )
        db.session.delete(product)

        return {
            "product_id": product_id,
            "deleted_units": len(units),
            "reclaimed_serials": serials,
        }

    return run_write(_op)
