# Overview: Bulk ledger; quantity counters per (product, owner).

"""
Bulk Ledger

Pure counter arithmetic keyed by (product, owner):
- credit: add to the owner's row, creating it when absent
- debit:  subtract, rejected when the row holds less than requested
- transfer: debit source then credit destination; a None destination
  discards the quantity (void / write-off)

Quantities never go negative (checked here and by a CHECK constraint).
"""

from __future__ import annotations

from ..extensions import db
from ..models import BulkStock, Product
from ..validation import NotFoundError, PermissionDeniedError, ValidationError, require_quantity
from .concurrency import lock_for_update, run_write
from .ledger_service import append_event


class InsufficientStockError(ValidationError):
    """Source holds less than the requested quantity."""


def _stock_row(product_id: int, owner_id: int) -> BulkStock | None:
    return lock_for_update(
        db.session.query(BulkStock).filter_by(product_id=product_id, owner_id=owner_id)
    ).first()


def _require_bulk_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    if product.is_serialized:
        raise ValidationError(f"Product {product_id} is serialized; its stock is tracked per unit")
    return product


def get_quantity(product_id: int, owner_id: int) -> int:
    row = db.session.query(BulkStock).filter_by(product_id=product_id, owner_id=owner_id).first()
    return row.quantity if row else 0


def credit_stock(product_id: int, owner_id: int, quantity: int) -> BulkStock:
    """Add quantity to the owner's counter, merging into an existing row (caller commits)."""
    require_quantity(quantity)
    row = _stock_row(product_id, owner_id)
    if row is None:
        row = BulkStock(product_id=product_id, owner_id=owner_id, quantity=0)
        db.session.add(row)
    row.quantity += quantity
    db.session.flush()
    return row


def debit_stock(product_id: int, owner_id: int, quantity: int) -> BulkStock:
    """Subtract quantity; never below zero (caller commits)."""
    require_quantity(quantity)
    row = _stock_row(product_id, owner_id)
    available = row.quantity if row else 0
    if row is None or available < quantity:
        raise InsufficientStockError(
            f"Insufficient bulk stock for product {product_id}. "
            f"Requested: {quantity}, Available: {available}",
            details={"product_id": product_id, "owner_id": owner_id,
                     "requested_quantity": quantity, "available": available},
        )
    row.quantity -= quantity
    db.session.flush()
    return row


def grant_stock(product_id: int, owner_id: int, quantity: int, *, commit: bool = True) -> BulkStock:
    """New stock for an owner (production run of a bulk product)."""
    def _op():
        _require_bulk_product(product_id)
        row = credit_stock(product_id, owner_id, quantity)
        append_event(
            event_type="stock.granted",
            entity_type="product",
            entity_id=product_id,
            actor_user_id=owner_id,
            payload={"owner_id": owner_id, "quantity": quantity},
        )
        return row

    return run_write(_op, commit=commit)


def transfer_stock(
    product_id: int,
    from_owner_id: int,
    to_owner_id: int | None,
    quantity: int,
    *,
    commit: bool = True,
) -> BulkStock | None:
    """
    Move quantity between owners. Returns the destination row, or None when
    the destination is None (discard).
    """
    require_quantity(quantity)
    if to_owner_id is not None and to_owner_id == from_owner_id:
        raise ValidationError("Cannot transfer stock to the same owner")

    def _op():
        _require_bulk_product(product_id)
        debit_stock(product_id, from_owner_id, quantity)
        dest = credit_stock(product_id, to_owner_id, quantity) if to_owner_id is not None else None

        append_event(
            event_type="stock.transferred" if to_owner_id is not None else "stock.discarded",
            entity_type="product",
            entity_id=product_id,
            actor_user_id=from_owner_id,
            payload={"from_owner_id": from_owner_id, "to_owner_id": to_owner_id, "quantity": quantity},
        )
        return dest

    return run_write(_op, commit=commit)


def return_to_producer(product_id: int, reseller_id: int, quantity: int) -> BulkStock:
    """Reseller sends bulk quantity back to the product's producer."""
    def _op():
        product = _require_bulk_product(product_id)
        if product.producer_id == reseller_id:
            raise PermissionDeniedError("Producer cannot return stock to itself")
        return transfer_stock(product_id, reseller_id, product.producer_id, quantity, commit=False)

    return run_write(_op)


def stock_for_owner(owner_id: int) -> list[BulkStock]:
    return (
        db.session.query(BulkStock)
        .filter(BulkStock.owner_id == owner_id)
        .order_by(BulkStock.product_id.asc())
        .all()
    )


def total_quantity(product_id: int) -> int:
    total = (
        db.session.query(db.func.coalesce(db.func.sum(BulkStock.quantity), 0))
        .filter(BulkStock.product_id == product_id)
        .scalar()
    )
    return int(total or 0)
