# Overview: Per-user cart of pending selections; the default input to checkout.

from __future__ import annotations

from ..extensions import db
from ..models import CartItem, Product
from ..validation import NotFoundError, PermissionDeniedError, ValidationError, require_quantity
from .concurrency import run_write


def get_cart(user_id: int) -> list[CartItem]:
    return (
        db.session.query(CartItem)
        .filter(CartItem.user_id == user_id)
        .order_by(CartItem.id.asc())
        .all()
    )


def _clean_unit_ids(unit_ids) -> list[int]:
    if unit_ids is None:
        return []
    if not isinstance(unit_ids, list):
        raise ValidationError("unit_ids must be a list")
    for v in unit_ids:
        if isinstance(v, bool) or not isinstance(v, int):
            raise ValidationError("unit_ids must contain integer ids")
    if len(set(unit_ids)) != len(unit_ids):
        raise ValidationError("unit_ids contains duplicates")
    return list(unit_ids)


def add_to_cart(
    user_id: int,
    product_id: int,
    quantity: int,
    *,
    seller_id: int | None = None,
    unit_ids: list[int] | None = None,
) -> CartItem:
    """
    Add a line, merging into an existing line for the same product and seller.

    Merged lines add quantities and union their pinned unit ids.
    """
    for name, value in (("product_id", product_id), ("seller_id", seller_id)):
        if value is None and name == "seller_id":
            continue
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{name} must be an integer")
    require_quantity(quantity)
    unit_ids = _clean_unit_ids(unit_ids)

    def _op():
        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        if unit_ids and not product.is_serialized:
            raise ValidationError("unit_ids only apply to serialized products")

        item = (
            db.session.query(CartItem)
            .filter_by(user_id=user_id, product_id=product_id, seller_id=seller_id)
            .first()
        )
        if item is None:
            item = CartItem(
                user_id=user_id,
                product_id=product_id,
                seller_id=seller_id,
                quantity=quantity,
                unit_ids=unit_ids,
            )
            db.session.add(item)
        else:
            item.quantity += quantity
            merged = list(item.unit_ids or [])
            merged.extend(uid for uid in unit_ids if uid not in merged)
            # reassign so the JSON column sees the change
            item.unit_ids = merged

        db.session.flush()
        return item

    return run_write(_op)


def remove_from_cart(user_id: int, item_id: int) -> None:
    def _op():
        item = db.session.get(CartItem, item_id)
        if item is None:
            raise NotFoundError(f"Cart item {item_id} not found")
        if item.user_id != user_id:
            raise PermissionDeniedError("Cart item belongs to another user")
        db.session.delete(item)

    run_write(_op)


def clear_cart(user_id: int, *, commit: bool = True) -> int:
    def _op():
        return (
            db.session.query(CartItem)
            .filter(CartItem.user_id == user_id)
            .delete(synchronize_session=False)
        )

    return run_write(_op, commit=commit)
