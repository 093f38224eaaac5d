# Overview: Transaction engine; checkout, fulfillment, cancellation and returns.

"""
Transaction Engine

================================================================================
ORDER LIFECYCLE
================================================================================

    AWAITING_CONFIRMATION --fulfill--> CONFIRMED --deliver--> DELIVERED
    AWAITING_CONFIRMATION / CONFIRMED --cancel--> (order deleted)
    DELIVERED --request_return--> RETURN_REQUESTED
    RETURN_REQUESTED --accept--> RETURNED
    RETURN_REQUESTED --decline--> DELIVERED

CHECKOUT (one transaction):
1. Validation: every line is resolved to an effective seller (explicit
   seller, else the product's producer) and checked against that seller's
   stock. Shortfalls are collected and raised together; nothing mutates.
2. Execution: serialized lines reserve the first N sellable units by unit id
   (FIFO), bulk lines debit the seller's counter. One order per line.
3. Commit: orders, inventory changes and the emptied cart commit together.
   Any failure rolls the whole checkout back.

CANCELLATION is the exact inverse of checkout for that line: reserved units
go back to AT_SELLER with buyer cleared, bulk quantity is credited back.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..models import CartItem, Order, OrderUnit, Product, ProductUnit
from ..models.orders import (
    ORDER_AWAITING_CONFIRMATION,
    ORDER_CONFIRMED,
    ORDER_DELIVERED,
    ORDER_RETURN_REQUESTED,
    ORDER_RETURNED,
    ORDER_STATUS_LABELS,
)
from ..models.units import SELLABLE_STATUSES, UNIT_AT_SELLER
from chaintrack.time_utils import utcnow
from ..validation import (
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
    require_id_list,
    require_quantity,
)
from .concurrency import lock_for_update, run_write
from .ledger_service import append_event
from .stock_service import credit_stock, debit_stock, get_quantity
from . import cart_service
from .unit_service import (
    TRIGGER_ACCEPT_RETURN,
    TRIGGER_DECLINE_RETURN,
    TRIGGER_RELEASE,
    TRIGGER_REQUEST_RETURN,
    TRIGGER_RESERVE,
    _apply,
    _load_units,
)


CANCELLABLE_STATUSES = (ORDER_AWAITING_CONFIRMATION, ORDER_CONFIRMED)


@dataclass
class CheckoutLine:
    product: Product
    seller_id: int
    quantity: int
    unit_ids: list[int] = field(default_factory=list)


def _parse_item(raw) -> tuple[int, int, int | None, list[int]]:
    if isinstance(raw, CartItem):
        return raw.product_id, raw.quantity, raw.seller_id, list(raw.unit_ids or [])
    if not isinstance(raw, dict):
        raise ValidationError("Each item must be an object")
    product_id = raw.get("product_id")
    if isinstance(product_id, bool) or not isinstance(product_id, int):
        raise ValidationError("product_id must be an integer")
    quantity = require_quantity(raw.get("quantity"))
    seller_id = raw.get("seller_id")
    if seller_id is not None and (isinstance(seller_id, bool) or not isinstance(seller_id, int)):
        raise ValidationError("seller_id must be an integer")
    unit_ids = raw.get("unit_ids") or []
    if not isinstance(unit_ids, list) or any(isinstance(u, bool) or not isinstance(u, int) for u in unit_ids):
        raise ValidationError("unit_ids must be a list of integer ids")
    if len(set(unit_ids)) != len(unit_ids):
        raise ValidationError("unit_ids contains duplicates")
    return product_id, quantity, seller_id, list(unit_ids)


def _resolve_lines(buyer_id: int, raw_items: list) -> list[CheckoutLine]:
    lines = []
    for raw in raw_items:
        product_id, quantity, seller_id, unit_ids = _parse_item(raw)
        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")

        effective_seller = seller_id if seller_id is not None else product.producer_id
        if effective_seller == buyer_id:
            raise ValidationError(f"Cannot order {product.name} from yourself")
        if len(unit_ids) > quantity:
            raise ValidationError(f"More units picked than ordered for {product.name}")

        lines.append(CheckoutLine(product=product, seller_id=effective_seller, quantity=quantity, unit_ids=unit_ids))
    return lines


def _sellable_unit_query(product_id: int, seller_id: int):
    return lock_for_update(
        db.session.query(ProductUnit).filter(
            ProductUnit.product_id == product_id,
            ProductUnit.reseller_id == seller_id,
            ProductUnit.status.in_(SELLABLE_STATUSES),
        )
    ).order_by(ProductUnit.id.asc())


def _pick_units(line: CheckoutLine, taken: set[int]) -> list[ProductUnit]:
    """Pinned units first, then FIFO by unit id. Returns what could be found."""
    sellable = [u for u in _sellable_unit_query(line.product.id, line.seller_id).all() if u.id not in taken]
    by_id = {u.id: u for u in sellable}

    picked = [by_id[uid] for uid in line.unit_ids if uid in by_id]
    if len(picked) != len(line.unit_ids):
        return picked

    for unit in sellable:
        if len(picked) >= line.quantity:
            break
        if unit not in picked:
            picked.append(unit)
    return picked


def _validate_lines(lines: list[CheckoutLine]) -> dict[int, list[ProductUnit]]:
    """
    Check every line against its seller's stock without mutating anything.

    Returns the units chosen for each serialized line (keyed by line index).
    Several lines for the same product and seller draw from one pool.
    """
    shortfalls = []
    chosen: dict[int, list[ProductUnit]] = {}
    taken: set[int] = set()
    bulk_demand: dict[tuple[int, int], int] = {}

    for index, line in enumerate(lines):
        if line.product.is_serialized:
            units = _pick_units(line, taken)
            if len(units) < line.quantity:
                shortfalls.append({
                    "product_id": line.product.id,
                    "product_name": line.product.name,
                    "seller_id": line.seller_id,
                    "requested_quantity": line.quantity,
                    "available": len(units),
                })
                continue
            taken.update(u.id for u in units)
            chosen[index] = units
        else:
            if line.unit_ids:
                raise ValidationError(f"unit_ids only apply to serialized products ({line.product.name})")
            key = (line.product.id, line.seller_id)
            bulk_demand[key] = bulk_demand.get(key, 0) + line.quantity

    if bulk_demand:
        products = {line.product.id: line.product for line in lines}
        for (product_id, seller_id), requested in bulk_demand.items():
            available = get_quantity(product_id, seller_id)
            if available < requested:
                shortfalls.append({
                    "product_id": product_id,
                    "product_name": products[product_id].name,
                    "seller_id": seller_id,
                    "requested_quantity": requested,
                    "available": available,
                })

    if shortfalls:
        first = shortfalls[0]
        raise ValidationError(
            f"Insufficient stock for {first['product_name']}. "
            f"Requested: {first['requested_quantity']}, Available: {first['available']}. Order cancelled.",
            details={"items": shortfalls},
        )
    return chosen


def _reserve_for_order(order: Order, units: list[ProductUnit], buyer_id: int) -> None:
    for position, unit in enumerate(units, start=1):
        _apply(unit, TRIGGER_RESERVE, buyer_id=buyer_id)
        order.reserved.append(OrderUnit(unit=unit, serial_number=unit.serial_number, position=position))


def checkout(buyer_id: int, items: list | None = None) -> list[Order]:
    """
    Turn cart lines (or explicit items) into orders.

    items=None checks out the buyer's cart and clears it on success.
    Explicit items are dicts with product_id, quantity and optional
    seller_id / unit_ids.

    Raises:
        ValidationError: empty input, malformed line, or stock shortfall
            (details["items"] lists every short line)
        NotFoundError: unknown product
    """
    if items is not None and (not isinstance(items, list) or not items):
        raise ValidationError("items must be a non-empty list")

    def _op():
        from_cart = items is None
        raw_items = cart_service.get_cart(buyer_id) if from_cart else items
        if not raw_items:
            raise ValidationError("Cart is empty")

        lines = _resolve_lines(buyer_id, raw_items)
        chosen = _validate_lines(lines)

        now = utcnow()
        orders = []
        for index, line in enumerate(lines):
            order = Order(
                product_id=line.product.id,
                seller_id=line.seller_id,
                buyer_id=buyer_id,
                quantity=line.quantity,
                status=ORDER_AWAITING_CONFIRMATION,
                ordered_at=now,
            )
            db.session.add(order)

            if line.product.is_serialized:
                _reserve_for_order(order, chosen[index], buyer_id)
            else:
                debit_stock(line.product.id, line.seller_id, line.quantity)

            db.session.flush()
            append_event(
                event_type="order.placed",
                entity_type="order",
                entity_id=order.id,
                actor_user_id=buyer_id,
                occurred_at=now,
                payload={
                    "product_id": line.product.id,
                    "seller_id": line.seller_id,
                    "quantity": line.quantity,
                    "unit_ids": order.reserved_unit_ids,
                },
            )
            orders.append(order)

        if from_cart:
            cart_service.clear_cart(buyer_id, commit=False)
        return orders

    orders = run_write(_op)
    current_app.logger.info(
        "Checkout committed for buyer %s: orders %s", buyer_id, [o.id for o in orders]
    )
    return orders


def _load_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _require_status(order: Order, *allowed: str, action: str) -> None:
    if order.status not in allowed:
        labels = ", ".join(ORDER_STATUS_LABELS[s] for s in allowed)
        raise StateConflictError(
            f"Cannot {action} order {order.id} in status '{ORDER_STATUS_LABELS.get(order.status, order.status)}'. "
            f"Allowed: {labels}",
            details={"order_id": order.id, "status": order.status},
        )


def _require_party(order: Order, user_id: int, *, seller: bool = False, buyer: bool = False) -> None:
    if seller and order.seller_id == user_id:
        return
    if buyer and order.buyer_id == user_id:
        return
    raise PermissionDeniedError(f"User {user_id} is not a party to order {order.id}")


def _order_units(order: Order) -> list[ProductUnit]:
    ids = order.reserved_unit_ids
    return _load_units(ids) if ids else []


def fulfill_order(order_id: int, seller_id: int, unit_ids: list[int] | None = None) -> Order:
    """
    Seller confirms an order.

    A serialized order with no reserved units takes the seller's explicit
    pick: 1..quantity units, each AT_SELLER, owned by the seller, of the
    ordered product.
    """
    def _op():
        order = _load_order(order_id)
        _require_party(order, seller_id, seller=True)
        _require_status(order, ORDER_AWAITING_CONFIRMATION, action="fulfill")

        if unit_ids and not order.reserved:
            if not order.product.is_serialized:
                raise ValidationError("unit_ids only apply to serialized orders")
            picked = require_id_list(unit_ids, "unit_ids")
            if len(picked) > order.quantity:
                raise ValidationError(f"Select between 1 and {order.quantity} units")

            units = _load_units(picked)
            bad = [
                u.id for u in units
                if u.status != UNIT_AT_SELLER or u.reseller_id != seller_id or u.product_id != order.product_id
            ]
            if bad:
                raise ValidationError(
                    f"Units not available for this order: {bad}",
                    details={"unit_ids": bad},
                )
            _reserve_for_order(order, units, order.buyer_id)

        order.status = ORDER_CONFIRMED
        order.confirmed_at = utcnow()
        db.session.flush()

        append_event(
            event_type="order.confirmed",
            entity_type="order",
            entity_id=order.id,
            actor_user_id=seller_id,
            payload={"unit_ids": order.reserved_unit_ids},
        )
        return order

    return run_write(_op)


def confirm_delivery(order_id: int, buyer_id: int) -> Order:
    """Buyer marks a confirmed order as received."""
    def _op():
        order = _load_order(order_id)
        _require_party(order, buyer_id, buyer=True)
        _require_status(order, ORDER_CONFIRMED, action="mark delivered")

        order.status = ORDER_DELIVERED
        order.delivered_at = utcnow()
        append_event(event_type="order.delivered", entity_type="order", entity_id=order.id, actor_user_id=buyer_id)
        return order

    return run_write(_op)


def cancel_order(order_id: int, actor_id: int) -> None:
    """
    Undo a checkout line: release reserved units or credit bulk quantity
    back to the seller, then delete the order. Either party may cancel.
    """
    def _op():
        order = _load_order(order_id)
        _require_party(order, actor_id, seller=True, buyer=True)
        _require_status(order, *CANCELLABLE_STATUSES, action="cancel")

        released = []
        if order.product.is_serialized:
            for unit in _order_units(order):
                _apply(unit, TRIGGER_RELEASE)
                released.append(unit.id)
        else:
            credit_stock(order.product_id, order.seller_id, order.quantity)

        append_event(
            event_type="order.cancelled",
            entity_type="order",
            entity_id=order.id,
            actor_user_id=actor_id,
            payload={
                "product_id": order.product_id,
                "seller_id": order.seller_id,
                "buyer_id": order.buyer_id,
                "quantity": order.quantity,
                "released_unit_ids": released,
            },
        )
        db.session.delete(order)

    run_write(_op)
    current_app.logger.info("Order %s cancelled by user %s", order_id, actor_id)


def request_return(order_id: int, buyer_id: int) -> Order:
    def _op():
        order = _load_order(order_id)
        _require_party(order, buyer_id, buyer=True)
        _require_status(order, ORDER_DELIVERED, action="request a return for")

        for unit in _order_units(order):
            _apply(unit, TRIGGER_REQUEST_RETURN)

        order.status = ORDER_RETURN_REQUESTED
        order.return_requested_at = utcnow()
        append_event(event_type="order.return_requested", entity_type="order", entity_id=order.id, actor_user_id=buyer_id)
        return order

    return run_write(_op)


def resolve_return(order_id: int, seller_id: int, accept: bool) -> Order:
    """
    Seller answers a return request.

    accept: order RETURNED; units RETURNED_TO_SELLER (sellable again), or
            bulk quantity credited back to the seller.
    decline: order back to DELIVERED; units back to SOLD_TO_BUYER.
    """
    if not isinstance(accept, bool):
        raise ValidationError("accept must be a boolean")

    def _op():
        order = _load_order(order_id)
        _require_party(order, seller_id, seller=True)
        _require_status(order, ORDER_RETURN_REQUESTED, action="resolve the return of")

        units = _order_units(order)
        if accept:
            for unit in units:
                _apply(unit, TRIGGER_ACCEPT_RETURN)
            if not order.product.is_serialized:
                credit_stock(order.product_id, order.seller_id, order.quantity)
            order.status = ORDER_RETURNED
            order.returned_at = utcnow()
        else:
            for unit in units:
                _apply(unit, TRIGGER_DECLINE_RETURN)
            order.status = ORDER_DELIVERED

        append_event(
            event_type="order.return_accepted" if accept else "order.return_declined",
            entity_type="order",
            entity_id=order.id,
            actor_user_id=seller_id,
        )
        return order

    return run_write(_op)


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _orders_where(column, user_id: int, status: str | None) -> list[Order]:
    q = db.session.query(Order).filter(column == user_id)
    if status is not None:
        if status not in ORDER_STATUS_LABELS:
            raise ValidationError(f"Invalid status '{status}'")
        q = q.filter(Order.status == status)
    return q.order_by(Order.id.desc()).all()


def orders_for_seller(seller_id: int, *, status: str | None = None) -> list[Order]:
    return _orders_where(Order.seller_id, seller_id, status)


def orders_for_buyer(buyer_id: int, *, status: str | None = None) -> list[Order]:
    return _orders_where(Order.buyer_id, buyer_id, status)
