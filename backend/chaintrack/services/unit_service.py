# Overview: Service-layer operations for serialized units; the unit lifecycle state machine.

"""
Unit Ledger

================================================================================
STATE MACHINE
================================================================================

    trigger          from                               to
    ---------------  ---------------------------------  ------------------
    dispatch         IN_FACTORY                         AT_SELLER
    reserve          AT_SELLER, RETURNED_TO_SELLER      SOLD_TO_BUYER
    release          SOLD_TO_BUYER                      AT_SELLER
    request_return   SOLD_TO_BUYER                      RETURN_REQUESTED
    accept_return    RETURN_REQUESTED                   RETURNED_TO_SELLER
    decline_return   RETURN_REQUESTED                   SOLD_TO_BUYER
    mark_defective   AT_SELLER, RETURNED_TO_SELLER      RETURNED_DEFECTIVE
    delete           IN_FACTORY, RETURNED_DEFECTIVE     (row removed)

RULES:
1. A trigger applied to a unit outside its source states raises
   StateConflictError; the surrounding transaction rolls back.
2. After every transition the owner references required by the new status
   (REQUIRED_REFS) must be set.
3. Deleting a unit returns its serial to the reclaim pool. Marking it
   defective does not.

Functions prefixed with an underscore mutate in the caller's transaction;
public functions own their transaction.
================================================================================
"""

from __future__ import annotations

from datetime import date

from ..extensions import db
from ..models import OrderUnit, Product, ProductUnit, User
from ..models.accounts import ROLE_RESELLER
from ..models.units import (
    REQUIRED_REFS,
    SELLABLE_STATUSES,
    UNIT_AT_SELLER,
    UNIT_IN_FACTORY,
    UNIT_RETURN_REQUESTED,
    UNIT_RETURNED_DEFECTIVE,
    UNIT_RETURNED_TO_SELLER,
    UNIT_SOLD_TO_BUYER,
    UNIT_STATUSES,
)
from chaintrack.time_utils import utcnow, today
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
from . import serial_service
from .signature_service import compute_auth_code


TRIGGER_DISPATCH = "dispatch"
TRIGGER_RESERVE = "reserve"
TRIGGER_RELEASE = "release"
TRIGGER_REQUEST_RETURN = "request_return"
TRIGGER_ACCEPT_RETURN = "accept_return"
TRIGGER_DECLINE_RETURN = "decline_return"
TRIGGER_MARK_DEFECTIVE = "mark_defective"
TRIGGER_DELETE = "delete"

# trigger -> (allowed source statuses, destination status)
TRANSITIONS: dict[str, tuple[tuple[str, ...], str | None]] = {
    TRIGGER_DISPATCH: ((UNIT_IN_FACTORY,), UNIT_AT_SELLER),
    TRIGGER_RESERVE: (SELLABLE_STATUSES, UNIT_SOLD_TO_BUYER),
    TRIGGER_RELEASE: ((UNIT_SOLD_TO_BUYER,), UNIT_AT_SELLER),
    TRIGGER_REQUEST_RETURN: ((UNIT_SOLD_TO_BUYER,), UNIT_RETURN_REQUESTED),
    TRIGGER_ACCEPT_RETURN: ((UNIT_RETURN_REQUESTED,), UNIT_RETURNED_TO_SELLER),
    TRIGGER_DECLINE_RETURN: ((UNIT_RETURN_REQUESTED,), UNIT_SOLD_TO_BUYER),
    TRIGGER_MARK_DEFECTIVE: (SELLABLE_STATUSES, UNIT_RETURNED_DEFECTIVE),
    TRIGGER_DELETE: ((UNIT_IN_FACTORY, UNIT_RETURNED_DEFECTIVE), None),
}


def can_transition(status: str, trigger: str) -> bool:
    sources, _ = TRANSITIONS[trigger]
    return status in sources


def _check_refs(unit: ProductUnit) -> None:
    missing = [f for f in REQUIRED_REFS[unit.status] if getattr(unit, f) is None]
    if missing:
        raise StateConflictError(
            f"Unit {unit.id} in status {unit.status} is missing {', '.join(missing)}"
        )


def _require_source(unit: ProductUnit, trigger: str) -> None:
    sources, _ = TRANSITIONS[trigger]
    if unit.status not in sources:
        raise StateConflictError(
            f"Cannot {trigger.replace('_', ' ')} unit {unit.id} ({unit.serial_number}): "
            f"current status is '{unit.status}', must be one of: {', '.join(sources)}",
            details={"unit_id": unit.id, "status": unit.status, "trigger": trigger},
        )


def _apply(unit: ProductUnit, trigger: str, **refs) -> ProductUnit:
    """
    Move one unit along `trigger`, applying the trigger's side effects.

    Raises StateConflictError when the unit's current status is not a
    source state for the trigger.
    """
    _require_source(unit, trigger)
    destination = TRANSITIONS[trigger][1]

    now = utcnow()
    if trigger == TRIGGER_DISPATCH:
        unit.reseller_id = refs["reseller_id"]
        unit.dispatched_at = now
    elif trigger == TRIGGER_RESERVE:
        unit.buyer_id = refs["buyer_id"]
        unit.sold_at = now
    elif trigger == TRIGGER_RELEASE:
        unit.buyer_id = None
        unit.sold_at = None
    elif trigger in (TRIGGER_ACCEPT_RETURN, TRIGGER_MARK_DEFECTIVE):
        unit.returned_at = now

    unit.status = destination
    _check_refs(unit)
    return unit


def _load_units(unit_ids: list[int]) -> list[ProductUnit]:
    """Lock and load units in the given id order; any unknown id is an error."""
    rows = lock_for_update(
        db.session.query(ProductUnit).filter(ProductUnit.id.in_(unit_ids))
    ).all()
    by_id = {u.id: u for u in rows}
    missing = [uid for uid in unit_ids if uid not in by_id]
    if missing:
        raise NotFoundError(f"Units not found: {', '.join(str(m) for m in missing)}")
    return [by_id[uid] for uid in unit_ids]


def _create_units(
    product: Product,
    serials: list[str],
    *,
    manufactured_on: date | None = None,
) -> list[ProductUnit]:
    """Create IN_FACTORY units for serials the product's producer reserved (caller commits)."""
    serial_service.require_reservations(serials, product.producer_id)
    units = []
    for serial in serials:
        serial_service.consume_reservation(serial)
        unit = ProductUnit(
            product_id=product.id,
            serial_number=serial,
            status=UNIT_IN_FACTORY,
            producer_id=product.producer_id,
            auth_code=compute_auth_code(serial, product.producer_id),
            manufactured_on=manufactured_on or today(),
        )
        db.session.add(unit)
        units.append(unit)
    db.session.flush()
    return units


def _require_serialized_product(product_id: int, producer_id: int | None = None) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    if not product.is_serialized:
        raise ValidationError(f"Product {product_id} is not serialized")
    if producer_id is not None and product.producer_id != producer_id:
        raise PermissionDeniedError(f"Product {product_id} belongs to another producer")
    return product


def produce_units(
    product_id: int,
    producer_id: int,
    quantity: int,
    *,
    manufactured_on: date | None = None,
    commit: bool = True,
) -> list[ProductUnit]:
    """
    Allocate serials and create `quantity` IN_FACTORY units in one transaction.

    Allocation and creation commit together, so an aborted production run
    leaves no reservation behind.
    """
    require_quantity(quantity)

    def _op():
        product = _require_serialized_product(product_id, producer_id)
        serials = serial_service.allocate_serials(quantity, reserved_by=product.producer_id, commit=False)
        units = _create_units(product, serials, manufactured_on=manufactured_on)

        append_event(
            event_type="units.produced",
            entity_type="product",
            entity_id=product.id,
            actor_user_id=producer_id,
            payload={"unit_ids": [u.id for u in units], "serials": serials},
        )
        return units

    return run_write(_op, commit=commit)


def register_units(
    product_id: int,
    producer_id: int,
    serials: list[str],
    *,
    manufactured_on: date | None = None,
) -> list[ProductUnit]:
    """
    Create units for serials the producer reserved earlier with
    serial_service.allocate_serials (the two-step "generate, then register"
    flow).

    Every serial must be numeric, inside the current range and held by an
    unexpired reservation of this producer. Otherwise nothing is created
    and ValidationError lists the rejected serials.
    """
    if not isinstance(serials, list) or not serials:
        raise ValidationError("serials must be a non-empty list")
    cleaned = [str(s).strip() for s in serials]
    if any(not s for s in cleaned):
        raise ValidationError("serials cannot be blank")
    if len(set(cleaned)) != len(cleaned):
        raise ValidationError("serials contains duplicates")

    def _op():
        product = _require_serialized_product(product_id, producer_id)
        units = _create_units(product, cleaned, manufactured_on=manufactured_on)
        append_event(
            event_type="units.registered",
            entity_type="product",
            entity_id=product.id,
            actor_user_id=producer_id,
            payload={"unit_ids": [u.id for u in units], "serials": cleaned},
        )
        return units

    return run_write(_op)


def dispatch_units(unit_ids: list[int], producer_id: int, reseller_id: int, *, commit: bool = True) -> list[ProductUnit]:
    """IN_FACTORY -> AT_SELLER for units the producer made."""
    unit_ids = require_id_list(unit_ids, "unit_ids")
    if isinstance(reseller_id, bool) or not isinstance(reseller_id, int):
        raise ValidationError("reseller_id must be an integer")

    def _op():
        reseller = db.session.get(User, reseller_id)
        if reseller is None or not reseller.is_active:
            raise NotFoundError(f"Reseller {reseller_id} not found")
        if reseller.role != ROLE_RESELLER:
            raise ValidationError(f"User {reseller_id} is not a reseller")

        units = _load_units(unit_ids)
        foreign = [u.id for u in units if u.producer_id != producer_id]
        if foreign:
            raise PermissionDeniedError(f"Units not produced by user {producer_id}: {foreign}")

        for unit in units:
            _apply(unit, TRIGGER_DISPATCH, reseller_id=reseller_id)

        append_event(
            event_type="units.dispatched",
            entity_type="user",
            entity_id=reseller_id,
            actor_user_id=producer_id,
            payload={"unit_ids": unit_ids},
        )
        return units

    return run_write(_op, commit=commit)


def mark_defective(unit_ids: list[int], reseller_id: int) -> list[ProductUnit]:
    """Reseller sends units back to the producer as defective (terminal)."""
    unit_ids = require_id_list(unit_ids, "unit_ids")

    def _op():
        units = _load_units(unit_ids)
        foreign = [u.id for u in units if u.reseller_id != reseller_id]
        if foreign:
            raise PermissionDeniedError(f"Units not held by user {reseller_id}: {foreign}")

        for unit in units:
            _apply(unit, TRIGGER_MARK_DEFECTIVE)

        append_event(
            event_type="units.defective",
            entity_type="user",
            entity_id=reseller_id,
            actor_user_id=reseller_id,
            payload={"unit_ids": unit_ids},
        )
        return units

    return run_write(_op)


def _delete_unit(unit: ProductUnit, *, force: bool = False) -> str:
    if not force:
        _require_source(unit, TRIGGER_DELETE)
    serial = unit.serial_number
    for link in db.session.query(OrderUnit).filter(OrderUnit.unit_id == unit.id).all():
        link.unit = None
    db.session.delete(unit)
    db.session.flush()
    serial_service.reclaim_serial(serial, commit=False)
    return serial


def delete_unit(unit_id: int, *, actor_user_id: int | None = None) -> str:
    """
    Remove a unit still in the factory or returned defective, and return
    its serial to the reclaim pool. Returns the freed serial.
    """
    def _op():
        unit = _load_units([unit_id])[0]
        if actor_user_id is not None and unit.producer_id != actor_user_id:
            raise PermissionDeniedError(f"Unit {unit_id} belongs to another producer")
        serial = _delete_unit(unit)
        append_event(
            event_type="units.deleted",
            entity_type="product",
            entity_id=unit.product_id,
            actor_user_id=actor_user_id,
            payload={"unit_id": unit_id, "serial_number": serial},
        )
        return serial

    return run_write(_op)


def get_unit(unit_id: int) -> ProductUnit:
    unit = db.session.get(ProductUnit, unit_id)
    if unit is None:
        raise NotFoundError(f"Unit {unit_id} not found")
    return unit


OWNER_FIELDS = {"producer_id", "reseller_id", "buyer_id"}


def list_units(
    *,
    product_id: int | None = None,
    status: str | None = None,
    owner_field: str | None = None,
    owner_id: int | None = None,
    limit: int = 500,
) -> list[ProductUnit]:
    """
    Units filtered by product, status and owner reference, oldest first.

    owner_field is one of producer_id / reseller_id / buyer_id.
    """
    q = db.session.query(ProductUnit)
    if product_id is not None:
        q = q.filter(ProductUnit.product_id == product_id)
    if status is not None:
        if status not in UNIT_STATUSES:
            raise ValidationError(f"Invalid status '{status}'. Must be one of: {', '.join(UNIT_STATUSES)}")
        q = q.filter(ProductUnit.status == status)
    if owner_field is not None:
        if owner_field not in OWNER_FIELDS or owner_id is None:
            raise ValidationError("owner_field must be producer_id, reseller_id or buyer_id with owner_id")
        q = q.filter(getattr(ProductUnit, owner_field) == owner_id)
    return q.order_by(ProductUnit.id.asc()).limit(limit).all()


def sellable_units(product_id: int, seller_id: int) -> list[ProductUnit]:
    """Units the seller can sell right now, FIFO (first created first)."""
    return (
        db.session.query(ProductUnit)
        .filter(
            ProductUnit.product_id == product_id,
            ProductUnit.reseller_id == seller_id,
            ProductUnit.status.in_(SELLABLE_STATUSES),
        )
        .order_by(ProductUnit.id.asc())
        .all()
    )


def dispatch_history(producer_id: int) -> list[dict]:
    """Units a producer has sent to resellers, most recent dispatch first."""
    rows = (
        db.session.query(ProductUnit, Product.name, User.name)
        .join(Product, Product.id == ProductUnit.product_id)
        .outerjoin(User, User.id == ProductUnit.reseller_id)
        .filter(ProductUnit.producer_id == producer_id, ProductUnit.reseller_id.isnot(None))
        .order_by(ProductUnit.dispatched_at.desc(), ProductUnit.id.desc())
        .all()
    )
    return [
        {**unit.to_dict(), "product_name": product_name, "reseller_name": reseller_name or "Unknown Seller"}
        for unit, product_name, reseller_name in rows
    ]
