# Overview: Flask API routes for serialized units; listing, dispatch, returns and QR labels.

from flask import Blueprint, request, jsonify, g

from ..models.accounts import ROLE_ADMIN, ROLE_PRODUCER, ROLE_RESELLER
from ..services import signature_service, unit_service
from ..validation import PermissionDeniedError
from ..decorators import require_actor, require_role
from .errors import json_error, read_json


units_bp = Blueprint("units", __name__, url_prefix="/api/units")


def _can_see_auth_code(unit) -> bool:
    user = g.current_user
    return user.role == ROLE_ADMIN or user.id in (unit.producer_id, unit.buyer_id)


@units_bp.get("")
@require_actor
def list_units():
    """
    Query params:
    - product_id: int (optional)
    - status: str (optional), one of the unit statuses
    - owner_field: producer_id | reseller_id | buyer_id (optional)
    - owner_id: int (required with owner_field)
    - limit: int (optional, default 500)
    """
    try:
        units = unit_service.list_units(
            product_id=request.args.get("product_id", type=int),
            status=request.args.get("status"),
            owner_field=request.args.get("owner_field"),
            owner_id=request.args.get("owner_id", type=int),
            limit=min(request.args.get("limit", 500, type=int), 1000),
        )
        return jsonify({
            "items": [u.to_dict(include_auth_code=_can_see_auth_code(u)) for u in units],
            "count": len(units),
        })
    except Exception as e:
        return json_error(e)


@units_bp.post("/dispatch")
@require_actor
@require_role(ROLE_PRODUCER)
def dispatch_units():
    """
    Send IN_FACTORY units to a reseller.

    Request body:
    {
        "unit_ids": [int],
        "reseller_id": int
    }
    """
    try:
        data = read_json()
        units = unit_service.dispatch_units(
            data.get("unit_ids"),
            producer_id=g.current_user.id,
            reseller_id=data.get("reseller_id"),
        )
        return jsonify({"items": [u.to_dict() for u in units], "count": len(units)})
    except Exception as e:
        return json_error(e)


@units_bp.post("/register")
@require_actor
@require_role(ROLE_PRODUCER)
def register_units():
    """
    Create units for serials reserved earlier via /api/serials/allocate.

    Request body:
    {
        "product_id": int,
        "serials": [str]
    }
    """
    try:
        data = read_json()
        units = unit_service.register_units(
            data.get("product_id"),
            g.current_user.id,
            data.get("serials"),
        )
        return jsonify({
            "items": [u.to_dict(include_auth_code=True) for u in units],
            "count": len(units),
        }), 201
    except Exception as e:
        return json_error(e)


@units_bp.post("/defective")
@require_actor
@require_role(ROLE_RESELLER)
def mark_defective():
    """Reseller returns units to the producer as defective."""
    try:
        data = read_json()
        units = unit_service.mark_defective(data.get("unit_ids"), reseller_id=g.current_user.id)
        return jsonify({"items": [u.to_dict() for u in units], "count": len(units)})
    except Exception as e:
        return json_error(e)


@units_bp.delete("/<int:unit_id>")
@require_actor
@require_role(ROLE_PRODUCER)
def delete_unit(unit_id: int):
    """Delete a unit in the factory or returned defective; its serial is reclaimed."""
    try:
        serial = unit_service.delete_unit(unit_id, actor_user_id=g.current_user.id)
        return jsonify({"ok": True, "unit_id": unit_id, "reclaimed_serial": serial})
    except Exception as e:
        return json_error(e)


@units_bp.get("/dispatch-history")
@require_actor
@require_role(ROLE_PRODUCER)
def dispatch_history():
    items = unit_service.dispatch_history(g.current_user.id)
    return jsonify({"items": items, "count": len(items)})


@units_bp.get("/<int:unit_id>/qr")
@require_actor
def unit_qr(unit_id: int):
    """
    Signed QR payload for a unit's label.

    Only the unit's producer (or an admin) may print labels.
    """
    try:
        unit = unit_service.get_unit(unit_id)
        if g.current_user.role != ROLE_ADMIN and unit.producer_id != g.current_user.id:
            raise PermissionDeniedError("Only the unit's producer can print its label")
        return jsonify({
            "unit_id": unit.id,
            "serial_number": unit.serial_number,
            "payload": signature_service.sign_qr_payload(unit.serial_number),
            "auth_code": unit.auth_code,
        })
    except Exception as e:
        return json_error(e)
