# Overview: Flask API routes for the serial-number range, allocation and release.

# backend/chaintrack/routes/serials.py
"""
Serial number routes.

- GET  /api/serials/settings  range, capacity and usage (any user)
- PUT  /api/serials/settings  change the range (ADMIN)
- POST /api/serials/allocate  reserve numbers for a later registration (PRODUCER)
- POST /api/serials/release   give reserved numbers back (PRODUCER)

Reservations expire after SERIAL_RESERVATION_TTL_SECONDS.
"""
from flask import Blueprint, current_app, jsonify, g

from ..models.accounts import ROLE_ADMIN, ROLE_PRODUCER
from ..services import serial_service
from ..validation import ValidationError
from ..decorators import require_actor, require_role
from .errors import json_error, read_json


serials_bp = Blueprint("serials", __name__, url_prefix="/api/serials")


@serials_bp.get("/settings")
@require_actor
def get_settings():
    try:
        return jsonify(serial_service.serial_usage())
    except Exception as e:
        return json_error(e)


@serials_bp.put("/settings")
@require_actor
@require_role(ROLE_ADMIN)
def update_settings():
    """
    Request body:
    {
        "range_start": int,
        "range_end": int   (must be greater than range_start)
    }
    """
    try:
        data = read_json()
        serial_service.set_serial_range(
            data.get("range_start"),
            data.get("range_end"),
            actor_user_id=g.current_user.id,
        )
        current_app.logger.info(
            "Serial range set to [%s, %s] by user %s",
            data.get("range_start"), data.get("range_end"), g.current_user.id,
        )
        return jsonify(serial_service.serial_usage())
    except Exception as e:
        return json_error(e)


@serials_bp.post("/allocate")
@require_actor
@require_role(ROLE_PRODUCER)
def allocate():
    """
    Request body:
    {
        "quantity": int   (1..MAX_SERIAL_BATCH)
    }

    Error responses:
        400: Invalid quantity
        409: Range exhausted (nothing allocated)
    """
    try:
        serials = serial_service.allocate_serials(
            read_json().get("quantity"), reserved_by=g.current_user.id
        )
        return jsonify({
            "serials": serials,
            "expires_in_seconds": current_app.config["SERIAL_RESERVATION_TTL_SECONDS"],
        }), 201
    except Exception as e:
        return json_error(e)


@serials_bp.post("/release")
@require_actor
@require_role(ROLE_PRODUCER)
def release():
    """
    Request body:
    {
        "serials": [str]
    }

    Only reservations held by the acting producer are released.
    """
    try:
        serials = read_json().get("serials")
        if not isinstance(serials, list):
            raise ValidationError("serials must be a list")
        released = serial_service.release_serials(
            [str(s) for s in serials], reserved_by=g.current_user.id
        )
        return jsonify({"released": released})
    except Exception as e:
        return json_error(e)
