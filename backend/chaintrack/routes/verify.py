# Overview: Flask API routes for authenticity checks of scanned labels and auth codes.

from flask import Blueprint, jsonify

from ..services import signature_service
from ..decorators import require_actor
from .errors import json_error, read_json


verify_bp = Blueprint("verify", __name__, url_prefix="/api/verify")


@verify_bp.post("/qr")
@require_actor
def verify_qr():
    """
    Request body:
    {
        "payload": str   (the scanned QR text)
    }

    Always 200; "valid" and "reason" carry the outcome.
    """
    try:
        result = signature_service.verify_qr_payload(read_json().get("payload"))
        return jsonify(result.to_dict())
    except Exception as e:
        return json_error(e)


@verify_bp.post("/identity")
@require_actor
def verify_identity():
    """
    Check a buyer-supplied authenticity code.

    Request body:
    {
        "payload": str,      (scanned QR text) or
        "serial_number": str,
        "auth_code": str
    }
    """
    try:
        data = read_json()
        auth_code = data.get("auth_code")
        if data.get("payload") is not None:
            result = signature_service.verify_scanned_identity(data["payload"], auth_code)
        else:
            result = signature_service.verify_identity(str(data.get("serial_number") or ""), auth_code)
        return jsonify(result.to_dict())
    except Exception as e:
        return json_error(e)
