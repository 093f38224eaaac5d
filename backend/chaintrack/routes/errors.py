# Overview: Translation of service-layer errors into JSON responses.

from flask import current_app, jsonify, request

from ..services.serial_service import RangeExhaustedError
from ..validation import NotFoundError, PermissionDeniedError, StateConflictError, ValidationError


def json_error(exc: Exception):
    """Map a domain error to (json, status). Unexpected errors are logged and become 500."""
    if isinstance(exc, RangeExhaustedError):
        return jsonify({"error": str(exc), "details": exc.details}), 409
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc), "details": exc.details}), 400
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, StateConflictError):
        return jsonify({"error": str(exc), "details": exc.details}), 409
    if isinstance(exc, PermissionDeniedError):
        return jsonify({"error": str(exc)}), 403
    current_app.logger.exception("Unhandled error")
    return jsonify({"error": "Internal server error"}), 500


def read_json() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload
