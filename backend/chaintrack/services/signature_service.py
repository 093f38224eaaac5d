# Overview: Authenticity primitives; QR payload signing and unit auth codes.

"""
Signature Service

Two independent mechanisms:

QR PAYLOAD
    PREFIX:serial:signature

    signature = first 16 hex chars of HMAC-SHA256(secret, serial).
    The prefix names the payload format version. "LS" is version 1; a new
    signing scheme gets a new prefix so old labels keep verifying.

UNIT AUTH CODE
    SHA-256 hex of "serial-producerId-secret", computed once when the unit
    is produced and stored on the unit. Possession of the code proves the
    holder saw the physical label, nothing more.

Verification never raises: failures come back as result objects carrying
a reason code.

KEY MANAGEMENT:
The secret is a single pre-shared value from config (AUTHENTICITY_SECRET).
Per-tenant keys or asymmetric signing are not implemented.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import ProductUnit
from ..validation import ValidationError


QR_SEPARATOR = ":"
SIGNATURE_LENGTH = 16

REASON_WRONG_PREFIX = "WRONG_PREFIX"
REASON_MALFORMED = "MALFORMED"
REASON_DIGEST_MISMATCH = "DIGEST_MISMATCH"
REASON_UNKNOWN_SERIAL = "UNKNOWN_SERIAL"
REASON_CODE_MISMATCH = "CODE_MISMATCH"

REASON_MESSAGES = {
    REASON_WRONG_PREFIX: "External QR code detected. Please scan a genuine product label.",
    REASON_MALFORMED: "Malformed QR data.",
    REASON_DIGEST_MISMATCH: "Forged QR code. Signature verification failed.",
    REASON_UNKNOWN_SERIAL: "No product is registered under this serial number.",
    REASON_CODE_MISMATCH: "Authenticity code does not match this serial number.",
}


@dataclass(frozen=True)
class QRVerification:
    valid: bool
    serial_number: str | None = None
    reason: str | None = None

    @property
    def message(self) -> str | None:
        return REASON_MESSAGES.get(self.reason) if self.reason else None

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "serial_number": self.serial_number,
            "reason": self.reason,
            "message": self.message,
        }


@dataclass(frozen=True)
class IdentityVerification:
    valid: bool
    unit: ProductUnit | None = None
    reason: str | None = None

    @property
    def message(self) -> str | None:
        return REASON_MESSAGES.get(self.reason) if self.reason else None

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "unit": self.unit.to_dict() if self.unit is not None else None,
            "reason": self.reason,
            "message": self.message,
        }


def _secret(secret: str | None) -> bytes:
    value = secret if secret is not None else current_app.config["AUTHENTICITY_SECRET"]
    return value.encode("utf-8")


def _prefix(prefix: str | None) -> str:
    return prefix if prefix is not None else current_app.config["QR_PAYLOAD_PREFIX"]


def qr_signature(serial_number: str, *, secret: str | None = None) -> str:
    digest = hmac.new(_secret(secret), serial_number.encode("utf-8"), hashlib.sha256).hexdigest()
    return digest[:SIGNATURE_LENGTH]


def sign_qr_payload(serial_number: str, *, prefix: str | None = None, secret: str | None = None) -> str:
    """Build the scannable payload for a serial number."""
    if not serial_number or QR_SEPARATOR in serial_number:
        raise ValidationError(f"Serial number cannot be empty or contain '{QR_SEPARATOR}'")
    signature = qr_signature(serial_number, secret=secret)
    return QR_SEPARATOR.join((_prefix(prefix), serial_number, signature))


def verify_qr_payload(scanned: str, *, prefix: str | None = None, secret: str | None = None) -> QRVerification:
    """
    Check a scanned payload.

    Order of checks: prefix, structure (exactly three non-empty fields),
    then the signature re-derived from the scanned serial.
    """
    expected_prefix = _prefix(prefix)
    if not isinstance(scanned, str) or not scanned.startswith(expected_prefix + QR_SEPARATOR):
        return QRVerification(valid=False, reason=REASON_WRONG_PREFIX)

    parts = scanned.split(QR_SEPARATOR)
    if len(parts) != 3 or not parts[1] or not parts[2]:
        return QRVerification(valid=False, reason=REASON_MALFORMED)

    serial_number, scanned_signature = parts[1], parts[2]
    expected = qr_signature(serial_number, secret=secret)
    if not hmac.compare_digest(scanned_signature.encode("utf-8"), expected.encode("utf-8")):
        return QRVerification(valid=False, serial_number=serial_number, reason=REASON_DIGEST_MISMATCH)

    return QRVerification(valid=True, serial_number=serial_number)


def compute_auth_code(serial_number: str, producer_id: int, *, secret: str | None = None) -> str:
    data = f"{serial_number}-{producer_id}-".encode("utf-8") + _secret(secret)
    return hashlib.sha256(data).hexdigest()


def verify_identity(serial_number: str, auth_code: str) -> IdentityVerification:
    """
    Compare a buyer-supplied code against the stored digest of the unit
    carrying serial_number.
    """
    unit = db.session.query(ProductUnit).filter_by(serial_number=serial_number).first()
    if unit is None or not unit.auth_code:
        return IdentityVerification(valid=False, reason=REASON_UNKNOWN_SERIAL)

    if not isinstance(auth_code, str) or not hmac.compare_digest(
        unit.auth_code.encode("utf-8"), auth_code.strip().lower().encode("utf-8")
    ):
        return IdentityVerification(valid=False, reason=REASON_CODE_MISMATCH)

    return IdentityVerification(valid=True, unit=unit)


def verify_scanned_identity(scanned: str, auth_code: str) -> IdentityVerification | QRVerification:
    """QR check first; only a genuine label goes on to the auth code comparison."""
    qr = verify_qr_payload(scanned)
    if not qr.valid:
        return qr
    return verify_identity(qr.serial_number, auth_code)
