"""
Authenticity tests.

Verifies:
- QR payloads round-trip through sign/verify
- Each failure path returns its own reason code (never raises)
- Unit auth codes are deterministic and bound to serial + producer
"""

import pytest

from chaintrack.services import signature_service, unit_service
from chaintrack.services.signature_service import (
    REASON_CODE_MISMATCH,
    REASON_DIGEST_MISMATCH,
    REASON_MALFORMED,
    REASON_UNKNOWN_SERIAL,
    REASON_WRONG_PREFIX,
)
from chaintrack.validation import ValidationError


# =============================================================================
# QR PAYLOADS
# =============================================================================


class TestQRPayload:

    def test_sign_format(self, app):
        payload = signature_service.sign_qr_payload("100000")
        prefix, serial, signature = payload.split(":")
        assert prefix == "LS"
        assert serial == "100000"
        assert len(signature) == 16
        assert signature == signature_service.qr_signature("100000")

    def test_round_trip(self, app):
        payload = signature_service.sign_qr_payload("100042")
        result = signature_service.verify_qr_payload(payload)
        assert result.valid is True
        assert result.serial_number == "100042"
        assert result.reason is None

    def test_tampered_signature(self, app):
        payload = signature_service.sign_qr_payload("100000")
        forged = payload[:-1] + ("0" if payload[-1] != "0" else "1")
        result = signature_service.verify_qr_payload(forged)
        assert result.valid is False
        assert result.reason == REASON_DIGEST_MISMATCH
        assert "Forged" in result.message

    def test_swapped_serial_fails(self, app):
        """A genuine signature copied onto another serial does not verify."""
        signature = signature_service.qr_signature("100000")
        result = signature_service.verify_qr_payload(f"LS:100001:{signature}")
        assert result.reason == REASON_DIGEST_MISMATCH
        assert result.serial_number == "100001"

    def test_other_secret_fails(self, app):
        payload = signature_service.sign_qr_payload("100000", secret="someone-else")
        result = signature_service.verify_qr_payload(payload)
        assert result.reason == REASON_DIGEST_MISMATCH

    @pytest.mark.parametrize("scanned", ["XX:100000:abcdef0123456789", "https://example.com", "", "LS100000"])
    def test_wrong_prefix(self, app, scanned):
        result = signature_service.verify_qr_payload(scanned)
        assert result.valid is False
        assert result.reason == REASON_WRONG_PREFIX

    def test_non_string_is_wrong_prefix(self, app):
        assert signature_service.verify_qr_payload(None).reason == REASON_WRONG_PREFIX

    @pytest.mark.parametrize("scanned", ["LS:100000", "LS::abcdef", "LS:100000:", "LS:1:2:3"])
    def test_malformed(self, app, scanned):
        result = signature_service.verify_qr_payload(scanned)
        assert result.valid is False
        assert result.reason == REASON_MALFORMED

    def test_custom_prefix(self, app):
        payload = signature_service.sign_qr_payload("100000", prefix="LS2")
        assert payload.startswith("LS2:")
        assert signature_service.verify_qr_payload(payload, prefix="LS2").valid is True
        assert signature_service.verify_qr_payload(payload).reason == REASON_WRONG_PREFIX

    @pytest.mark.parametrize("serial", ["", "1000:00"])
    def test_sign_rejects_bad_serial(self, app, serial):
        with pytest.raises(ValidationError):
            signature_service.sign_qr_payload(serial)


# =============================================================================
# UNIT AUTH CODES
# =============================================================================


class TestAuthCode:

    def test_deterministic(self, app):
        first = signature_service.compute_auth_code("100000", 7)
        assert first == signature_service.compute_auth_code("100000", 7)
        assert len(first) == 64

    def test_bound_to_serial_and_producer(self, app):
        base = signature_service.compute_auth_code("100000", 7)
        assert base != signature_service.compute_auth_code("100001", 7)
        assert base != signature_service.compute_auth_code("100000", 8)
        assert base != signature_service.compute_auth_code("100000", 7, secret="other")

    def test_produced_unit_carries_code(self, db_session, serialized_product, producer):
        unit = unit_service.produce_units(serialized_product.id, producer.id, 1)[0]
        assert unit.auth_code == signature_service.compute_auth_code(unit.serial_number, producer.id)


class TestVerifyIdentity:

    @pytest.fixture
    def unit(self, db_session, serialized_product, producer):
        return unit_service.produce_units(serialized_product.id, producer.id, 1)[0]

    def test_valid_code(self, unit):
        result = signature_service.verify_identity(unit.serial_number, unit.auth_code)
        assert result.valid is True
        assert result.unit.id == unit.id
        assert result.to_dict()["unit"]["serial_number"] == unit.serial_number

    def test_code_is_case_and_whitespace_insensitive(self, unit):
        result = signature_service.verify_identity(unit.serial_number, f"  {unit.auth_code.upper()} ")
        assert result.valid is True

    def test_wrong_code(self, unit):
        result = signature_service.verify_identity(unit.serial_number, "0" * 64)
        assert result.valid is False
        assert result.reason == REASON_CODE_MISMATCH

    def test_missing_code(self, unit):
        result = signature_service.verify_identity(unit.serial_number, None)
        assert result.reason == REASON_CODE_MISMATCH

    def test_unknown_serial(self, db_session):
        result = signature_service.verify_identity("999999", "0" * 64)
        assert result.valid is False
        assert result.reason == REASON_UNKNOWN_SERIAL
        assert result.to_dict()["unit"] is None

    def test_scanned_identity(self, unit):
        payload = signature_service.sign_qr_payload(unit.serial_number)
        result = signature_service.verify_scanned_identity(payload, unit.auth_code)
        assert result.valid is True

    def test_scanned_identity_stops_at_forged_label(self, unit):
        result = signature_service.verify_scanned_identity(f"LS:{unit.serial_number}:0000000000000000", unit.auth_code)
        assert result.valid is False
        assert result.reason == REASON_DIGEST_MISMATCH
