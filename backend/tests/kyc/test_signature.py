"""
Smile ID Signature Tests

This module contains tests for outbound signing and webhook verification.
"""

import base64
import hashlib
import hmac
from datetime import datetime, timezone

import pytest

from app.core.error_handler import ConfigurationError
from app.modules.kyc.signature import SmileSignature, iso_timestamp

PARTNER_ID = "1234"
API_KEY = "test-api-key"
TIMESTAMP = "2024-05-01T10:00:00.000Z"


def _reference_signature(timestamp: str, partner_id: str, api_key: str) -> str:
    mac = hmac.new(api_key.encode(), f"{timestamp}{partner_id}sid_request".encode(), hashlib.sha256)
    return base64.b64encode(mac.digest()).decode()


def test_sign_matches_provider_construction():
    """Signature is base64 HMAC-SHA256 of timestamp, partner id and sid_request."""
    signer = SmileSignature(PARTNER_ID, API_KEY)
    assert signer.sign(TIMESTAMP) == _reference_signature(TIMESTAMP, PARTNER_ID, API_KEY)


def test_sign_is_deterministic():
    signer = SmileSignature(PARTNER_ID, API_KEY)
    assert signer.sign(TIMESTAMP) == signer.sign(TIMESTAMP)
    assert signer.sign(TIMESTAMP) != signer.sign("2024-05-01T10:00:00.001Z")


def test_verify_accepts_own_signature():
    signer = SmileSignature(PARTNER_ID, API_KEY)
    timestamp, signature = signer.generate()
    assert signer.verify(signature, timestamp) is True


def test_verify_rejects_tampered_signature():
    signer = SmileSignature(PARTNER_ID, API_KEY)
    signature = signer.sign(TIMESTAMP)
    tampered = ("A" if signature[0] != "A" else "B") + signature[1:]
    assert signer.verify(tampered, TIMESTAMP) is False
    assert signer.verify(signature, "2024-05-01T10:00:01.000Z") is False


def test_verify_rejects_signature_from_other_key():
    other = SmileSignature(PARTNER_ID, "another-key")
    signer = SmileSignature(PARTNER_ID, API_KEY)
    assert signer.verify(other.sign(TIMESTAMP), TIMESTAMP) is False


def test_verify_rejects_signature_from_other_partner_id():
    other = SmileSignature("1235", API_KEY)
    signer = SmileSignature(PARTNER_ID, API_KEY)
    assert signer.verify(other.sign(TIMESTAMP), TIMESTAMP) is False


@pytest.mark.parametrize("partner_id,api_key", [
    (None, API_KEY),
    ("", API_KEY),
    (PARTNER_ID, None),
    (PARTNER_ID, ""),
])
def test_missing_credentials_raise_configuration_error(partner_id, api_key):
    with pytest.raises(ConfigurationError):
        SmileSignature(partner_id, api_key)


def test_iso_timestamp_format():
    moment = datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)
    assert iso_timestamp(moment) == "2024-05-01T10:00:00.123Z"
