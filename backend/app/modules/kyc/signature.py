"""
Smile ID request signatures.

The provider authenticates partners with a base64 HMAC-SHA256 over
``timestamp || partner_id || "sid_request"`` keyed by the partner API key.
The same construction signs outbound requests and verifies inbound webhooks.
"""

import base64
import hashlib
import hmac
from datetime import datetime, timezone
from typing import Optional, Tuple

from app.core.error_handler import ConfigurationError

SIGNATURE_SUFFIX = b"sid_request"


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    """UTC ISO-8601 timestamp with millisecond precision and a ``Z`` suffix."""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SmileSignature:
    """Immutable signer bound to one partner id and API key."""

    __slots__ = ("_partner_id", "_api_key")

    def __init__(self, partner_id: Optional[str], api_key: Optional[str]):
        if not partner_id:
            raise ConfigurationError("SMILE_PARTNER_ID is not configured")
        if not api_key:
            raise ConfigurationError("SMILE_API_KEY is not configured")
        self._partner_id = partner_id
        self._api_key = api_key.encode("utf-8")

    @property
    def partner_id(self) -> str:
        return self._partner_id

    def sign(self, timestamp: str) -> str:
        """Signature for ``timestamp``; pure and deterministic."""
        digest = hmac.new(self._api_key, digestmod=hashlib.sha256)
        digest.update(timestamp.encode("utf-8"))
        digest.update(self._partner_id.encode("utf-8"))
        digest.update(SIGNATURE_SUFFIX)
        return base64.b64encode(digest.digest()).decode("ascii")

    def verify(self, received_signature: str, received_timestamp: str) -> bool:
        """True iff ``received_signature`` matches a fresh signature, compared in constant time."""
        expected = self.sign(received_timestamp)
        return hmac.compare_digest(
            expected.encode("utf-8"),
            received_signature.encode("utf-8")
        )

    def generate(self) -> Tuple[str, str]:
        """Fresh ``(timestamp, signature)`` pair for an outbound request."""
        timestamp = iso_timestamp()
        return timestamp, self.sign(timestamp)
