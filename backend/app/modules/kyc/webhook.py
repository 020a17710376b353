"""
Smile ID Webhook Ingestor

This module validates and dispatches provider callbacks:
- verifies the signature when both signature headers are present
- parses the body permissively (snake_case, PascalCase, partner params)
- classifies the result code
- hands the event to the KYC state projector

Callbacks are acknowledged once the signature check passes, whether or not
the state write succeeds, so the provider never retries on our failures.
"""

import json
import math
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ValidationError

from app.core.logging import get_logger
from app.modules.kyc.projector import KYCStateProjector, ProjectionOutcome, StateUpdateError
from app.modules.kyc.signature import SmileSignature
from app.monitoring.prometheus import get_webhook_events_total
from app.schemas.kyc import Classification, WebhookEvent

logger = get_logger(__name__)

SUCCESS_CODE = "2814"
FAILURE_CODE = "2815"

SIGNATURE_HEADERS = ("x-smileid-signature", "x-signature")
TIMESTAMP_HEADERS = ("x-smileid-timestamp", "x-timestamp")

# Payload keys for each event field, in order of preference
FIELD_ALIASES = {
    "provider_job_id": ("job_id", "SmileJobID", "smile_job_id"),
    "result_code": ("result_code", "ResultCode"),
    "result_text": ("result_text", "ResultText"),
    "confidence": ("confidence", "ConfidenceValue"),
    "id_type": ("id_type", "IDType"),
    "country": ("country", "Country"),
    "timestamp": ("timestamp", "Timestamp"),
}


class IngestOutcome(BaseModel):
    """What the HTTP adapter should answer the provider."""

    accepted: bool
    message: str
    classification: Optional[Classification] = None
    user_id: Optional[str] = None


def classify(result_code: Any) -> Classification:
    """
    Map a provider result code to a classification.

    ``2814`` is success, ``2815`` is failure and anything else, including a
    missing code, is still pending.
    """
    code = str(result_code).strip() if result_code is not None else ""
    if code == SUCCESS_CODE:
        return Classification.SUCCESS
    if code == FAILURE_CODE:
        return Classification.FAILURE
    return Classification.PENDING


def _first(payload: Mapping[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def _confidence(value: Any) -> Optional[float]:
    """Confidence as a float; values that are not numbers are dropped."""
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = None
    if number is None or not math.isfinite(number):
        logger.warning("Ignoring non-numeric webhook confidence", extra={"confidence": str(value)})
        return None
    return number


def parse_event(payload: Mapping[str, Any]) -> WebhookEvent:
    """
    Normalize a raw callback body into a WebhookEvent.

    Raises:
        ValueError: If a field cannot be coerced into the event
    """
    partner_params = payload.get("partner_params") or payload.get("PartnerParams") or {}
    if not isinstance(partner_params, Mapping):
        partner_params = {}

    user_id = _first(payload, ("user_id",)) or _first(partner_params, ("user_id",))
    fields: Dict[str, Any] = {
        name: _first(payload, aliases) for name, aliases in FIELD_ALIASES.items()
    }
    for name in ("provider_job_id", "result_code", "result_text", "id_type", "country", "timestamp"):
        if fields[name] is not None:
            fields[name] = str(fields[name])
    fields["confidence"] = _confidence(fields["confidence"])

    try:
        return WebhookEvent(user_id=str(user_id) if user_id is not None else None, **fields)
    except ValidationError as e:
        raise ValueError(str(e)) from e


def find_header(headers: Mapping[str, str], names: Tuple[str, ...]) -> Optional[str]:
    """First non-empty header among ``names``."""
    for name in names:
        value = headers.get(name)
        if value:
            return value
    return None


class WebhookIngestor:
    """Validates, classifies and dispatches provider callbacks."""

    def __init__(
        self,
        signer: SmileSignature,
        projector: KYCStateProjector,
        require_signature: bool = False
    ):
        self.signer = signer
        self.projector = projector
        self.require_signature = require_signature

    def check_signature(self, signature: Optional[str], timestamp: Optional[str]) -> Optional[str]:
        """
        Check the callback signature headers.

        Returns:
            None when the callback may proceed, else the rejection reason
        """
        if signature and timestamp:
            if self.signer.verify(signature, timestamp):
                return None
            return "Invalid webhook signature"

        if self.require_signature:
            return "Missing webhook signature"

        missing = [name for name, value in (("signature", signature), ("timestamp", timestamp)) if not value]
        logger.warning("Unsigned webhook accepted", extra={"missing_headers": missing})
        return None

    async def ingest(
        self,
        body: bytes,
        signature: Optional[str] = None,
        timestamp: Optional[str] = None
    ) -> IngestOutcome:
        """
        Process one callback.

        Args:
            body: Raw request body
            signature: Signature header value, if any
            timestamp: Timestamp header value, if any

        Returns:
            IngestOutcome: ``accepted`` is False only for a rejected signature
        """
        rejection = self.check_signature(signature, timestamp)
        if rejection:
            logger.warning("Webhook rejected", extra={"reason": rejection})
            get_webhook_events_total().labels(classification="unknown", outcome="rejected").inc()
            return IngestOutcome(accepted=False, message=rejection)

        try:
            payload = json.loads(body or b"{}")
            if not isinstance(payload, dict):
                raise ValueError("payload is not a JSON object")
            event = parse_event(payload)
        except ValueError as e:
            logger.warning("Malformed webhook payload", extra={"error": str(e)})
            get_webhook_events_total().labels(classification="unknown", outcome="malformed").inc()
            return IngestOutcome(accepted=True, message="Webhook received")

        classification = classify(event.result_code)
        if not event.user_id:
            logger.warning(
                "Webhook without user id",
                extra={"provider_job_id": event.provider_job_id, "result_code": event.result_code}
            )
            get_webhook_events_total().labels(
                classification=classification.value, outcome="missing_user"
            ).inc()
            return IngestOutcome(accepted=True, message="Webhook received", classification=classification)

        logger.info(
            "Webhook received",
            extra={
                "user_id": event.user_id,
                "provider_job_id": event.provider_job_id,
                "result_code": event.result_code,
                "classification": classification.value
            }
        )

        try:
            projection = await self.projector.apply(event, classification)
        except StateUpdateError:
            logger.exception("KYC state update failed", extra={"user_id": event.user_id})
            outcome = "state_error"
        else:
            if projection == ProjectionOutcome.USER_NOT_FOUND:
                logger.warning("Webhook for unknown user", extra={"user_id": event.user_id})
            outcome = projection.value

        get_webhook_events_total().labels(classification=classification.value, outcome=outcome).inc()
        return IngestOutcome(
            accepted=True,
            message="Webhook processed",
            classification=classification,
            user_id=event.user_id
        )
