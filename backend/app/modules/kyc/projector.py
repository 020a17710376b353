"""
KYC State Projector

Sole writer of the user's KYC slice. Transitions:

    from \\ result   SUCCESS     FAILURE     PENDING
    not_started      verified    failed      pending
    pending          verified    failed      pending
    failed           verified    failed      pending
    verified         (no-op)     (ignored)   (ignored)

A verified user is never demoted by a later webhook, and repeated successes
keep the first job id and the earliest ``verifiedAt``.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from app.core.logging import get_logger
from app.crud.user import UserRepository
from app.schemas.kyc import Classification, KYCData, KYCSlice, KYCStatus, WebhookEvent

logger = get_logger(__name__)

DEFAULT_VERIFICATION_METHOD = "smile_id"


class StateUpdateError(Exception):
    """Raised when the KYC slice could not be persisted."""


class ProjectionOutcome(str, Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    USER_NOT_FOUND = "user_not_found"


def transition(
    current: KYCSlice,
    classification: Classification,
    event: WebhookEvent,
    now: datetime
) -> Optional[KYCSlice]:
    """
    Next KYC slice for ``current`` after a classified webhook.

    Returns:
        The replacement slice, or None when the event must not change state
    """
    if current.kyc_status == KYCStatus.VERIFIED:
        return None

    method = event.id_type or DEFAULT_VERIFICATION_METHOD

    if classification == Classification.SUCCESS:
        return KYCSlice(
            user_id=current.user_id,
            kyc_status=KYCStatus.VERIFIED,
            is_verified=True,
            kyc_data=KYCData(
                verified_at=now,
                verification_method=method,
                confidence=event.confidence,
                provider_job_id=event.provider_job_id
            )
        )

    if classification == Classification.FAILURE:
        return KYCSlice(
            user_id=current.user_id,
            kyc_status=KYCStatus.FAILED,
            is_verified=False,
            kyc_data=KYCData(
                failed_at=now,
                failure_reason=event.result_text or "Verification failed",
                verification_method=method,
                confidence=event.confidence,
                provider_job_id=event.provider_job_id
            )
        )

    return KYCSlice(
        user_id=current.user_id,
        kyc_status=KYCStatus.PENDING,
        is_verified=False,
        kyc_data=KYCData(
            pending_at=now,
            verification_method=method,
            confidence=event.confidence,
            provider_job_id=event.provider_job_id
        )
    )


class KYCStateProjector:
    """Applies classified webhook events to stored user state."""

    def __init__(
        self,
        users: UserRepository,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        self.users = users
        self._clock = clock

    async def apply(self, event: WebhookEvent, classification: Classification) -> ProjectionOutcome:
        """
        Persist the transition for ``event.user_id``.

        Raises:
            StateUpdateError: If the store rejected the write
        """
        now = self._clock()
        changed = False

        def mutate(current: KYCSlice) -> Optional[KYCSlice]:
            nonlocal changed
            updated = transition(current, classification, event, now)
            if updated is None:
                logger.info(
                    "Webhook ignored for verified user",
                    extra={
                        "user_id": current.user_id,
                        "classification": classification.value,
                        "provider_job_id": event.provider_job_id
                    }
                )
            else:
                changed = True
                logger.info(
                    "KYC status transition",
                    extra={
                        "user_id": current.user_id,
                        "from_status": current.kyc_status.value,
                        "to_status": updated.kyc_status.value,
                        "provider_job_id": event.provider_job_id
                    }
                )
            return updated

        try:
            stored = await self.users.update_kyc_slice(event.user_id, mutate)
        except Exception as e:
            raise StateUpdateError(f"Failed to store KYC state for user {event.user_id}: {e}") from e

        if stored is None:
            return ProjectionOutcome.USER_NOT_FOUND
        return ProjectionOutcome.APPLIED if changed else ProjectionOutcome.UNCHANGED
