"""
KYC Link Service

This module builds verification links for internal users:
- applies defaults (ID types, callback URL, branding)
- binds every link to its user through partner params
- fixes the link lifetime to 60 days, ending at 23:59:59.999 UTC
- creates links in bulk with paced, strictly sequential provider calls
- reports link status with expiry information
"""

import asyncio
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel

from app.core.logging import get_logger
from app.core.settings import BrandingConfig, KYCConfig
from app.crud.user import UserRepository
from app.modules.kyc.gateway import SmileIDGateway
from app.modules.kyc.signature import iso_timestamp
from app.monitoring.prometheus import get_links_created_total
from app.schemas.kyc import (
    DEFAULT_COUNTRY,
    DEFAULT_ID_TYPES,
    BulkDefaults,
    BulkLinkEntry,
    BulkLinkFailure,
    BulkLinkResult,
    BulkSummary,
    LinkDescriptor,
    LinkOverrides,
    PartnerParams,
)

logger = get_logger(__name__)

LINK_TTL_DAYS = 60
MAX_BULK_LINKS = 50

ERROR_VALIDATION = "validation"
ERROR_USER_NOT_FOUND = "user_not_found"
ERROR_LINK_NOT_FOUND = "link_not_found"


class ServiceResult(BaseModel):
    """Tagged outcome of a link service operation."""

    ok: bool
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @classmethod
    def success(cls, data: Any) -> "ServiceResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, kind: Optional[str], error: Optional[str]) -> "ServiceResult":
        return cls(ok=False, error=error or "Unknown error", error_kind=kind)


def compute_link_expiry(now: datetime) -> datetime:
    """End of the UTC day ``LINK_TTL_DAYS`` after ``now``."""
    target = now.astimezone(timezone.utc) + timedelta(days=LINK_TTL_DAYS)
    return target.replace(hour=23, minute=59, second=59, microsecond=999000)


def _parse_instant(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def describe_expiry(expires_at: Any, now: datetime, warning_days: int) -> Dict[str, Any]:
    """
    Expiry fields added to the provider's link info.

    Args:
        expires_at: Expiry reported by the provider (ISO string or datetime)
        now: Reference instant
        warning_days: Remaining days at or below which a link is expiring soon

    Returns:
        Dict with ``isExpired``, ``daysUntilExpiry`` and ``expiryStatus``
    """
    instant = _parse_instant(expires_at)
    if instant is None:
        return {"isExpired": None, "daysUntilExpiry": None, "expiryStatus": "unknown"}

    remaining = (instant - now).total_seconds()
    if remaining <= 0:
        return {"isExpired": True, "daysUntilExpiry": 0, "expiryStatus": "expired"}

    days = math.ceil(remaining / 86400)
    status = "expiring_soon" if days <= warning_days else "active"
    return {"isExpired": False, "daysUntilExpiry": days, "expiryStatus": status}


class LinkService:
    """Mints, inspects and updates Smile ID verification links."""

    def __init__(
        self,
        gateway: SmileIDGateway,
        users: UserRepository,
        branding: BrandingConfig,
        policy: KYCConfig,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.gateway = gateway
        self.users = users
        self.branding = branding
        self.policy = policy
        self._clock = clock
        self._sleep = sleep

    async def create_link_for_user(
        self,
        user_id: str,
        overrides: Optional[LinkOverrides] = None,
        created_by: Optional[str] = None
    ) -> ServiceResult:
        """
        Create a single-use verification link for an existing user.

        Any ``expires_at`` in ``overrides`` is ignored; the lifetime is
        always ``LINK_TTL_DAYS`` ending at the close of the UTC day.

        Args:
            user_id: Internal user the link is issued for
            overrides: Optional per-link settings
            created_by: Id of the principal requesting the link

        Returns:
            ServiceResult: ``data`` is a LinkDescriptor on success
        """
        result = await self._create(user_id, overrides or LinkOverrides(), created_by)
        if result.ok:
            get_links_created_total().labels(mode="single").inc()
        return result

    async def create_links_for_users(
        self,
        requests: List[BulkLinkEntry],
        defaults: Optional[BulkDefaults] = None,
        created_by: Optional[str] = None
    ) -> ServiceResult:
        """
        Create links for up to ``MAX_BULK_LINKS`` users, one after another.

        Individual failures are collected; the call only fails as a whole
        when the batch itself is empty or too large.

        Returns:
            ServiceResult: ``data`` is a BulkLinkResult on success
        """
        if not requests:
            return ServiceResult.failure(ERROR_VALIDATION, "At least one link request is required")
        if len(requests) > MAX_BULK_LINKS:
            return ServiceResult.failure(
                ERROR_VALIDATION,
                f"A batch may contain at most {MAX_BULK_LINKS} link requests, got {len(requests)}"
            )

        defaults = defaults or BulkDefaults()
        batch_id = defaults.batch_id or str(uuid4())
        successful: List[LinkDescriptor] = []
        failed: List[BulkLinkFailure] = []

        logger.info(
            "Bulk link creation started",
            extra={"batch_id": batch_id, "total": len(requests), "created_by": created_by}
        )

        for index, entry in enumerate(requests):
            if index and self.policy.BULK_PACING_SECONDS:
                await self._sleep(self.policy.BULK_PACING_SECONDS)

            if not entry.user_id:
                failed.append(BulkLinkFailure(index=index, error="userId is required"))
                continue

            overrides = entry.model_copy(update={
                "company_name": entry.company_name or defaults.company_name,
                "callback_url": entry.callback_url or defaults.callback_url,
                "id_types": entry.id_types or defaults.id_types,
            })
            try:
                outcome = await self._create(
                    entry.user_id, overrides, created_by, extra_params={"batch_id": batch_id}
                )
            except Exception as e:
                logger.exception(
                    "Bulk link entry crashed",
                    extra={"batch_id": batch_id, "index": index, "user_id": entry.user_id}
                )
                outcome = ServiceResult.failure(None, str(e) or e.__class__.__name__)

            if outcome.ok:
                successful.append(outcome.data)
            else:
                failed.append(BulkLinkFailure(index=index, user_id=entry.user_id, error=outcome.error))

        get_links_created_total().labels(mode="bulk").inc(len(successful))
        summary = BulkSummary(
            total=len(requests),
            successful=len(successful),
            failed=len(failed),
            batch_id=batch_id
        )
        logger.info("Bulk link creation finished", extra=summary.model_dump())
        return ServiceResult.success(BulkLinkResult(successful=successful, failed=failed, summary=summary))

    async def get_link_status(self, link_id: str) -> ServiceResult:
        """
        Fetch link info from the provider and annotate its expiry.

        Returns:
            ServiceResult: ``data`` is the provider payload plus
            ``isExpired``, ``daysUntilExpiry`` and ``expiryStatus``
        """
        result = await self.gateway.get_link(link_id)
        if not result.ok:
            kind = ERROR_LINK_NOT_FOUND if result.is_not_found else result.error_kind
            return ServiceResult.failure(kind, result.error)

        info = dict(result.data)
        expires_at = info.get("expires_at", info.get("expiresAt"))
        info.update(describe_expiry(expires_at, self._clock(), self.policy.EXPIRY_WARNING_DAYS))
        return ServiceResult.success(info)

    async def update_link(self, link_id: str, patch: Dict[str, Any]) -> ServiceResult:
        """Forward a patch for a live link to the provider."""
        result = await self.gateway.update_link(link_id, patch)
        if not result.ok:
            kind = ERROR_LINK_NOT_FOUND if result.is_not_found else result.error_kind
            return ServiceResult.failure(kind, result.error)
        logger.info("Verification link updated", extra={"link_id": link_id, "fields": sorted(patch)})
        return ServiceResult.success(result.data)

    async def _create(
        self,
        user_id: str,
        overrides: LinkOverrides,
        created_by: Optional[str],
        extra_params: Optional[Dict[str, Any]] = None
    ) -> ServiceResult:
        user = await self.users.get_user(user_id)
        if user is None:
            logger.info("Link requested for unknown user", extra={"user_id": user_id})
            return ServiceResult.failure(ERROR_USER_NOT_FOUND, f"User {user_id} not found")

        now = self._clock()
        if overrides.expires_at is not None:
            logger.debug("Ignoring client-supplied expiresAt", extra={"user_id": user_id})
        expires_at = compute_link_expiry(now)

        display_name = user.name or user.email
        email = overrides.email or user.email
        id_types = overrides.id_types or DEFAULT_ID_TYPES
        country = overrides.country or DEFAULT_COUNTRY

        partner_params = PartnerParams.model_validate({
            **(overrides.partner_params or {}),
            **(extra_params or {}),
            "user_id": user.id,
            "user_email": email,
            "user_name": display_name,
            "created_by": created_by,
            "timestamp": iso_timestamp(now),
        })

        body = {
            "name": overrides.name or f"KYC Verification - {display_name}",
            "company_name": overrides.company_name or self.branding.COMPANY_NAME,
            "id_types": [id_type.to_provider() for id_type in id_types],
            "callback_url": overrides.callback_url or self.branding.callback_url,
            "data_privacy_policy_url": overrides.privacy_policy_url or self.branding.PRIVACY_POLICY_URL,
            "logo_url": overrides.logo_url or self.branding.COMPANY_LOGO_URL,
            "is_single_use": True,
            "user_id": user.id,
            "partner_params": partner_params.model_dump(),
            "expires_at": iso_timestamp(expires_at),
        }
        body = {key: value for key, value in body.items() if value is not None}

        result = await self.gateway.create_link(body)
        if not result.ok:
            return ServiceResult.failure(result.error_kind, result.error)

        descriptor = LinkDescriptor(
            link_id=result.link_id,
            personal_url=self.gateway.personal_url(result.link_id),
            user_id=user.id,
            expires_at=expires_at,
            supported_id_types=list(id_types),
            country=country
        )
        logger.info(
            "Verification link created",
            extra={"user_id": user.id, "link_id": descriptor.link_id, "created_by": created_by}
        )
        return ServiceResult.success(descriptor)
