"""
Smile ID Link Gateway

This module wraps the provider's link-management API (create, fetch, update).
Every call returns a ``ProviderResult``; transport and provider failures are
reported in the result and never raised to the caller.
"""

import time
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field

from app.core.logging import get_logger, log_duration
from app.core.settings import SmileIDConfig
from app.modules.kyc.signature import SmileSignature
from app.monitoring.prometheus import (
    get_provider_request_duration_seconds,
    get_provider_requests_total,
)

logger = get_logger(__name__)

API_BASE_URLS = {
    "production": "https://api.smileidentity.com/v1/smile_links",
    "sandbox": "https://testapi.smileidentity.com/v1/smile_links",
}

LINK_BASE_URLS = {
    "production": "https://links.usesmileid.com",
    "sandbox": "https://links.sandbox.usesmileid.com",
}

# Response keys the provider has used for the link id, in order of preference
LINK_ID_KEYS = ("ref_id", "linkId", "id", "smile_link_id")

# Keys managed by the gateway that a caller-supplied patch may not override
PROTECTED_KEYS = frozenset({"partner_id", "timestamp", "signature"})

ERROR_PROVIDER = "provider"
ERROR_TRANSPORT = "transport"

# Path segments the provider URL must never be resolved against
RESERVED_LINK_IDS = frozenset({"", ".", ".."})


class ProviderResult(BaseModel):
    """Tagged outcome of a provider call."""

    ok: bool
    status_code: Optional[int] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    link_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


def extract_link_id(payload: Dict[str, Any]) -> Optional[str]:
    """First non-empty link id among the provider's aliases."""
    for key in LINK_ID_KEYS:
        value = payload.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def _error_message(payload: Any, status_code: int) -> str:
    if isinstance(payload, dict):
        for key in ("message", "error", "code"):
            value = payload.get(key)
            if value:
                return str(value)
    return f"Provider returned HTTP {status_code}"


class SmileIDGateway:
    """
    Stateless client for the Smile ID link-management endpoint.

    One instance is built at startup and shared by all requests; it owns an
    ``httpx.AsyncClient`` with a bounded timeout.
    """

    def __init__(
        self,
        signer: SmileSignature,
        production: bool = False,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.signer = signer
        self.production = production
        environment = "production" if production else "sandbox"
        self.base_url = API_BASE_URLS[environment]
        self.link_base_url = LINK_BASE_URLS[environment]
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"Content-Type": "application/json", "Accept": "application/json"}
        )

    @classmethod
    def from_config(
        cls,
        config: SmileIDConfig,
        client: Optional[httpx.AsyncClient] = None
    ) -> "SmileIDGateway":
        """
        Build the gateway from settings.

        Raises:
            ConfigurationError: If the partner id or API key is missing
        """
        api_key = config.API_KEY.get_secret_value() if config.API_KEY else None
        signer = SmileSignature(config.PARTNER_ID, api_key)
        return cls(
            signer,
            production=config.is_production,
            timeout=config.REQUEST_TIMEOUT_SECONDS,
            client=client
        )

    @property
    def partner_id(self) -> str:
        return self.signer.partner_id

    def personal_url(self, link_id: str) -> str:
        """User-facing URL for a link."""
        return f"{self.link_base_url}/{self.partner_id}/{link_id}"

    def _auth_fields(self) -> Dict[str, str]:
        timestamp, signature = self.signer.generate()
        return {
            "partner_id": self.partner_id,
            "timestamp": timestamp,
            "signature": signature,
        }

    async def create_link(self, body: Dict[str, Any]) -> ProviderResult:
        """Mint a verification link; ``link_id`` is set on success."""
        payload = {**body, **self._auth_fields()}
        result = await self._send("create_link", "POST", self.base_url, json=payload)
        if not result.ok:
            return result

        link_id = extract_link_id(result.data)
        if not link_id:
            logger.error(
                "Provider response carried no link id",
                extra={"response_keys": sorted(result.data.keys())}
            )
            return ProviderResult(
                ok=False,
                status_code=result.status_code,
                data=result.data,
                error="Link ID not found in provider response",
                error_kind=ERROR_PROVIDER
            )
        result.link_id = link_id
        return result

    def link_url(self, link_id: str) -> Optional[str]:
        """
        Provider URL for one link, with the id escaped as a single path segment.

        Returns None for ids that cannot name a link.
        """
        if link_id in RESERVED_LINK_IDS:
            return None
        return f"{self.base_url}/{quote(link_id, safe='')}"

    def _invalid_link_id(self, operation: str, link_id: str) -> ProviderResult:
        logger.warning(
            "Refusing provider call for invalid link id",
            extra={"operation": operation, "link_id": link_id}
        )
        return ProviderResult(ok=False, error="Invalid link ID", error_kind=ERROR_PROVIDER)

    async def get_link(self, link_id: str) -> ProviderResult:
        """Fetch the provider's current view of a link."""
        url = self.link_url(link_id)
        if url is None:
            return self._invalid_link_id("get_link", link_id)

        result = await self._send("get_link", "GET", url, params=self._auth_fields())
        if result.ok:
            result.link_id = extract_link_id(result.data) or link_id
        return result

    async def update_link(self, link_id: str, patch: Dict[str, Any]) -> ProviderResult:
        """Mutate a live link; signing fields in ``patch`` are ignored."""
        url = self.link_url(link_id)
        if url is None:
            return self._invalid_link_id("update_link", link_id)

        changes = {k: v for k, v in patch.items() if k not in PROTECTED_KEYS}
        payload = {**changes, **self._auth_fields()}
        result = await self._send("update_link", "PUT", url, json=payload)
        if result.ok:
            result.link_id = extract_link_id(result.data) or link_id
        return result

    async def _send(self, operation: str, method: str, url: str, **kwargs: Any) -> ProviderResult:
        start = time.perf_counter()
        try:
            with log_duration(logger, f"smileid.{operation}"):
                response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            return self._transport_failure(operation, f"Provider request timed out: {e}")
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as e:
            return self._transport_failure(operation, str(e) or e.__class__.__name__)
        finally:
            get_provider_request_duration_seconds().labels(operation=operation).observe(
                time.perf_counter() - start
            )

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_success:
            if not isinstance(payload, dict):
                get_provider_requests_total().labels(operation=operation, outcome="provider_error").inc()
                return ProviderResult(
                    ok=False,
                    status_code=response.status_code,
                    error="Provider returned a non-JSON response",
                    error_kind=ERROR_PROVIDER
                )
            get_provider_requests_total().labels(operation=operation, outcome="ok").inc()
            return ProviderResult(ok=True, status_code=response.status_code, data=payload)

        message = _error_message(payload, response.status_code)
        logger.warning(
            "Provider rejected request",
            extra={"operation": operation, "status_code": response.status_code, "error": message}
        )
        get_provider_requests_total().labels(operation=operation, outcome="provider_error").inc()
        return ProviderResult(
            ok=False,
            status_code=response.status_code,
            data=payload if isinstance(payload, dict) else {},
            error=message,
            error_kind=ERROR_PROVIDER
        )

    def _transport_failure(self, operation: str, message: str) -> ProviderResult:
        logger.error(
            "Provider unreachable",
            extra={"operation": operation, "error": message}
        )
        get_provider_requests_total().labels(operation=operation, outcome="transport_error").inc()
        return ProviderResult(ok=False, error=message, error_kind=ERROR_TRANSPORT)

    async def aclose(self) -> None:
        await self.client.aclose()
