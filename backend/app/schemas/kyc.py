"""
KYC Schema Module

This module defines Pydantic models for verification links, the per-user KYC
slice and provider webhook events. Field names are camelCase on the wire and
snake_case in Python.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_COUNTRY = "NG"


class CamelModel(BaseModel):
    """Base model accepting both camelCase and snake_case input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class KYCStatus(str, Enum):
    """KYC verification status."""

    NOT_STARTED = "not_started"
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


class Classification(str, Enum):
    """Outcome of a provider result code."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    PENDING = "PENDING"


def _normalize_country(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip().upper()
    if len(value) != 2 or not value.isalpha():
        raise ValueError("country must be an ISO 3166-1 alpha-2 code")
    return value


class IdType(CamelModel):
    """An ID document the user may verify with."""

    country: str = Field(default=DEFAULT_COUNTRY, description="ISO 3166-1 alpha-2 code")
    id_type: str = Field(..., min_length=1, description="Provider ID type, e.g. NIN or BVN")
    verification_method: str = Field(..., min_length=1, description="e.g. enhanced_kyc, doc_verification")

    @field_validator("country")
    @classmethod
    def normalize_country(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_country(v)

    def to_provider(self) -> Dict[str, str]:
        return self.model_dump(by_alias=False)


DEFAULT_ID_TYPES: List[IdType] = [
    IdType(country=DEFAULT_COUNTRY, id_type="NIN", verification_method="enhanced_kyc")
]


class PartnerParams(BaseModel):
    """
    Key-value bag echoed back by the provider in webhooks.

    The named keys are always populated by the link service; any other key is
    carried through untouched.
    """

    model_config = ConfigDict(extra="allow")

    user_id: str
    user_email: Optional[str] = None
    user_name: Optional[str] = None
    created_by: Optional[str] = None
    timestamp: str


class LinkOverrides(CamelModel):
    """Optional per-link settings; anything omitted falls back to a default."""

    name: Optional[str] = None
    email: Optional[str] = None
    country: Optional[str] = None
    id_types: Optional[List[IdType]] = None
    company_name: Optional[str] = None
    callback_url: Optional[str] = None
    privacy_policy_url: Optional[str] = None
    logo_url: Optional[str] = None
    partner_params: Optional[Dict[str, Any]] = None
    # Accepted for compatibility; link lifetime is fixed by the service
    expires_at: Optional[Any] = None

    @field_validator("country")
    @classmethod
    def normalize_country(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_country(v)

    @field_validator("id_types")
    @classmethod
    def check_id_types(cls, v: Optional[List[IdType]]) -> Optional[List[IdType]]:
        if v is not None and not v:
            raise ValueError("idTypes must contain at least one entry")
        return v


class CreateLinkRequest(LinkOverrides):
    """Request body for a single verification link."""

    user_id: str = Field(..., min_length=1)


class BulkLinkEntry(LinkOverrides):
    """One entry of a bulk request; a missing user id fails only this entry."""

    user_id: Optional[str] = None


class BulkDefaults(CamelModel):
    """Settings shared by every entry of a bulk request."""

    company_name: Optional[str] = None
    batch_id: Optional[str] = None
    callback_url: Optional[str] = None
    id_types: Optional[List[IdType]] = None


class BulkLinkRequest(CamelModel):
    """Request body for bulk link creation."""

    links: List[BulkLinkEntry] = Field(default_factory=list)
    company_name: Optional[str] = None
    batch_id: Optional[str] = None
    default_callback_url: Optional[str] = None
    default_id_types: Optional[List[IdType]] = None

    def defaults(self) -> BulkDefaults:
        return BulkDefaults(
            company_name=self.company_name,
            batch_id=self.batch_id,
            callback_url=self.default_callback_url,
            id_types=self.default_id_types
        )


class LinkDescriptor(CamelModel):
    """A minted single-use verification link."""

    link_id: str
    personal_url: str
    user_id: str
    expires_at: datetime
    supported_id_types: List[IdType]
    country: str = DEFAULT_COUNTRY

    @computed_field
    @property
    def url(self) -> str:
        return self.personal_url


class BulkLinkFailure(CamelModel):
    """A bulk entry that could not be turned into a link."""

    index: int
    user_id: Optional[str] = None
    error: str


class BulkSummary(CamelModel):
    total: int
    successful: int
    failed: int
    batch_id: str


class BulkLinkResult(CamelModel):
    """Partial-success outcome of a bulk request."""

    successful: List[LinkDescriptor] = Field(default_factory=list)
    failed: List[BulkLinkFailure] = Field(default_factory=list)
    summary: BulkSummary


class KYCData(CamelModel):
    """Metadata of the latest verification job recorded for a user."""

    verified_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    pending_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    verification_method: str
    confidence: Optional[float] = None
    provider_job_id: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        """Serialized form stored on the user record."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class KYCSlice(CamelModel):
    """The part of the user record owned by the KYC state projector."""

    user_id: str
    kyc_status: KYCStatus = KYCStatus.NOT_STARTED
    is_verified: bool = False
    kyc_data: Optional[KYCData] = None


class WebhookEvent(CamelModel):
    """Normalized provider callback."""

    provider_job_id: Optional[str] = None
    user_id: Optional[str] = None
    result_code: Optional[str] = None
    result_text: Optional[str] = None
    confidence: Optional[float] = None
    id_type: Optional[str] = None
    country: Optional[str] = None
    timestamp: Optional[str] = None


class LinkDescriptorResponse(BaseModel):
    success: bool = True
    data: LinkDescriptor


class BulkLinkResponse(BaseModel):
    success: bool = True
    data: BulkLinkResult


class LinkStatusResponse(BaseModel):
    success: bool = True
    data: Dict[str, Any]


class KYCSliceResponse(BaseModel):
    success: bool = True
    data: KYCSlice


class WebhookAck(BaseModel):
    """Acknowledgement returned to the provider."""

    success: bool = True
    message: str
    timestamp: datetime
