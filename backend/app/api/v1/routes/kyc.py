"""
KYC Router

This module exposes verification link management and the Smile ID callback.
Service results are translated into HTTP envelopes here and nowhere else.
"""

from datetime import datetime, timezone
from typing import Any, Dict, NoReturn, Optional

from fastapi import APIRouter, Body, Depends, Request, status

from app.api.deps import get_link_service, get_user_repository, get_webhook_ingestor
from app.auth.dependencies import Principal, get_admin_principal, get_current_principal
from app.core.error_handler import (
    InvalidBatchException,
    LinkNotFoundException,
    ProviderException,
    SignatureInvalidException,
    TransportException,
    UserNotFoundException,
)
from app.crud.user import UserRepository
from app.modules.kyc.gateway import ERROR_TRANSPORT
from app.modules.kyc.links import (
    ERROR_LINK_NOT_FOUND,
    ERROR_USER_NOT_FOUND,
    ERROR_VALIDATION,
    LinkService,
    ServiceResult,
)
from app.modules.kyc.webhook import (
    SIGNATURE_HEADERS,
    TIMESTAMP_HEADERS,
    WebhookIngestor,
    find_header,
)
from app.schemas.kyc import (
    BulkLinkRequest,
    BulkLinkResponse,
    CreateLinkRequest,
    KYCSliceResponse,
    LinkDescriptorResponse,
    LinkStatusResponse,
    WebhookAck,
)

router = APIRouter(prefix="/kyc", tags=["KYC"])


def _raise_for(result: ServiceResult, user_id: Optional[str] = None, link_id: Optional[str] = None) -> NoReturn:
    """Translate a failed service result into the matching application error."""
    if result.error_kind == ERROR_VALIDATION:
        raise InvalidBatchException(result.error)
    if result.error_kind == ERROR_USER_NOT_FOUND:
        raise UserNotFoundException(user_id)
    if result.error_kind == ERROR_LINK_NOT_FOUND:
        raise LinkNotFoundException(link_id, result.error)
    if result.error_kind == ERROR_TRANSPORT:
        raise TransportException(result.error)
    raise ProviderException(result.error)


@router.post(
    "/create-link",
    response_model=LinkDescriptorResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_link(
    payload: CreateLinkRequest,
    principal: Principal = Depends(get_current_principal),
    links: LinkService = Depends(get_link_service)
):
    """
    Create a single-use verification link for a user.

    Args:
        payload: Target user and optional overrides
        principal: Authenticated caller
        links: Link service

    Returns:
        The link descriptor
    """
    result = await links.create_link_for_user(payload.user_id, payload, created_by=principal.user_id)
    if not result.ok:
        _raise_for(result, user_id=payload.user_id)
    return LinkDescriptorResponse(data=result.data)


@router.post(
    "/create-bulk-links",
    response_model=BulkLinkResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_bulk_links(
    payload: BulkLinkRequest,
    principal: Principal = Depends(get_current_principal),
    links: LinkService = Depends(get_link_service)
):
    """
    Create verification links for up to 50 users.

    Partial failures are reported in ``data.failed``; the request only fails
    as a whole when the batch is empty or too large.
    """
    result = await links.create_links_for_users(
        payload.links,
        payload.defaults(),
        created_by=principal.user_id
    )
    if not result.ok:
        _raise_for(result)
    return BulkLinkResponse(data=result.data)


@router.get("/link-status/{link_id}", response_model=LinkStatusResponse)
async def get_link_status(
    link_id: str,
    links: LinkService = Depends(get_link_service)
):
    """Provider view of a link, annotated with its expiry status."""
    result = await links.get_link_status(link_id)
    if not result.ok:
        _raise_for(result, link_id=link_id)
    return LinkStatusResponse(data=result.data)


@router.put("/links/{link_id}", response_model=LinkStatusResponse)
async def update_link(
    link_id: str,
    patch: Dict[str, Any] = Body(...),
    principal: Principal = Depends(get_admin_principal),
    links: LinkService = Depends(get_link_service)
):
    """Forward a patch for a live link to the provider (admin only)."""
    result = await links.update_link(link_id, patch)
    if not result.ok:
        _raise_for(result, link_id=link_id)
    return LinkStatusResponse(data=result.data)


@router.get("/status", response_model=KYCSliceResponse)
async def get_my_kyc_status(
    principal: Principal = Depends(get_current_principal),
    users: UserRepository = Depends(get_user_repository)
):
    """KYC status of the authenticated user."""
    kyc_slice = await users.get_kyc_slice(principal.user_id)
    if kyc_slice is None:
        raise UserNotFoundException(principal.user_id)
    return KYCSliceResponse(data=kyc_slice)


@router.post("/webhook/smileid", response_model=WebhookAck)
async def smileid_webhook(
    request: Request,
    ingestor: WebhookIngestor = Depends(get_webhook_ingestor)
):
    """
    Receive a Smile ID verification callback.

    Returns 200 for every callback that passes the signature check, including
    malformed ones, so the provider does not retry.
    """
    body = await request.body()
    outcome = await ingestor.ingest(
        body,
        signature=find_header(request.headers, SIGNATURE_HEADERS),
        timestamp=find_header(request.headers, TIMESTAMP_HEADERS)
    )
    if not outcome.accepted:
        raise SignatureInvalidException(outcome.message)
    return WebhookAck(message=outcome.message, timestamp=datetime.now(timezone.utc))
