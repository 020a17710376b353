"""
FastAPI dependencies for the KYC services.

Services are built once by the application factory and stored on
``app.state.services``; handlers receive them through these dependencies.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from app.core.settings import AppSettings
from app.crud.user import UserRepository
from app.modules.kyc.gateway import SmileIDGateway
from app.modules.kyc.links import LinkService
from app.modules.kyc.projector import KYCStateProjector
from app.modules.kyc.webhook import WebhookIngestor


@dataclass
class KYCServices:
    """Process-wide collaborators shared by every request."""

    settings: AppSettings
    gateway: SmileIDGateway
    users: UserRepository
    links: LinkService
    projector: KYCStateProjector
    webhooks: WebhookIngestor
    engine: Optional[AsyncEngine] = None


def get_services(request: Request) -> KYCServices:
    return request.app.state.services


def get_link_service(request: Request) -> LinkService:
    return get_services(request).links


def get_webhook_ingestor(request: Request) -> WebhookIngestor:
    return get_services(request).webhooks


def get_user_repository(request: Request) -> UserRepository:
    return get_services(request).users
