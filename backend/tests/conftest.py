"""
Test Configuration

This module contains shared fixtures and configuration for tests:
an in-memory user store, a fake Smile ID provider served through
``httpx.MockTransport``, and the application wired to both.
"""

import json
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

import httpx
import pytest
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.jwt import ROLE_ADMIN, create_access_token
from app.core.settings import (
    AppConfig,
    AppSettings,
    BrandingConfig,
    KYCConfig,
    LoggingConfig,
    SmileIDConfig,
)
from app.crud.user import UserRepository
from app.db import Base, create_session_factory
from app.main import create_application
from app.models.user import User
from app.modules.kyc.gateway import SmileIDGateway
from app.modules.kyc.signature import SmileSignature

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_PARTNER_ID = "1234"
TEST_API_KEY = "test-api-key"
TEST_BACKEND_URL = "https://api.afrimobile.test"
SANDBOX_LINK_BASE = "https://links.sandbox.usesmileid.com"


class FakeSmileProvider:
    """
    In-process stand-in for the Smile ID link API.

    Records every request; links created through it can be fetched and
    updated. ``override`` replaces the next responses with a custom handler.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.links: Dict[str, Dict[str, Any]] = {}
        self.override: Optional[Callable[[httpx.Request], httpx.Response]] = None
        self._counter = 0

    def json_bodies(self, method: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            json.loads(request.content)
            for request in self.requests
            if request.content and (method is None or request.method == method)
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.override is not None:
            return self.override(request)

        parts = request.url.path.rstrip("/").split("/")
        link_id = parts[-1] if parts[-1] != "smile_links" else None

        if request.method == "POST" and link_id is None:
            self._counter += 1
            new_id = f"L{self._counter}"
            body = json.loads(request.content)
            self.links[new_id] = {
                "ref_id": new_id,
                "name": body.get("name"),
                "expires_at": body.get("expires_at"),
                "is_single_use": body.get("is_single_use"),
                "partner_params": body.get("partner_params"),
            }
            return httpx.Response(200, json={"ref_id": new_id, "success": True})

        if link_id not in self.links:
            return httpx.Response(404, json={"error": f"Link {link_id} not found"})

        if request.method == "GET":
            return httpx.Response(200, json=self.links[link_id])

        if request.method == "PUT":
            self.links[link_id].update(json.loads(request.content))
            return httpx.Response(200, json=self.links[link_id])

        return httpx.Response(405, json={"error": "Method not allowed"})


@pytest.fixture
def settings() -> AppSettings:
    """Settings for tests; no environment lookups matter here."""
    return AppSettings(
        app=AppConfig(ENVIRONMENT="test"),
        logging=LoggingConfig(LEVEL="DEBUG", JSON_LOGS=False, SENTRY_DSN=None),
        smile=SmileIDConfig(
            PARTNER_ID=TEST_PARTNER_ID,
            API_KEY=SecretStr(TEST_API_KEY),
            ENVIRONMENT="sandbox"
        ),
        branding=BrandingConfig(
            WEBHOOK_URL=None,
            COMPANY_NAME="Afrimobile",
            BACKEND_URL=TEST_BACKEND_URL
        ),
        kyc=KYCConfig(BULK_PACING_SECONDS=0, WEBHOOK_REQUIRE_SIGNATURE=False)
    )


@pytest.fixture
def signer() -> SmileSignature:
    return SmileSignature(TEST_PARTNER_ID, TEST_API_KEY)


@pytest.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def users(test_engine: AsyncEngine) -> UserRepository:
    """User repository seeded with ``u1`` (named) and ``u2`` (email only)."""
    session_factory = create_session_factory(test_engine)
    async with session_factory() as session:
        session.add_all([
            User(id="u1", email="ada@example.com", name="Ada Obi"),
            User(id="u2", email="bola@example.com", name=None),
        ])
        await session.commit()
    return UserRepository(session_factory)


@pytest.fixture
def provider() -> FakeSmileProvider:
    return FakeSmileProvider()


@pytest.fixture
async def gateway(
    provider: FakeSmileProvider,
    signer: SmileSignature
) -> AsyncGenerator[SmileIDGateway, None]:
    """Sandbox gateway talking to the fake provider."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(provider.handler))
    gateway = SmileIDGateway(signer, production=False, client=client)
    yield gateway
    await gateway.aclose()


@pytest.fixture
def app(settings: AppSettings, gateway: SmileIDGateway, users: UserRepository):
    return create_application(settings, gateway=gateway, user_repository=users)


@pytest.fixture
async def client(app) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client bound to the application."""
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client


@pytest.fixture
def user_headers(settings: AppSettings) -> Dict[str, str]:
    token = create_access_token("u1", settings.auth, email="ada@example.com")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(settings: AppSettings) -> Dict[str, str]:
    token = create_access_token("admin-1", settings.auth, role=ROLE_ADMIN)
    return {"Authorization": f"Bearer {token}"}
