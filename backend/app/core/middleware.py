"""
Middleware Module

This module provides the HTTP middleware stack of the KYC API:
- API security headers on every response
- Correlation ID propagation into logs and responses
- Access logging with credentials and webhook signatures redacted

Each middleware is integrated with the logging system.
"""

import re
import time
import uuid
from typing import Dict, FrozenSet, Iterable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from app.core.logging import correlation_id, get_logger

# Initialize logger
logger = get_logger(__name__)

API_SECURITY_HEADERS: Dict[str, str] = {
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
}

# Incoming ids are echoed back into headers and logs
_CORRELATION_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

REDACTED_HEADERS: FrozenSet[str] = frozenset({
    "authorization",
    "cookie",
    "x-signature",
    "x-smileid-signature",
})

QUIET_PATHS: FrozenSet[str] = frozenset({"/healthz", "/metrics", "/metrics/"})


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds API security headers unless the handler already set them."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)
        for header_name, header_value in API_SECURITY_HEADERS.items():
            response.headers.setdefault(header_name, header_value)
        return response


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Binds a correlation ID to the request context.

    The ID comes from ``X-Correlation-ID`` or ``X-Request-ID`` when it is a
    short token, otherwise a fresh UUID is used. It is returned in the
    ``X-Correlation-ID`` response header.
    """

    header_name = "X-Correlation-ID"
    fallback_headers = ("X-Request-ID",)

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    def _incoming_id(self, request: Request) -> Optional[str]:
        for name in (self.header_name, *self.fallback_headers):
            value = request.headers.get(name)
            if value and _CORRELATION_ID_PATTERN.match(value):
                return value
        return None

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        correlation_id_value = self._incoming_id(request) or str(uuid.uuid4())

        token = correlation_id.set(correlation_id_value)
        request.state.correlation_id = correlation_id_value

        try:
            response = await call_next(request)
        finally:
            correlation_id.reset(token)

        response.headers[self.header_name] = correlation_id_value
        return response


def redact_headers(headers: Dict[str, str], sensitive: Iterable[str] = REDACTED_HEADERS) -> Dict[str, str]:
    """Copy of ``headers`` with credentials and signatures replaced."""
    sensitive = {name.lower() for name in sensitive}
    return {
        name: "***REDACTED***" if name.lower() in sensitive else value
        for name, value in headers.items()
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access log for API calls; health and metrics scrapes are not logged."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        start = time.perf_counter()
        logger.debug(
            "Incoming request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else None,
                "headers": redact_headers(dict(request.headers))
            }
        )

        response = await call_next(request)

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "Request completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2)
            }
        )
        return response
