"""FastAPI dependencies for authentication and authorization."""
import logging
from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.error_handler import PermissionDeniedException
from .exceptions import MissingCredentialsError
from .jwt import ROLE_ADMIN, decode_access_token

logger = logging.getLogger(__name__)

# auto_error is off so a missing token yields 401 rather than 403
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as seen by the KYC core."""

    user_id: str
    role: str
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


async def get_current_principal(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)]
) -> Principal:
    """
    Get the authenticated principal from the bearer token.

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    if credentials is None or not credentials.credentials:
        raise MissingCredentialsError()

    token_data = decode_access_token(credentials.credentials, request.app.state.settings.auth)
    return Principal(user_id=token_data.sub, role=token_data.role, email=token_data.email)


async def get_admin_principal(
    principal: Annotated[Principal, Depends(get_current_principal)]
) -> Principal:
    """
    Get the authenticated principal and require the admin role.

    Raises:
        PermissionDeniedException: 403 for non-admin principals
    """
    if not principal.is_admin:
        logger.warning(f"[AUTH] Admin access denied for user {principal.user_id}")
        raise PermissionDeniedException("Admin access required")
    return principal
