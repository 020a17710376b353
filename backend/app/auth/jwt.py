"""JWT access token generation and validation."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel, ValidationError

from app.core.settings import AuthConfig
from .exceptions import TokenExpiredError, TokenValidationError

logger = logging.getLogger(__name__)

ROLE_USER = "user"
ROLE_ADMIN = "admin"


class TokenPayload(BaseModel):
    """Claims carried by an access token."""

    sub: str
    role: str = ROLE_USER
    email: Optional[str] = None
    exp: int
    type: str = "access"


def create_access_token(
    subject: str,
    config: AuthConfig,
    role: str = ROLE_USER,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a signed access token.

    Args:
        subject: User id placed in ``sub``
        config: Auth settings (secret, algorithm, lifetime)
        role: ``user`` or ``admin``
        email: Optional email claim
        expires_delta: Lifetime override

    Returns:
        str: Encoded JWT
    """
    now = datetime.now(timezone.utc)
    expires = now + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {
        "sub": subject,
        "role": role,
        "iat": now,
        "exp": expires,
        "type": "access",
    }
    if email:
        claims["email"] = email

    return jwt.encode(
        claims,
        config.JWT_SECRET_KEY.get_secret_value(),
        algorithm=config.JWT_ALGORITHM
    )


def decode_access_token(token: str, config: AuthConfig) -> TokenPayload:
    """
    Verify an access token.

    Raises:
        TokenExpiredError: If token has expired
        TokenValidationError: For other validation errors
    """
    try:
        payload = jwt.decode(
            token,
            config.JWT_SECRET_KEY.get_secret_value(),
            algorithms=[config.JWT_ALGORITHM]
        )
        token_data = TokenPayload(**payload)
    except ExpiredSignatureError:
        raise TokenExpiredError()
    except JWTError as e:
        logger.warning("[AUTH] JWT validation failed: %s", e)
        raise TokenValidationError("Invalid token")
    except ValidationError as e:
        logger.warning("[AUTH] Token payload validation failed: %s", e)
        raise TokenValidationError("Invalid token payload")

    if token_data.type != "access":
        raise TokenValidationError("Invalid token type. Expected access")
    return token_data
