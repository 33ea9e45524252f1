"""FastAPI dependencies for database, tenant resolution, and idempotency."""

from typing import AsyncGenerator, Optional
import uuid

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession
import jwt
from jwt import PyJWTError
import structlog

from .database import get_async_session
from .config import settings
from .exceptions import AuthenticationError, ValidationError


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Database dependency that provides async database sessions.

    Yields:
        AsyncSession: Database session
    """
    async for session in get_async_session():
        yield session


def decode_bearer_token(authorization: Optional[str]) -> dict:
    """
    Validate a Bearer token and return its claims.

    Raises:
        AuthenticationError: If the header is missing, malformed, or the token invalid
    """
    if not authorization:
        raise AuthenticationError("Authorization header missing")

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthenticationError("Invalid authorization header format")

    if scheme.lower() != "bearer":
        raise AuthenticationError("Invalid authentication scheme")

    try:
        # PyJWT rejects expired tokens when an exp claim is present
        return jwt.decode(
            token,
            settings.bearer_token_secret,
            algorithms=["HS256"]
        )
    except PyJWTError as e:
        raise AuthenticationError(f"Token validation failed: {str(e)}")


async def get_current_tenant(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> uuid.UUID:
    """
    Resolve the acting tenant from the ``tenant_id`` claim of the bearer token.

    The tenant id is also bound into the structlog context so every log line
    of the request carries it.

    Returns:
        uuid.UUID: The acting tenant id

    Raises:
        AuthenticationError: If the token is missing, invalid, or has no tenant claim
    """
    payload = decode_bearer_token(authorization)

    tenant_claim = payload.get("tenant_id")
    if tenant_claim is None:
        raise AuthenticationError("Invalid token payload: tenant_id claim missing")

    try:
        tenant_id = uuid.UUID(str(tenant_claim))
    except ValueError:
        raise AuthenticationError("Invalid token payload: tenant_id is not a UUID")

    structlog.contextvars.bind_contextvars(tenant_id=str(tenant_id))
    return tenant_id


async def get_idempotency_key(
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key")
) -> Optional[str]:
    """
    Extract and validate idempotency key from request headers.

    Args:
        idempotency_key: Idempotency key from header

    Returns:
        str: Validated idempotency key or None if not provided

    Raises:
        ValidationError: If idempotency key format is invalid
    """
    if idempotency_key is None:
        return None

    if len(idempotency_key) < 1 or len(idempotency_key) > 255:
        raise ValidationError("Idempotency key must be between 1 and 255 characters")

    return idempotency_key


DatabaseSession = Depends(get_db)
CurrentTenant = Depends(get_current_tenant)
IdempotencyKey = Depends(get_idempotency_key)
