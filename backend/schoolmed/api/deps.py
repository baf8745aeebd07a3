"""Common API dependencies."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi_limiter import FastAPILimiter
from fastapi_limiter.depends import RateLimiter
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolmed.core.config import get_settings
from schoolmed.core.security import decode_access_token
from schoolmed.db.session import get_session
from schoolmed.models.user import UserRole
from schoolmed.security.permissions import CallerIdentity
from schoolmed.services.results import ErrorCode, ServiceResult

bearer_scheme = HTTPBearer(auto_error=False)

_STATUS_BY_ERROR = {
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.INVALID_STATE: status.HTTP_409_CONFLICT,
    ErrorCode.INSUFFICIENT_PERMISSIONS: status.HTTP_403_FORBIDDEN,
    ErrorCode.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide an async database session."""
    async for session in get_session():
        yield session


async def get_caller(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> CallerIdentity:
    """Resolve the caller from the platform-issued bearer token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError as exc:
        raise credentials_exception from exc

    try:
        user_id = uuid.UUID(str(payload.get("sub")))
        role = UserRole(payload.get("role"))
    except ValueError as exc:
        raise credentials_exception from exc
    return CallerIdentity(user_id=user_id, role=role)


def unwrap(result: ServiceResult):
    """Return the result's data or raise the matching HTTP error."""
    if result.is_success:
        return result.data
    raise HTTPException(
        status_code=_STATUS_BY_ERROR.get(result.error_code, status.HTTP_400_BAD_REQUEST),
        detail=result.message,
    )


async def limit_writes(request: Request, response: Response) -> None:
    """Per-client rate limit for state-changing endpoints; off without Redis."""
    if FastAPILimiter.redis is None:
        return None
    limiter = RateLimiter(times=get_settings().rate_limit_writes_per_minute, seconds=60)
    await limiter(request, response)
