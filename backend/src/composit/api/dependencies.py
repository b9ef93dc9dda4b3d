"""FastAPI dependencies for request validation and common operations.

This module provides reusable FastAPI dependencies for:
- Client session identification
- Admin authorization
- Access to process-scoped services
- Per-session and per-IP request rate limits
"""

import math
import re
import secrets
from typing import Annotated

from fastapi import Cookie, Depends, Header, HTTPException, Request, Response, status

from composit.core.config import Settings
from composit.services.container import Services
from composit.services.rate_limit import RateLimiter

SESSION_ID_PATTERN = re.compile(r"^c[a-z0-9]{15,}$")
SESSION_ID_MAX_LENGTH = 64
SESSION_COOKIE_NAME = "sessionId"
SESSION_COOKIE_MAX_AGE = 30 * 24 * 60 * 60


def get_settings() -> Settings:
    """Get application settings instance.

    Returns:
        Settings instance loaded from environment variables.
    """
    return Settings()  # type: ignore[call-arg]  # Pydantic loads from env vars


def get_services(request: Request) -> Services:
    """Get the process-scoped service container from app state."""
    return request.app.state.services


def is_valid_session_id(value: str | None) -> bool:
    if not value or len(value) > SESSION_ID_MAX_LENGTH:
        return False
    return SESSION_ID_PATTERN.match(value) is not None


async def require_session_id(
    response: Response,
    x_session_id: Annotated[str | None, Header()] = None,
    session_id_cookie: Annotated[str | None, Cookie(alias=SESSION_COOKIE_NAME)] = None,
) -> str:
    """Resolve the client session id from the X-Session-Id header or sessionId cookie.

    Sessions are pseudonymous: any well-formed id is accepted, and the session
    row is created lazily on first upload. The accepted id is sent back as an
    httpOnly cookie for browser clients.

    Raises:
        HTTPException: 401 if neither source carries a valid id
    """
    for candidate in (x_session_id, session_id_cookie):
        if is_valid_session_id(candidate):
            response.set_cookie(
                SESSION_COOKIE_NAME,
                candidate,  # type: ignore[arg-type]
                max_age=SESSION_COOKIE_MAX_AGE,
                httponly=True,
                samesite="lax",
            )
            return candidate  # type: ignore[return-value]
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Missing or invalid X-Session-Id header",
    )


async def require_admin(
    x_admin_secret: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject requests whose X-Admin-Secret does not match ADMIN_SECRET.

    Raises:
        HTTPException: 401 if the secret is missing, unset or wrong
    """
    if (
        not x_admin_secret
        or not settings.admin_secret
        or not secrets.compare_digest(x_admin_secret, settings.admin_secret)
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def _enforce(limiter: RateLimiter, key: str, response: Response, message: str) -> None:
    result = limiter.hit(key)
    headers = {
        "RateLimit-Limit": str(result.limit),
        "RateLimit-Remaining": str(result.remaining),
        "RateLimit-Reset": str(math.ceil(result.reset_after)),
    }
    if not result.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=message,
            headers={**headers, "Retry-After": headers["RateLimit-Reset"]},
        )
    response.headers.update(headers)


async def generate_rate_limit(
    response: Response,
    session_id: str = Depends(require_session_id),
    services: Services = Depends(get_services),
) -> None:
    """Limit generation requests per session (RATE_LIMIT_GENERATE_PER_HOUR).

    Raises:
        HTTPException: 429 once the session's hourly budget is spent
    """
    per_hour = services.generate_limiter.max_requests
    _enforce(
        services.generate_limiter,
        session_id,
        response,
        f"Too many generation requests. Max {per_hour} per hour per session.",
    )


async def upload_rate_limit(
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
) -> None:
    """Limit uploads per client IP (RATE_LIMIT_UPLOADS_PER_MINUTE).

    Raises:
        HTTPException: 429 once the client's per-minute budget is spent
    """
    client_host = request.client.host if request.client else None
    _enforce(
        services.upload_limiter,
        client_host or "unknown",
        response,
        "Too many upload requests. Please slow down.",
    )
