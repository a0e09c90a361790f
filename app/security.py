"""Request authentication dependencies."""

from __future__ import annotations

from fastapi import Depends, FastAPI, Request

from .errors import ForbiddenError, MissingAuthHeaderError
from .models import Claims
from .services.auth import AuthService

BEARER_PREFIX = "Bearer "


def get_auth_service(app: FastAPI) -> AuthService:
    service = getattr(app.state, "auth_service", None)
    if not isinstance(service, AuthService):
        raise RuntimeError("Auth service not initialised")
    return service


def extract_bearer_token(header: str | None) -> str:
    if not header or not header.startswith(BEARER_PREFIX):
        raise MissingAuthHeaderError()
    token = header[len(BEARER_PREFIX):].strip()
    if not token:
        raise MissingAuthHeaderError()
    return token


async def get_current_claims(request: Request) -> Claims:
    """Verify the bearer token and expose its claims to the route."""

    token = extract_bearer_token(request.headers.get("Authorization"))
    return get_auth_service(request.app).verify_token(token)


async def require_admin(claims: Claims = Depends(get_current_claims)) -> Claims:
    if not claims.is_admin:
        raise ForbiddenError()
    return claims
