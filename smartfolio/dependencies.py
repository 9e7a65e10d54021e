"""FastAPI dependencies: caller identity, client metadata and service wiring."""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request

from .config import settings
from .errors import AuthenticationRequired
from .gateway import AccessGateway


def get_identity(request: Request) -> Optional[str]:
    """Caller identity asserted by the identity provider in front of us, if any."""
    value = request.headers.get(settings.identity_header)
    if value is None:
        return None
    value = value.strip()
    return value or None


def require_identity(identity: Optional[str] = Depends(get_identity)) -> str:
    if identity is None:
        raise AuthenticationRequired()
    return identity


def get_client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def get_user_agent(request: Request) -> Optional[str]:
    return request.headers.get("user-agent")


@lru_cache(maxsize=1)
def get_gateway() -> AccessGateway:
    """Process-wide gateway; override in tests via app.dependency_overrides."""
    return AccessGateway()
