"""Share-link endpoints: anonymous viewing and owner analytics."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..dependencies import (
    get_client_ip, get_gateway, get_identity, get_user_agent, require_identity,
)
from ..gateway import AccessGateway
from ..models import PortfolioSnapshot, TokenAnalytics

router = APIRouter(prefix="/share", tags=["share"])


@router.get("/{token}", response_model=PortfolioSnapshot)
async def view_shared_portfolio(
    token: str,
    identity: Optional[str] = Depends(get_identity),
    requester_ip: Optional[str] = Depends(get_client_ip),
    user_agent: Optional[str] = Depends(get_user_agent),
    gateway: AccessGateway = Depends(get_gateway),
    db: AsyncSession = Depends(get_db),
) -> PortfolioSnapshot:
    """Portfolio snapshot for anyone holding the link. Every call is logged."""
    return await gateway.get_snapshot(
        db,
        identity=identity,
        token=token,
        requester_ip=requester_ip,
        user_agent=user_agent,
    )


@router.get("/{token}/analytics", response_model=TokenAnalytics)
async def share_analytics(
    token: str,
    identity: str = Depends(require_identity),
    gateway: AccessGateway = Depends(get_gateway),
    db: AsyncSession = Depends(get_db),
) -> TokenAnalytics:
    """View counts and recent visitors for the owner's share link."""
    share = await gateway.tokens.get_owned_token(db, token, identity)
    return await gateway.tokens.analytics(db, share)
