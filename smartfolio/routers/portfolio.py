"""Portfolio management, insight and sharing endpoints."""

from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..dependencies import (
    get_client_ip, get_gateway, get_identity, get_user_agent, require_identity,
)
from ..gateway import AccessGateway
from ..models import (
    ChatRequest, ChatResponse, InsightSchema, PortfolioCreate, PortfolioSchema,
    PortfolioSnapshot, PortfolioUpdate, ShareRequest, ShareTokenSchema,
)
from ..services.tokens import share_url

router = APIRouter(prefix="/portfolios", tags=["portfolios"])


@router.post("", response_model=PortfolioSchema, status_code=201)
async def create_portfolio(
    data: PortfolioCreate,
    identity: str = Depends(require_identity),
    gateway: AccessGateway = Depends(get_gateway),
    db: AsyncSession = Depends(get_db),
) -> PortfolioSchema:
    """Create a portfolio with its initial holdings."""
    portfolio = await gateway.portfolios.create(db, identity, data)
    return PortfolioSchema.model_validate(portfolio)


@router.get("", response_model=List[PortfolioSchema])
async def list_portfolios(
    identity: str = Depends(require_identity),
    gateway: AccessGateway = Depends(get_gateway),
    db: AsyncSession = Depends(get_db),
) -> List[PortfolioSchema]:
    """List the caller's portfolios, most recently updated first."""
    portfolios = await gateway.portfolios.list_for_owner(db, identity)
    return [PortfolioSchema.model_validate(p) for p in portfolios]


@router.get("/{portfolio_id}", response_model=PortfolioSchema)
async def get_portfolio(
    portfolio_id: str,
    identity: str = Depends(require_identity),
    gateway: AccessGateway = Depends(get_gateway),
    db: AsyncSession = Depends(get_db),
) -> PortfolioSchema:
    portfolio = await gateway.portfolios.get_visible(db, portfolio_id, identity)
    return PortfolioSchema.model_validate(portfolio)


@router.put("/{portfolio_id}", response_model=PortfolioSchema)
async def update_portfolio(
    portfolio_id: str,
    data: PortfolioUpdate,
    identity: str = Depends(require_identity),
    gateway: AccessGateway = Depends(get_gateway),
    db: AsyncSession = Depends(get_db),
) -> PortfolioSchema:
    """Edit name, description, cash, visibility or the full holdings list."""
    portfolio = await gateway.portfolios.update(db, portfolio_id, identity, data)
    return PortfolioSchema.model_validate(portfolio)


@router.get("/{portfolio_id}/insights", response_model=PortfolioSnapshot)
async def get_insights(
    portfolio_id: str,
    token: Optional[str] = Query(default=None),
    identity: Optional[str] = Depends(get_identity),
    requester_ip: Optional[str] = Depends(get_client_ip),
    user_agent: Optional[str] = Depends(get_user_agent),
    gateway: AccessGateway = Depends(get_gateway),
    db: AsyncSession = Depends(get_db),
) -> PortfolioSnapshot:
    """Current valuation and (possibly cached) insight, by ownership or share token."""
    return await gateway.get_snapshot(
        db,
        portfolio_id=portfolio_id,
        identity=identity,
        token=token,
        requester_ip=requester_ip,
        user_agent=user_agent,
    )


@router.get("/{portfolio_id}/insights/history", response_model=List[InsightSchema])
async def get_insight_history(
    portfolio_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    identity: str = Depends(require_identity),
    gateway: AccessGateway = Depends(get_gateway),
    db: AsyncSession = Depends(get_db),
) -> List[InsightSchema]:
    await gateway.portfolios.get_owned(db, portfolio_id, identity)
    return await gateway.insights.history(db, portfolio_id, limit)


@router.post("/{portfolio_id}/chat", response_model=ChatResponse)
async def chat(
    portfolio_id: str,
    request: ChatRequest,
    token: Optional[str] = Query(default=None),
    identity: Optional[str] = Depends(get_identity),
    gateway: AccessGateway = Depends(get_gateway),
    db: AsyncSession = Depends(get_db),
) -> ChatResponse:
    """Ask a question about the portfolio."""
    return await gateway.chat(
        db,
        request.question,
        request.chat_history,
        portfolio_id=portfolio_id,
        identity=identity,
        token=token,
    )


@router.post("/{portfolio_id}/share", response_model=ShareTokenSchema)
async def share_portfolio(
    portfolio_id: str,
    request: Optional[ShareRequest] = None,
    identity: str = Depends(require_identity),
    gateway: AccessGateway = Depends(get_gateway),
    db: AsyncSession = Depends(get_db),
) -> ShareTokenSchema:
    """Issue a share link, or return the one already live."""
    expires_in = None
    if request is not None and request.expires_in_days is not None:
        expires_in = timedelta(days=request.expires_in_days)

    share = await gateway.tokens.issue(db, portfolio_id, identity, expires_in)
    return ShareTokenSchema(
        token=share.token,
        share_url=share_url(share.token),
        portfolio_id=share.portfolio_id,
        expires_at=share.expires_at,
        created_at=share.created_at,
    )


@router.delete("/{portfolio_id}/share")
async def revoke_share(
    portfolio_id: str,
    identity: str = Depends(require_identity),
    gateway: AccessGateway = Depends(get_gateway),
    db: AsyncSession = Depends(get_db),
) -> dict:
    revoked = await gateway.tokens.revoke_all(db, portfolio_id, identity)
    return {"message": "Sharing revoked successfully", "revoked": revoked}
