"""Request orchestration: resolve who may see which portfolio, then value and narrate it."""

import logging
from typing import Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from .errors import AuthenticationRequired, InvalidShare, UpstreamUnavailable
from .models import (
    ChatResponse, ChatTurn, Portfolio, PortfolioSnapshot, PortfolioSummary, PortfolioView, utcnow,
)
from .services.insights import InsightCache
from .services.narrative import NarrativeService
from .services.portfolios import PortfolioService
from .services.prices import PriceProvider, build_price_provider
from .services.tokens import ShareTokenService
from .services.valuation import ValuationService

logger = logging.getLogger(__name__)

CHAT_UNAVAILABLE = "I apologize, but I encountered an error while processing your question."


class AccessGateway:
    """Entry point for owner and share-link reads of a portfolio.

    A request carrying a token is always handled on the token path, even when
    the caller is also signed in.
    """

    def __init__(
        self,
        price_provider: Optional[PriceProvider] = None,
        narrative: Optional[NarrativeService] = None,
        tokens: Optional[ShareTokenService] = None,
        portfolios: Optional[PortfolioService] = None,
        insights: Optional[InsightCache] = None,
    ):
        self.narrative = narrative or NarrativeService()
        self.valuation = ValuationService(price_provider or build_price_provider())
        self.tokens = tokens or ShareTokenService()
        self.portfolios = portfolios or PortfolioService()
        self.insights = insights or InsightCache(self.narrative)

    async def _resolve(
        self,
        db: AsyncSession,
        portfolio_id: Optional[str],
        identity: Optional[str],
        token: Optional[str],
        requester_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        log_access: bool = False,
    ) -> Tuple[Portfolio, str]:
        """Return the portfolio the request may see and how access was granted."""
        if token:
            share = await self.tokens.resolve(db, token)
            if portfolio_id is not None and share.portfolio_id != portfolio_id:
                logger.info("Rejected share token (mismatch)")
                raise InvalidShare(InvalidShare.MISMATCH)

            if log_access:
                await self.tokens.record_access(db, share, requester_ip, user_agent)
                if identity:
                    await self.tokens.bind_identity(db, share, identity)
            return share.portfolio, "token"

        if not identity:
            raise AuthenticationRequired()

        portfolio = await self.portfolios.get_visible(db, portfolio_id, identity)
        return portfolio, "owner" if portfolio.owner_id == identity else "viewer"

    async def get_snapshot(
        self,
        db: AsyncSession,
        portfolio_id: Optional[str] = None,
        identity: Optional[str] = None,
        token: Optional[str] = None,
        requester_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> PortfolioSnapshot:
        """Valuation plus insight for one portfolio."""
        portfolio, access = await self._resolve(
            db, portfolio_id, identity, token,
            requester_ip=requester_ip, user_agent=user_agent, log_access=True,
        )

        valuation = await self.valuation.valuate(portfolio)
        insight = await self.insights.get_or_refresh(db, portfolio, valuation)

        logger.info(
            f"Snapshot for portfolio {portfolio.id} via {access}: "
            f"${valuation.total_value:,.2f}, insight from {insight.source}"
        )
        summary = PortfolioSummary if access == "owner" else PortfolioView
        return PortfolioSnapshot(
            portfolio=summary.model_validate(portfolio),
            valuation=valuation,
            insight=insight,
            access=access,
        )

    async def chat(
        self,
        db: AsyncSession,
        question: str,
        history: Sequence[ChatTurn] = (),
        portfolio_id: Optional[str] = None,
        identity: Optional[str] = None,
        token: Optional[str] = None,
    ) -> ChatResponse:
        """Answer a question about the portfolio. Each answer is generated fresh."""
        portfolio, access = await self._resolve(db, portfolio_id, identity, token)
        valuation = await self.valuation.valuate(portfolio)

        try:
            answer = await self.narrative.chat(portfolio.name, valuation, question, history)
        except UpstreamUnavailable as e:
            logger.warning(f"Chat failed for portfolio {portfolio.id} via {access}: {e}")
            answer = CHAT_UNAVAILABLE

        return ChatResponse(response=answer, timestamp=utcnow())
