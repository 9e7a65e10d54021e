"""Cached narrative insights with a freshness window."""

import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..errors import UpstreamUnavailable
from ..models import (
    InsightSchema, Portfolio, PortfolioInsight, ValuationSnapshot, utcnow,
)
from .narrative import NarrativeService

logger = logging.getLogger(__name__)


def fallback_insight(snapshot: ValuationSnapshot) -> InsightSchema:
    """Deterministic stand-in built only from the valuation numbers."""
    return InsightSchema(
        summary=(
            f"This portfolio has a total value of ${snapshot.total_value:,.2f} "
            f"across {len(snapshot.holdings)} holdings plus "
            f"${snapshot.cash:,.2f} in cash."
        ),
        diversification="Portfolio contains holdings across multiple sectors providing reasonable diversification.",
        risk_analysis="Risk level appears moderate based on the portfolio composition.",
        thesis="Balanced investment approach with focus on growth and stability.",
        created_at=utcnow(),
        source="fallback",
    )


def _to_schema(record: PortfolioInsight, source: str) -> InsightSchema:
    return InsightSchema(
        summary=record.summary,
        diversification=record.diversification,
        risk_analysis=record.risk_analysis,
        thesis=record.thesis,
        created_at=record.created_at,
        source=source,
    )


class InsightCache:
    """Serves the newest stored insight while it is fresh, else regenerates.

    A failed generation returns a fallback that is never stored, so the next
    request tries the provider again.
    """

    def __init__(self, narrative: NarrativeService, ttl: Optional[timedelta] = None):
        self.narrative = narrative
        self.ttl = ttl if ttl is not None else timedelta(seconds=settings.insight_ttl_seconds)

    async def latest(self, db: AsyncSession, portfolio_id: str) -> Optional[PortfolioInsight]:
        result = await db.execute(
            select(PortfolioInsight)
            .where(PortfolioInsight.portfolio_id == portfolio_id)
            .order_by(desc(PortfolioInsight.created_at), desc(PortfolioInsight.id))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def history(
        self, db: AsyncSession, portfolio_id: str, limit: int = 20
    ) -> List[InsightSchema]:
        result = await db.execute(
            select(PortfolioInsight)
            .where(PortfolioInsight.portfolio_id == portfolio_id)
            .order_by(desc(PortfolioInsight.created_at), desc(PortfolioInsight.id))
            .limit(limit)
        )
        return [_to_schema(record, "cache") for record in result.scalars().all()]

    async def get_or_refresh(
        self,
        db: AsyncSession,
        portfolio: Portfolio,
        snapshot: ValuationSnapshot,
        ttl: Optional[timedelta] = None,
    ) -> InsightSchema:
        ttl = self.ttl if ttl is None else ttl

        cached = await self.latest(db, portfolio.id)
        if cached is not None and utcnow() - cached.created_at <= ttl:
            logger.debug(f"Serving cached insight {cached.id} for portfolio {portfolio.id}")
            return _to_schema(cached, "cache")

        try:
            content = await self.narrative.generate_insights(portfolio.name, snapshot)
        except UpstreamUnavailable as e:
            logger.warning(
                f"Insight generation failed for portfolio {portfolio.id} "
                f"({type(e).__name__}: {e}); serving fallback"
            )
            return fallback_insight(snapshot)

        record = PortfolioInsight(
            portfolio_id=portfolio.id,
            summary=content.summary,
            diversification=content.diversification,
            risk_analysis=content.risk_analysis,
            thesis=content.thesis,
            created_at=utcnow(),
        )
        db.add(record)
        await db.commit()

        logger.info(f"Stored new insight {record.id} for portfolio {portfolio.id}")
        return _to_schema(record, "generated")
