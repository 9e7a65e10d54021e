"""Portfolio create / edit / lookup operations."""

import logging
from typing import List, Sequence

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotFound, NotOwner, ValidationFailed
from ..models import (
    Holding, HoldingCreate, Portfolio, PortfolioCreate, PortfolioUpdate, Visibility, utcnow,
)

logger = logging.getLogger(__name__)


def _build_holdings(items: Sequence[HoldingCreate]) -> List[Holding]:
    seen = set()
    holdings = []
    for position, item in enumerate(items):
        if item.symbol in seen:
            raise ValidationFailed(f"Duplicate holding for {item.symbol}")
        seen.add(item.symbol)
        holdings.append(Holding(
            position=position,
            symbol=item.symbol,
            quantity=item.quantity,
            avg_price=item.avg_price,
            current_price=item.current_price,
            sector=item.sector,
        ))
    return holdings


class PortfolioService:
    """Owner-facing portfolio operations."""

    async def create(self, db: AsyncSession, owner_id: str, data: PortfolioCreate) -> Portfolio:
        portfolio = Portfolio(
            name=data.name.strip(),
            description=data.description,
            visibility=data.visibility,
            cash=data.cash,
            owner_id=owner_id,
            holdings=_build_holdings(data.holdings),
        )
        db.add(portfolio)
        await db.commit()

        logger.info(f"Created portfolio {portfolio.id} with {len(portfolio.holdings)} holdings")
        return portfolio

    async def list_for_owner(self, db: AsyncSession, owner_id: str) -> List[Portfolio]:
        result = await db.execute(
            select(Portfolio)
            .where(Portfolio.owner_id == owner_id)
            .order_by(desc(Portfolio.updated_at))
        )
        return list(result.scalars().all())

    async def get_owned(self, db: AsyncSession, portfolio_id: str, owner_id: str) -> Portfolio:
        portfolio = await db.get(Portfolio, portfolio_id)
        if portfolio is None:
            raise NotFound("Portfolio not found")
        if portfolio.owner_id != owner_id:
            raise NotOwner()
        return portfolio

    async def get_visible(self, db: AsyncSession, portfolio_id: str, viewer_id: str) -> Portfolio:
        """The owner sees any of their portfolios; others only public or shared ones."""
        portfolio = await db.get(Portfolio, portfolio_id)
        if portfolio is None:
            raise NotFound("Portfolio not found")
        if portfolio.owner_id == viewer_id:
            return portfolio
        if portfolio.visibility in (Visibility.PUBLIC, Visibility.SHARED):
            return portfolio
        # Don't reveal that a private portfolio exists.
        raise NotFound("Portfolio not found")

    async def update(
        self, db: AsyncSession, portfolio_id: str, owner_id: str, data: PortfolioUpdate
    ) -> Portfolio:
        portfolio = await self.get_owned(db, portfolio_id, owner_id)

        if data.name is not None:
            portfolio.name = data.name.strip()
        if data.description is not None:
            portfolio.description = data.description
        if data.cash is not None:
            portfolio.cash = data.cash
        if data.visibility is not None and data.visibility != portfolio.visibility:
            if Visibility.SHARED in (data.visibility, portfolio.visibility):
                raise ValidationFailed("Sharing is changed by issuing or revoking a share link")
            portfolio.visibility = data.visibility

        if data.holdings is not None:
            replacement = _build_holdings(data.holdings)
            # Flush the removals first so a re-added symbol doesn't trip the unique constraint.
            portfolio.holdings.clear()
            await db.flush()
            portfolio.holdings.extend(replacement)

        portfolio.updated_at = utcnow()

        await db.commit()
        logger.info(f"Updated portfolio {portfolio.id}")
        return portfolio
