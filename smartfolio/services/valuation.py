"""Portfolio valuation at current prices."""

import logging
from typing import Dict, Optional

from ..errors import UpstreamUnavailable
from ..models import (
    Holding, HoldingValuation, Portfolio, PriceInfo, ValuationSnapshot, utcnow,
)
from .prices import PriceProvider

logger = logging.getLogger(__name__)

UNKNOWN_SECTOR = "Unknown"


def value_holding(holding: Holding, live: Optional[PriceInfo]) -> HoldingValuation:
    """Value one holding: live price, else last known price, else zero."""
    if live is not None:
        price, source = live.price, "live"
        change, change_percent = live.change, live.change_percent
    elif holding.current_price is not None:
        price, source = holding.current_price, "stored"
        change = change_percent = 0.0
    else:
        price, source = 0.0, "none"
        change = change_percent = 0.0

    sector = (live.sector if live is not None else None) or holding.sector or UNKNOWN_SECTOR

    return HoldingValuation(
        symbol=holding.symbol,
        quantity=holding.quantity,
        avg_price=holding.avg_price,
        current_price=price,
        change=change,
        change_percent=change_percent,
        sector=sector,
        value=round(price * holding.quantity, 2),
        price_source=source,
    )


class ValuationService:
    """Combines stored holdings, cash and live prices into one snapshot.

    Every read path (owner view, shared link, chat) goes through ``valuate``.
    """

    def __init__(self, price_provider: PriceProvider):
        self.price_provider = price_provider

    async def _live_prices(self, symbols) -> Dict[str, PriceInfo]:
        if not symbols:
            return {}
        try:
            return await self.price_provider.lookup(symbols)
        except UpstreamUnavailable as e:
            logger.warning(f"Price lookup failed, using stored prices: {e}")
            return {}

    async def valuate(self, portfolio: Portfolio) -> ValuationSnapshot:
        holdings = list(portfolio.holdings)
        prices = await self._live_prices({h.symbol for h in holdings})

        valued = [value_holding(h, prices.get(h.symbol)) for h in holdings]
        total_holdings = round(sum(v.value for v in valued), 2)
        cash = portfolio.cash or 0.0

        logger.debug(
            f"Valued portfolio {portfolio.id}: {len(valued)} holdings, "
            f"{len(prices)} live prices, total ${total_holdings + cash:,.2f}"
        )

        return ValuationSnapshot(
            holdings=valued,
            cash=cash,
            total_holdings_value=total_holdings,
            total_value=round(total_holdings + cash, 2),
            priced_at=utcnow(),
        )
