"""Market price lookup: simulated quotes and the Alpaca market-data feed."""

import asyncio
import logging
import random
from typing import Dict, Iterable, Optional

from ..config import PriceProviderKind, settings
from ..errors import UpstreamUnavailable
from ..models import PriceInfo

logger = logging.getLogger(__name__)


class PriceProvider:
    """Batch symbol -> price lookup.

    Symbols the provider does not know are left out of the result.
    """

    async def lookup(self, symbols: Iterable[str]) -> Dict[str, PriceInfo]:
        raise NotImplementedError


# Reference quotes for the simulated feed.
BASE_QUOTES: Dict[str, PriceInfo] = {
    quote.symbol: quote
    for quote in (
        PriceInfo(symbol="AAPL", price=185.64, change=2.34, change_percent=1.28,
                  volume=45231000, market_cap=2.8e12, sector="Technology"),
        PriceInfo(symbol="GOOGL", price=141.80, change=-1.20, change_percent=-0.84,
                  volume=28450000, market_cap=1.8e12, sector="Technology"),
        PriceInfo(symbol="MSFT", price=384.30, change=5.67, change_percent=1.50,
                  volume=22150000, market_cap=2.9e12, sector="Technology"),
        PriceInfo(symbol="AMZN", price=155.89, change=3.45, change_percent=2.26,
                  volume=35680000, market_cap=1.6e12, sector="Consumer Discretionary"),
        PriceInfo(symbol="TSLA", price=248.50, change=-4.32, change_percent=-1.71,
                  volume=89450000, market_cap=8.5e11, sector="Consumer Discretionary"),
        PriceInfo(symbol="NVDA", price=722.48, change=15.67, change_percent=2.22,
                  volume=31250000, market_cap=1.8e12, sector="Technology"),
        PriceInfo(symbol="JPM", price=174.35, change=0.89, change_percent=0.51,
                  volume=8540000, market_cap=5.2e11, sector="Financial Services"),
        PriceInfo(symbol="JNJ", price=162.45, change=-0.34, change_percent=-0.21,
                  volume=4350000, market_cap=4.3e11, sector="Healthcare"),
        PriceInfo(symbol="V", price=259.77, change=2.15, change_percent=0.84,
                  volume=5680000, market_cap=5.8e11, sector="Financial Services"),
        PriceInfo(symbol="UNH", price=524.67, change=4.32, change_percent=0.83,
                  volume=2340000, market_cap=4.9e11, sector="Healthcare"),
    )
}


class SimulatedPriceProvider(PriceProvider):
    """Quotes that wander around a fixed base price.

    Each lookup moves the price by up to ``jitter`` (a fraction, 0.01 = ±1%)
    drawn from ``rng``. Pass a seeded ``random.Random`` or ``jitter=0`` for
    reproducible prices.
    """

    def __init__(
        self,
        jitter: Optional[float] = None,
        rng: Optional[random.Random] = None,
        base_quotes: Optional[Dict[str, PriceInfo]] = None,
    ):
        self.jitter = settings.price_jitter if jitter is None else jitter
        self.rng = rng or random.Random()
        self.base_quotes = base_quotes if base_quotes is not None else BASE_QUOTES

    def quote(self, symbol: str) -> Optional[PriceInfo]:
        base = self.base_quotes.get(symbol.upper())
        if base is None:
            return None

        variation = (self.rng.random() - 0.5) * 2 * self.jitter
        price = round(base.price * (1 + variation), 2)
        change = round(price - base.price, 2)
        change_percent = round(change / base.price * 100, 2) if base.price else 0.0
        return base.model_copy(update={
            "price": price,
            "change": change,
            "change_percent": change_percent,
        })

    async def lookup(self, symbols: Iterable[str]) -> Dict[str, PriceInfo]:
        results = {}
        for symbol in {s.upper() for s in symbols}:
            info = self.quote(symbol)
            if info is not None:
                results[symbol] = info
        return results


class AlpacaPriceProvider(PriceProvider):
    """Latest prices from Alpaca's market-data snapshot endpoint.

    Alpaca carries no sector data, so ``sector`` is always None here and the
    valuation falls back to what the holding has stored.
    """

    def __init__(self, data_client=None):
        if data_client is None:
            from alpaca.data.historical import StockHistoricalDataClient
            data_client = StockHistoricalDataClient(
                api_key=settings.alpaca_api_key,
                secret_key=settings.alpaca_secret_key,
            )
        self.data_client = data_client

    async def lookup(self, symbols: Iterable[str]) -> Dict[str, PriceInfo]:
        from alpaca.data.requests import StockSnapshotRequest

        wanted = sorted({s.upper() for s in symbols})
        if not wanted:
            return {}

        try:
            loop = asyncio.get_running_loop()
            request = StockSnapshotRequest(symbol_or_symbols=wanted)
            snapshots = await loop.run_in_executor(
                None, self.data_client.get_stock_snapshot, request
            )
        except Exception as e:
            logger.error(f"Error fetching Alpaca snapshots for {wanted}: {e}")
            raise UpstreamUnavailable("Price provider unavailable") from e

        prices = {}
        for symbol, snapshot in snapshots.items():
            info = self._to_price_info(symbol, snapshot)
            if info is not None:
                prices[symbol] = info

        logger.debug(f"Alpaca returned prices for {len(prices)}/{len(wanted)} symbols")
        return prices

    @staticmethod
    def _to_price_info(symbol: str, snapshot) -> Optional[PriceInfo]:
        trade = getattr(snapshot, "latest_trade", None)
        quote = getattr(snapshot, "latest_quote", None)
        if trade is not None and trade.price:
            price = float(trade.price)
        elif quote is not None and quote.bid_price and quote.ask_price:
            price = float(quote.bid_price + quote.ask_price) / 2
        else:
            return None

        previous = getattr(snapshot, "previous_daily_bar", None)
        change = change_percent = 0.0
        if previous is not None and previous.close:
            change = round(price - float(previous.close), 2)
            change_percent = round(change / float(previous.close) * 100, 2)

        daily = getattr(snapshot, "daily_bar", None)
        volume = int(daily.volume) if daily is not None and daily.volume is not None else None

        return PriceInfo(
            symbol=symbol,
            price=round(price, 2),
            change=change,
            change_percent=change_percent,
            volume=volume,
        )


def build_price_provider() -> PriceProvider:
    """Price provider selected by ``PRICE_PROVIDER``."""
    if settings.price_provider == PriceProviderKind.ALPACA.value:
        logger.info("Using Alpaca market data")
        return AlpacaPriceProvider()
    if settings.price_provider != PriceProviderKind.SIMULATED.value:
        logger.warning(f"Unknown PRICE_PROVIDER '{settings.price_provider}', using simulated prices")
    return SimulatedPriceProvider()
