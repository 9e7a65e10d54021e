"""
Pytest configuration and fixtures for the SmartFolio tests.
"""

from typing import AsyncGenerator, Dict, Optional

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from smartfolio.database import Base, get_db
from smartfolio.dependencies import get_gateway
from smartfolio.errors import UpstreamUnavailable
from smartfolio.gateway import AccessGateway
from smartfolio.main import app
from smartfolio.models import (
    HoldingCreate, InsightContent, PortfolioCreate, PriceInfo,
)
from smartfolio.services.portfolios import PortfolioService
from smartfolio.services.prices import PriceProvider


# Test database URL
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

OWNER = "owner-1"
OTHER = "viewer-2"


class FakePriceProvider(PriceProvider):
    """Fixed prices with a call counter."""

    def __init__(self, prices: Optional[Dict[str, float]] = None,
                 sectors: Optional[Dict[str, str]] = None, fail: bool = False):
        self.prices = prices or {}
        self.sectors = sectors or {}
        self.fail = fail
        self.calls = []

    async def lookup(self, symbols):
        symbols = set(symbols)
        self.calls.append(symbols)
        if self.fail:
            raise UpstreamUnavailable("price feed down")
        return {
            s: PriceInfo(symbol=s, price=self.prices[s], sector=self.sectors.get(s))
            for s in symbols if s in self.prices
        }


class FakeNarrativeService:
    """Stands in for the hosted model; counts calls and can be told to fail."""

    def __init__(self, error: Optional[Exception] = None, answer: str = "Mostly tech."):
        self.error = error
        self.answer = answer
        self.insight_calls = 0
        self.chat_calls = []

    async def generate_insights(self, name, snapshot):
        self.insight_calls += 1
        if self.error is not None:
            raise self.error
        return InsightContent(
            summary=f"{name} is worth ${snapshot.total_value:,.2f}.",
            diversification="Concentrated in technology.",
            risk_analysis="Above-average volatility.",
            thesis="Growth tilt.",
        )

    async def chat(self, name, snapshot, question, history=None):
        self.chat_calls.append((question, list(history or [])))
        if self.error is not None:
            raise self.error
        return self.answer


@pytest_asyncio.fixture
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def test_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with AsyncSession(test_engine, expire_on_commit=False) as session:
        yield session


@pytest_asyncio.fixture
async def price_provider():
    return FakePriceProvider(
        prices={"AAPL": 100.0, "MSFT": 300.0},
        sectors={"AAPL": "Technology", "MSFT": "Technology"},
    )


@pytest_asyncio.fixture
async def narrative():
    return FakeNarrativeService()


@pytest_asyncio.fixture
async def gateway(price_provider, narrative):
    return AccessGateway(price_provider=price_provider, narrative=narrative)


@pytest_asyncio.fixture
async def portfolio(test_session):
    """Owner's portfolio: 10 AAPL, 4 of an unpriced symbol with a stored price, $500 cash."""
    return await PortfolioService().create(
        test_session,
        OWNER,
        PortfolioCreate(
            name="Growth",
            cash=500.0,
            holdings=[
                HoldingCreate(symbol="aapl", quantity=10, avg_price=90.0),
                HoldingCreate(symbol="XYZ", quantity=4, current_price=50.0, sector="Industrials"),
            ],
        ),
    )


@pytest_asyncio.fixture
async def client(test_session, gateway):
    """Create a test client with database and gateway overrides."""

    async def get_test_db():
        yield test_session

    app.dependency_overrides[get_db] = get_test_db
    app.dependency_overrides[get_gateway] = lambda: gateway

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as test_client:
        yield test_client

    app.dependency_overrides.clear()
