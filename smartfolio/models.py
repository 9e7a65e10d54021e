"""Database models and Pydantic schemas."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, Enum as SAEnum, Float, ForeignKey,
    Index, Integer, String, Text, UniqueConstraint, text,
)
from sqlalchemy.orm import relationship

from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored instant uses this clock."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


class Visibility(str, Enum):
    PRIVATE = "PRIVATE"
    PUBLIC = "PUBLIC"
    SHARED = "SHARED"


# SQLAlchemy Models
class Portfolio(Base):
    """A user's portfolio: cash plus an ordered list of holdings."""
    __tablename__ = "portfolios"
    __table_args__ = (CheckConstraint("cash >= 0", name="ck_portfolios_cash"),)

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    cash = Column(Float, nullable=False, default=0.0)
    # Kept in step with token state by ShareTokenService.
    visibility = Column(SAEnum(Visibility, name="visibility"), nullable=False, default=Visibility.PRIVATE)
    owner_id = Column(String(255), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    holdings = relationship(
        "Holding",
        back_populates="portfolio",
        order_by="Holding.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class Holding(Base):
    """A position in one symbol."""
    __tablename__ = "holdings"
    __table_args__ = (
        UniqueConstraint("portfolio_id", "symbol", name="uq_holdings_portfolio_symbol"),
        CheckConstraint("quantity >= 0", name="ck_holdings_quantity"),
        CheckConstraint("avg_price IS NULL OR avg_price >= 0", name="ck_holdings_avg_price"),
        CheckConstraint("current_price IS NULL OR current_price >= 0", name="ck_holdings_current_price"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    portfolio_id = Column(String(36), ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    symbol = Column(String(10), nullable=False)
    quantity = Column(Float, nullable=False)
    avg_price = Column(Float)
    current_price = Column(Float)  # last known, used when the feed has nothing
    sector = Column(String(100))
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    portfolio = relationship("Portfolio", back_populates="holdings")


class PortfolioInsight(Base):
    """Immutable narrative analysis; the newest row is the cached one."""
    __tablename__ = "portfolio_insights"

    id = Column(Integer, primary_key=True, autoincrement=True)
    portfolio_id = Column(String(36), ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False, index=True)
    summary = Column(Text, nullable=False)
    diversification = Column(Text, nullable=False)
    risk_analysis = Column(Text, nullable=False)
    thesis = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)


class ShareToken(Base):
    """Capability token granting view access to one portfolio."""
    __tablename__ = "share_tokens"
    __table_args__ = (
        # At most one live token per portfolio.
        Index(
            "uq_share_tokens_live_portfolio",
            "portfolio_id",
            unique=True,
            sqlite_where=text("is_revoked = 0"),
            postgresql_where=text("is_revoked = false"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    token = Column(String(64), nullable=False, unique=True, index=True)
    portfolio_id = Column(String(36), ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False)
    created_by = Column(String(255), nullable=False)
    is_revoked = Column(Boolean, nullable=False, default=False)
    expires_at = Column(DateTime)
    view_count = Column(Integer, nullable=False, default=0)
    last_viewed_at = Column(DateTime)
    claimed_by = Column(String(255))  # first authenticated viewer, set once
    created_at = Column(DateTime, nullable=False, default=utcnow)

    portfolio = relationship("Portfolio", lazy="selectin")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at is not None and self.expires_at < (now or utcnow())


class TokenAccessLog(Base):
    """One view of a shared portfolio. Append-only."""
    __tablename__ = "token_access_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_id = Column(Integer, ForeignKey("share_tokens.id", ondelete="CASCADE"), nullable=False, index=True)
    ip_address = Column(String(64))
    user_agent = Column(Text)
    viewed_at = Column(DateTime, nullable=False, default=utcnow)


# Pydantic Schemas
class HoldingCreate(BaseModel):
    """A holding as entered by the owner."""
    symbol: str = Field(min_length=1, max_length=10)
    quantity: float = Field(ge=0.0)
    avg_price: Optional[float] = Field(default=None, ge=0.0)
    current_price: Optional[float] = Field(default=None, ge=0.0)
    sector: Optional[str] = Field(default=None, max_length=100)

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("symbol must not be blank")
        return value


class HoldingSchema(BaseModel):
    id: str
    symbol: str
    quantity: float
    avg_price: Optional[float] = None
    current_price: Optional[float] = None
    sector: Optional[str] = None

    class Config:
        from_attributes = True


class PortfolioCreate(BaseModel):
    """Request schema for creating a portfolio."""
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    visibility: Visibility = Visibility.PRIVATE
    cash: float = Field(default=0.0, ge=0.0)
    holdings: List[HoldingCreate] = Field(default_factory=list)

    @field_validator("visibility")
    @classmethod
    def _not_shared(cls, value: Visibility) -> Visibility:
        if value == Visibility.SHARED:
            raise ValueError("SHARED visibility is set by issuing a share link")
        return value


class PortfolioUpdate(BaseModel):
    """Request schema for editing a portfolio; omitted fields are unchanged."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    visibility: Optional[Visibility] = None
    cash: Optional[float] = Field(default=None, ge=0.0)
    holdings: Optional[List[HoldingCreate]] = None


class PortfolioView(BaseModel):
    """Portfolio metadata shown to someone other than the owner."""
    id: str
    name: str
    description: Optional[str] = None
    cash: float
    visibility: Visibility
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PortfolioSummary(PortfolioView):
    """Portfolio metadata without holdings."""
    owner_id: str


class PortfolioSchema(PortfolioSummary):
    holdings: List[HoldingSchema] = Field(default_factory=list)


class PriceInfo(BaseModel):
    """Live market data for one symbol."""
    symbol: str
    price: float
    change: float = 0.0
    change_percent: float = 0.0
    sector: Optional[str] = None
    volume: Optional[int] = None
    market_cap: Optional[float] = None


class HoldingValuation(BaseModel):
    symbol: str
    quantity: float
    avg_price: Optional[float] = None
    current_price: float
    change: float = 0.0
    change_percent: float = 0.0
    sector: str
    value: float
    price_source: Literal["live", "stored", "none"]


class ValuationSnapshot(BaseModel):
    """Holdings and cash valued at current prices."""
    holdings: List[HoldingValuation]
    cash: float
    total_holdings_value: float
    total_value: float
    priced_at: datetime


class InsightContent(BaseModel):
    summary: str
    diversification: str
    risk_analysis: str
    thesis: str


class InsightSchema(InsightContent):
    created_at: datetime
    source: Literal["cache", "generated", "fallback"]


class PortfolioSnapshot(BaseModel):
    """What a viewer sees: metadata, valuation and narrative."""
    portfolio: Union[PortfolioSummary, PortfolioView]
    valuation: ValuationSnapshot
    insight: InsightSchema
    access: Literal["owner", "viewer", "token"]


class ShareRequest(BaseModel):
    expires_in_days: Optional[int] = Field(default=None, ge=1, le=365)


class ShareTokenSchema(BaseModel):
    token: str
    share_url: str
    portfolio_id: str
    expires_at: Optional[datetime] = None
    created_at: datetime


class AccessLogSchema(BaseModel):
    viewed_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    class Config:
        from_attributes = True


class TokenAnalytics(BaseModel):
    total_views: int
    unique_visitors: int
    last_viewed: Optional[datetime] = None
    recent_views: List[AccessLogSchema]


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    question: str = Field(min_length=1, max_length=500)
    chat_history: List[ChatTurn] = Field(default_factory=list)


class ChatResponse(BaseModel):
    response: str
    timestamp: datetime
