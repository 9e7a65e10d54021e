"""Share-link tokens: issuance, revocation, resolution and access analytics."""

import logging
import secrets
import string
from datetime import timedelta
from typing import Optional

from sqlalchemy import desc, distinct, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..errors import InvalidShare, NotFound, NotOwner, ValidationFailed
from ..models import (
    AccessLogSchema, Portfolio, ShareToken, TokenAccessLog, TokenAnalytics,
    Visibility, utcnow,
)

logger = logging.getLogger(__name__)

TOKEN_ALPHABET = string.ascii_letters + string.digits + "-_"


def generate_token(length: Optional[int] = None) -> str:
    """Random URL-safe token; 21 characters carry about 126 bits."""
    length = length or settings.share_token_length
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def share_url(token: str) -> str:
    return f"{settings.share_base_url.rstrip('/')}/portfolio/{token}"


class ShareTokenService:
    """Capability tokens bound to a single portfolio.

    Portfolio visibility is SHARED exactly while a live token exists; every
    method that changes token state updates it in the same commit.
    """

    async def _owned_portfolio(
        self, db: AsyncSession, portfolio_id: str, owner_id: str
    ) -> Portfolio:
        portfolio = await db.get(Portfolio, portfolio_id)
        if portfolio is None:
            raise NotFound("Portfolio not found")
        if portfolio.owner_id != owner_id:
            raise NotOwner()
        return portfolio

    async def _live_token(self, db: AsyncSession, portfolio_id: str) -> Optional[ShareToken]:
        result = await db.execute(
            select(ShareToken).where(
                ShareToken.portfolio_id == portfolio_id,
                ShareToken.is_revoked == False,  # noqa: E712
            )
        )
        return result.scalar_one_or_none()

    async def issue(
        self,
        db: AsyncSession,
        portfolio_id: str,
        owner_id: str,
        expires_in: Optional[timedelta] = None,
    ) -> ShareToken:
        """Return the portfolio's live token, minting one if there is none."""
        if expires_in is not None and expires_in <= timedelta(0):
            raise ValidationFailed("Expiry must be in the future")

        portfolio = await self._owned_portfolio(db, portfolio_id, owner_id)

        existing = await self._live_token(db, portfolio_id)
        if existing is not None and not existing.is_expired():
            return existing
        if existing is not None:
            # An expired token can never resolve again; retire it so a new one can take its slot.
            logger.info(f"Retiring expired share token {existing.id} for portfolio {portfolio_id}")
            existing.is_revoked = True
            await db.flush()

        now = utcnow()
        share = ShareToken(
            token=generate_token(),
            portfolio_id=portfolio_id,
            created_by=owner_id,
            expires_at=now + expires_in if expires_in is not None else None,
            created_at=now,
        )
        db.add(share)
        portfolio.visibility = Visibility.SHARED

        try:
            await db.commit()
        except IntegrityError:
            # A concurrent issue() won the unique index; hand back its token.
            await db.rollback()
            winner = await self._live_token(db, portfolio_id)
            if winner is None:
                raise
            logger.info(f"Concurrent share issuance for portfolio {portfolio_id}, reusing token {winner.id}")
            return winner

        logger.info(f"Issued share token {share.id} for portfolio {portfolio_id}")
        return share

    async def revoke_all(self, db: AsyncSession, portfolio_id: str, owner_id: str) -> int:
        """Revoke every live token for the portfolio. Irreversible."""
        await self._owned_portfolio(db, portfolio_id, owner_id)

        result = await db.execute(
            update(ShareToken)
            .where(
                ShareToken.portfolio_id == portfolio_id,
                ShareToken.is_revoked == False,  # noqa: E712
            )
            .values(is_revoked=True)
            .execution_options(synchronize_session="evaluate")
        )
        await db.execute(
            update(Portfolio)
            .where(Portfolio.id == portfolio_id)
            .values(visibility=Visibility.PRIVATE, updated_at=utcnow())
            .execution_options(synchronize_session="evaluate")
        )
        await db.commit()

        logger.info(f"Revoked {result.rowcount} share token(s) for portfolio {portfolio_id}")
        return result.rowcount

    async def resolve(self, db: AsyncSession, token: str) -> ShareToken:
        """Look up a usable token.

        Unknown, revoked and expired tokens all raise the same InvalidShare.
        """
        result = await db.execute(select(ShareToken).where(ShareToken.token == token))
        share = result.scalar_one_or_none()

        if share is None:
            reason = InvalidShare.UNKNOWN
        elif share.is_revoked:
            reason = InvalidShare.REVOKED
        elif share.is_expired():
            reason = InvalidShare.EXPIRED
        else:
            return share

        logger.info(f"Rejected share token ({reason})")
        raise InvalidShare(reason)

    async def record_access(
        self,
        db: AsyncSession,
        share: ShareToken,
        requester_ip: Optional[str],
        user_agent: Optional[str],
    ) -> None:
        """Log one view and bump the counter in a single transaction.

        The counter is incremented in SQL so concurrent viewers never lose updates.
        """
        now = utcnow()
        db.add(TokenAccessLog(
            token_id=share.id,
            ip_address=requester_ip,
            user_agent=user_agent,
            viewed_at=now,
        ))
        await db.execute(
            update(ShareToken)
            .where(ShareToken.id == share.id)
            .values(view_count=ShareToken.view_count + 1, last_viewed_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(share, attribute_names=["view_count", "last_viewed_at"])

    async def bind_identity(self, db: AsyncSession, share: ShareToken, identity: str) -> bool:
        """Attribute the token to ``identity`` unless someone already claimed it."""
        result = await db.execute(
            update(ShareToken)
            .where(ShareToken.id == share.id, ShareToken.claimed_by.is_(None))
            .values(claimed_by=identity)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(share, attribute_names=["claimed_by"])

        claimed = result.rowcount == 1
        if claimed:
            logger.info(f"Share token {share.id} claimed by {identity}")
        return claimed

    async def get_owned_token(self, db: AsyncSession, token: str, owner_id: str) -> ShareToken:
        """Token lookup for its owner, revoked or not."""
        result = await db.execute(select(ShareToken).where(ShareToken.token == token))
        share = result.scalar_one_or_none()
        if share is None:
            raise NotFound("Share link not found")
        if share.portfolio.owner_id != owner_id:
            raise NotOwner()
        return share

    async def analytics(
        self, db: AsyncSession, share: ShareToken, limit: Optional[int] = None
    ) -> TokenAnalytics:
        limit = limit or settings.access_log_recent_limit

        unique_visitors = await db.scalar(
            select(func.count(distinct(TokenAccessLog.ip_address))).where(
                TokenAccessLog.token_id == share.id,
                TokenAccessLog.ip_address.is_not(None),
            )
        )
        result = await db.execute(
            select(TokenAccessLog)
            .where(TokenAccessLog.token_id == share.id)
            .order_by(desc(TokenAccessLog.viewed_at), desc(TokenAccessLog.id))
            .limit(limit)
        )
        recent = result.scalars().all()

        await db.refresh(share, attribute_names=["view_count", "last_viewed_at"])
        return TokenAnalytics(
            total_views=share.view_count,
            unique_visitors=unique_visitors or 0,
            last_viewed=share.last_viewed_at,
            recent_views=[AccessLogSchema.model_validate(entry) for entry in recent],
        )
