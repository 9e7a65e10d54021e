"""Tests for request resolution in the access gateway."""

import pytest
from sqlalchemy import func, select

from smartfolio.errors import AuthenticationRequired, InvalidShare, NotFound, UpstreamUnavailable
from smartfolio.gateway import CHAT_UNAVAILABLE
from smartfolio.models import ChatTurn, PortfolioCreate, TokenAccessLog, Visibility
from smartfolio.services.portfolios import PortfolioService

from .conftest import OTHER, OWNER


@pytest.mark.asyncio
async def test_owner_snapshot(test_session, gateway, portfolio, narrative):
    snapshot = await gateway.get_snapshot(test_session, portfolio_id=portfolio.id, identity=OWNER)

    assert snapshot.access == "owner"
    assert snapshot.portfolio.name == "Growth"
    assert snapshot.valuation.total_value == 1700.0
    assert snapshot.insight.source == "generated"
    assert narrative.insight_calls == 1


@pytest.mark.asyncio
async def test_token_and_owner_paths_value_identically(test_session, gateway, portfolio):
    share = await gateway.tokens.issue(test_session, portfolio.id, OWNER)

    owner_view = await gateway.get_snapshot(test_session, portfolio_id=portfolio.id, identity=OWNER)
    token_view = await gateway.get_snapshot(test_session, token=share.token)

    assert token_view.access == "token"
    assert token_view.valuation.holdings == owner_view.valuation.holdings
    assert token_view.valuation.total_value == owner_view.valuation.total_value
    assert token_view.insight.source == "cache"


@pytest.mark.asyncio
async def test_token_path_logs_and_binds_identity(test_session, gateway, portfolio):
    share = await gateway.tokens.issue(test_session, portfolio.id, OWNER)

    await gateway.get_snapshot(test_session, token=share.token, requester_ip="1.2.3.4", user_agent="curl")
    snapshot = await gateway.get_snapshot(
        test_session, token=share.token, identity=OTHER, requester_ip="5.6.7.8", user_agent="curl"
    )

    # Token wins even though the signed-in viewer is not the owner.
    assert snapshot.access == "token"
    assert share.view_count == 2
    assert share.claimed_by == OTHER
    logged = await test_session.scalar(
        select(func.count(TokenAccessLog.id)).where(TokenAccessLog.token_id == share.id)
    )
    assert logged == 2


@pytest.mark.asyncio
async def test_token_for_another_portfolio_is_rejected(test_session, gateway, portfolio):
    other = await PortfolioService().create(test_session, OWNER, PortfolioCreate(name="Other"))
    share = await gateway.tokens.issue(test_session, other.id, OWNER)

    with pytest.raises(InvalidShare):
        await gateway.get_snapshot(test_session, portfolio_id=portfolio.id, token=share.token)
    assert share.view_count == 0


@pytest.mark.asyncio
async def test_revoked_token_rejected(test_session, gateway, portfolio):
    share = await gateway.tokens.issue(test_session, portfolio.id, OWNER)
    await gateway.tokens.revoke_all(test_session, portfolio.id, OWNER)

    with pytest.raises(InvalidShare):
        await gateway.get_snapshot(test_session, token=share.token)


@pytest.mark.asyncio
async def test_anonymous_without_token_needs_login(test_session, gateway, portfolio):
    with pytest.raises(AuthenticationRequired):
        await gateway.get_snapshot(test_session, portfolio_id=portfolio.id)


@pytest.mark.asyncio
async def test_other_users_see_only_public_or_shared(test_session, gateway, portfolio):
    with pytest.raises(NotFound):
        await gateway.get_snapshot(test_session, portfolio_id=portfolio.id, identity=OTHER)

    portfolio.visibility = Visibility.PUBLIC
    await test_session.commit()

    snapshot = await gateway.get_snapshot(test_session, portfolio_id=portfolio.id, identity=OTHER)
    assert snapshot.access == "viewer"


@pytest.mark.asyncio
async def test_chat_is_never_cached(test_session, gateway, portfolio, narrative):
    history = [ChatTurn(role="user", content="Hi"), ChatTurn(role="assistant", content="Hello")]

    first = await gateway.chat(test_session, "What is my risk?", history, portfolio_id=portfolio.id, identity=OWNER)
    second = await gateway.chat(test_session, "What is my risk?", history, portfolio_id=portfolio.id, identity=OWNER)

    assert first.response == second.response == "Mostly tech."
    assert len(narrative.chat_calls) == 2
    assert narrative.chat_calls[0][1] == history


@pytest.mark.asyncio
async def test_chat_via_token_does_not_count_as_view(test_session, gateway, portfolio):
    share = await gateway.tokens.issue(test_session, portfolio.id, OWNER)

    await gateway.chat(test_session, "Hi?", token=share.token)

    assert share.view_count == 0


@pytest.mark.asyncio
async def test_chat_failure_degrades_to_apology(test_session, gateway, portfolio, narrative):
    narrative.error = UpstreamUnavailable("down")

    reply = await gateway.chat(test_session, "Hello?", portfolio_id=portfolio.id, identity=OWNER)

    assert reply.response == CHAT_UNAVAILABLE
