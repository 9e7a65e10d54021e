"""Tests for the narrative client and its response parsing."""

import asyncio
from types import SimpleNamespace

import pytest
from openai import OpenAIError

from smartfolio.config import settings
from smartfolio.errors import MalformedNarrative, UpstreamUnavailable
from smartfolio.models import ChatTurn, HoldingValuation, ValuationSnapshot, utcnow
from smartfolio.services.json_parser import JSONParseError, LLMJSONParser
from smartfolio.services.narrative import NarrativeService


class FakeCompletions:
    def __init__(self, content=None, error=None, delay=0.0, response=None):
        self.content = content
        self.response = response
        self.error = error
        self.delay = delay
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.response is not None:
            return self.response
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_client(**kwargs):
    completions = FakeCompletions(**kwargs)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


@pytest.fixture
def snapshot():
    return ValuationSnapshot(
        holdings=[HoldingValuation(
            symbol="AAPL", quantity=10, current_price=100.0, sector="Technology",
            value=1000.0, price_source="live",
        )],
        cash=500.0,
        total_holdings_value=1000.0,
        total_value=1500.0,
        priced_at=utcnow(),
    )


GOOD_RESPONSE = """Here is the analysis:
```json
{
  "summary": "A $1,500 tech portfolio.",
  "diversification": "Single stock.",
  "riskAnalysis": "High concentration.",
  "thesis": "Bet on Apple.",
}
```"""


@pytest.mark.asyncio
async def test_generate_insights_parses_fenced_json(snapshot):
    client, completions = fake_client(content=GOOD_RESPONSE)

    insight = await NarrativeService(client=client).generate_insights("Growth", snapshot)

    assert insight.risk_analysis == "High concentration."
    assert insight.thesis == "Bet on Apple."
    prompt = completions.requests[0]["messages"][1]["content"]
    assert "AAPL: 10 shares @ $100.00 = $1,000.00 (Technology)" in prompt
    assert "Total Value: $1,500.00" in prompt


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [
    "Portfolio analysis completed successfully.",
    '{"summary": "only a summary"}',
    "",
])
async def test_unusable_output_is_malformed(snapshot, content):
    client, _ = fake_client(content=content)

    with pytest.raises(MalformedNarrative):
        await NarrativeService(client=client).generate_insights("Growth", snapshot)


@pytest.mark.asyncio
async def test_api_error_is_upstream_unavailable(snapshot):
    client, _ = fake_client(error=OpenAIError("quota exceeded"))

    with pytest.raises(UpstreamUnavailable) as exc_info:
        await NarrativeService(client=client).generate_insights("Growth", snapshot)
    assert not isinstance(exc_info.value, MalformedNarrative)


@pytest.mark.asyncio
async def test_slow_provider_times_out(snapshot, monkeypatch):
    monkeypatch.setattr(settings, "narrative_timeout", 0.05)
    client, _ = fake_client(content=GOOD_RESPONSE, delay=5)

    with pytest.raises(UpstreamUnavailable):
        await NarrativeService(client=client).generate_insights("Growth", snapshot)


@pytest.mark.asyncio
async def test_missing_api_key_is_upstream_unavailable(snapshot, monkeypatch):
    monkeypatch.setattr(settings, "openai_api_key", "")

    with pytest.raises(UpstreamUnavailable):
        await NarrativeService().generate_insights("Growth", snapshot)


@pytest.mark.asyncio
async def test_chat_sends_history_and_question(snapshot):
    client, completions = fake_client(content="  You hold only Apple.  ")
    history = [
        ChatTurn(role="user", content="Hi"),
        ChatTurn(role="assistant", content="Hello"),
    ]

    answer = await NarrativeService(client=client).chat("Growth", snapshot, "What do I own?", history)

    assert answer == "You hold only Apple."
    messages = completions.requests[0]["messages"]
    assert [m["role"] for m in messages] == ["system", "user", "user", "assistant", "user"]
    assert messages[-1]["content"] == "What do I own?"
    assert completions.requests[0]["max_tokens"] == settings.chat_max_tokens


def test_parser_normalizes_keys_and_aliases():
    data = LLMJSONParser.parse_object(
        'Sure! {"Summary": "s", "risk": "r", "note": "{not json}"} Thanks',
        required_keys=("summary", "risk_analysis"),
        aliases={"risk": "risk_analysis"},
    )

    assert data == {"summary": "s", "risk_analysis": "r", "note": "{not json}"}


@pytest.mark.parametrize("content", ["", "no braces here", "[1, 2]", '{"summary": '])
def test_parser_rejects_unusable_content(content):
    with pytest.raises(JSONParseError):
        LLMJSONParser.parse_object(content)


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    SimpleNamespace(choices=[SimpleNamespace(message=None)]),
    SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=42))]),
    SimpleNamespace(output="no choices here"),
])
async def test_unexpected_response_shape_is_malformed(snapshot, response):
    client, _ = fake_client(response=response)

    with pytest.raises(MalformedNarrative):
        await NarrativeService(client=client).generate_insights("Growth", snapshot)
