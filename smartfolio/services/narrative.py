"""Narrative generation: portfolio insights and chat via an OpenAI-compatible API."""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from openai import OpenAIError

from ..config import settings
from ..errors import MalformedNarrative, UpstreamUnavailable
from ..models import ChatTurn, InsightContent, ValuationSnapshot
from .json_parser import JSONParseError, LLMJSONParser

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a professional financial advisor and portfolio analyst with expertise in investment strategy, risk management, and market analysis. Your role is to provide educational, insightful analysis of investment portfolios.

Guidelines:
- Provide objective, educational analysis focused on diversification, risk, and investment principles
- Use clear, professional language suitable for retail investors
- Focus on portfolio construction principles rather than specific buy/sell recommendations
- Highlight both strengths and potential areas for improvement
- Be encouraging while being realistic about risks
- Keep insights concise but comprehensive

When analyzing portfolios, consider sector diversification and concentration risk, asset allocation, risk-return profile, market cap exposure and overall balance.

Format your responses as requested, maintaining a professional yet approachable tone."""

INSIGHT_FIELDS = ("summary", "diversification", "risk_analysis", "thesis")

# Keys models tend to use instead of the ones we ask for.
INSIGHT_KEY_ALIASES = {
    "risk": "risk_analysis",
    "risk_assessment": "risk_analysis",
    "investment_thesis": "thesis",
    "diversification_analysis": "diversification",
}


def format_holdings(snapshot: ValuationSnapshot) -> str:
    if not snapshot.holdings:
        return "(no holdings)"
    return "\n".join(
        f"- {h.symbol}: {h.quantity:g} shares @ ${h.current_price:,.2f} "
        f"= ${h.value:,.2f} ({h.sector})"
        for h in snapshot.holdings
    )


def portfolio_context(name: str, snapshot: ValuationSnapshot) -> str:
    return (
        f"Portfolio: {name}\n"
        f"Total Value: ${snapshot.total_value:,.2f}\n"
        f"Cash: ${snapshot.cash:,.2f}\n\n"
        f"Holdings:\n{format_holdings(snapshot)}"
    )


class NarrativeService:
    """Client for the hosted narrative model.

    Every failure surfaces as UpstreamUnavailable (MalformedNarrative when the
    model answered with something unusable); callers decide how to degrade.
    """

    def __init__(self, client=None):
        self._client = client
        self.json_parser = LLMJSONParser()

    @property
    def client(self):
        if self._client is None:
            if not settings.openai_api_key:
                raise UpstreamUnavailable("Narrative service is not configured")
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                timeout=settings.narrative_timeout,
                max_retries=0,
            )
        return self._client

    def _insight_prompt(self, name: str, snapshot: ValuationSnapshot) -> str:
        return f"""Analyze this investment portfolio and provide insights:

{portfolio_context(name, snapshot)}

Please provide:
1. SUMMARY: A 2-3 sentence overview of the portfolio's characteristics and total value
2. DIVERSIFICATION: Analysis of sector/asset diversification, concentration risks, and balance
3. RISK_ANALYSIS: Assessment of portfolio risk level, volatility factors, and risk management
4. THESIS: A one-liner investment thesis summarizing the portfolio's strategic approach

Respond ONLY with a JSON object with keys: summary, diversification, riskAnalysis, thesis"""

    async def _complete(self, messages: List[Dict[str, str]], max_tokens: int) -> str:
        """Run one chat completion within the configured timeout."""
        client = self.client
        try:
            response = await asyncio.wait_for(
                client.chat.completions.create(
                    model=settings.narrative_model,
                    messages=messages,
                    temperature=settings.narrative_temperature,
                    max_tokens=max_tokens,
                ),
                timeout=settings.narrative_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Narrative call timed out after {settings.narrative_timeout}s")
            raise UpstreamUnavailable("Narrative service timed out") from e
        except OpenAIError as e:
            logger.error(f"Narrative call failed: {e}")
            raise UpstreamUnavailable("Narrative service error") from e

        try:
            content = response.choices[0].message.content if response.choices else None
        except (AttributeError, IndexError, TypeError) as e:
            logger.error(f"Unexpected narrative response shape: {e}")
            raise MalformedNarrative("Unexpected response from narrative service") from e
        if not isinstance(content, str) or not content.strip():
            raise MalformedNarrative("Empty response from narrative service")
        return content

    async def generate_insights(self, name: str, snapshot: ValuationSnapshot) -> InsightContent:
        """Ask the model for a structured analysis of the snapshot."""
        logger.info(f"Generating insights for '{name}' ({len(snapshot.holdings)} holdings)")
        content = await self._complete(
            [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": self._insight_prompt(name, snapshot)},
            ],
            max_tokens=settings.insight_max_tokens,
        )

        try:
            data = self.json_parser.parse_object(
                content, required_keys=INSIGHT_FIELDS, aliases=INSIGHT_KEY_ALIASES
            )
        except JSONParseError as e:
            logger.error(f"Unusable insight response: {e}")
            logger.debug(f"Raw content: {content[:500]}...")
            raise MalformedNarrative(str(e)) from e

        return InsightContent(**{field: data[field].strip() for field in INSIGHT_FIELDS})

    async def chat(
        self,
        name: str,
        snapshot: ValuationSnapshot,
        question: str,
        history: Optional[Sequence[ChatTurn]] = None,
    ) -> str:
        """Answer a free-form question about the portfolio. Not cached."""
        context = (
            f"You are analyzing this portfolio:\n{portfolio_context(name, snapshot)}\n\n"
            "Answer the user's question about this specific portfolio. "
            "Be helpful, accurate, and educational."
        )
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": context},
            *({"role": turn.role, "content": turn.content} for turn in history or ()),
            {"role": "user", "content": question},
        ]
        content = await self._complete(messages, max_tokens=settings.chat_max_tokens)
        return content.strip()
