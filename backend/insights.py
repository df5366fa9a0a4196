"""
AI market insights — summarises current market conditions through the
Anthropic Messages API.  Failures never escape: insight requests fall
back to a neutral canned reply, questions to an error payload.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional
import json
import logging
import os
import re

import requests

from market_data import MarketDataError, MarketDataService

logger = logging.getLogger(__name__)

ANTHROPIC_API_KEY = os.getenv("AI_INTEGRATIONS_ANTHROPIC_API_KEY", "")
ANTHROPIC_BASE_URL = os.getenv("AI_INTEGRATIONS_ANTHROPIC_BASE_URL", "https://api.anthropic.com")
ANTHROPIC_VERSION = "2023-06-01"
INSIGHT_MODEL = os.getenv("INSIGHT_MODEL", "claude-haiku-4-5")

SENTIMENTS = ("bullish", "bearish", "neutral")
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class InsightError(Exception):
    pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def neutral_insight() -> Dict:
    return {
        "sentiment": "neutral",
        "summary": "Unable to generate market insight at this time. Please try again later.",
        "highlights": [],
        "generated_at": _now_iso(),
    }


def _signed_pct(value: float) -> str:
    return f"{'+' if value >= 0 else ''}{value:.2f}%"


def build_insight_prompt(global_stats: Dict, top_coins: List[Dict]) -> str:
    total_cap = (global_stats.get("total_market_cap") or {}).get("usd", 0) or 0
    volume = (global_stats.get("total_volume") or {}).get("usd", 0) or 0
    btc_dom = (global_stats.get("market_cap_percentage") or {}).get("btc", 0) or 0
    cap_change = global_stats.get("market_cap_change_percentage_24h_usd", 0) or 0

    coin_lines = "\n".join(
        f"- {c.get('name')} ({str(c.get('symbol', '')).upper()}): "
        f"${c.get('current_price') or 0:,} ({_signed_pct(c.get('price_change_percentage_24h') or 0)})"
        for c in top_coins[:5]
    )
    return f"""You are a cryptocurrency market analyst. Based on the following market data, provide a brief market insight.

Market Data:
- Total Market Cap: ${total_cap / 1e12:.2f}T
- 24h Volume: ${volume / 1e9:.2f}B
- BTC Dominance: {btc_dom:.1f}%
- Market Cap Change (24h): {cap_change:.2f}%

Top Coins Performance (24h):
{coin_lines}

Respond with a JSON object containing:
{{
  "sentiment": "bullish" | "bearish" | "neutral",
  "summary": "A 2-3 sentence market summary",
  "highlights": ["highlight 1", "highlight 2", "highlight 3"]
}}

Be concise and analytical. Focus on actionable insights."""


def build_question_prompt(question: str, top_coins: List[Dict]) -> str:
    context = "\n".join(
        f"{c.get('name')} ({str(c.get('symbol', '')).upper()}): ${c.get('current_price') or 0:,}, "
        f"24h: {_signed_pct(c.get('price_change_percentage_24h') or 0)}"
        for c in top_coins[:10]
    )
    return f"""You are a helpful cryptocurrency market assistant. Answer the user's question based on current market context.

Current Market (Top 10 by Market Cap):
{context}

User Question: {question}

Provide a helpful, concise answer (2-4 sentences). Be informative but not financial advice. Focus on factual market analysis."""


def parse_insight(text: str) -> Dict:
    """Pull the first JSON object out of a model reply and normalise it."""
    match = _JSON_OBJECT.search(text)
    if not match:
        raise InsightError("Could not parse AI response")
    data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise InsightError("AI response is not a JSON object")
    sentiment = str(data.get("sentiment", "neutral")).lower()
    if sentiment not in SENTIMENTS:
        sentiment = "neutral"
    highlights = data.get("highlights")
    if not isinstance(highlights, list):
        highlights = []
    return {
        "sentiment": sentiment,
        "summary": str(data.get("summary", "")),
        "highlights": [str(h) for h in highlights][:5],
    }


class InsightGenerator:

    def __init__(self, market: MarketDataService,
                 session: Optional[requests.Session] = None,
                 api_key: str = ANTHROPIC_API_KEY,
                 base_url: str = ANTHROPIC_BASE_URL,
                 model: str = INSIGHT_MODEL):
        self.market = market
        self.session = session or requests.Session()
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model

    def _complete(self, prompt: str, max_tokens: int) -> str:
        if not self.api_key:
            raise InsightError("Anthropic API key not configured")
        r = self.session.post(
            f"{self.base_url}/v1/messages",
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
            json={
                "model": self.model,
                "max_tokens": max_tokens,
                "messages": [{"role": "user", "content": prompt}],
            },
            timeout=30,
        )
        if r.status_code != 200:
            raise InsightError(f"Anthropic API error: {r.status_code}")
        body = r.json()
        content = body.get("content") if isinstance(body, dict) else None
        first = content[0] if isinstance(content, list) and content else None
        if not isinstance(first, dict) or first.get("type") != "text":
            raise InsightError("Unexpected response type")
        return str(first.get("text", ""))

    def get_insight(self) -> Dict:
        try:
            global_stats = self.market.global_stats()
            top = self.market.top_coins(limit=10, sparkline=False)
            text = self._complete(build_insight_prompt(global_stats, top), max_tokens=500)
            insight = parse_insight(text)
        except (MarketDataError, InsightError, requests.RequestException, ValueError) as e:
            logger.warning("Error generating market insight: %s", e)
            return neutral_insight()
        insight["generated_at"] = _now_iso()
        return insight

    def ask(self, question: str) -> Dict:
        if not question or not question.strip():
            raise ValueError("Question is required")
        try:
            top = self.market.top_coins(limit=20, sparkline=False)
            answer = self._complete(build_question_prompt(question.strip(), top), max_tokens=300)
        except (MarketDataError, InsightError, requests.RequestException, ValueError) as e:
            logger.warning("Error answering question: %s", e)
            return {"error": "Failed to generate answer"}
        return {"answer": answer}
