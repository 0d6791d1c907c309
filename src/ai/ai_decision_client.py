"""
AI Decision Client Module for Futures Trading Bot.

This module asks an OpenRouter-compatible chat completions endpoint for a
trading decision. Every failure degrades to a HOLD fallback decision; the
client never raises into the pipeline.
"""

import json
import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field, SecretStr, ValidationError

from src.core.models import Decision, DecisionType, MarketSnapshot
from src.utils.exceptions import AIResponseError


logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are an expert cryptocurrency futures trading AI. Analyze the market data and make a trading decision.

Respond ONLY with a valid JSON object in this exact format:
{
    "decision": "BUY|SELL|HOLD|CLOSE",
    "confidence": 0-100,
    "reasoning": "Detailed explanation of your decision",
    "market_conditions": {
        "trend": "bullish|bearish|sideways",
        "volatility": "low|medium|high",
        "strength": "weak|moderate|strong"
    },
    "recommended_leverage": 1-5 (null for HOLD),
    "recommended_stop_loss": price (null for HOLD),
    "recommended_take_profit": price (null for HOLD),
    "risk_assessment": {
        "risk_level": "low|medium|high",
        "reward_ratio": 1.5-3.0
    }
}

Trading rules:
1. Only suggest BUY/SELL if confidence >= 75
2. Always give a stop loss and take profit for BUY/SELL
3. Reward/risk ratio must be at least 1.5
4. Consider every timeframe provided
5. Use the technical indicators (RSI, MACD, Bollinger Bands)
6. Suggest HOLD if conditions are unclear or risky
7. Suggest CLOSE for open positions that should be exited

Respond ONLY with the JSON object, no additional text."""


class AIClientConfig(BaseModel):
    """Configuration for the AI decision client."""

    api_key: SecretStr = Field(default=SecretStr(""))
    base_url: str = Field(default="https://openrouter.ai/api/v1")
    model: str = Field(default="anthropic/claude-3.5-sonnet")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, ge=1)
    timeout_seconds: float = Field(default=60.0, gt=0.0)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key.get_secret_value())

    @classmethod
    def from_settings(cls, ai_settings: Any) -> "AIClientConfig":
        return cls(
            api_key=ai_settings.api_key,
            base_url=ai_settings.base_url,
            model=ai_settings.model,
            temperature=ai_settings.temperature,
            max_tokens=ai_settings.max_tokens,
            timeout_seconds=ai_settings.timeout,
        )


class AIDecision(BaseModel):
    """Decision proposed by the AI oracle."""

    symbol: str
    decision: DecisionType = Field(default=DecisionType.HOLD)
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    reasoning: str = Field(default="No reasoning provided")
    market_conditions: dict[str, Any] = Field(default_factory=dict)
    recommended_leverage: Optional[int] = Field(default=None, ge=1)
    recommended_stop_loss: Optional[float] = None
    recommended_take_profit: Optional[float] = None
    risk_assessment: dict[str, Any] = Field(default_factory=dict)
    is_fallback: bool = Field(default=False)

    @classmethod
    def fallback(cls, symbol: str, reason: str) -> "AIDecision":
        """HOLD decision used whenever the oracle cannot answer."""
        return cls(
            symbol=symbol,
            decision=DecisionType.HOLD,
            confidence=0.0,
            reasoning=f"Fallback decision: {reason}",
            market_conditions={"error": True},
            risk_assessment={"risk_level": "high"},
            is_fallback=True,
        )

    def to_decision(self, timeframes_analyzed: list[str]) -> Decision:
        return Decision(
            symbol=self.symbol,
            timeframes_analyzed=list(timeframes_analyzed),
            market_conditions=dict(self.market_conditions),
            decision=self.decision,
            confidence=self.confidence,
            reasoning=self.reasoning,
            risk_assessment=dict(self.risk_assessment),
            recommended_leverage=self.recommended_leverage,
            recommended_stop_loss=self.recommended_stop_loss,
            recommended_take_profit=self.recommended_take_profit,
        )


def extract_json(text: str) -> dict[str, Any]:
    """
    Parse the JSON object between the first ``{`` and the last ``}``.

    Raises:
        AIResponseError: If no object can be parsed
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise AIResponseError("No JSON object in AI response")
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise AIResponseError("Invalid JSON response from AI", cause=e)
    if not isinstance(data, dict):
        raise AIResponseError("AI response JSON is not an object")
    return data


def build_prompt(snapshot: MarketSnapshot) -> str:
    """Summarize the snapshot as the user message."""
    price_action: dict[str, dict[str, float]] = {}
    for timeframe in snapshot.timeframes:
        closes = snapshot.closes(timeframe)
        if not closes:
            continue
        change = 0.0
        if len(closes) > 1 and closes[0] > 0:
            change = (closes[-1] - closes[0]) / closes[0] * 100
        price_action[timeframe] = {"close": closes[-1], "change": round(change, 4)}

    payload = {
        "symbol": snapshot.symbol,
        "timeframes": list(snapshot.timeframes),
        "price_action": price_action,
        "indicators": snapshot.indicators_by_timeframe,
        "open_positions": [
            {
                "side": trade.side.value,
                "entry_price": trade.entry_price,
                "quantity": trade.quantity,
                "leverage": trade.leverage,
            }
            for trade in snapshot.open_positions
        ],
        "account_balance": snapshot.account_balance,
        "risk_per_trade": snapshot.risk_config.risk_per_trade_pct,
        "max_positions": snapshot.risk_config.max_positions,
    }
    return json.dumps(payload, indent=2, default=str)


class AIDecisionClient:
    """
    OpenRouter-compatible decision oracle.

    Every outcome is an ``AIDecision``; a missing key, timeout, HTTP error,
    malformed JSON or invalid decision value yields the HOLD fallback.
    """

    def __init__(
        self,
        config: Optional[AIClientConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize AIDecisionClient.

        Args:
            config: Client configuration
            client: Preconfigured httpx client (tests pass a mock transport)
        """
        self._config = config or AIClientConfig()
        self._client = client
        self._owns_client = client is None

        logger.info(f"AIDecisionClient initialized (model={self._config.model})")

    @property
    def is_configured(self) -> bool:
        return self._config.is_configured

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.api_key.get_secret_value()}",
            "Content-Type": "application/json",
        }

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=self._config.timeout_seconds,
            )

    async def stop(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def analyze_and_decide(self, snapshot: MarketSnapshot) -> AIDecision:
        """
        Ask the oracle for a decision on ``snapshot``.

        Args:
            snapshot: Market snapshot for one symbol

        Returns:
            Parsed AIDecision or the HOLD fallback
        """
        if not self._config.is_configured:
            return AIDecision.fallback(snapshot.symbol, "OpenRouter API key not configured")

        if self._client is None:
            await self.start()

        body = {
            "model": self._config.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(snapshot)},
            ],
            "temperature": self._config.temperature,
            "max_tokens": self._config.max_tokens,
        }

        try:
            response = await self._client.post("/chat/completions", json=body, headers=self._headers)
            response.raise_for_status()
            content = response.json()["choices"][0]["message"]["content"]
        except httpx.TimeoutException:
            logger.error("AI request timed out")
            return AIDecision.fallback(snapshot.symbol, "AI request timed out")
        except httpx.HTTPStatusError as e:
            logger.error(f"Failed to get AI decision: {e.response.status_code} {e.response.text}")
            return AIDecision.fallback(snapshot.symbol, "Failed to get AI response")
        except httpx.HTTPError as e:
            logger.error(f"AI request error: {e}")
            return AIDecision.fallback(snapshot.symbol, str(e))
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.error(f"Unexpected AI response shape: {e}")
            return AIDecision.fallback(snapshot.symbol, "Unexpected AI response format")

        return self.parse_response(snapshot.symbol, content or "")

    def parse_response(self, symbol: str, content: str) -> AIDecision:
        """Turn the model's text into an AIDecision, or the fallback."""
        try:
            data = extract_json(content)
            return AIDecision(
                symbol=symbol,
                decision=str(data.get("decision", "HOLD")).upper(),
                confidence=float(data.get("confidence") or 0),
                reasoning=data.get("reasoning") or "No reasoning provided",
                market_conditions=data.get("market_conditions") or {},
                recommended_leverage=data.get("recommended_leverage"),
                recommended_stop_loss=data.get("recommended_stop_loss"),
                recommended_take_profit=data.get("recommended_take_profit"),
                risk_assessment=data.get("risk_assessment") or {},
            )
        except AIResponseError as e:
            logger.warning(f"Failed to parse AI response: {e.message}")
            return AIDecision.fallback(symbol, e.message)
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning(f"Invalid AI decision: {e}")
            return AIDecision.fallback(symbol, "Invalid decision values from AI")
