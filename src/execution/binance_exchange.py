"""
Binance Futures Exchange Module for Futures Trading Bot.

This module implements the exchange contract against the Binance USD-M
futures REST API using httpx. Signed endpoints use HMAC-SHA256 over the
url-encoded parameters.
"""

import hashlib
import hmac
import logging
import time
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, Field, SecretStr

from src.core.models import Bar, TradeSide
from src.execution.exchange import ExchangePosition, OrderResult, OrderSide, OrderStatus
from src.utils.date_utils import from_milliseconds
from src.utils.exceptions import ConfigurationError, ExchangeError, ExchangeTimeoutError, OrderError


logger = logging.getLogger(__name__)


MAINNET_URL = "https://fapi.binance.com"
TESTNET_URL = "https://testnet.binancefuture.com"


class BinanceConfig(BaseModel):
    """Binance futures client configuration."""

    api_key: SecretStr = Field(default=SecretStr(""))
    api_secret: SecretStr = Field(default=SecretStr(""))
    testnet: bool = Field(default=True)
    timeout_seconds: float = Field(default=10.0, gt=0.0)
    recv_window: int = Field(default=5000, ge=1, le=60000)

    @property
    def base_url(self) -> str:
        return TESTNET_URL if self.testnet else MAINNET_URL

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key.get_secret_value() and self.api_secret.get_secret_value())

    @classmethod
    def from_settings(cls, exchange_settings: Any) -> "BinanceConfig":
        return cls(
            api_key=exchange_settings.api_key,
            api_secret=exchange_settings.api_secret,
            testnet=exchange_settings.testnet,
            timeout_seconds=exchange_settings.request_timeout,
        )


class BinanceFuturesExchange:
    """
    Binance USD-M futures client.

    Every failure surfaces as ``ExchangeError`` (``ExchangeTimeoutError``
    for timeouts, ``OrderError`` for rejected orders).
    """

    def __init__(
        self,
        config: Optional[BinanceConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize BinanceFuturesExchange.

        Args:
            config: Client configuration
            client: Preconfigured httpx client (tests pass a mock transport)
        """
        self._config = config or BinanceConfig()
        self._client = client
        self._owns_client = client is None

        logger.info(f"BinanceFuturesExchange initialized ({self._config.base_url})")

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=self._config.timeout_seconds,
            )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "BinanceFuturesExchange":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _sign(self, params: dict[str, Any]) -> dict[str, Any]:
        signed = dict(params)
        signed["timestamp"] = int(time.time() * 1000)
        signed["recvWindow"] = self._config.recv_window
        query = urlencode(signed)
        signed["signature"] = hmac.new(
            self._config.api_secret.get_secret_value().encode(),
            query.encode(),
            hashlib.sha256,
        ).hexdigest()
        return signed

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        signed: bool = False,
    ) -> Any:
        if self._client is None:
            await self.connect()

        headers: dict[str, str] = {}
        params = dict(params or {})
        if signed:
            if not self._config.is_configured:
                raise ConfigurationError("Exchange API credentials not configured")
            params = self._sign(params)
            headers["X-MBX-APIKEY"] = self._config.api_key.get_secret_value()

        try:
            response = await self._client.request(method, path, params=params, headers=headers)
        except httpx.TimeoutException as e:
            raise ExchangeTimeoutError(f"Timeout calling {path}", details={"path": path}, cause=e)
        except httpx.RequestError as e:
            raise ExchangeError(f"Error calling {path}: {e}", details={"path": path}, cause=e)

        if response.status_code >= 400:
            logger.error(f"Binance {method} {path} failed ({response.status_code}): {response.text}")
            error_cls = OrderError if path.endswith("/order") else ExchangeError
            raise error_cls(
                f"Binance {path} returned {response.status_code}",
                details={"path": path, "status": response.status_code, "body": response.text},
            )
        return response.json()

    # =========================================================================
    # MARKET DATA AND ACCOUNT
    # =========================================================================

    async def get_current_price(self, symbol: str) -> float:
        data = await self._request("GET", "/fapi/v1/ticker/price", {"symbol": symbol.upper()})
        try:
            return float(data["price"])
        except (KeyError, TypeError, ValueError) as e:
            raise ExchangeError(f"Malformed price response for {symbol}", cause=e)

    async def get_ohlcv(self, symbol: str, timeframe: str, limit: int = 100) -> list[Bar]:
        data = await self._request(
            "GET",
            "/fapi/v1/klines",
            {"symbol": symbol.upper(), "interval": timeframe, "limit": limit},
        )
        try:
            return [
                Bar(
                    timestamp=from_milliseconds(int(kline[0])),
                    open=float(kline[1]),
                    high=float(kline[2]),
                    low=float(kline[3]),
                    close=float(kline[4]),
                    volume=float(kline[5]),
                )
                for kline in data
            ]
        except (IndexError, TypeError, ValueError) as e:
            raise ExchangeError(f"Malformed klines for {symbol} {timeframe}", cause=e)

    async def get_account_balance(self, asset: str = "USDT") -> float:
        balances = await self._request("GET", "/fapi/v2/balance", signed=True)
        for entry in balances:
            if entry.get("asset") == asset:
                return float(entry.get("availableBalance", entry.get("balance", 0.0)))
        raise ExchangeError(f"Asset {asset} not found in balance response", details={"asset": asset})

    async def get_open_positions(self) -> list[ExchangePosition]:
        data = await self._request("GET", "/fapi/v2/positionRisk", signed=True)
        positions = []
        for entry in data:
            amount = float(entry.get("positionAmt", 0.0))
            if amount == 0:
                continue
            positions.append(
                ExchangePosition(
                    symbol=entry["symbol"],
                    side=TradeSide.LONG if amount > 0 else TradeSide.SHORT,
                    quantity=abs(amount),
                    entry_price=float(entry.get("entryPrice", 0.0)),
                    leverage=int(float(entry.get("leverage", 1))),
                    unrealized_pnl=float(entry.get("unRealizedProfit", 0.0)),
                )
            )
        return positions

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def set_leverage(self, symbol: str, leverage: int) -> bool:
        """Set symbol leverage; failures are logged and the order proceeds."""
        try:
            await self._request(
                "POST", "/fapi/v1/leverage", {"symbol": symbol.upper(), "leverage": leverage}, signed=True
            )
            return True
        except ExchangeError as e:
            logger.warning(f"Failed to set leverage {leverage}x for {symbol}: {e.message}")
            return False

    async def place_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        leverage: int = 1,
    ) -> OrderResult:
        if quantity <= 0:
            raise OrderError(f"Invalid quantity {quantity}", details={"symbol": symbol})
        await self.set_leverage(symbol, leverage)
        data = await self._request(
            "POST",
            "/fapi/v1/order",
            {"symbol": symbol.upper(), "side": side.value, "type": "MARKET", "quantity": quantity},
            signed=True,
        )
        return self._order_result(data, symbol, side, quantity)

    async def place_limit_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        price: float,
        leverage: int = 1,
    ) -> OrderResult:
        if quantity <= 0 or price <= 0:
            raise OrderError("Invalid limit order", details={"symbol": symbol, "price": price})
        await self.set_leverage(symbol, leverage)
        data = await self._request(
            "POST",
            "/fapi/v1/order",
            {
                "symbol": symbol.upper(),
                "side": side.value,
                "type": "LIMIT",
                "timeInForce": "GTC",
                "quantity": quantity,
                "price": price,
            },
            signed=True,
        )
        return self._order_result(data, symbol, side, quantity)

    async def close_position(self, symbol: str, quantity: float, side: TradeSide) -> OrderResult:
        close_side = OrderSide.closing(side)
        data = await self._request(
            "POST",
            "/fapi/v1/order",
            {
                "symbol": symbol.upper(),
                "side": close_side.value,
                "type": "MARKET",
                "quantity": quantity,
                "reduceOnly": "true",
            },
            signed=True,
        )
        return self._order_result(data, symbol, close_side, quantity)

    async def set_stop_loss(self, symbol: str, stop_price: float, side: TradeSide) -> OrderResult:
        return await self._protective_order(symbol, stop_price, side, "STOP_MARKET")

    async def set_take_profit(self, symbol: str, take_profit_price: float, side: TradeSide) -> OrderResult:
        return await self._protective_order(symbol, take_profit_price, side, "TAKE_PROFIT_MARKET")

    async def get_order_status(self, symbol: str, order_id: str) -> OrderResult:
        data = await self._request(
            "GET", "/fapi/v1/order", {"symbol": symbol.upper(), "orderId": order_id}, signed=True
        )
        return self._order_result(data, symbol, OrderSide(data.get("side", "BUY")), float(data.get("origQty", 0)))

    async def _protective_order(self, symbol: str, price: float, side: TradeSide, order_type: str) -> OrderResult:
        close_side = OrderSide.closing(side)
        data = await self._request(
            "POST",
            "/fapi/v1/order",
            {
                "symbol": symbol.upper(),
                "side": close_side.value,
                "type": order_type,
                "stopPrice": price,
                "closePosition": "true",
            },
            signed=True,
        )
        return self._order_result(data, symbol, close_side, 0.0)

    @staticmethod
    def _order_result(data: dict[str, Any], symbol: str, side: OrderSide, quantity: float) -> OrderResult:
        avg_price = float(data.get("avgPrice") or 0.0)
        price = avg_price or float(data.get("price") or data.get("stopPrice") or 0.0)
        try:
            status = OrderStatus(data.get("status", OrderStatus.NEW.value))
        except ValueError:
            status = OrderStatus.NEW
        return OrderResult(
            order_id=str(data.get("orderId", "")),
            symbol=symbol.upper(),
            side=side,
            quantity=quantity,
            price=price or None,
            status=status,
            order_type=data.get("type", "MARKET"),
            raw=data,
        )
