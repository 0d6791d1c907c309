import hashlib
import hmac
from urllib.parse import parse_qsl

import httpx
import pytest
from pydantic import SecretStr

from conftest import START
from src.core.models import TradeSide
from src.execution.binance_exchange import TESTNET_URL, BinanceConfig, BinanceFuturesExchange
from src.execution.exchange import OrderSide, OrderStatus
from src.utils.exceptions import ConfigurationError, OrderError


class FakeBinance:
    """Records requests and answers with canned payloads per path."""

    def __init__(self, responses):
        self.responses = responses
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        status, payload = self.responses[request.url.path]
        return httpx.Response(status, json=payload)


def make_exchange(fake, key='key', secret='secret'):
    config = BinanceConfig(api_key=SecretStr(key), api_secret=SecretStr(secret))
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake), base_url=config.base_url)
    return BinanceFuturesExchange(config, client=client)


async def test_public_market_data():
    millis = int(START.timestamp() * 1000)
    fake = FakeBinance({
        '/fapi/v1/ticker/price': (200, {'symbol': 'BTCUSDT', 'price': '50000.5'}),
        '/fapi/v1/klines': (200, [[millis, '1', '3', '0.5', '2', '100', millis + 299999]]),
    })
    exchange = make_exchange(fake)

    assert await exchange.get_current_price('btcusdt') == 50000.5
    bars = await exchange.get_ohlcv('BTCUSDT', '5m', limit=1)
    assert bars[0].timestamp == START
    assert (bars[0].open, bars[0].high, bars[0].low, bars[0].close, bars[0].volume) == (1.0, 3.0, 0.5, 2.0, 100.0)

    klines = fake.requests[1]
    assert klines.url.params['interval'] == '5m'
    assert klines.url.params['limit'] == '1'
    assert 'signature' not in klines.url.params
    assert TESTNET_URL.startswith('https://testnet')


async def test_signed_order_request():
    fake = FakeBinance({
        '/fapi/v1/leverage': (200, {'leverage': 3}),
        '/fapi/v1/order': (200, {'orderId': 42, 'status': 'FILLED', 'avgPrice': '50010', 'type': 'MARKET'}),
    })
    exchange = make_exchange(fake)

    order = await exchange.place_market_order('BTCUSDT', OrderSide.BUY, 0.2, leverage=3)

    assert order.order_id == '42'
    assert order.status == OrderStatus.FILLED
    assert order.price == 50010.0

    request = fake.requests[-1]
    assert request.headers['X-MBX-APIKEY'] == 'key'
    pairs = parse_qsl(request.url.query.decode())
    params = dict(pairs)
    assert params['side'] == 'BUY'
    assert params['recvWindow'] == '5000'
    unsigned = '&'.join(f'{k}={v}' for k, v in pairs if k != 'signature')
    expected = hmac.new(b'secret', unsigned.encode(), hashlib.sha256).hexdigest()
    assert params['signature'] == expected


async def test_close_position_is_reduce_only():
    fake = FakeBinance({'/fapi/v1/order': (200, {'orderId': 7, 'status': 'FILLED', 'avgPrice': '49000'})})
    exchange = make_exchange(fake)

    order = await exchange.close_position('BTCUSDT', 0.2, TradeSide.LONG)

    params = dict(fake.requests[0].url.params)
    assert params['side'] == 'SELL'
    assert params['reduceOnly'] == 'true'
    assert order.side == OrderSide.SELL


async def test_rejected_order_raises_order_error():
    fake = FakeBinance({
        '/fapi/v1/leverage': (400, {'code': -4028, 'msg': 'bad leverage'}),
        '/fapi/v1/order': (400, {'code': -2019, 'msg': 'Margin is insufficient.'}),
    })
    exchange = make_exchange(fake)

    with pytest.raises(OrderError):
        await exchange.place_market_order('BTCUSDT', OrderSide.BUY, 0.2, leverage=3)


async def test_signed_call_requires_credentials():
    exchange = make_exchange(FakeBinance({}), key='', secret='')
    with pytest.raises(ConfigurationError):
        await exchange.get_account_balance()


async def test_open_positions_skip_flat_entries():
    fake = FakeBinance({'/fapi/v2/positionRisk': (200, [
        {'symbol': 'BTCUSDT', 'positionAmt': '-0.2', 'entryPrice': '50000', 'leverage': '3', 'unRealizedProfit': '5'},
        {'symbol': 'ETHUSDT', 'positionAmt': '0', 'entryPrice': '0', 'leverage': '1'},
    ])})
    positions = await make_exchange(fake).get_open_positions()
    assert len(positions) == 1
    assert positions[0].side == TradeSide.SHORT
    assert positions[0].quantity == 0.2
    assert positions[0].leverage == 3
