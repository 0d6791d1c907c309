import json

import httpx
import pytest
from pydantic import SecretStr

from conftest import make_snapshot, uptrend_bars
from src.ai.ai_decision_client import AIClientConfig, AIDecision, AIDecisionClient, extract_json
from src.core.models import DecisionType
from src.utils.exceptions import AIResponseError


def completion(content):
    return {'choices': [{'message': {'content': content}}]}


def make_client(handler, api_key='test-key'):
    transport = httpx.MockTransport(handler)
    http = httpx.AsyncClient(transport=transport, base_url='https://openrouter.test/api/v1')
    config = AIClientConfig(api_key=SecretStr(api_key), base_url='https://openrouter.test/api/v1')
    return AIDecisionClient(config, client=http)


@pytest.fixture
def snapshot():
    return make_snapshot({'5m': uptrend_bars()})


async def test_missing_key_falls_back(snapshot):
    def handler(request):
        raise AssertionError('no request expected')

    decision = await make_client(handler, api_key='').analyze_and_decide(snapshot)
    assert decision.is_fallback
    assert decision.decision == DecisionType.HOLD
    assert decision.reasoning == 'Fallback decision: OpenRouter API key not configured'


async def test_valid_response_is_parsed(snapshot):
    seen = {}
    content = json.dumps({
        'decision': 'buy',
        'confidence': 82,
        'reasoning': 'Uptrend on every timeframe',
        'market_conditions': {'trend': 'bullish'},
        'recommended_leverage': 3,
        'recommended_stop_loss': 49000,
        'recommended_take_profit': 52000,
        'risk_assessment': {'risk_level': 'medium', 'reward_ratio': 2.0},
    })

    def handler(request):
        seen['path'] = request.url.path
        seen['auth'] = request.headers['Authorization']
        seen['body'] = json.loads(request.content)
        return httpx.Response(200, json=completion(f'Here you go:\n{content}\nGood luck'))

    decision = await make_client(handler).analyze_and_decide(snapshot)

    assert seen['path'].endswith('/chat/completions')
    assert seen['auth'] == 'Bearer test-key'
    assert seen['body']['messages'][0]['role'] == 'system'
    assert 'BTCUSDT' in seen['body']['messages'][1]['content']
    assert not decision.is_fallback
    assert decision.decision == DecisionType.BUY
    assert decision.confidence == 82.0
    assert decision.recommended_leverage == 3
    assert decision.recommended_stop_loss == 49000.0

    stored = decision.to_decision(['5m'])
    assert stored.symbol == 'BTCUSDT'
    assert stored.timeframes_analyzed == ['5m']
    assert stored.recommended_take_profit == 52000.0


@pytest.mark.parametrize('status', [401, 500])
async def test_http_error_falls_back(snapshot, status):
    client = make_client(lambda request: httpx.Response(status, text='boom'))
    decision = await client.analyze_and_decide(snapshot)
    assert decision.reasoning == 'Fallback decision: Failed to get AI response'


async def test_timeout_falls_back(snapshot):
    def handler(request):
        raise httpx.ReadTimeout('slow', request=request)

    decision = await make_client(handler).analyze_and_decide(snapshot)
    assert decision.reasoning == 'Fallback decision: AI request timed out'


@pytest.mark.parametrize('payload, reason', [
    ({'choices': []}, 'Unexpected AI response format'),
    (completion('I would rather not say'), 'No JSON object in AI response'),
    (completion('{"decision": BUY}'), 'Invalid JSON response from AI'),
    (completion('{"decision": "MAYBE", "confidence": 80}'), 'Invalid decision values from AI'),
    (completion('{"decision": "BUY", "confidence": 150}'), 'Invalid decision values from AI'),
])
async def test_malformed_responses_fall_back(snapshot, payload, reason):
    client = make_client(lambda request: httpx.Response(200, json=payload))
    decision = await client.analyze_and_decide(snapshot)
    assert decision.is_fallback
    assert decision.decision == DecisionType.HOLD
    assert decision.confidence == 0.0
    assert decision.reasoning == f'Fallback decision: {reason}'


def test_extract_json():
    assert extract_json('noise {"a": {"b": 1}} trailing') == {'a': {'b': 1}}
    with pytest.raises(AIResponseError):
        extract_json('}{')


def test_fallback_shape():
    decision = AIDecision.fallback('ETHUSDT', 'offline')
    assert decision.market_conditions == {'error': True}
    assert decision.risk_assessment == {'risk_level': 'high'}
    assert decision.to_decision([]).decision == DecisionType.HOLD


def test_configured_flag_follows_api_key():
    assert make_client(lambda request: httpx.Response(200), api_key='test-key').is_configured
    assert not make_client(lambda request: httpx.Response(200), api_key='').is_configured
