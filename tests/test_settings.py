from config.settings import Settings, get_settings, reload_settings
from src.core.models import RiskConfig
from src.execution.execution_engine import ExecutionEngineConfig


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.symbols == ['BTCUSDT', 'ETHUSDT']
    assert settings.timeframes == ['5m', '15m', '30m', '1h']
    assert not settings.bot_enabled
    assert settings.execution.retry_delays == (30.0, 60.0, 120.0)
    assert not settings.exchange.is_configured
    assert settings.exchange.precision_for('dogeusdt') == 0
    assert settings.exchange.precision_for('UNKNOWNUSDT') == 3


def test_comma_separated_symbols_are_upper_cased():
    settings = Settings(_env_file=None, symbols='btcusdt, solusdt,')
    assert settings.symbols == ['BTCUSDT', 'SOLUSDT']


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv('FUTURES_BOT_BOT_ENABLED', 'true')
    monkeypatch.setenv('FUTURES_BOT_RISK__MAX_POSITIONS', '3')
    monkeypatch.setenv('FUTURES_BOT_SYMBOLS', 'xrpusdt,solusdt')
    monkeypatch.setenv('FUTURES_BOT_TIMEFRAMES', '1m, 5m')

    settings = reload_settings()

    assert settings is get_settings()
    assert settings.bot_enabled
    assert settings.risk.max_positions == 3
    assert settings.symbols == ['XRPUSDT', 'SOLUSDT']
    assert settings.timeframes == ['1m', '5m']
    assert RiskConfig.from_settings(settings.risk).max_positions == 3

    monkeypatch.delenv('FUTURES_BOT_RISK__MAX_POSITIONS')
    assert reload_settings().risk.max_positions == 5


def test_to_dict_masks_secrets():
    settings = Settings(_env_file=None, exchange={'api_key': 'abc', 'api_secret': 'xyz'})
    assert settings.exchange.is_configured
    data = settings.to_dict()
    assert data['exchange']['api_key'] == '***MASKED***'
    assert data['exchange']['api_secret'] == '***MASKED***'
    assert data['exchange']['testnet'] is True
    assert settings.to_dict(exclude_secrets=False)['exchange']['api_key'] == '**********'


def test_engine_config_from_settings():
    settings = Settings(_env_file=None, default_leverage=2, execution={'place_protective_orders': True})
    config = ExecutionEngineConfig.from_settings(settings)
    assert config.place_protective_orders
    assert config.default_leverage == 2
    assert config.quantity_precision['SOLUSDT'] == 1
    assert not ExecutionEngineConfig.from_settings(Settings(_env_file=None)).place_protective_orders
