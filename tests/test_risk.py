import pytest

from src.core.models import Decision, DecisionType, RiskConfig, Trade, TradeSide
from src.risk.correlation import BaseCurrencyCorrelation, ReturnsCorrelation
from src.risk.portfolio_risk import PortfolioRisk, PortfolioState
from src.risk.risk_manager import (
    CHECK_BOT_ENABLED,
    CHECK_CONFIDENCE,
    CHECK_CORRELATED_EXPOSURE,
    CHECK_DAILY_LOSS,
    CHECK_MAX_POSITIONS,
    CHECK_PAIR_EXPOSURE,
    CHECK_TRADE_VALIDATION,
    GATE_ORDER,
    RiskManager,
)
from src.risk.trade_validator import TradeValidator


def buy(symbol='BTCUSDT', confidence=80.0, stop=49000.0, target=52000.0, leverage=3):
    return Decision(
        symbol=symbol,
        decision=DecisionType.BUY,
        confidence=confidence,
        recommended_stop_loss=stop,
        recommended_take_profit=target,
        recommended_leverage=leverage,
        market_conditions={'current_price': 50000.0},
    )


def open_trade(symbol='BTCUSDT', entry=50000.0, quantity=0.01, stop=49000.0):
    return Trade(symbol=symbol, side=TradeSide.LONG, entry_price=entry, quantity=quantity, stop_loss=stop)


def test_risk_decision(risk_manager):
    result = risk_manager.evaluate(buy(), PortfolioState(balance=10000.0))
    assert result.approved
    assert [c.name for c in result.checks] == list(GATE_ORDER)
    assert result.reason == 'All risk checks passed'


def test_hold_is_not_gated(risk_manager):
    result = risk_manager.evaluate(Decision(symbol='BTCUSDT'), PortfolioState(balance=10000.0))
    assert not result.approved
    assert result.reason == 'HOLD decision: nothing to execute'


def test_first_failure_wins(risk_manager):
    trades = [open_trade(symbol=f'COIN{i}USDT') for i in range(5)]
    state = PortfolioState(balance=10000.0, open_trades=trades, realized_pnl_today=-600.0)
    result = risk_manager.evaluate(buy(), state)
    assert not result.approved
    assert result.failed_check.name == CHECK_DAILY_LOSS
    assert [c.name for c in result.checks] == [CHECK_BOT_ENABLED, CHECK_DAILY_LOSS]


def test_bot_disabled_blocks_everything():
    manager = RiskManager(bot_enabled=lambda: False)
    result = manager.evaluate(buy(), PortfolioState(balance=10000.0))
    assert result.failed_check.name == CHECK_BOT_ENABLED
    assert result.reason == 'Trading bot is disabled'


def test_daily_loss_limit_boundary(risk_manager):
    assert not risk_manager.is_daily_loss_limit_reached(PortfolioState(balance=10000.0, realized_pnl_today=-499.0))
    assert risk_manager.is_daily_loss_limit_reached(PortfolioState(balance=10000.0, realized_pnl_today=-500.0))
    assert risk_manager.is_daily_loss_limit_reached(PortfolioState(balance=0.0))


def test_max_positions(risk_manager):
    trades = [open_trade(symbol=f'COIN{i}USDT', quantity=0.001) for i in range(5)]
    result = risk_manager.evaluate(buy(), PortfolioState(balance=10000.0, open_trades=trades))
    assert result.failed_check.name == CHECK_MAX_POSITIONS
    assert result.reason == 'Maximum concurrent positions reached (5/5)'


def test_pair_exposure(risk_manager):
    state = PortfolioState(balance=10000.0, open_trades=[open_trade(quantity=0.07)])
    result = risk_manager.evaluate(buy(), state)
    assert result.failed_check.name == CHECK_PAIR_EXPOSURE


def test_correlated_exposure_counts_other_pairs():
    config = RiskConfig(max_single_pair_exposure_pct=100.0, max_portfolio_risk_pct=100.0)
    manager = RiskManager(risk_config=config)
    state = PortfolioState(balance=10000.0, open_trades=[open_trade(symbol='ETHUSDT', entry=3000.0, quantity=2.0, stop=2940.0)])
    result = manager.evaluate(buy(), state)
    assert result.failed_check.name == CHECK_CORRELATED_EXPOSURE
    assert 'ETHUSDT' in result.reason

    same_pair = PortfolioState(balance=10000.0, open_trades=[open_trade(quantity=0.12)])
    assert manager.evaluate(buy(), same_pair).approved


def test_low_confidence_rejected(risk_manager):
    result = risk_manager.evaluate(buy(confidence=60.0), PortfolioState(balance=10000.0))
    assert result.failed_check.name == CHECK_CONFIDENCE


def test_validation_reported_last(risk_manager):
    result = risk_manager.evaluate(buy(stop=50500.0), PortfolioState(balance=10000.0), 50000.0)
    assert result.failed_check.name == CHECK_TRADE_VALIDATION
    assert 'For LONG: Stop loss must be below entry price' in result.reason


def test_close_decision_skips_exposure_checks(risk_manager):
    trades = [open_trade(symbol=f'COIN{i}USDT') for i in range(5)]
    decision = Decision(symbol='BTCUSDT', decision=DecisionType.CLOSE, confidence=90.0)
    result = risk_manager.evaluate(decision, PortfolioState(balance=10000.0, open_trades=trades))
    assert result.approved
    assert [c.name for c in result.checks] == [CHECK_BOT_ENABLED, CHECK_DAILY_LOSS, CHECK_CONFIDENCE]


def test_time_sensitive_checks(risk_manager):
    trades = [open_trade(symbol=f'COIN{i}USDT', quantity=0.001) for i in range(5)]
    state = PortfolioState(balance=10000.0, open_trades=trades)
    result = risk_manager.evaluate_time_sensitive(buy(confidence=10.0), state, 50000.0)
    assert result.failed_check.name == CHECK_MAX_POSITIONS


def test_validator_messages():
    validator = TradeValidator()
    ok = validator.validate(100.0, 98.0, 104.0, 3, TradeSide.LONG)
    assert ok.valid
    assert ok.risk_reward_ratio == 2.0

    missing = validator.validate(100.0, None, 104.0, 3, TradeSide.LONG)
    assert 'Stop loss must be set' in missing.errors

    short = validator.validate(100.0, 98.0, 104.0, 3, TradeSide.SHORT)
    assert 'For SHORT: Stop loss must be above entry price' in short.errors
    assert 'For SHORT: Take profit must be below entry price' in short.errors

    poor = validator.validate(100.0, 98.0, 102.0, 3, TradeSide.LONG)
    assert 'Risk/Reward ratio must be at least 1.5:1 (got 1.00)' in poor.errors

    leveraged = validator.validate(100.0, 98.0, 104.0, 20, TradeSide.LONG)
    assert 'Leverage must be between 1 and 10' in leveraged.errors


def test_base_currency_correlation():
    provider = BaseCurrencyCorrelation()
    assert provider.correlation('BTCUSDT', 'BTCBUSD') == 1.0
    assert provider.correlation('BTCUSDT', 'ETHUSDT') == 0.75
    assert provider.correlation('ETHUSDT', 'BTCUSDT') == 0.75
    assert provider.correlation('BTCUSDT', 'DOGEUSDT') == 0.3


def test_returns_correlation():
    base = [100.0 + (i % 5) * 2 + i * 0.1 for i in range(40)]
    provider = ReturnsCorrelation({'AAAUSDT': base, 'BBBUSDT': [p * 3 for p in base]})
    assert provider.correlation('AAAUSDT', 'BBBUSDT') == pytest.approx(1.0)
    provider.update('CCCUSDT', [100.0, 101.0])
    assert provider.correlation('AAAUSDT', 'CCCUSDT') == 0.3


def test_drawdown_and_exposure():
    portfolio = PortfolioRisk(RiskConfig(initial_balance=10000.0))
    assert portfolio.current_drawdown([1000.0, -2200.0]) == pytest.approx(20.0)
    assert portfolio.max_drawdown([1000.0, -2200.0, 500.0]) == pytest.approx(20.0)
    trades = [open_trade(quantity=0.1), open_trade(symbol='ETHUSDT', entry=3000.0, quantity=1.0, stop=2940.0)]
    assert portfolio.pair_exposure(trades, 'BTCUSDT') == pytest.approx(5000.0)
    assert portfolio.correlated_exposure(trades, 'BTCUSDT') == pytest.approx(3000.0)
    assert portfolio.portfolio_risk(trades) == pytest.approx(100.0 + 60.0)


def test_suggested_position_size_respects_caps():
    portfolio = PortfolioRisk(RiskConfig())
    empty = PortfolioState(balance=10000.0)
    assert portfolio.suggest_position_size(empty, 'BTCUSDT', 50000.0, 49000.0) == pytest.approx(0.06)
    assert portfolio.suggest_position_size(empty, 'ETHUSDT', 3000.0, 2940.0) == pytest.approx(1.0)
    assert portfolio.suggest_position_size(empty, 'BTCUSDT', 50000.0, 50000.0) == 0.0

    holding = PortfolioState(balance=10000.0, open_trades=[open_trade(quantity=0.05)])
    assert portfolio.suggest_position_size(holding, 'BTCUSDT', 50000.0, 49000.0) == pytest.approx(0.01)
