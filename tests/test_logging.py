import json
import logging

from src.monitoring.logging_config import (
    ContextFilter,
    JSONFormatter,
    LogFormat,
    LoggingConfig,
    LogLevel,
    clear_context,
    configure_logging,
    get_context,
    log_context,
    set_context,
)


def make_record(message='Order placed'):
    return logging.LogRecord('src.test', logging.INFO, __file__, 10, message, None, None)


def test_log_context_is_restored():
    clear_context()
    with log_context(symbol='BTCUSDT'):
        with log_context(decision_id='abc'):
            assert get_context() == {'symbol': 'BTCUSDT', 'decision_id': 'abc'}
        assert get_context() == {'symbol': 'BTCUSDT'}
    assert get_context() == {}

    set_context(cycle=1, symbol='ETHUSDT')
    clear_context('cycle')
    assert get_context() == {'symbol': 'ETHUSDT'}
    clear_context()


def test_json_formatter_includes_context_and_extra():
    record = make_record()
    record.order_id = 42
    with log_context(symbol='BTCUSDT'):
        ContextFilter().filter(record)

    data = json.loads(JSONFormatter().format(record))

    assert data['message'] == 'Order placed'
    assert data['level'] == 'INFO'
    assert data['context'] == {'symbol': 'BTCUSDT'}
    assert data['extra'] == {'order_id': 42}


def test_configure_logging_writes_json_file(tmp_path):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    log_file = tmp_path / 'logs' / 'bot.log'
    try:
        configure_logging(LoggingConfig(
            level=LogLevel.DEBUG,
            format_type=LogFormat.SIMPLE,
            file_enabled=True,
            file_path=str(log_file),
        ))
        assert len(root.handlers) == 2
        assert logging.getLogger('httpx').level == logging.WARNING

        logging.getLogger('src.test').warning('Position closed')
        for handler in root.handlers:
            handler.flush()
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)

    lines = [json.loads(line) for line in log_file.read_text().splitlines()]
    assert lines[-1]['message'] == 'Position closed'
    assert lines[-1]['level'] == 'WARNING'
