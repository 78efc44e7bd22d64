"""Tests du logging."""
import logging

from scanner.core.logger import LOGGER_NAME, ScannerLogger


def test_single_application_logger(config):
    first = ScannerLogger(config).get_logger()
    handlers = list(first.handlers)

    second = ScannerLogger(config).get_logger()
    assert first is second
    assert first.name == LOGGER_NAME
    assert second.handlers == handlers


def test_config_info_is_logged(config, caplog):
    scanner_logger = ScannerLogger(config)

    with caplog.at_level(logging.INFO, logger=LOGGER_NAME):
        scanner_logger.log_config_info(config)

    messages = [record.getMessage() for record in caplog.records]
    assert "api.base_url: http://api.test" in messages
    assert "sync.batch_size: 50" in messages
