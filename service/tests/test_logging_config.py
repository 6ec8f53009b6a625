"""
Tests for the package logger setup.
"""

import logging

from ghostbank.logging_config import setup_logging


class TestSetupLogging:

    def test_level_by_name(self):
        logger = setup_logging("debug")
        assert logger.name == "ghostbank"
        assert logger.level == logging.DEBUG
        assert logger.propagate is False

    def test_repeat_calls_keep_one_handler(self):
        setup_logging()
        logger = setup_logging(logging.WARNING)
        assert len(logger.handlers) == 1
        assert logger.handlers[0].level == logging.WARNING

    def test_module_loggers_inherit(self):
        setup_logging("INFO")
        child = logging.getLogger("ghostbank.services.withdraw")
        assert child.getEffectiveLevel() == logging.INFO
