"""
Tests for structured logging setup
"""

import json
import logging
import sys

from core_ledger.logging_config import JSONFormatter, setup_logging, get_logger, log_action


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


class TestJSONFormatter:
    """Test JSON log output"""

    def test_includes_structured_fields(self):
        record = logging.LogRecord("ledger.executor", logging.WARNING, __file__, 1,
                                   "Hit retriable conflict", (), None)
        record.attempt = 2
        record.phase = "retry-sleep"

        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "WARNING"
        assert entry["logger"] == "ledger.executor"
        assert entry["message"] == "Hit retriable conflict"
        assert entry["attempt"] == 2
        assert entry["phase"] == "retry-sleep"
        assert "action" not in entry

    def test_includes_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord("ledger", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        entry = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in entry["exception"]


class TestSetupLogging:
    """Test logger configuration"""

    def test_json_handler(self):
        logger = setup_logging("DEBUG", logger_name="test.ledger.json")

        assert logger.level == logging.DEBUG
        assert logger.propagate is False
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_text_handler_and_no_duplicates(self):
        setup_logging("INFO", logger_name="test.ledger.text", fmt="text")
        logger = setup_logging("INFO", logger_name="test.ledger.text", fmt="text")

        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_get_logger(self):
        assert get_logger("test.ledger.named").name == "test.ledger.named"


class TestLogAction:
    """Test structured action logging"""

    def test_passes_fields_to_record(self):
        logger = logging.getLogger("test.ledger.actions")
        logger.setLevel(logging.INFO)
        handler = ListHandler()
        logger.addHandler(handler)
        try:
            log_action(logger, "info", "transfer committed", action="transfer",
                       resource="account:1", attempt=1)
        finally:
            logger.removeHandler(handler)

        record = handler.records[0]
        assert record.getMessage() == "transfer committed"
        assert record.action == "transfer"
        assert record.resource == "account:1"
        assert record.attempt == 1
        assert not hasattr(record, "phase")
