"""
Tests for structured logging
"""

import json
import logging

import pytest

from timelock_savings.logging_config import (
    JSONFormatter, KeyValueFormatter, log_action, setup_logging
)


class ListHandler(logging.Handler):
    """Handler that keeps emitted records"""

    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def captured():
    logger = logging.getLogger("timelock_savings.tests")
    handler = ListHandler()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    yield logger, handler
    logger.removeHandler(handler)


class TestLedgerFields:
    """Test that ledger fields are first-class in formatted output"""

    def test_json_output_has_top_level_ledger_fields(self, captured):
        logger, handler = captured
        log_action(logger, "info", "Deposit alice:0 withdrawn",
                   principal="alice", action="withdraw", deposit_id="alice:0",
                   amount=100, payout=90, details={'matured': False})

        entry = json.loads(JSONFormatter().format(handler.records[0]))

        assert entry["level"] == "INFO"
        assert entry["message"] == "Deposit alice:0 withdrawn"
        assert entry["principal"] == "alice"
        assert entry["deposit_id"] == "alice:0"
        assert entry["amount"] == 100
        assert entry["payout"] == 90
        assert entry["details"] == {"matured": False}

    def test_unset_fields_are_omitted(self, captured):
        logger, handler = captured
        log_action(logger, "warning", "Rejected", principal="bob", action="deposit")

        entry = json.loads(JSONFormatter().format(handler.records[0]))

        assert "deposit_id" not in entry
        assert "payout" not in entry
        assert "details" not in entry

    def test_text_output_appends_key_values(self, captured):
        logger, handler = captured
        log_action(logger, "info", "Reserve funded", principal="treasury",
                   action="fund_reserve", amount=30)

        line = KeyValueFormatter().format(handler.records[0])

        assert line.endswith("Reserve funded principal=treasury action=fund_reserve amount=30")

    def test_disabled_level_is_skipped(self, captured):
        logger, handler = captured
        logger.setLevel(logging.WARNING)

        log_action(logger, "info", "Deposit recorded", principal="alice")

        assert handler.records == []


class TestSetupLogging:
    """Test logger configuration"""

    def test_replaces_handlers_and_selects_formatter(self):
        logger = setup_logging("DEBUG", logger_name="timelock_savings.setup_test")
        logger = setup_logging("WARNING", logger_name="timelock_savings.setup_test", log_format="text")

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, KeyValueFormatter)
        assert logger.level == logging.WARNING
        assert not logger.propagate
