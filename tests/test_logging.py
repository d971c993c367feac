"""
Test suite for structured logging
"""

import json
import logging

import pytest

from microfinance.logging_config import JSONFormatter, get_logger, log_action, setup_logging


class CapturingHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def captured():
    logger = get_logger("microfinance.tests")
    handler = CapturingHandler()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    yield logger, handler
    logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


class TestJSONFormatter:

    def test_structured_fields_lifted(self):
        record = logging.LogRecord("microfinance.loans", logging.INFO, __file__, 1, "Created loan %s", ("LN1",), None)
        record.user_id = "u-1"
        record.action = "create"
        record.extra = {'principal': '1000'}

        entry = json.loads(JSONFormatter().format(record))

        assert entry['message'] == "Created loan LN1"
        assert entry['logger'] == "microfinance.loans"
        assert entry['level'] == "INFO"
        assert entry['user_id'] == "u-1"
        assert entry['extra'] == {'principal': '1000'}
        assert 'resource' not in entry


class TestLogAction:

    def test_only_given_fields_attached(self, captured):
        logger, handler = captured

        log_action(logger, "warning", "Repayment failed", action="request_failed", extra={'status': 409})

        record = handler.records[0]
        assert record.levelno == logging.WARNING
        assert record.action == "request_failed"
        assert record.extra == {'status': 409}
        assert not hasattr(record, 'user_id')


class TestSetupLogging:

    def test_writes_json_lines_to_file(self, tmp_path):
        log_file = tmp_path / "lending.log"
        root = setup_logging("DEBUG", log_format="json", log_file=str(log_file))
        try:
            log_action(get_logger("microfinance.loans"), "info", "Disbursed loan", resource="loan")
            for handler in root.handlers:
                handler.flush()

            entry = json.loads(log_file.read_text().splitlines()[0])
            assert entry['message'] == "Disbursed loan"
            assert entry['resource'] == "loan"
        finally:
            for handler in root.handlers[:]:
                root.removeHandler(handler)
                handler.close()
            root.propagate = True
            root.setLevel(logging.NOTSET)
