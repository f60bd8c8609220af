"""
Tests for structured logging and configuration
"""

import json
import logging

from loan_accounting.config import LedgerConfig
from loan_accounting.logging_config import JSONFormatter, get_logger, log_action, setup_logging


class TestStructuredLogging:
    """Test JSON log output"""
    
    def test_log_action_attaches_fields(self, caplog):
        logger = get_logger("loan_accounting.test")
        with caplog.at_level(logging.INFO, logger="loan_accounting.test"):
            log_action(logger, "info", "Repayment added", action="repayment_added",
                       resource="LOAN001", extra={"period": 1})
        
        record = caplog.records[-1]
        assert record.action == "repayment_added"
        assert record.resource == "LOAN001"
        assert record.extra == {"period": 1}
    
    def test_json_formatter(self):
        record = logging.LogRecord("loan_accounting.service", logging.WARNING, __file__, 10,
                                   "Loan marked defaulted", None, None)
        record.action = "loan_defaulted"
        record.resource = "LOAN001"
        
        entry = json.loads(JSONFormatter().format(record))
        assert entry["level"] == "WARNING"
        assert entry["message"] == "Loan marked defaulted"
        assert entry["action"] == "loan_defaulted"
        assert entry["resource"] == "LOAN001"
        assert "correlation_id" not in entry
    
    def test_setup_logging(self):
        logger = setup_logging("DEBUG", logger_name="loan_accounting.setup_test")
        setup_logging("DEBUG", logger_name="loan_accounting.setup_test")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        
        text = setup_logging("INFO", logger_name="loan_accounting.setup_test", log_format="text")
        assert not isinstance(text.handlers[0].formatter, JSONFormatter)


class TestLedgerConfig:
    """Test environment-based configuration"""
    
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("LOAN_ACCOUNTING_SCHEDULE_WINDOW_DAYS", raising=False)
        settings = LedgerConfig(_env_file=None)
        assert settings.schedule_window_days == 7
        assert settings.default_page_size == 10
        assert settings.overdue_refresh_api_key == ""
    
    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("LOAN_ACCOUNTING_DATABASE_URL", "memory://")
        monkeypatch.setenv("LOAN_ACCOUNTING_SCHEDULE_WINDOW_DAYS", "14")
        settings = LedgerConfig(_env_file=None)
        assert settings.database_url == "memory://"
        assert settings.schedule_window_days == 14
