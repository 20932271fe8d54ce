"""
Unit tests for logging setup.
"""

import logging

from presocial.utils import logging_utils
from presocial.utils.logging_utils import setup_logging


class TestSetupLogging:
    """Test cases for setup_logging."""

    def test_applies_yaml_config(self, tmp_path):
        config = tmp_path / "logging.yaml"
        config.write_text(
            "version: 1\n"
            "disable_existing_loggers: false\n"
            "loggers:\n"
            "  presocial.test_logging:\n"
            "    level: ERROR\n"
        )

        assert setup_logging(str(config), debug=False) is True
        assert logging.getLogger("presocial.test_logging").level == logging.ERROR
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_missing_file_falls_back(self, tmp_path):
        assert setup_logging(tmp_path / "missing.yaml", debug=False) is False

    def test_debug_read_from_settings_at_call_time(self, tmp_path, monkeypatch):
        logger = logging.getLogger("presocial")
        original_level = logger.level
        monkeypatch.setattr(logging_utils.settings, "DEBUG", True)
        try:
            setup_logging(tmp_path / "missing.yaml")
            assert logger.level == logging.DEBUG
        finally:
            logger.setLevel(original_level)

    def test_invalid_yaml_falls_back(self, tmp_path):
        config = tmp_path / "broken.yaml"
        config.write_text("version: 99\n")

        assert setup_logging(config, debug=False) is False
