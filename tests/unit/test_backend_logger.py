"""
Unit Tests for the Backend Logger

Tests level parsing, payload formatting and the coloured formatter.
"""

import logging
import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "backend"))

from lib.logger import ColoredFormatter, format_data, get_logger, level_from_name


class TestLevelFromName:
    """Test suite for level_from_name."""

    @pytest.mark.parametrize("name,level", [
        ("DEBUG", logging.DEBUG),
        ("warning", logging.WARNING),
        (" error ", logging.ERROR),
        (None, logging.INFO),
        ("", logging.INFO),
        ("chatty", logging.INFO),
    ])
    def test_levels(self, name, level):
        assert level_from_name(name) == level


class TestFormatData:
    """Test suite for format_data."""

    def test_nested_dict(self):
        text = format_data({"session_id": "s1", "assessment": {"quality": "good"}})
        assert "  session_id: s1" in text
        assert "  assessment:\n    quality: good" in text

    def test_long_list_is_truncated(self):
        text = format_data(list(range(8)))
        assert text.count("- ") == 5
        assert "(8 items total)" in text


class TestColoredFormatter:
    """Test suite for ColoredFormatter without colours."""

    def make_record(self, name, message):
        return logging.LogRecord(name, logging.INFO, __file__, 1, message, None, None)

    def test_component_icon(self):
        formatter = ColoredFormatter(use_colors=False)
        line = formatter.format(self.make_record("socratic_medical_tutor.progression", "advance"))

        assert "🧭" in line
        assert "socratic_medical_tutor.progression | advance" in line

    def test_level_icon_fallback(self):
        formatter = ColoredFormatter(use_colors=False)
        line = formatter.format(self.make_record("somewhere.else", "hello"))
        assert "ℹ️" in line


class TestStructuredLogger:
    """Test suite for StructuredLogger."""

    def test_data_payload_is_appended(self, caplog):
        logger = get_logger("backend.test")
        with caplog.at_level(logging.INFO, logger="backend.test"):
            logger.info("Turn processed", {"transition": "stay"})

        assert "Turn processed\n  transition: stay" in caplog.text

    def test_error_includes_exception_type(self, caplog):
        logger = get_logger("backend.test")
        with caplog.at_level(logging.ERROR, logger="backend.test"):
            logger.error("Store failed", error=ConnectionError("down"))

        assert "Error: ConnectionError: down" in caplog.text
