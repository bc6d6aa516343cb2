# File: tests/test_colored_logging.py

import logging
from unittest import TestCase
from unittest.mock import MagicMock, patch

from entity_rest.colored_logging import (
    ColoredFormatter,
    log_highlight,
    log_progress,
    log_section,
    log_success,
)


def record(message, level=logging.INFO):
    return logging.LogRecord("entity_rest", level, __file__, 1, message, None, None)


class TestColoredFormatter(TestCase):
    """Test cases for ColoredFormatter."""

    def colored(self):
        with patch('entity_rest.colored_logging.sys.stderr') as stderr:
            stderr.isatty.return_value = True
            return ColoredFormatter()

    def test_plain_without_a_terminal(self):
        formatter = ColoredFormatter(use_colors=False)
        assert formatter.format(record("✓ Item.list mounted")) == "INFO: ✓ Item.list mounted"

    def test_level_colors(self):
        formatter = self.colored()
        text = formatter.format(record("Context 'admin' is not defined", logging.WARNING))
        assert text.startswith(ColoredFormatter.COLORS['WARNING'])
        assert text.endswith(ColoredFormatter.RESET)

    def test_message_indicators(self):
        formatter = self.colored()

        assert formatter.format(record("✓ Item.list mounted")).startswith(ColoredFormatter.SPECIAL_COLORS['success'])
        assert formatter.format(record("→ Loading resources")).startswith(ColoredFormatter.SPECIAL_COLORS['progress'])
        assert formatter.format(record("• Skipping Tag")).startswith(ColoredFormatter.SPECIAL_COLORS['highlight'])
        assert formatter.format(record("nothing special")) == "INFO: nothing special"


class TestLogHelpers(TestCase):

    def test_prefixes(self):
        logger = MagicMock()

        log_success(logger, "done")
        log_progress(logger, "working")
        log_highlight(logger, "note")

        messages = [c.args[0] for c in logger.info.call_args_list]
        assert messages == ["✓ done", "→ working", "• note"]

    def test_section(self):
        logger = MagicMock()
        log_section(logger, "operations")

        assert logger.info.call_count == 3
        assert logger.info.call_args_list[1].args[0] == "  OPERATIONS"
