"""
Logging Utility for the Backend

Provides readable, structured logging with:
- Color-coded log levels (only when writing to a terminal)
- Icons per area (auth, session, onboarding, progress)
- Section separators for multi-step operations
- Request/response lines with timing
"""

import logging
import sys
from datetime import datetime
from typing import Any, Dict, Optional, Union


class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    BOLD = '\033[1m'

    DEBUG = '\033[36m'      # Cyan
    INFO = '\033[32m'       # Green
    WARNING = '\033[33m'    # Yellow
    ERROR = '\033[31m'      # Red
    CRITICAL = '\033[35m'   # Magenta

    SECTION = '\033[94m'    # Bright Blue
    KEY = '\033[93m'        # Bright Yellow
    TIMESTAMP = '\033[90m'  # Dark Gray


LEVEL_COLORS = {
    'DEBUG': Colors.DEBUG,
    'INFO': Colors.INFO,
    'WARNING': Colors.WARNING,
    'ERROR': Colors.ERROR,
    'CRITICAL': Colors.CRITICAL,
}


class ColoredFormatter(logging.Formatter):
    """Formatter with colors and an icon chosen from the logger name."""

    ICONS = {
        'DEBUG': '🔍',
        'INFO': 'ℹ️',
        'WARNING': '⚠️',
        'ERROR': '❌',
        'CRITICAL': '🚨',
    }

    # Matched against any dotted part of the logger name
    SECTION_ICONS = {
        'auth': '🔐',
        'auth_listener': '👂',
        'session_store': '💾',
        'legacy_bridge': '🔗',
        'onboarding_state': '🎓',
        'age_gate': '🎂',
        'progress': '📊',
        'background_sync': '🔄',
        'users': '👤',
        'main': '🚀',
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def _icon(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.ERROR:
            return self.ICONS[record.levelname]
        for part in reversed(record.name.split('.')):
            if part in self.SECTION_ICONS:
                return self.SECTION_ICONS[part]
        return self.ICONS.get(record.levelname, '•')

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]
        if self.use_colors:
            level_color = LEVEL_COLORS.get(record.levelname, Colors.RESET)
            reset, bold, grey = Colors.RESET, Colors.BOLD, Colors.TIMESTAMP
        else:
            level_color = reset = bold = grey = ''

        formatted = (
            f"{grey}[{timestamp}]{reset} "
            f"{self._icon(record)} {level_color}{record.levelname:8s}{reset} "
            f"{bold}{record.name}{reset} | {record.getMessage()}"
        )
        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"
        return formatted


class StructuredLogger:
    """Logger wrapper that appends key/value data and prints sections."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(name)

    def _format_data(self, data: Dict[str, Any]) -> str:
        lines = []
        for key, value in data.items():
            if isinstance(value, (list, tuple)) and len(value) > 5:
                value = f"{list(value[:3])} ... ({len(value)} items total)"
            lines.append(f"  {key}: {value}")
        return "\n".join(lines)

    def _with_data(self, message: str, data: Optional[Dict[str, Any]]) -> str:
        if not data:
            return message
        return f"{message}\n{self._format_data(data)}"

    def section(self, title: str, data: Optional[Dict[str, Any]] = None):
        """Log a section header for a multi-step operation."""
        separator = "=" * 60
        self.logger.info(self._with_data(f"\n{separator}\n📋 {title.upper()}\n{separator}", data))

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.debug(self._with_data(message, data))

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(self._with_data(message, data))

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.warning(self._with_data(message, data))

    def error(self, message: str, error: Optional[Exception] = None, data: Optional[Dict[str, Any]] = None):
        """Log error message with exception and optional data."""
        error_info = f" Error: {type(error).__name__}: {error}" if error else ""
        self.logger.error(self._with_data(f"{message}{error_info}", data), exc_info=error)

    def success(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(self._with_data(f"✅ {message}", data))

    def request(self, method: str, path: str, user_id: Optional[str] = None):
        """Log incoming request."""
        short_id = user_id[:20] + "..." if user_id and len(user_id) > 20 else user_id
        self.logger.info(f"📥 REQUEST: {method} {path} (user: {short_id})")

    def response(self, status: int, path: str, duration: Optional[float] = None):
        """Log response."""
        timing = f" in {duration * 1000:.2f}ms" if duration is not None else ""
        self.logger.info(f"📤 RESPONSE: {status} {path}{timing}")


def setup_logging(level: Union[int, str] = logging.INFO, use_colors: bool = True):
    """Setup logging for the backend process."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # Suppress noisy loggers
    logging.getLogger('asyncio').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('hpack').setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, logging.getLogger(name))
