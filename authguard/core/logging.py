"""
Logging configuration for authguard
Provides structured logging with security event support
"""

import json
import logging
import os
import sys
from typing import Optional


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

_RESERVED_ATTRS = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


class JsonLineFormatter(logging.Formatter):
    """Render each record as one JSON object, including `extra` fields"""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class SecurityLogger:
    """Enhanced logger for security events"""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self._setup_logger()

    def _setup_logger(self):
        """Setup logger with appropriate handlers and formatters"""
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(JsonLineFormatter())

            self.logger.addHandler(handler)
            self.logger.setLevel(LOG_LEVEL)

    def info(self, message: str, extra: Optional[dict] = None):
        """Log info message"""
        self.logger.info(message, extra=extra or {})

    def warning(self, message: str, extra: Optional[dict] = None):
        """Log warning message"""
        self.logger.warning(message, extra=extra or {})

    def error(self, message: str, extra: Optional[dict] = None):
        """Log error message"""
        self.logger.error(message, extra=extra or {})

    def exception(self, message: str, extra: Optional[dict] = None, exc: Optional[BaseException] = None):
        """Log error message with a traceback (server-side only)"""
        self.logger.error(message, exc_info=exc or True, extra=extra or {})


def get_logger(name: str) -> SecurityLogger:
    """Get logger instance for the specified module"""
    return SecurityLogger(name)
