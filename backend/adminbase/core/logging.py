"""
Logging configuration with field masking for sensitive data
"""
import logging
import re

from adminbase.core.config import settings


# Patterns to mask in logs
MASK_PATTERNS = [
    (r'"email":\s*"[^"]*"', '"email": "***@***"'),
    (r"'email':\s*'[^']*'", "'email': '***@***'"),
    (r'"password":\s*"[^"]*"', '"password": "***"'),
    (r"'password':\s*'[^']*'", "'password': '***'"),
    (r'"(access_token|refresh_token|token)":\s*"[^"]*"', r'"\1": "***"'),
    (r"'(access_token|refresh_token|token)':\s*'[^']*'", r"'\1': '***'"),
    (r"Bearer\s+[A-Za-z0-9._\-]+", "Bearer ***"),
]


class MaskingFormatter(logging.Formatter):
    """Custom formatter that masks sensitive fields."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for pattern, replacement in MASK_PATTERNS:
            message = re.sub(pattern, replacement, message, flags=re.IGNORECASE)
        return message


def setup_logging() -> logging.Logger:
    """Configure application logging."""
    logger = logging.getLogger("adminbase")
    logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

    if not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
        console_handler.setFormatter(
            MaskingFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        logger.addHandler(console_handler)

    return logger


# Global logger instance
logger = setup_logging()


def get_logger(name: str) -> logging.Logger:
    """Return a child of the application logger for a module."""
    if name.startswith("adminbase"):
        return logging.getLogger(name)
    return logger.getChild(name)
