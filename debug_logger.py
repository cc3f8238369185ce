"""
Logging setup and context logger

configure_logging() wires the standard logging module for the CLI and
ContextLogger renders keyword context next to each message with
credentials masked.
"""

import logging
import sys
from typing import Optional

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "off": logging.CRITICAL + 1,
}

# Loggers of HTTP libraries that are only useful at trace level
NOISY_LOGGERS = ('httpcore', 'httpx', 'hpack')

SENSITIVE_KEYWORDS = [
    # Passwords and passphrases
    'password', 'passwd', 'passphrase', 'pwd',
    # Tokens and credentials
    'token', 'credential', 'creds',
    # Authentication headers
    'authorization', 'authenticate', 'cookie',
    # API keys and secrets
    'secret', 'private', 'api_key', 'apikey', 'access_key',
]


def configure_logging(level: str = "info", log_file: Optional[str] = None) -> None:
    """Configure root logging for a CLI invocation"""
    level = level.lower()
    if level not in LOG_LEVELS:
        raise ValueError(f"Unknown log level: {level}")

    if log_file:
        handler = logging.FileHandler(log_file)
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logging.basicConfig(level=LOG_LEVELS[level], handlers=[handler], force=True)

    # Silence noisy HTTP libraries unless trace mode
    library_level = logging.DEBUG if level == "trace" else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)


def mask_sensitive_data(key: str, value) -> str:
    """Mask sensitive data like passwords, tokens, and auth headers"""
    if any(keyword in key.lower() for keyword in SENSITIVE_KEYWORDS):
        if isinstance(value, str) and len(value) > 0:
            if len(value) <= 8:
                return "[REDACTED]"
            # Show first 3 and last 3 characters for identification
            return f"{value[:3]}...{value[-3:]}"
        return "[REDACTED]"

    return str(value)


class ContextLogger:
    """Logger that appends masked key=value context to each message"""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _format(self, message: str, context: dict) -> str:
        safe_context = {k: mask_sensitive_data(k, v) for k, v in context.items()}
        rendered = ", ".join(f"{k}={v}" for k, v in safe_context.items())
        return f"{message}" + (f" | {rendered}" if rendered else "")

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context"""
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(self._format(message, kwargs))

    def info(self, message: str, **kwargs):
        if self.logger.isEnabledFor(logging.INFO):
            self.logger.info(self._format(message, kwargs))

    def warning(self, message: str, **kwargs):
        if self.logger.isEnabledFor(logging.WARNING):
            self.logger.warning(self._format(message, kwargs))

    def error(self, message: str, **kwargs):
        if self.logger.isEnabledFor(logging.ERROR):
            self.logger.error(self._format(message, kwargs))
