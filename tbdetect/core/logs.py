# tbdetect/core/logs.py
"""
Logging setup for the detection core.

Library modules only call `logging.getLogger(__name__)`. Applications (the CLI,
a web handler) call `configure_logging()` once to attach handlers to the
package logger. Known secret env values are redacted from every record.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

PACKAGE_LOGGER = "tbdetect"
_SECRET_ENV_KEYS = ("OPENAI_API_KEY", "TBDETECT_REMOTE_API_KEY")
_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_DATEFMT = "(%Y-%m-%d %H:%M:%S)"


class RedactSecretsFilter(logging.Filter):
    """Replace known secret values with [REDACTED] in the rendered message."""

    def __init__(self, keys: tuple[str, ...] = _SECRET_ENV_KEYS) -> None:
        super().__init__()
        self._keys = keys

    def filter(self, record: logging.LogRecord) -> bool:
        secrets = [v for v in (os.getenv(k) for k in self._keys) if v]
        if not secrets:
            return True
        msg = record.getMessage()
        redacted = msg
        for val in secrets:
            redacted = redacted.replace(val, "[REDACTED]")
        if redacted != msg:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(level: int | str = logging.INFO, *, log_file: str | None = None) -> logging.Logger:
    """
    Attach a stderr handler (and optionally a rotating file handler) to the
    package logger. Safe to call repeatedly; handlers are installed once.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    if not any(getattr(h, "_tbdetect_console", False) for h in logger.handlers):
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
        console.addFilter(RedactSecretsFilter())
        console._tbdetect_console = True  # type: ignore[attr-defined]
        logger.addHandler(console)

    if log_file and not any(getattr(h, "baseFilename", None) == os.path.abspath(log_file) for h in logger.handlers):
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        handler.setFormatter(formatter)
        handler.addFilter(RedactSecretsFilter())
        logger.addHandler(handler)

    return logger


def debug_enabled() -> bool:
    return os.getenv("TBDETECT_DEBUG", "").strip().lower() in {"1", "true", "yes", "on"}
