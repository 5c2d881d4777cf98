"""Logging for the marketplace: stdlib handlers underneath, structlog on top.

Payment events carry payer contact details and occasionally gateway
credentials. `redact_sensitive` runs before any renderer, so neither reaches
a log file in clear text.
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Any

import structlog

_LEVELS = {
    "production": "INFO",
    "staging": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}

# Keys masked entirely
_SECRET_KEYS = {"secret_key", "webhook_secret", "authorization", "verif_hash", "signature", "card_number", "cvv"}
# Keys masked down to their last few characters
_CONTACT_KEYS = {"phone", "payer_phone", "rider_phone", "email", "payer_email"}

_MAX_BYTES = 10 * 1024 * 1024


def _environment() -> str:
    return (os.getenv("ENVIRONMENT") or os.getenv("PROTEAN_ENV") or "development").lower()


def get_log_level() -> str:
    """LOG_LEVEL wins; otherwise the level follows the environment."""
    return os.getenv("LOG_LEVEL", _LEVELS.get(_environment(), "INFO"))


def _mask(value: Any, keep: int = 0) -> str:
    text = str(value)
    if keep and len(text) > keep:
        return "*" * (len(text) - keep) + text[-keep:]
    return "***"


def redact_sensitive(logger: Any, method_name: str, event_dict: dict) -> dict:
    """structlog processor masking credentials and payer contact details."""
    for key, value in list(event_dict.items()):
        if value is None:
            continue
        lowered = key.lower()
        if lowered in _SECRET_KEYS:
            event_dict[key] = _mask(value)
        elif lowered in _CONTACT_KEYS:
            event_dict[key] = _mask(value, keep=3)
    return event_dict


def _rotating(path: Path, level: int | str) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(filename=path, maxBytes=_MAX_BYTES, backupCount=5, encoding="utf-8")
    handler.setLevel(level)
    return handler


def setup_stdlib_logging(log_dir: str = "logs", log_file_prefix: str = "marketplace") -> None:
    """Console plus rotating files; errors also go to a file of their own."""
    level = get_log_level()
    directory = Path(log_dir)
    directory.mkdir(exist_ok=True)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [
        console,
        _rotating(directory / f"{log_file_prefix}.log", level),
        _rotating(directory / f"{log_file_prefix}_error.log", logging.ERROR),
    ]

    # Per-request chatter from the HTTP client and the framework
    for noisy in ("httpx", "httpcore", "protean"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def setup_structlog() -> None:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        redact_sensitive,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if _environment() in ("production", "staging"):
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging(log_dir: str = "logs", log_file_prefix: str = "marketplace") -> None:
    """Configure all logging for the application."""
    setup_stdlib_logging(log_dir=log_dir, log_file_prefix=log_file_prefix)
    setup_structlog()


def bind_request_context(**kwargs: Any) -> None:
    """Attach key/values (request id, path) to every log line of this request."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
