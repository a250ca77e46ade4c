"""Logging configuration.

Standard library logging carries the output; structlog formats it. Console
rendering in development, JSON lines in production and staging.
"""

import logging
import os
import sys
from typing import Any, Optional

import structlog

SENSITIVE_FIELDS = {"password", "current_password", "new_password", "token", "api_key", "apikey", "api_secret", "secret"}


def get_log_level() -> str:
    env = (os.getenv("ENVIRONMENT") or "development").lower()

    level_map = {
        "production": "INFO",
        "staging": "INFO",
        "development": "DEBUG",
        "test": "WARNING",
    }

    return os.getenv("LOG_LEVEL", level_map.get(env, "INFO")).upper()


def setup_stdlib_logging() -> None:
    log_level = get_log_level()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    root_logger.addHandler(console_handler)

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("pika").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def setup_structlog() -> None:
    env = os.getenv("ENVIRONMENT", "development").lower()

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if env in ["production", "staging"]:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging() -> None:
    setup_stdlib_logging()
    setup_structlog()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def sanitize_for_logging(data: Optional[dict]) -> Optional[dict]:
    """Return a shallow copy of ``data`` with sensitive values redacted."""
    if not isinstance(data, dict):
        return data
    return {k: ("[REDACTED]" if k.lower() in SENSITIVE_FIELDS else v) for k, v in data.items()}


def log_order_status(order_number: str, old_status: Optional[str], new_status: str, changed_by: Any = None) -> None:
    get_logger("storefront.orders").info(
        "order_status_changed",
        order_number=order_number,
        old_status=old_status,
        new_status=new_status,
        changed_by=changed_by,
    )
