"""
Structured logging setup.

Configures structlog on top of stdlib logging so that library loggers and
trustwatch loggers share one output stream.
"""

import logging
import sys

import structlog


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    """Configure structlog. `fmt` is "json" for production, "console" for dev."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if fmt == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def mask_email(email: str | None) -> str:
    """user@example.com -> u***r@example.com. Non-emails are masked the same way."""
    if not email:
        return ""
    local, sep, domain = email.partition("@")
    if not local:
        return f"***{sep}{domain}"
    return f"{local[0]}***{local[-1]}{sep}{domain}"
