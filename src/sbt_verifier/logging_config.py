"""Structured logging configuration using structlog."""

import logging
import sys

import structlog

from sbt_verifier.config import settings

# Event keys that must never reach the log sink in clear text
SENSITIVE_KEYS = frozenset({"raw_cpf", "minter_private_key", "webhook_secret", "signature"})

# Chatty client libraries kept at WARNING unless debugging
NOISY_LOGGERS = ("web3", "urllib3", "aiohttp.access", "sqlalchemy.engine")


def redact_sensitive_fields(logger, method_name, event_dict):
    """Replace secrets and raw payer identifiers before rendering."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = "[REDACTED]"
    return event_dict


def configure_logging(log_level: str | None = None) -> None:
    """Configure structlog and the standard library root logger.

    Args:
        log_level: Overrides settings.log_level (e.g. from a CLI flag)
    """
    level = logging.getLevelName((log_level or settings.log_level).upper())

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    if not settings.debug:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.environment == "production"
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            redact_sensitive_fields,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        service=settings.service_name,
        environment=settings.environment,
        network=settings.chain.network_name,
    )
