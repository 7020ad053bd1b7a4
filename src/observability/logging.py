"""Structured logging setup for the expertise engine.

Engine and versioning modules log through ``logging.getLogger(__name__)``;
hosts call ``configure_logging()`` once at start-up to route stdlib logging
through the same level and to install the structlog processor chain.
"""

import logging

import structlog

from src.config.settings import Environment, Settings, get_settings

_LOG_NAME_TO_LEVEL: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def configure_logging(settings: Settings | None = None) -> structlog.stdlib.BoundLogger:
    """Configure structlog and stdlib logging from settings.

    Returns a bound logger for the caller's own start-up messages.
    """
    settings = settings or get_settings()
    level = _LOG_NAME_TO_LEVEL[settings.LOG_LEVEL.value]

    logging.basicConfig(format="%(message)s", level=level)
    logging.getLogger("src").setLevel(level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if settings.ENVIRONMENT == Environment.DEV
            else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger()
