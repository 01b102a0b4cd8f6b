"""
Structured logging for the knowledge service (structlog).

Console output in development, JSON lines when LOG_JSON is set. Levels
and format come straight from the environment so importing ``logger``
never requires full settings validation.
"""
import logging
import os
import sys

import structlog

SERVICE_NAME = "knowledge-garden"

# Third-party loggers that are chatty at INFO (model downloads, HTTP calls,
# pypdf's warnings about malformed files).
NOISY_LOGGERS = ("sentence_transformers", "httpx", "httpcore", "openai", "pypdf", "urllib3")


def _add_service(_, __, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(log_level: str = "INFO", json_logs: bool = False):
    """
    Configure structlog and the standard library root logger.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_logs: JSON lines when True, coloured console output otherwise
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_service,
        structlog.dev.set_exc_info,
    ]
    if json_logs:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        ))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    return structlog.get_logger()


def get_logger(component: str):
    """Logger bound to one component, e.g. ``get_logger("ingestion")``."""
    return structlog.get_logger().bind(component=component)


logger = setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("LOG_JSON", "").strip().lower() in ("1", "true", "yes", "on"),
)
