"""
Structured logging configuration.

structlog renders every event as one JSON line. The request-id middleware
binds request_id, method and path through contextvars, and reconciliation
binds case_id, channel and tx_ref on its own logger. Third-party loggers go
through python-json-logger on the root handler so uvicorn and SQLAlchemy
lines stay machine readable too.
"""
import logging
import sys
from typing import Any

import structlog
from pythonjsonlogger import jsonlogger

from counsel_payments import __version__
from counsel_payments.config import get_settings


def add_service_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Stamp service name, environment and version on each event."""
    settings = get_settings()
    event_dict.setdefault("service", settings.app_name)
    event_dict.setdefault("app_env", settings.app_env)
    event_dict.setdefault("version", __version__)
    return event_dict


def setup_logging() -> None:
    """Configure structlog and the stdlib root handler."""
    settings = get_settings()
    level = logging.getLevelName(settings.log_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            add_service_context,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(level)

    # SQL echo goes through its own logger
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        database_echo=settings.database_echo,
    )
