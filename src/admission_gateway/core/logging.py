"""Logging configuration for the Admission Gateway."""

import hashlib
import logging
import sys
from typing import Any, Dict, List, Optional, Union

import structlog

from admission_gateway.core.config import Settings, settings

SERVICE_NAME = "admission-gateway"

# Event fields that may carry a raw API key, user id or client address
IDENTITY_FIELDS = ("key", "api_key", "client_ip", "user_id")


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to log events."""
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def redact_identity(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Replace raw identity values with a short digest."""
    for field in IDENTITY_FIELDS:
        value = event_dict.get(field)
        if isinstance(value, str) and value:
            event_dict.pop(field)
            event_dict[f"{field}_hash"] = hashlib.sha256(value.encode()).hexdigest()[:16]
    return event_dict


def _shared_processors() -> List[Any]:
    return [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
        redact_identity,
    ]


def setup_logging(config: Optional[Settings] = None) -> None:
    """
    Setup structured logging for the application.

    structlog loggers and plain `logging` loggers (which attach their fields
    with `extra=`) are rendered by the same JSON or console renderer.
    """
    config = config or settings
    renderer = _get_renderer(config.LOG_FORMAT)

    # Configure structlog
    structlog.configure(
        processors=[structlog.stdlib.filter_by_level]
        + _shared_processors()
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Route standard library records through the same renderer
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[structlog.stdlib.ExtraAdder()] + _shared_processors(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logging.basicConfig(
        handlers=[handler],
        level=getattr(logging, config.LOG_LEVEL.upper()),
        force=True,
    )


def _get_renderer(log_format: str) -> Union[structlog.processors.JSONRenderer, structlog.dev.ConsoleRenderer]:
    """Get the appropriate log renderer based on configuration."""
    if log_format.lower() == "json":
        return structlog.processors.JSONRenderer()
    else:
        return structlog.dev.ConsoleRenderer(colors=True)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
