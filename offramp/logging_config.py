"""
Structured logging for the off-ramp service.

JSON lines by default; a colored console renderer when running at DEBUG.
Stdlib ``logging`` records from the service modules are rendered through
the same structlog pipeline, and provider credentials are masked before
anything is written.
"""

import logging
import sys
from typing import Any, Dict, Optional

import structlog

from .config import settings

# Event keys whose values never reach the log output
SENSITIVE_KEYS = frozenset({
    "api_key",
    "api_secret",
    "api-key",
    "api-secret",
    "paycrest_api_key",
    "paycrest_api_secret",
    "signature",
    "authorization",
})

REDACTED = "***"

# Libraries that would otherwise log every poll tick and RPC round trip
QUIET_LOGGERS = ("uvicorn.access", "httpcore", "httpx")


def redact_secrets(_, __, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask credential-bearing keys, including inside a ``headers`` mapping."""
    for key in list(event_dict):
        if key.lower() in SENSITIVE_KEYS and event_dict[key]:
            event_dict[key] = REDACTED

    headers = event_dict.get("headers")
    if isinstance(headers, dict):
        event_dict["headers"] = {
            name: REDACTED if name.lower() in SENSITIVE_KEYS else value
            for name, value in headers.items()
        }
    return event_dict


def setup_logging(log_level: Optional[str] = None) -> None:
    """Configure structlog and the root stdlib logger.

    Args:
        log_level: Override log level (default: from settings.log_level)
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    console = level == logging.DEBUG

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if console:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
