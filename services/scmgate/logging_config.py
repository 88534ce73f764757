"""
Centralized logging configuration for the scmgate service.

Configures structlog for JSON output in production and console in development.
Provider access tokens travel through most call sites, so every event passes
through a redaction processor before it is rendered.
"""

import logging
import sys
from datetime import UTC, datetime
from typing import Any

import structlog
from structlog.types import EventDict, Processor

# Event keys whose values must never reach the log output
SENSITIVE_KEYS = frozenset({"token", "auth_token", "authorization", "private_token", "password"})
REDACTED = "***"


def add_app_context(app_name: str) -> Processor:
    """Build a processor that tags every event with the service name."""

    def processor(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict["app"] = app_name
        return event_dict

    return processor


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask credential-bearing fields, including one level of nested dicts (e.g. headers)."""
    for key, value in list(event_dict.items()):
        if key.lower() in SENSITIVE_KEYS and value:
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {
                k: (REDACTED if str(k).lower() in SENSITIVE_KEYS and v else v)
                for k, v in value.items()
            }
    return event_dict


def reorder_keys(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Put level, timestamp and event first so JSON lines scan easily."""
    ordered: EventDict = {}
    for key in ("level", "timestamp", "event"):
        if key in event_dict:
            ordered[key] = event_dict.pop(key)
    ordered.update(event_dict)
    return ordered


def utc_timestamper(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add ISO8601 UTC timestamp with millisecond precision."""
    now = datetime.now(UTC)
    event_dict["timestamp"] = now.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
    return event_dict


def _shared_processors(app_name: str) -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        utc_timestamper,
        structlog.processors.StackInfoRenderer(),
        add_app_context(app_name),
        redact_secrets,
    ]


def configure_logging(
    json_logs: bool = True, log_level: str = "INFO", app_name: str = "scmgate"
) -> None:
    """Configure structlog and the stdlib root logger for the whole process."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    shared = _shared_processors(app_name)

    if json_logs:
        renderers: list[Processor] = [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            reorder_keys,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderers = [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ]

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=renderers,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # httpx logs every request line at INFO, including URLs with query strings
    for noisy in ("httpx", "httpcore", "asyncio", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
