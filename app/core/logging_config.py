"""
Logging configuration for the advisor CAS API.

- Structured JSON logging in production, console rendering elsewhere
- trace_id / client_id injected from structlog contextvars
- Credentials (CAS passwords, ciphertext, keys) are redacted before rendering
"""

import logging
import os
import re
from typing import Any, Dict

import structlog

REDACTED = "***"

# An event key is redacted when any of its "_"-separated parts is one of these
SENSITIVE_KEY_PARTS = frozenset(
    {
        "password",
        "passwd",
        "secret",
        "token",
        "ciphertext",
        "key",
        "iv",
    }
)

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")


def _is_sensitive_key(key: str) -> bool:
    parts = _CAMEL_BOUNDARY.sub(r"\1_\2", key).lower().replace("-", "_").split("_")
    return any(part in SENSITIVE_KEY_PARTS for part in parts)


class CorrelationIdFilter(logging.Filter):
    """
    Inject correlation_id (trace_id) from structlog context into standard logging records.
    This ensures trace_id appears in logs from third-party libraries too.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        contextvars = structlog.contextvars.get_contextvars()
        record.correlation_id = contextvars.get("trace_id", "")
        return True


def redact_sensitive_values(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor: mask values whose key names a credential."""
    for key in list(event_dict.keys()):
        if _is_sensitive_key(key):
            value = event_dict[key]
            # Flags such as password_protected=True carry no secret
            if value is None or value == "" or isinstance(value, bool):
                continue
            event_dict[key] = REDACTED
    return event_dict


def configure_structlog() -> None:
    """
    Configure structlog for production use.
    Uses the stdlib integration pattern so logger.info("event", key=val) works everywhere.
    """
    env = os.getenv("ENVIRONMENT", "development")

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        redact_sensitive_values,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if env == "production":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]


def get_log_level() -> str:
    """
    Get log level from environment with sensible defaults.

    Returns:
        Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    env = os.getenv("ENVIRONMENT", "development")
    log_level = os.getenv("LOG_LEVEL", "").upper()

    if log_level in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        return log_level

    defaults = {
        "production": "INFO",
        "staging": "INFO",
        "development": "DEBUG",
        "test": "WARNING",
    }

    return defaults.get(env, "INFO")


def configure_logging() -> None:
    """
    Initialize logging configuration for the application.

    Called once at startup (API process and RQ worker).
    """
    configure_structlog()

    logging.getLogger().setLevel(get_log_level())

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("rq.worker").setLevel(logging.INFO)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Example:
        logger = get_logger(__name__)
        logger.info("cas_upload_received", client_id=client_id, file_name=name)
    """
    return structlog.get_logger(name)
