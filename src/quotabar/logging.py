import logging
from typing import Any, MutableMapping

import structlog

# event keys whose values must never reach a log sink
SENSITIVE_KEYS: "frozenset[str]" = frozenset(
    {
        "secret",
        "token",
        "access_token",
        "refresh_token",
        "cookie",
        "authorization",
        "api_key",
        "password",
    }
)

_MASK = "***"


def redact_secrets(
    _logger: "Any",
    _method_name: "str",
    event_dict: "MutableMapping[str, Any]",
) -> "MutableMapping[str, Any]":
    """
    structlog processor that masks values of sensitive keys,
    including keys nested one level down in dict values.
    """
    for key, value in list(event_dict.items()):
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = _MASK
        elif isinstance(value, dict):
            event_dict[key] = {
                k: _MASK if str(k).lower() in SENSITIVE_KEYS else v
                for k, v in value.items()
            }
    return event_dict


def setup_logging(level: "str") -> "None":
    """
    maps string log level to logging module levels and configures
    structlog with a console renderer, timestamping and secret
    redaction.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_secrets,
            # plain tracebacks never render frame locals, which may hold secrets
            structlog.dev.ConsoleRenderer(exception_formatter=structlog.dev.plain_traceback),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
