# /flowcore/utils/logging.py

import logging
import sys
import structlog
from flowcore.config.settings import settings

# Flow, retrieval and model-call logs from every flowcore module share one
# structlog pipeline. Each event carries the service name and environment so
# lines from several instances can be told apart. httpx request lines are
# dropped below WARNING; the model client logs its own attempts.

SERVICE_NAME = "flowcore"
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

_configured = False


def add_service_context(logger, method_name, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("environment", settings.environment)
    return event_dict


def _level(default: int) -> int:
    if settings.debug_mode:
        return logging.DEBUG
    return getattr(logging, settings.log_level, default)


def setup_logging(level: int = logging.INFO):
    """
    Routes the `logging.getLogger(__name__)` loggers through structlog.
    Console output in development, JSON lines elsewhere. Safe to call more
    than once; only the first call installs the handler.
    """
    global _configured
    if _configured:
        return

    pre_chain = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_context,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    renderer = structlog.dev.ConsoleRenderer() if settings.environment == "development" else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=pre_chain))

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(_level(level))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    _configured = True
