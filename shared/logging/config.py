"""structlog configuration for server-manager processes.

Records go through the stdlib ``logging`` root handler so SDK loggers
(docker, kubernetes, urllib3) and structlog share one stream and level.
``json`` renders one object per line for log shippers; ``console`` renders
colored key=value lines for terminals.

Usage:
    from shared.logging import setup_logging
    setup_logging(service_name="server-manager")
"""

import logging
import os
import sys
from typing import Literal, TextIO

import structlog
from structlog.types import Processor

# SDK loggers never go below WARNING, even when the service runs at DEBUG
SDK_LOGGERS = ("urllib3", "docker", "kubernetes", "asyncio")

LogFormat = Literal["json", "console"]


def _from_env(value: str | None, env_name: str, default: str) -> str:
    return value or os.getenv(env_name, default)


def _renderer(log_format: str) -> Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True, exception_formatter=structlog.dev.plain_traceback)


def build_processors(log_format: str) -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.CallsiteParameterAdder(
            {
                structlog.processors.CallsiteParameter.MODULE,
                structlog.processors.CallsiteParameter.LINENO,
            }
        ),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _renderer(log_format),
    ]


def setup_logging(
    service_name: str | None = None,
    log_format: LogFormat | None = None,
    log_level: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        service_name: Bound as ``service`` on every record.
            Falls back to SERVICE_NAME, then "unknown".
        log_format: "json" or "console". Falls back to LOG_FORMAT, then "console".
        log_level: DEBUG, INFO, WARNING or ERROR. Falls back to LOG_LEVEL, then "INFO".
        stream: Destination of every record. Defaults to stdout; the CLI
            passes stderr so command output stays parseable.
    """
    service_name = _from_env(service_name, "SERVICE_NAME", "unknown")
    log_format = _from_env(log_format, "LOG_FORMAT", "console")
    log_level = _from_env(log_level, "LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(log_level)
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=stream or sys.stdout, level=level, force=True)
    for name in SDK_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=build_processors(log_format),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service=service_name)

    structlog.get_logger().debug("logging_configured", log_format=log_format, log_level=log_level)


def detach_handlers() -> None:
    """Flush and drop the root handlers installed by setup_logging."""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        handler.flush()
        root.removeHandler(handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
