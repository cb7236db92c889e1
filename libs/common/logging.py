"""Structured logging configuration for batch scoring components.

Logging is standardized on ``structlog``. Output is either JSON (for log
collectors) or a pretty console format (for humans), and every line carries
the component name plus, while a job runs, the job and service identifiers.

Typical usage
- Call ``configure_logging(component, log_level, log_format)`` at startup
- Acquire loggers via ``structlog.get_logger(name)``
- Wrap a scoring job in ``job_context(job_id, service_name)``
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from structlog.stdlib import LoggerFactory, add_logger_name


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    log_format: str = "json",
) -> None:
    """Configure structured logging for a component.

    Parameters
    - service_name: Logical component identifier bound to each log line
    - log_level: ``DEBUG``, ``INFO``, ``WARNING``, ``ERROR`` (case‑insensitive)
    - log_format: ``json`` for production; ``console`` for local dev
    """
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_logger_name,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


@contextmanager
def job_context(job_id: str, service_name: str, **extra: Any) -> Iterator[None]:
    """Bind job identifiers to every log line emitted inside the block.

    Context variables are restored on exit, so nested or sequential jobs in
    the same thread do not leak identifiers into each other.
    """
    with structlog.contextvars.bound_contextvars(
        job_id=job_id,
        scoring_service=service_name,
        **extra,
    ):
        yield


def log_performance(operation: str, duration_ms: float, **kwargs: Any) -> None:
    """Log performance metrics.

    Parameters
    - operation: A stable identifier for the measured unit of work
    - duration_ms: Elapsed time in milliseconds
    - kwargs: Additional dimensions (e.g., service name, status)
    """
    logger = get_logger("performance")
    logger.info(
        f"Operation {operation} completed",
        operation=operation,
        duration_ms=duration_ms,
        **kwargs
    )
