"""Logging setup for the auth service and library.

Example:
    >>> from libs.common.logging.config import configure_logging
    >>> logger = configure_logging(service_name="auth_service", log_level="INFO")
    >>> logger.info("session_created", extra={"session_id": "s-1"})
"""

import logging
import sys

from libs.common.logging.context import get_request_id
from libs.common.logging.formatter import JSONFormatter


class RequestIDFilter(logging.Filter):
    """Stamps the current request ID on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    include_context: bool = True,
) -> logging.Logger:
    """Configure structured JSON logging on the root logger.

    Call once at service startup. Existing root handlers are replaced.

    Args:
        service_name: Name of the service (e.g., "auth_service")
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        include_context: Whether to include the context dict in output

    Returns:
        Configured root logger

    Raises:
        ValueError: If log_level is invalid
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter(service_name=service_name, include_context=include_context))
    handler.addFilter(RequestIDFilter())
    root_logger.addHandler(handler)

    return root_logger
