"""Structured JSON logging with request ID correlation.

Usage:
    # At service startup
    from libs.common.logging import configure_logging, add_request_id_middleware
    configure_logging(service_name="auth_service", log_level="INFO")
    add_request_id_middleware(app)

    # Anywhere
    logger = logging.getLogger(__name__)
    logger.info("session_created", extra={"session_id": session.id})
"""

from libs.common.logging.config import RequestIDFilter, configure_logging
from libs.common.logging.context import (
    REQUEST_ID_HEADER,
    RequestContext,
    clear_request_id,
    generate_request_id,
    get_request_id,
    set_request_id,
)
from libs.common.logging.formatter import REDACTED, JSONFormatter, redact
from libs.common.logging.middleware import RequestIDMiddleware, add_request_id_middleware

__all__ = [
    # Configuration
    "configure_logging",
    "RequestIDFilter",
    # Request ID management
    "REQUEST_ID_HEADER",
    "RequestContext",
    "clear_request_id",
    "generate_request_id",
    "get_request_id",
    "set_request_id",
    # Middleware
    "RequestIDMiddleware",
    "add_request_id_middleware",
    # Formatting
    "JSONFormatter",
    "REDACTED",
    "redact",
]
