"""Request ID generation and context propagation.

Every request handled by the auth service carries a request ID (taken from the
``X-Request-ID`` header or generated) so that the token, session and
middleware log lines for one request can be grouped together.

Example:
    >>> with RequestContext("req-123"):
    ...     get_request_id()
    'req-123'
"""

import contextvars
import uuid
from types import TracebackType

_request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)

REQUEST_ID_HEADER = "X-Request-ID"


def generate_request_id() -> str:
    """Return a new UUID v4 request ID."""
    return str(uuid.uuid4())


def get_request_id() -> str | None:
    return _request_id_var.get()


def set_request_id(request_id: str) -> None:
    """Set the request ID for the current context.

    Raises:
        ValueError: If request_id is empty
    """
    if not request_id:
        raise ValueError("Request ID cannot be empty")
    _request_id_var.set(request_id)


def clear_request_id() -> None:
    _request_id_var.set(None)


class RequestContext:
    """Context manager that scopes a request ID and restores the previous one."""

    def __init__(self, request_id: str | None = None) -> None:
        self.request_id = request_id or generate_request_id()
        self.previous_request_id: str | None = None

    def __enter__(self) -> str:
        self.previous_request_id = get_request_id()
        set_request_id(self.request_id)
        return self.request_id

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self.previous_request_id is not None:
            set_request_id(self.previous_request_id)
        else:
            clear_request_id()
