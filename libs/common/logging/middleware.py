"""ASGI middleware that scopes a request ID around each HTTP request.

Example:
    >>> from fastapi import FastAPI
    >>> app = FastAPI()
    >>> add_request_id_middleware(app)
"""

from collections.abc import Callable
from typing import Any

from fastapi import FastAPI
from starlette.types import ASGIApp

from libs.common.logging.context import (
    REQUEST_ID_HEADER,
    clear_request_id,
    generate_request_id,
    set_request_id,
)


class RequestIDMiddleware:
    """Reads ``X-Request-ID`` (or generates one), sets it in the logging
    context and echoes it on the response, including error responses.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Callable, send: Callable) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        raw = headers.get(REQUEST_ID_HEADER.lower().encode())
        request_id = raw.decode() if raw else generate_request_id()
        set_request_id(request_id)

        async def send_with_request_id(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                response_headers = list(message.get("headers", []))
                response_headers.append((REQUEST_ID_HEADER.lower().encode(), request_id.encode()))
                message["headers"] = response_headers
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            clear_request_id()


def add_request_id_middleware(app: FastAPI) -> None:
    app.add_middleware(RequestIDMiddleware)
