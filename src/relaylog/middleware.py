"""
Request middleware: a per-request Logger for route handlers.
"""

from __future__ import annotations

import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response


class RequestLoggerMiddleware(BaseHTTPMiddleware):
    """Binds a per-request logger to ``request.state.log``.

    The logger is taken from ``app.state.logger`` and carries a request id
    plus the method and path of the incoming call.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        logger = getattr(request.app.state, "logger", None)
        if logger is not None:
            request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
            request.state.log = logger.bind(reqId=request_id, method=request.method, path=request.url.path)
        return await call_next(request)
