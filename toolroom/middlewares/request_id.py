from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)
principal_ctx_var: ContextVar[str | None] = ContextVar("principal_id", default=None)
logger = logging.getLogger("toolroom.request")

# Scrape and probe traffic would drown out ledger activity.
QUIET_PATHS = frozenset({"/metrics", "/health"})


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with a correlation id and log who did what.

    Auth dependencies run in a child context, so the principal and role they
    resolve are read back from ``request.state`` rather than the context var.
    """

    def __init__(self, app, header_name: str = "X-Request-ID") -> None:  # type: ignore[override]
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(self.header_name) or uuid4().hex
        token = request_id_ctx_var.set(request_id)
        request.state.request_id = request_id
        start = time.perf_counter()
        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start) * 1000
            response.headers[self.header_name] = request_id
            if request.url.path not in QUIET_PATHS:
                details = {
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": round(duration_ms, 2),
                }
                principal = getattr(request.state, "principal", None)
                if principal:
                    details["principal"] = principal
                    details["role"] = getattr(request.state, "role", None)
                level = logging.WARNING if response.status_code >= 500 else logging.INFO
                logger.log(level, "request.completed", extra={"extra_data": details})
        finally:
            request_id_ctx_var.reset(token)
        return response
