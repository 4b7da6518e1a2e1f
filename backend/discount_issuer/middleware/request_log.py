import logging
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from discount_issuer.core.logging_config import request_id_ctx_var

logger = logging.getLogger("discount_issuer.request")


def _incoming_request_id(request: Request) -> str:
    raw = (request.headers.get("x-request-id") or "").strip()
    if raw and len(raw) <= 64 and raw.replace("-", "").isalnum():
        return raw
    return str(uuid.uuid4())


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = _incoming_request_id(request)
        token = request_id_ctx_var.set(request_id)
        start = time.perf_counter()
        request.state.request_id = request_id
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            logger.info(
                "request",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": status_code,
                    "duration_ms": int((time.perf_counter() - start) * 1000),
                },
            )
            request_id_ctx_var.reset(token)
