"""
Request observability.

Every response carries a correlation ID and its processing time; every
request is logged once with the order code it concerns, when there is one.
Health probes, polled by the driver app, are logged at DEBUG.
"""

import re
import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("icap.requests")

CORRELATION_HEADER = "X-Correlation-ID"

_ORDER_PATH = re.compile(r"^/api/(?:orders/validate|orders|tracking-points)/([^/]+)")
_QUIET_PATHS = {"/api/health"}


def order_code_from_path(path: str):
    match = _ORDER_PATH.match(path)
    return match.group(1) if match else None


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 2)

        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Process-Time"] = str(duration_ms)

        log_data = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "order_code": order_code_from_path(request.url.path),
            "status_code": response.status_code,
            "duration_ms": duration_ms,
            "ip": request.client.host if request.client else "unknown"
        }

        if response.status_code >= 500:
            logger.error("Request failed", extra=log_data)
        elif response.status_code >= 400:
            logger.warning("Request rejected", extra=log_data)
        elif request.url.path in _QUIET_PATHS:
            logger.debug("Health probe", extra=log_data)
        else:
            logger.info("Request served", extra=log_data)

        return response
