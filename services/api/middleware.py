"""FastAPI middleware for correlation ID handling."""

import re
import time
import uuid
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from shared.logging_config import set_correlation_id

CORRELATION_HEADER = "X-Correlation-ID"
# Caller-supplied ids end up in every log line and the response header
CORRELATION_ID_PATTERN = re.compile(r'[A-Za-z0-9._:-]{1,128}')


def correlation_id_for(request: Request) -> str:
    """The caller's correlation id when it is well formed, a fresh one otherwise"""
    supplied = request.headers.get(CORRELATION_HEADER, "")
    if CORRELATION_ID_PATTERN.fullmatch(supplied):
        return supplied
    if supplied:
        logging.debug("Ignoring malformed correlation id", extra={"length": len(supplied)})
    return str(uuid.uuid4())


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Tags every request, its logs and its response with a correlation ID"""

    async def dispatch(self, request: Request, call_next):
        correlation_id = correlation_id_for(request)
        set_correlation_id(correlation_id)
        started = time.monotonic()

        logging.info("Incoming request", extra={
            "method": request.method,
            "path": request.url.path,
            "client": request.client.host if request.client else "unknown",
        })

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id

        logging.info("Outgoing response", extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": int((time.monotonic() - started) * 1000),
        })
        return response
