"""FastAPI middleware for correlation ID handling and request timing."""

import time
import uuid
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from shared.logging_config import set_correlation_id, set_execution_id

CORRELATION_ID_HEADER = "X-Correlation-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Tags every log line of a request with one correlation ID and echoes it back"""

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_ID_HEADER) or str(uuid.uuid4())
        set_correlation_id(correlation_id)
        set_execution_id("")
        started = time.monotonic()

        logging.info("Incoming request", extra={
            "method": request.method,
            "path": request.url.path,
            "client": request.client.host if request.client else "unknown"
        })

        response = await call_next(request)
        response.headers[CORRELATION_ID_HEADER] = correlation_id

        logging.info("Outgoing response", extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round((time.monotonic() - started) * 1000, 1)
        })

        return response
