"""
Correlation ID Middleware for the Explorer API

Extracts or generates correlation IDs and propagates them through requests.

Author: SBExplorer Contributors
Date: 2026-01-20
"""

import time
import uuid
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging_utils import CorrelationContext, StructuredLogger


logger = StructuredLogger('sbexplorer.servicebus.middleware')


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Sets a correlation ID for every request and echoes it in the response."""

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get('x-correlation-id') or str(uuid.uuid4())
        CorrelationContext.set_correlation_id(correlation_id)

        start_time = time.time()
        logger.debug(
            f"Request started: {request.method} {request.url.path}",
            method=request.method,
            path=request.url.path
        )

        try:
            response: Response = await call_next(request)
            response.headers['x-correlation-id'] = correlation_id

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                f"Request completed: {request.method} {request.url.path} - {response.status_code}",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2)
            )
            return response
        finally:
            CorrelationContext.clear_correlation_id()
