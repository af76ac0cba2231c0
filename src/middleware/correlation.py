# src/middleware/correlation.py
"""
Correlation ID Middleware
Tags every API request, its response and its log lines with one traceable ID,
so a rejected oracle report can be matched to the call that sent it.
"""

import uuid
import logging
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Context variable for correlation ID (safe across concurrent requests)
correlation_id_var: ContextVar[str] = ContextVar('correlation_id', default='-')

HEADER_NAME = "X-Correlation-ID"


def get_correlation_id() -> str:
    """Get current correlation ID from context"""
    return correlation_id_var.get()


def generate_correlation_id() -> str:
    return f"corr-{uuid.uuid4().hex[:12]}"


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds correlation_id to every record"""

    def filter(self, record):
        record.correlation_id = get_correlation_id()
        return True


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's X-Correlation-ID header or mint a new one"""

    async def dispatch(self, request: Request, call_next) -> Response:
        corr_id = request.headers.get(HEADER_NAME) or generate_correlation_id()
        token = correlation_id_var.set(corr_id)
        try:
            response = await call_next(request)
            response.headers[HEADER_NAME] = corr_id
            return response
        finally:
            correlation_id_var.reset(token)
