"""FlightSurety Middleware Package"""

from .correlation import (
    CorrelationIdFilter,
    CorrelationIdMiddleware,
    HEADER_NAME,
    correlation_id_var,
    get_correlation_id,
)

__all__ = [
    "CorrelationIdFilter",
    "CorrelationIdMiddleware",
    "HEADER_NAME",
    "correlation_id_var",
    "get_correlation_id",
]
