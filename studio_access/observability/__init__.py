"""
Observability module - Logging, Metrics, and Tracing.
"""

from studio_access.observability.logging import get_logger, log_context, setup_logging
from studio_access.observability.metrics import metrics
from studio_access.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
