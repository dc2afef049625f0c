"""
Observability module - Logging, Metrics, and Tracing.
"""

from receipt_guard.observability.logging import get_logger, log_context, setup_logging
from receipt_guard.observability.metrics import metrics
from receipt_guard.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
