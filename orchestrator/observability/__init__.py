"""
Observability module - Logging, Metrics, and Tracing.
"""

from orchestrator.observability.logging import get_logger, log_context, setup_logging
from orchestrator.observability.metrics import metrics
from orchestrator.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
