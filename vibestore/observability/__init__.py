"""
Observability module - Logging, Metrics, and Tracing.
"""

from vibestore.observability.logging import get_logger, log_context, setup_logging
from vibestore.observability.metrics import metrics
from vibestore.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
