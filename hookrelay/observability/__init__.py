"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from hookrelay.observability.logging import job_log_context, setup_logging
from hookrelay.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from hookrelay.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "setup_logging",
    "job_log_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
]
