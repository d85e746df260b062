"""
Observability

Tracing, metrics and structured logging for the messaging core.
"""

from .logging import StructuredFormatter, configure_logging
from .metrics import init_metrics, record_counter, record_histogram
from .tracing import create_span, get_trace_id, get_tracer, init_tracing

__all__ = [
    "configure_logging",
    "StructuredFormatter",
    "init_metrics",
    "record_counter",
    "record_histogram",
    "init_tracing",
    "get_tracer",
    "get_trace_id",
    "create_span",
]
