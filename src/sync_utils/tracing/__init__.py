"""
Distributed tracing using OpenTelemetry.

Spans cover sync runs, tables, chunk scans and batch applies. They are
no-ops until initialize_tracing() installs a provider.
"""

from .context import trace_operation
from .tracer import get_tracer, initialize_tracing, shutdown_tracing

__all__ = [
    "initialize_tracing",
    "get_tracer",
    "shutdown_tracing",
    "trace_operation",
]
