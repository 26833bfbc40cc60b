"""
Span helper used around snapshot, scan and apply operations.
"""

from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from .tracer import get_tracer

_NATIVE_TYPES = (bool, int, float, str)


def _attribute(value):
    return value if isinstance(value, _NATIVE_TYPES) else str(value)


@contextmanager
def trace_operation(
    operation_name: str,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL,
    **attributes
):
    """
    Run a block inside a span.

    Attributes whose value is None are left out, so optional bounds such
    as a chunk's ``lo``/``hi`` can be passed unconditionally. An exception
    marks the span as failed and propagates.

    Example:
        >>> with trace_operation("apply_chunk", table="public.orders", lo=1, hi=1000) as span:
        ...     result = applier.apply(...)
        ...     span.set_attribute("rows_written", result.total)
    """
    tracer = get_tracer()

    with tracer.start_as_current_span(
        operation_name, kind=kind, record_exception=False, set_status_on_exception=False
    ) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, _attribute(value))

        try:
            yield span
        except Exception as e:
            span.set_attribute("error.type", type(e).__name__)
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise
