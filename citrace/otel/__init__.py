"""OpenTelemetry module for CI step spans.

Submodules:
- context: Span ID generation and span context helpers
- exporter: OTLP exporter setup
- tracer: Resource creation and finished-span shipping
- span_builders: Finished span construction from step records
"""

from citrace.otel.context import (
    SpanContextFactory,
    generate_span_id,
    generate_trace_id,
)
from citrace.otel.exporter import setup_otel_exporter
from citrace.otel.span_builders import FinishedSpanBuilder
from citrace.otel.tracer import SpanShipper, create_resource

__all__ = [
    "setup_otel_exporter",
    "create_resource",
    "generate_trace_id",
    "generate_span_id",
    "SpanContextFactory",
    "FinishedSpanBuilder",
    "SpanShipper",
]
