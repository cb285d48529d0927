"""OpenTelemetry span context utilities and helpers."""

from typing import Optional

from opentelemetry.sdk.trace.id_generator import RandomIdGenerator
from opentelemetry.trace import SpanContext, TraceFlags

from citrace.models import TraceContext

_id_generator = RandomIdGenerator()


def generate_trace_id() -> int:
    """Generate a random, valid trace ID (16 bytes / 128 bits)."""
    return _id_generator.generate_trace_id()


def generate_span_id() -> int:
    """Generate a random, valid span ID (8 bytes / 64 bits)."""
    return _id_generator.generate_span_id()


def trace_flags_for(sampled: bool) -> TraceFlags:
    return TraceFlags(TraceFlags.SAMPLED if sampled else TraceFlags.DEFAULT)


class SpanContextFactory:
    """Factory for creating OpenTelemetry span contexts within one trace."""

    def __init__(self, trace_id: int, sampled: bool = True):
        """Initialize the factory with a trace ID.

        Args:
            trace_id: The trace ID to use for all contexts
            sampled: Whether contexts carry the sampled flag
        """
        self.trace_id = trace_id
        self.sampled = sampled

    @classmethod
    def new_trace(cls) -> "SpanContextFactory":
        return cls(generate_trace_id())

    @classmethod
    def for_context(cls, ctx: TraceContext) -> "SpanContextFactory":
        return cls(ctx.trace_id, ctx.sampled)

    def new_context(self, avoid: Optional[int] = None) -> TraceContext:
        """Allocate a fresh span ID under this factory's trace.

        Args:
            avoid: A span ID the new one must differ from, usually the parent's
        """
        span_id = generate_span_id()
        while span_id == avoid:
            span_id = generate_span_id()
        return TraceContext(self.trace_id, span_id, self.sampled)

    def span_context(self, span_id: int) -> SpanContext:
        """Build the local SpanContext of a span being finished in this process."""
        return SpanContext(
            trace_id=self.trace_id,
            span_id=span_id,
            is_remote=False,
            trace_flags=trace_flags_for(self.sampled),
        )

    def remote_parent(self, parent_span_id: Optional[int]) -> Optional[SpanContext]:
        """Build the parent SpanContext of a span opened by another process."""
        if parent_span_id is None:
            return None
        return SpanContext(
            trace_id=self.trace_id,
            span_id=parent_span_id,
            is_remote=True,
            trace_flags=trace_flags_for(self.sampled),
        )
