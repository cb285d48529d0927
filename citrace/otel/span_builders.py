"""Builders for finished spans reconstructed from a StepRecord.

A span opened by one process is closed by another, so the closing process
never holds the SDK span object. Span identity is the (trace_id, span_id)
pair; these builders create a finished ``ReadableSpan`` carrying the
original identifiers, remote parent and real timestamps.
"""

import logging

from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.util.instrumentation import InstrumentationScope
from opentelemetry.trace import SpanKind, Status, StatusCode

from citrace.models import StepRecord, StepStatus
from citrace.otel.context import SpanContextFactory

logger = logging.getLogger("citrace")

# Minimum span duration in nanoseconds (1 microsecond)
MIN_SPAN_DURATION_NS = 1000

INSTRUMENTATION_NAME = "citrace"


def to_ns(record_time) -> int:
    return int(record_time.timestamp() * 1e9)


class FinishedSpanBuilder:
    """Builder for finished step spans."""

    def __init__(self, resource: Resource, version: str = "1.0.0"):
        """Initialize the builder.

        Args:
            resource: The resource describing the CI pipeline service
            version: Instrumentation scope version
        """
        self.resource = resource
        self.scope = InstrumentationScope(INSTRUMENTATION_NAME, version)

    def build(
        self, record: StepRecord, extra_attributes: dict | None = None
    ) -> ReadableSpan:
        """Build a finished span for a closed step record.

        Args:
            record: The closed step record
            extra_attributes: Additional attributes such as CI metadata

        Returns:
            A finished span ready to hand to an exporter
        """
        if record.end_time is None:
            raise ValueError(f"Step '{record.step_name}' has not been closed")

        start_ts = to_ns(record.start_time)
        end_ts = to_ns(record.end_time)
        if end_ts <= start_ts:
            end_ts = start_ts + MIN_SPAN_DURATION_NS

        factory = SpanContextFactory.for_context(record.context)
        attributes = self._attributes(record)
        attributes.update(extra_attributes or {})

        logger.debug(
            f"Building finished span {record.span_id} for step "
            f"'{record.step_name}' (parent={record.parent_span_id_hex})"
        )
        return ReadableSpan(
            name=record.step_name,
            context=factory.span_context(record.context.span_id),
            parent=factory.remote_parent(record.parent_span_id),
            resource=self.resource,
            attributes=attributes,
            kind=SpanKind.INTERNAL,
            status=self._status(record),
            start_time=start_ts,
            end_time=end_ts,
            instrumentation_scope=self.scope,
        )

    def _attributes(self, record: StepRecord) -> dict:
        attributes = {
            "ci.step": record.step_name,
            "ci.step.status": record.status.value,
            "step.duration.ms": record.duration_ms or 0,
        }
        if record.is_root:
            attributes["ci.job"] = record.step_name
            attributes["ci.trace.root"] = record.step_name
            attributes["ci.trace.end"] = True
        if record.error_message:
            attributes["error.message"] = record.error_message
        return attributes

    def _status(self, record: StepRecord) -> Status:
        if record.status == StepStatus.FAILURE:
            return Status(StatusCode.ERROR, record.error_message or "Step failed")
        return Status(StatusCode.OK)
