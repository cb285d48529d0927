"""Data models for cross-process trace stitching."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from opentelemetry.trace import (
    INVALID_SPAN_ID,
    INVALID_TRACE_ID,
    format_span_id,
    format_trace_id,
)

HANDOFF_VERSION = 1


class StepStatus(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


def parse_trace_id(value: Optional[str]) -> Optional[int]:
    """Parse a 32-digit hex trace ID, returning None when absent or invalid."""
    return _parse_hex_id(value, 32, INVALID_TRACE_ID)


def parse_span_id(value: Optional[str]) -> Optional[int]:
    """Parse a 16-digit hex span ID, returning None when absent or invalid."""
    return _parse_hex_id(value, 16, INVALID_SPAN_ID)


def _parse_hex_id(value: Optional[str], width: int, invalid: int) -> Optional[int]:
    if not value:
        return None
    value = value.strip().lower()
    if len(value) != width:
        return None
    try:
        parsed = int(value, 16)
    except ValueError:
        return None
    if parsed == invalid:
        return None
    return parsed


@dataclass(frozen=True)
class TraceContext:
    """Identifiers of one span within a trace.

    Attributes:
        trace_id: 128-bit trace identifier
        span_id: 64-bit span identifier
        sampled: Whether the span should be exported
    """

    trace_id: int
    span_id: int
    sampled: bool = True

    @property
    def trace_id_hex(self) -> str:
        return format_trace_id(self.trace_id)

    @property
    def span_id_hex(self) -> str:
        return format_span_id(self.span_id)

    @classmethod
    def from_hex(
        cls, trace_id: str, span_id: str, sampled: bool = True
    ) -> "TraceContext":
        parsed_trace_id = parse_trace_id(trace_id)
        parsed_span_id = parse_span_id(span_id)
        if parsed_trace_id is None:
            raise ValueError(f"Invalid trace ID: {trace_id!r}")
        if parsed_span_id is None:
            raise ValueError(f"Invalid span ID: {span_id!r}")
        return cls(parsed_trace_id, parsed_span_id, sampled)


@dataclass
class StepRecord:
    """A single CI step span and its outcome.

    Created when a step starts and completed when it ends. The record is
    emitted once to the log sink; it is never deleted.
    """

    step_name: str
    context: TraceContext
    start_time: datetime
    parent_span_id: Optional[int] = None
    end_time: Optional[datetime] = None
    status: StepStatus = StepStatus.PENDING
    error_message: Optional[str] = None
    is_root: bool = False

    @property
    def trace_id(self) -> str:
        return self.context.trace_id_hex

    @property
    def span_id(self) -> str:
        return self.context.span_id_hex

    @property
    def parent_span_id_hex(self) -> Optional[str]:
        if self.parent_span_id is None:
            return None
        return format_span_id(self.parent_span_id)

    @property
    def duration_ms(self) -> Optional[int]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time) // timedelta(milliseconds=1)

    def close(
        self,
        status: StepStatus,
        error_message: Optional[str] = None,
        end_time: Optional[datetime] = None,
    ) -> None:
        if status == StepStatus.PENDING:
            raise ValueError("A closed step must be either success or failure")
        self.end_time = end_time or datetime.now(timezone.utc)
        # Clock skew between runners must not yield a negative duration
        if self.end_time < self.start_time:
            self.end_time = self.start_time
        self.status = status
        self.error_message = error_message


@dataclass
class HandoffSpan:
    span_id: str
    step: str
    started_at: str
    parent_span_id: Optional[str] = None

    def __post_init__(self):
        for name in ("span_id", "step", "started_at"):
            if not isinstance(getattr(self, name), str):
                raise ValueError(f"Hand-off span field '{name}' must be a string")
        if self.parent_span_id is not None and not isinstance(
            self.parent_span_id, str
        ):
            raise ValueError("Hand-off span field 'parent_span_id' must be a string")

    def to_dict(self) -> dict:
        data = {
            "span_id": self.span_id,
            "step": self.step,
            "started_at": self.started_at,
        }
        if self.parent_span_id:
            data["parent_span_id"] = self.parent_span_id
        return data

    @property
    def start_time(self) -> datetime:
        started = datetime.fromisoformat(self.started_at)
        # Times written without an offset are taken as UTC
        if started.tzinfo is None:
            started = started.replace(tzinfo=timezone.utc)
        return started


@dataclass
class HandoffRecord:
    """Serialized trace context passed between process invocations.

    Spans without a parent are root spans; the rest are open child spans
    in the order they were started.
    """

    trace_id: str
    run_id: str = ""
    sampled: bool = True
    spans: list[HandoffSpan] = field(default_factory=list)
    version: int = HANDOFF_VERSION

    def __post_init__(self):
        if not isinstance(self.trace_id, str):
            raise ValueError("Hand-off field 'trace_id' must be a string")
        if not isinstance(self.run_id, str):
            raise ValueError("Hand-off field 'run_id' must be a string")
        if not isinstance(self.sampled, bool):
            raise ValueError("Hand-off field 'sampled' must be a boolean")
        if not isinstance(self.spans, list):
            raise ValueError("Hand-off field 'spans' must be a list")
        if any(not isinstance(span, (dict, HandoffSpan)) for span in self.spans):
            raise ValueError("Hand-off spans must be objects")
        self.spans = [
            HandoffSpan(**span) if isinstance(span, dict) else span
            for span in self.spans
        ]

    @property
    def root(self) -> Optional[HandoffSpan]:
        for span in self.spans:
            if not span.parent_span_id:
                return span
        return None

    def open_children(self) -> list[HandoffSpan]:
        return [span for span in self.spans if span.parent_span_id]

    def last_open_child(self) -> Optional[HandoffSpan]:
        children = self.open_children()
        return children[-1] if children else None

    def find(self, span_id: str) -> Optional[HandoffSpan]:
        for span in self.spans:
            if span.span_id == span_id:
                return span
        return None

    def remove(self, span_id: str) -> bool:
        before = len(self.spans)
        self.spans = [span for span in self.spans if span.span_id != span_id]
        return len(self.spans) != before

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "trace_id": self.trace_id,
            "run_id": self.run_id,
            "sampled": self.sampled,
            "spans": [span.to_dict() for span in self.spans],
        }


@dataclass
class EmitResult:
    """Outcome of one best-effort export to a telemetry backend.

    Attributes:
        target: Name of the backend ("trace" or "log")
        error: The transport error, or None on success
        skipped: True when the backend is not configured
    """

    target: str
    error: Optional[Exception] = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None
