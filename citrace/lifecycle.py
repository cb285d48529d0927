"""Span lifecycle controller for CI steps that span several processes.

Each CLI invocation performs one transition:

- ``start`` allocates a new trace and root span and hands the context on.
- ``start_child`` allocates a span under an existing trace.
- ``end_child`` / ``end`` rebuild the span from its identifiers, close it
  with real timestamps and status, export it and emit a log record.

Nothing is exported when a span opens; the opening process may exit
immediately. Closing is valid from any process that holds the identifiers.
Parents must be ended after all of their children; the orchestrator
sequences the calls and this module does not check it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from citrace.carrier import (
    PARENT_SPAN_ID_KEY,
    SPAN_ID_KEY,
    DecodedContext,
    encode_lines,
    publish_lines,
)
from citrace.exceptions import HandoffError
from citrace.models import EmitResult, StepRecord, StepStatus, TraceContext
from citrace.otel import SpanContextFactory
from citrace.runtime import Runtime

logger = logging.getLogger("citrace")


@dataclass
class CloseOutcome:
    """A closed step and the results of its two best-effort exports."""

    record: StepRecord
    trace_result: EmitResult
    log_result: EmitResult


def resolve_start_time(
    end_time: datetime,
    decoded: DecodedContext,
    duration_ms: Optional[int] = None,
    started_at: Optional[float] = None,
) -> datetime:
    """Pick the start time of a span being closed by another process.

    Precedence: explicit duration, explicit epoch start, the hand-off file,
    and finally the end time itself.
    """
    if duration_ms is not None:
        return end_time - timedelta(milliseconds=max(duration_ms, 0))
    if started_at is not None:
        return datetime.fromtimestamp(started_at, timezone.utc)
    if decoded.start_time is not None:
        return decoded.start_time
    logger.warning(
        f"No start time known for span {decoded.context.span_id_hex}, "
        "recording a zero-duration span"
    )
    return end_time


class SpanLifecycleController:
    """Opens and closes step spans by identifier."""

    def __init__(self, runtime: Runtime, persist: bool = True):
        """Initialize the controller.

        Args:
            runtime: The per-invocation runtime
            persist: Whether to maintain the hand-off file
        """
        self.runtime = runtime
        self.persist = persist

    def _publish(self, ctx: TraceContext, span_key: str) -> None:
        publish_lines(encode_lines(ctx, span_key), self.runtime.github_output)

    def start(self, step: str, publish: bool = True) -> StepRecord:
        ctx = SpanContextFactory.new_trace().new_context()
        record = StepRecord(
            step_name=step,
            context=ctx,
            start_time=datetime.now(timezone.utc),
            is_root=True,
        )
        logger.info(
            f"Starting root span for {step}: trace_id={record.trace_id} "
            f"span_id={record.span_id}"
        )
        if self.persist:
            self._update_handoff(
                self.runtime.store.begin_trace, ctx, step, record.start_time
            )
        if publish:
            self._publish(ctx, PARENT_SPAN_ID_KEY)
        return record

    def start_child(
        self, step: str, parent: TraceContext, publish: bool = True
    ) -> StepRecord:
        ctx = SpanContextFactory.for_context(parent).new_context(avoid=parent.span_id)
        record = StepRecord(
            step_name=step,
            context=ctx,
            start_time=datetime.now(timezone.utc),
            parent_span_id=parent.span_id,
        )
        logger.info(
            f"Starting child span {step}: trace_id={record.trace_id} "
            f"span_id={record.span_id} parent_span_id={parent.span_id_hex}"
        )
        if self.persist:
            self._update_handoff(
                self.runtime.store.add_child,
                ctx,
                step,
                record.start_time,
                parent.span_id_hex,
            )
        if publish:
            self._publish(ctx, SPAN_ID_KEY)
        return record

    def end_child(
        self,
        step: str,
        decoded: DecodedContext,
        status: StepStatus,
        error: Optional[str] = None,
        duration_ms: Optional[int] = None,
        started_at: Optional[float] = None,
    ) -> CloseOutcome:
        end_time = datetime.now(timezone.utc)
        record = StepRecord(
            step_name=step,
            context=decoded.context,
            start_time=resolve_start_time(end_time, decoded, duration_ms, started_at),
            parent_span_id=decoded.parent_span_id,
        )
        if record.parent_span_id is None:
            logger.warning(
                f"No parent known for span {record.span_id}, exporting it detached"
            )
        record.close(status, error, end_time)
        logger.info(f"Ending child span {step}: {record.status.value}")

        outcome = self._finish(record)
        if self.persist:
            self._update_handoff(self.runtime.store.close_child, record.context)
        return outcome

    def end(
        self,
        step: str,
        decoded: DecodedContext,
        status: StepStatus,
        error: Optional[str] = None,
        duration_ms: Optional[int] = None,
        started_at: Optional[float] = None,
    ) -> CloseOutcome:
        end_time = datetime.now(timezone.utc)
        record = StepRecord(
            step_name=step,
            context=decoded.context,
            start_time=resolve_start_time(end_time, decoded, duration_ms, started_at),
            is_root=True,
        )
        record.close(status, error, end_time)
        logger.info(f"Ending root span {step}: {record.status.value}")

        outcome = self._finish(record)
        if self.persist:
            self._cleanup(record)
        return outcome

    def close(
        self,
        record: StepRecord,
        status: StepStatus,
        error: Optional[str] = None,
    ) -> CloseOutcome:
        """Close a span opened by this same process."""
        record.close(status, error)
        outcome = self._finish(record)
        if self.persist:
            if record.is_root:
                self._cleanup(record)
            else:
                self._update_handoff(self.runtime.store.close_child, record.context)
        return outcome

    def _finish(self, record: StepRecord) -> CloseOutcome:
        span = self.runtime.span_builder.build(record)
        trace_result = self.runtime.shipper.ship(span)
        # Log emission never depends on the trace export outcome
        log_result = self.runtime.emitter.emit(record)
        return CloseOutcome(record, trace_result, log_result)

    def _update_handoff(self, operation, *args) -> None:
        try:
            operation(*args)
        except HandoffError as e:
            logger.warning(f"{e}; continuing without the hand-off file")

    def _cleanup(self, record: StepRecord) -> None:
        handoff = self.runtime.store.load()
        if handoff is not None and handoff.trace_id != record.trace_id:
            logger.warning(
                f"Keeping hand-off file {self.runtime.store.path}, "
                f"it tracks trace {handoff.trace_id}"
            )
            return
        if handoff is not None:
            still_open = len(handoff.open_children())
            if still_open > 0:
                logger.warning(
                    f"Root span {record.span_id} closed with {still_open} "
                    "child span(s) still open"
                )
        self.runtime.store.delete()
