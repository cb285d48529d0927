"""Context carrier: moves a TraceContext across process boundaries.

Two channels are supported. Key/value lines on stdout (and optionally the
``$GITHUB_OUTPUT`` file) are captured by the CI orchestrator and passed to
the next invocation as options. A small JSON hand-off file records the
spans still open in the current job, so later invocations can recover
identifiers and start times when options are absent.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

import click

from citrace.exceptions import HandoffError, MissingContextError
from citrace.models import (
    HandoffRecord,
    HandoffSpan,
    TraceContext,
    parse_span_id,
    parse_trace_id,
)

logger = logging.getLogger("citrace")

TRACE_ID_KEY = "trace_id"
SPAN_ID_KEY = "span_id"
PARENT_SPAN_ID_KEY = "parent_span_id"


def encode_lines(ctx: TraceContext, span_key: str = SPAN_ID_KEY) -> list[str]:
    """Encode a context as ``key=value`` lines.

    The sampled flag is not part of the lines; decoding always yields a
    sampled context and only the hand-off file carries the flag.

    Args:
        ctx: The context to encode
        span_key: ``parent_span_id`` for root spans, ``span_id`` for children

    Returns:
        The two output lines
    """
    return [f"{TRACE_ID_KEY}={ctx.trace_id_hex}", f"{span_key}={ctx.span_id_hex}"]


def parse_lines(lines: Iterable[str]) -> dict[str, str]:
    """Parse ``key=value`` lines, ignoring anything else on the stream."""
    values: dict[str, str] = {}
    for line in lines:
        key, sep, value = line.strip().partition("=")
        if sep and key in (TRACE_ID_KEY, SPAN_ID_KEY, PARENT_SPAN_ID_KEY):
            values[key] = value
    return values


def decode_lines(lines: Iterable[str]) -> TraceContext:
    """Decode a context from lines produced by :func:`encode_lines`."""
    values = parse_lines(lines)
    span_id = values.get(SPAN_ID_KEY) or values.get(PARENT_SPAN_ID_KEY)
    trace_id = parse_trace_id(values.get(TRACE_ID_KEY))
    parsed_span_id = parse_span_id(span_id)
    missing = []
    if trace_id is None:
        missing.append(TRACE_ID_KEY)
    if parsed_span_id is None:
        missing.append(SPAN_ID_KEY)
    if missing:
        raise MissingContextError("decode", missing)
    return TraceContext(trace_id, parsed_span_id)


def publish_lines(lines: list[str], github_output: Optional[str] = None) -> None:
    """Print lines to stdout and append them to the GitHub output file if given."""
    for line in lines:
        click.echo(line)
    if github_output:
        with open(github_output, "a") as f:
            for line in lines:
                f.write(f"{line}\n")


class HandoffStore:
    """JSON hand-off file holding the open spans of the current job."""

    def __init__(self, path: str, run_id: str = ""):
        """Initialize the store.

        Args:
            path: Location of the hand-off file
            run_id: Current CI run ID; files from other runs are stale
        """
        self.path = path
        self.run_id = str(run_id) if run_id else ""

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def load(self) -> Optional[HandoffRecord]:
        """Read the hand-off record, or None if absent, malformed or stale."""
        if not self.exists():
            return None
        try:
            with open(self.path) as f:
                record = HandoffRecord(**json.load(f))
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Ignoring unreadable hand-off file {self.path}: {e}")
            return None
        if self.run_id and record.run_id and record.run_id != self.run_id:
            logger.warning(
                f"Ignoring stale hand-off file {self.path} from run {record.run_id}"
            )
            return None
        return record

    def save(self, record: HandoffRecord) -> None:
        directory = os.path.dirname(self.path)
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump(record.to_dict(), f, indent=2)
        except OSError as e:
            raise HandoffError(f"Cannot write hand-off file {self.path}: {e}") from e
        logger.debug(f"Hand-off file written: {self.path}")

    def delete(self) -> None:
        if not self.exists():
            return
        try:
            os.remove(self.path)
        except OSError as e:
            logger.warning(f"Could not delete hand-off file {self.path}: {e}")
            return
        logger.debug(f"Hand-off file deleted: {self.path}")

    def begin_trace(
        self, ctx: TraceContext, step: str, started_at: datetime
    ) -> HandoffRecord:
        """Replace any previous file with a new trace rooted at ``ctx``."""
        if self.exists():
            logger.warning(
                f"Overwriting leftover hand-off file {self.path} from a previous job"
            )
        record = HandoffRecord(
            trace_id=ctx.trace_id_hex,
            run_id=self.run_id,
            sampled=ctx.sampled,
            spans=[HandoffSpan(ctx.span_id_hex, step, started_at.isoformat())],
        )
        self.save(record)
        return record

    def add_child(
        self,
        ctx: TraceContext,
        step: str,
        started_at: datetime,
        parent_span_id: str,
    ) -> None:
        record = self.load()
        if record is not None and record.trace_id != ctx.trace_id_hex:
            logger.warning(
                f"Hand-off file tracks trace {record.trace_id}, "
                f"replacing it with trace {ctx.trace_id_hex}"
            )
            record = None
        if record is None:
            record = HandoffRecord(
                trace_id=ctx.trace_id_hex, run_id=self.run_id, sampled=ctx.sampled
            )
        record.spans.append(
            HandoffSpan(ctx.span_id_hex, step, started_at.isoformat(), parent_span_id)
        )
        self.save(record)

    def close_child(self, ctx: TraceContext) -> None:
        record = self.load()
        if record is None or record.trace_id != ctx.trace_id_hex:
            return
        if not record.remove(ctx.span_id_hex):
            return
        if record.spans:
            self.save(record)
        else:
            self.delete()


@dataclass
class DecodedContext:
    """A context recovered for a command, plus what the hand-off file knew about it."""

    context: TraceContext
    parent_span_id: Optional[int] = None
    start_time: Optional[datetime] = None
    step: Optional[str] = None


def _matching_record(
    store: Optional[HandoffStore], trace_id: Optional[str]
) -> Optional[HandoffRecord]:
    if store is None:
        return None
    record = store.load()
    if record is None:
        return None
    if trace_id and parse_trace_id(trace_id) != parse_trace_id(record.trace_id):
        return None
    return record


def _span_start(span: Optional[HandoffSpan]) -> Optional[datetime]:
    if span is None:
        return None
    try:
        return span.start_time
    except (TypeError, ValueError):
        logger.warning(f"Invalid start time in hand-off file for span {span.span_id}")
        return None


def _require(
    command: str,
    trace_id: Optional[str],
    span_id: Optional[str],
    span_key: str,
) -> tuple[int, int]:
    parsed_trace_id = parse_trace_id(trace_id)
    parsed_span_id = parse_span_id(span_id)
    missing = []
    if parsed_trace_id is None:
        missing.append(f"--{TRACE_ID_KEY.replace('_', '-')}")
    if parsed_span_id is None:
        missing.append(f"--{span_key.replace('_', '-')}")
    if missing:
        raise MissingContextError(command, missing)
    return parsed_trace_id, parsed_span_id


def decode_parent(
    command: str,
    trace_id: Optional[str],
    parent_span_id: Optional[str],
    store: Optional[HandoffStore] = None,
) -> DecodedContext:
    """Decode the parent context for ``start-child`` or ``run``.

    Missing identifiers are taken from the hand-off file's root span.
    """
    record = None
    if not (parse_trace_id(trace_id) and parse_span_id(parent_span_id)):
        record = _matching_record(store, trace_id)
        if record is not None and record.root is not None:
            trace_id = trace_id or record.trace_id
            parent_span_id = parent_span_id or record.root.span_id
    parsed_trace_id, parsed_span_id = _require(
        command, trace_id, parent_span_id, PARENT_SPAN_ID_KEY
    )
    sampled = record.sampled if record is not None else True
    return DecodedContext(TraceContext(parsed_trace_id, parsed_span_id, sampled))


def decode_child(
    command: str,
    trace_id: Optional[str],
    span_id: Optional[str],
    parent_span_id: Optional[str] = None,
    store: Optional[HandoffStore] = None,
) -> DecodedContext:
    """Decode the context of a child span being closed.

    A missing span ID resolves to the last child opened in this job.
    """
    record = _matching_record(store, trace_id)
    span: Optional[HandoffSpan] = None
    if record is not None:
        if parse_span_id(span_id) is None:
            span = record.last_open_child()
            if span is not None:
                trace_id = trace_id or record.trace_id
                span_id = span.span_id
        else:
            span = record.find(span_id.strip().lower())
            if span is not None:
                trace_id = trace_id or record.trace_id
    parsed_trace_id, parsed_span_id = _require(command, trace_id, span_id, SPAN_ID_KEY)

    parent = parse_span_id(parent_span_id)
    if parent is None and span is not None:
        parent = parse_span_id(span.parent_span_id)
    if parent is None and record is not None and record.root is not None:
        parent = parse_span_id(record.root.span_id)
    if parent == parsed_span_id:
        parent = None
    sampled = record.sampled if record is not None else True
    return DecodedContext(
        TraceContext(parsed_trace_id, parsed_span_id, sampled),
        parent_span_id=parent,
        start_time=_span_start(span),
        step=span.step if span else None,
    )


def decode_root(
    command: str,
    trace_id: Optional[str],
    span_id: Optional[str],
    store: Optional[HandoffStore] = None,
) -> DecodedContext:
    """Decode the context of the root span being closed."""
    record = _matching_record(store, trace_id)
    root: Optional[HandoffSpan] = record.root if record is not None else None
    if root is not None:
        if parse_span_id(span_id) is None:
            trace_id = trace_id or record.trace_id
            span_id = root.span_id
        elif parse_span_id(span_id) == parse_span_id(root.span_id):
            trace_id = trace_id or record.trace_id
        else:
            root = None
    parsed_trace_id, parsed_span_id = _require(
        command, trace_id, span_id, PARENT_SPAN_ID_KEY
    )
    sampled = record.sampled if record is not None else True
    return DecodedContext(
        TraceContext(parsed_trace_id, parsed_span_id, sampled),
        start_time=_span_start(root),
        step=root.step if root else None,
    )
