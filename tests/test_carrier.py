"""Tests for the context carrier: stdout lines and the hand-off file."""

import json
import logging
from datetime import datetime, timezone

import pytest

from citrace.carrier import (
    HandoffStore,
    decode_child,
    decode_lines,
    decode_parent,
    decode_root,
    encode_lines,
    parse_lines,
    publish_lines,
)
from citrace.exceptions import MissingContextError
from citrace.models import TraceContext

TRACE_ID = "0af7651916cd43dd8448eb211c80319c"
ROOT_SPAN = "b7ad6b7169203331"
CHILD_SPAN = "00f067aa0ba902b7"
STARTED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(handoff_path):
    return HandoffStore(handoff_path, run_id="42")


@pytest.fixture
def open_trace(store):
    """A hand-off file with a root span and one open child."""
    root = TraceContext.from_hex(TRACE_ID, ROOT_SPAN)
    store.begin_trace(root, "Build", STARTED)
    store.add_child(
        TraceContext.from_hex(TRACE_ID, CHILD_SPAN), "Test", STARTED, ROOT_SPAN
    )
    return store


class TestLines:
    """Tests for key=value line encoding."""

    def test_root_lines_use_parent_span_key(self):
        ctx = TraceContext.from_hex(TRACE_ID, ROOT_SPAN)
        assert encode_lines(ctx, "parent_span_id") == [
            f"trace_id={TRACE_ID}",
            f"parent_span_id={ROOT_SPAN}",
        ]

    def test_round_trip(self):
        ctx = TraceContext.from_hex(TRACE_ID, CHILD_SPAN)
        assert decode_lines(encode_lines(ctx)) == ctx

    def test_lines_do_not_carry_sampled_flag(self):
        ctx = TraceContext.from_hex(TRACE_ID, CHILD_SPAN, sampled=False)
        assert encode_lines(ctx) == [f"trace_id={TRACE_ID}", f"span_id={CHILD_SPAN}"]
        assert decode_lines(encode_lines(ctx)).sampled is True

    def test_parse_ignores_unrelated_lines(self):
        lines = ["DEBUG: something", f"trace_id={TRACE_ID}", "foo=bar", f"span_id={CHILD_SPAN}"]
        assert parse_lines(lines) == {"trace_id": TRACE_ID, "span_id": CHILD_SPAN}

    def test_decode_missing_span_raises(self):
        with pytest.raises(MissingContextError):
            decode_lines([f"trace_id={TRACE_ID}", "span_id="])

    def test_publish_appends_github_output(self, tmp_path, capsys):
        output = tmp_path / "github_output"
        output.write_text("existing=1\n")
        publish_lines(["trace_id=a", "span_id=b"], str(output))
        assert capsys.readouterr().out == "trace_id=a\nspan_id=b\n"
        assert output.read_text() == "existing=1\ntrace_id=a\nspan_id=b\n"


class TestHandoffStore:
    """Tests for the JSON hand-off file."""

    def test_absent_file_loads_as_none(self, store):
        assert store.load() is None

    def test_fresh_store_reads_what_another_wrote(self, open_trace, handoff_path):
        record = HandoffStore(handoff_path, run_id="42").load()
        assert record.trace_id == TRACE_ID
        assert [span.span_id for span in record.spans] == [ROOT_SPAN, CHILD_SPAN]
        assert record.spans[1].parent_span_id == ROOT_SPAN
        assert record.spans[1].start_time == STARTED

    def test_file_from_another_run_is_stale(self, open_trace, handoff_path, caplog):
        with caplog.at_level(logging.WARNING, logger="citrace"):
            assert HandoffStore(handoff_path, run_id="43").load() is None
        assert "stale" in caplog.text

    def test_malformed_file_is_ignored(self, store, handoff_path, caplog):
        store.begin_trace(TraceContext.from_hex(TRACE_ID, ROOT_SPAN), "Build", STARTED)
        with open(handoff_path, "w") as f:
            f.write("{not json")
        with caplog.at_level(logging.WARNING, logger="citrace"):
            assert store.load() is None
        assert "unreadable" in caplog.text

    def test_file_with_wrong_types_is_ignored(self, store, handoff_path, caplog):
        store.begin_trace(TraceContext.from_hex(TRACE_ID, ROOT_SPAN), "Build", STARTED)
        with open(handoff_path, "w") as f:
            json.dump({"trace_id": 12345, "spans": []}, f)
        with caplog.at_level(logging.WARNING, logger="citrace"):
            assert store.load() is None
        assert "unreadable" in caplog.text

    def test_begin_trace_overwrites_leftover(self, open_trace, caplog):
        other = TraceContext.from_hex("1" * 32, "2" * 16)
        with caplog.at_level(logging.WARNING, logger="citrace"):
            open_trace.begin_trace(other, "Deploy", STARTED)
        assert "leftover" in caplog.text
        record = open_trace.load()
        assert record.trace_id == "1" * 32
        assert len(record.spans) == 1

    def test_close_child_removes_entry(self, open_trace):
        open_trace.close_child(TraceContext.from_hex(TRACE_ID, CHILD_SPAN))
        assert [span.span_id for span in open_trace.load().spans] == [ROOT_SPAN]

    def test_delete(self, open_trace):
        open_trace.delete()
        assert not open_trace.exists()
        open_trace.delete()

    def test_file_format(self, open_trace, handoff_path):
        with open(handoff_path) as f:
            data = json.load(f)
        assert data["version"] == 1
        assert data["run_id"] == "42"
        assert data["spans"][0] == {
            "span_id": ROOT_SPAN,
            "step": "Build",
            "started_at": STARTED.isoformat(),
        }


class TestDecode:
    """Tests for resolving command contexts from options and the hand-off file."""

    def test_parent_from_options(self, store):
        decoded = decode_parent("start-child", TRACE_ID, ROOT_SPAN, store)
        assert decoded.context == TraceContext.from_hex(TRACE_ID, ROOT_SPAN)

    def test_parent_from_handoff_file(self, open_trace):
        decoded = decode_parent("start-child", None, None, open_trace)
        assert decoded.context == TraceContext.from_hex(TRACE_ID, ROOT_SPAN)

    def test_parent_missing_everywhere(self, store):
        with pytest.raises(MissingContextError) as excinfo:
            decode_parent("start-child", None, ROOT_SPAN, store)
        assert excinfo.value.missing == ["--trace-id"]

    def test_parent_from_other_trace_is_not_borrowed(self, open_trace):
        with pytest.raises(MissingContextError):
            decode_parent("start-child", "1" * 32, None, open_trace)

    def test_invalid_ids_count_as_missing(self, store):
        with pytest.raises(MissingContextError) as excinfo:
            decode_child("end-child", "not-hex", "also-not-hex", store=store)
        assert excinfo.value.missing == ["--trace-id", "--span-id"]

    def test_child_uses_last_open_child(self, open_trace):
        decoded = decode_child("end-child", None, None, store=open_trace)
        assert decoded.context.span_id_hex == CHILD_SPAN
        assert decoded.parent_span_id == int(ROOT_SPAN, 16)
        assert decoded.start_time == STARTED
        assert decoded.step == "Test"

    def test_child_options_enriched_from_file(self, open_trace):
        decoded = decode_child("end-child", TRACE_ID, CHILD_SPAN, store=open_trace)
        assert decoded.parent_span_id == int(ROOT_SPAN, 16)
        assert decoded.start_time == STARTED

    def test_child_without_file_is_detached(self, store):
        decoded = decode_child("end-child", TRACE_ID, CHILD_SPAN, store=store)
        assert decoded.parent_span_id is None
        assert decoded.start_time is None

    def test_child_explicit_parent_wins(self, store):
        decoded = decode_child("end-child", TRACE_ID, CHILD_SPAN, "1" * 16, store)
        assert decoded.parent_span_id == int("1" * 16, 16)

    def test_root_from_file(self, open_trace):
        decoded = decode_root("end", None, None, open_trace)
        assert decoded.context == TraceContext.from_hex(TRACE_ID, ROOT_SPAN)
        assert decoded.start_time == STARTED
        assert decoded.step == "Build"

    def test_root_missing(self, store):
        with pytest.raises(MissingContextError) as excinfo:
            decode_root("end", TRACE_ID, None, store)
        assert excinfo.value.missing == ["--parent-span-id"]
