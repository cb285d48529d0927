"""Shared fixtures: stub transports and a runtime wired to them."""

import logging

import pytest
import requests
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult

from citrace.carrier import HandoffStore
from citrace.config import Config
from citrace.emitter import LogEmitter
from citrace.otel import FinishedSpanBuilder, SpanShipper, create_resource
from citrace.runtime import Runtime

ENV_VARS = [
    "CITRACE_CONFIG",
    "CITRACE_OTLP_ENDPOINT",
    "CITRACE_OTLP_PROTOCOL",
    "CITRACE_API_TOKEN",
    "CITRACE_LOG_INGEST_URL",
    "CITRACE_SERVICE_NAME",
    "CITRACE_LOG_LEVEL",
    "CITRACE_HANDOFF_PATH",
    "GITHUB_REPOSITORY",
    "GITHUB_SHA",
    "GITHUB_RUN_ID",
    "GITHUB_WORKFLOW",
    "GITHUB_OUTPUT",
    "DYNATRACE_OTLP_URL",
    "DYNATRACE_API_TOKEN",
    "DYNATRACE_LOG_INGEST_URL",
]


class StubExporter(SpanExporter):
    """Span exporter that records spans instead of sending them."""

    def __init__(self, result=SpanExportResult.SUCCESS, raises=None):
        self.result = result
        self.raises = raises
        self.spans = []
        self.shutdown_called = False

    def export(self, spans):
        if self.raises is not None:
            raise self.raises
        self.spans.extend(spans)
        return self.result

    def shutdown(self):
        self.shutdown_called = True


class StubResponse:
    def __init__(self, status_code=200, text=""):
        self.status_code = status_code
        self.text = text

    @property
    def ok(self):
        return self.status_code < 400


class StubSession:
    """requests.Session replacement that records POST calls."""

    def __init__(self, response=None, raises=None):
        self.response = response or StubResponse()
        self.raises = raises
        self.calls = []
        self.closed = False

    def post(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        if self.raises is not None:
            raise self.raises
        return self.response

    def close(self):
        self.closed = True

    @property
    def records(self):
        return [call["json"][0] for call in self.calls]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the host CI environment out of the tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    logger = logging.getLogger("citrace")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def handoff_path(tmp_path):
    return str(tmp_path / "handoff" / "handoff.json")


@pytest.fixture
def config(handoff_path):
    return Config(
        handoff_path=handoff_path,
        api_token="secret",
        otlp={"endpoint": "http://collector:4318/v1/traces"},
        log_ingest={"url": "http://logs.example.com/api/v2/logs/ingest"},
        ci={
            "repository": "acme/reporter",
            "commit": "abc123",
            "run_id": "42",
            "workflow": "ci",
        },
    )


@pytest.fixture
def exporter():
    return StubExporter()


@pytest.fixture
def session():
    return StubSession()


@pytest.fixture
def runtime(config, exporter, session):
    return Runtime(
        config=config,
        store=HandoffStore(config.handoff_path, config.ci.run_id),
        shipper=SpanShipper(exporter),
        emitter=LogEmitter(config, session=session),
        span_builder=FinishedSpanBuilder(create_resource(config)),
    )


@pytest.fixture
def failing_exporter():
    return StubExporter(result=SpanExportResult.FAILURE)


@pytest.fixture
def unreachable_session():
    return StubSession(raises=requests.exceptions.ConnectionError("connection refused"))


@pytest.fixture
def rejecting_session():
    return StubSession(response=StubResponse(403, "Token is missing required scope"))
