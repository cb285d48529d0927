"""OpenTelemetry resource creation and finished-span shipping."""

import logging

from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult

from citrace.config import Config
from citrace.exceptions import ExportTransportError
from citrace.models import EmitResult

logger = logging.getLogger("citrace")


def create_resource(config: Config) -> Resource:
    """Create the resource describing the CI pipeline service.

    Args:
        config: Configuration holding service name, version and CI metadata

    Returns:
        The resource attached to every exported span
    """
    attributes = {
        "service.name": config.service_name,
        "service.version": config.service_version,
    }
    attributes.update(config.ci.as_attributes())
    return Resource.create(attributes)


class SpanShipper:
    """Hands finished spans to the OTLP exporter, one attempt each.

    Failures are logged and returned, never raised. ``shutdown`` must be
    called before the process exits so the exporter flushes.
    """

    def __init__(self, exporter: SpanExporter | None):
        self.exporter = exporter
        self._shut_down = False

    @property
    def enabled(self) -> bool:
        return self.exporter is not None

    def ship(self, span: ReadableSpan) -> EmitResult:
        if self.exporter is None:
            logger.debug("No OTLP endpoint configured, span export skipped")
            return EmitResult("trace", skipped=True)
        if not span.context.trace_flags.sampled:
            logger.debug(f"Span {span.name} is not sampled, export skipped")
            return EmitResult("trace", skipped=True)

        try:
            result = self.exporter.export([span])
        except Exception as e:
            error = ExportTransportError("trace", str(e))
            logger.error(f"{error}")
            return EmitResult("trace", error=error)

        if result != SpanExportResult.SUCCESS:
            error = ExportTransportError("trace", "exporter reported failure")
            logger.error(f"{error}")
            return EmitResult("trace", error=error)

        logger.info(f"Span exported: {span.name}")
        return EmitResult("trace")

    def shutdown(self) -> None:
        """Flush and shut down the exporter."""
        if self.exporter is None or self._shut_down:
            return
        self._shut_down = True
        try:
            self.exporter.force_flush()
            self.exporter.shutdown()
        except Exception as e:
            logger.error(f"Error shutting down trace exporter: {e}")
