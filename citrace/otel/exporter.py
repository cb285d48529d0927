"""OpenTelemetry OTLP exporter setup."""

from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
    OTLPSpanExporter as GrpcSpanExporter,
)
from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
    OTLPSpanExporter as HttpSpanExporter,
)
from opentelemetry.sdk.trace.export import SpanExporter

from citrace.config import Config, Protocol


def setup_otel_exporter(config: Config) -> SpanExporter | None:
    """Setup the OpenTelemetry OTLP exporter described by the config.

    Args:
        config: Configuration holding the OTLP endpoint, protocol and token

    Returns:
        Configured exporter, or None when no endpoint is configured
    """
    otlp = config.otlp
    if not otlp.endpoint:
        return None
    headers = config.auth_headers()
    if otlp.protocol == Protocol.GRPC:
        # gRPC metadata keys must be lowercase
        return GrpcSpanExporter(
            endpoint=otlp.endpoint,
            insecure=otlp.insecure,
            headers={key.lower(): value for key, value in headers.items()},
            timeout=otlp.timeout,
        )
    return HttpSpanExporter(
        endpoint=otlp.endpoint,
        headers=headers,
        timeout=otlp.timeout,
    )
