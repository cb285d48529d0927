"""Log emitter: forwards one structured record per closed step to the log backend."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import requests

from citrace.config import CIMetadata, Config
from citrace.exceptions import ExportTransportError
from citrace.models import EmitResult, StepRecord, StepStatus

logger = logging.getLogger("citrace")


def build_log_payload(
    record: StepRecord, service: str, metadata: CIMetadata
) -> dict[str, Any]:
    """Assemble the ingestion payload for a closed step.

    Args:
        record: The closed step record
        service: Service name reported with the log line
        metadata: CI job metadata passed through opaquely

    Returns:
        The log record as a JSON-serializable dict
    """
    if record.is_root:
        content = f"Root Trace Ended: {record.step_name}"
    else:
        content = f"Step Completed: {record.step_name}"
    end_time = record.end_time or datetime.now(timezone.utc)

    payload: dict[str, Any] = {
        "timestamp": int(end_time.timestamp() * 1000),
        "loglevel": "ERROR" if record.status == StepStatus.FAILURE else "INFO",
        "content": content,
        "trace_id": record.trace_id,
        "span_id": record.span_id,
        "service": service,
        "step": record.step_name,
        "step_duration_ms": record.duration_ms,
        "status": record.status.value,
    }
    if record.parent_span_id_hex:
        payload["parent_span_id"] = record.parent_span_id_hex
    if record.error_message:
        payload["error"] = record.error_message
    payload.update(metadata.as_attributes())
    return payload


class LogEmitter:
    """Posts step records to the log-ingestion endpoint, one attempt each.

    Every call returns an :class:`EmitResult`; transport problems are logged
    here and never raised to the caller.
    """

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.url = config.log_ingest.url
        self.timeout = config.log_ingest.timeout
        self.service = config.service_name
        self.metadata = config.ci
        self.headers = {"Content-Type": "application/json", **config.auth_headers()}
        self.session = session or requests.Session()

    def emit(self, record: StepRecord) -> EmitResult:
        if not self.url:
            logger.debug("No log ingest URL configured, log emission skipped")
            return EmitResult("log", skipped=True)

        payload = build_log_payload(record, self.service, self.metadata)
        try:
            response = self.session.post(
                self.url,
                json=[payload],
                headers=self.headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            error = ExportTransportError("log", str(e))
            logger.error(f"Log ingestion failed | traceId: {record.trace_id} | {error}")
            return EmitResult("log", error=error)

        if not response.ok:
            error = ExportTransportError(
                "log",
                f"{response.status_code}: {response.text}",
                status_code=response.status_code,
            )
            logger.error(f"Log ingestion failed | traceId: {record.trace_id} | {error}")
            return EmitResult("log", error=error)

        logger.info(f"Log sent successfully | traceId: {record.trace_id}")
        return EmitResult("log")

    def close(self) -> None:
        self.session.close()
