"""Per-invocation runtime shared by the carrier, controller and emitter.

A runtime is created once per process from the loaded config and passed
down explicitly. ``shutdown`` flushes the exporter and must run before the
process exits or spans may be dropped.
"""

import os
from dataclasses import dataclass
from typing import Optional

from citrace.carrier import HandoffStore
from citrace.config import Config
from citrace.emitter import LogEmitter
from citrace.otel import (
    FinishedSpanBuilder,
    SpanShipper,
    create_resource,
    setup_otel_exporter,
)


@dataclass
class Runtime:
    config: Config
    store: HandoffStore
    shipper: SpanShipper
    emitter: LogEmitter
    span_builder: FinishedSpanBuilder
    github_output: Optional[str] = None

    def shutdown(self) -> None:
        self.shipper.shutdown()
        self.emitter.close()


def create_runtime(config: Config) -> Runtime:
    github_output = os.environ.get("GITHUB_OUTPUT") if config.github_output else None
    return Runtime(
        config=config,
        store=HandoffStore(config.handoff_path, config.ci.run_id),
        shipper=SpanShipper(setup_otel_exporter(config)),
        emitter=LogEmitter(config),
        span_builder=FinishedSpanBuilder(
            create_resource(config), config.service_version
        ),
        github_output=github_output or None,
    )
